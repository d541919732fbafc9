"""Tests for the CLI entry point: exit codes per failure class."""

import textwrap

import pytest

import detection.main as cli
from connector import Registry
from detection.errors import PublishFailed, QueryFailed

_GLOBAL = """
    llm:
      provider: anthropic
      model: claude-haiku-4-5-20251001
      apiKey: test-key
"""


class FakeRunner:
    def __init__(self, results=(), error=None):
        self.results = list(results)
        self.error = error

    def query(self, rule):
        if self.error:
            raise self.error
        return self.results


class FakePublisher:
    def __init__(self, error=None):
        self.error = error
        self.published = []

    def publish(self, results, rule):
        if self.error:
            raise self.error
        self.published.extend(results)


class FakeLLM:
    def __init__(self, reply="[]", error=None):
        self.reply = reply
        self.error = error

    def call(self, prompt):
        if self.error:
            raise self.error
        return self.reply


def _rule_text(enabled=True, llm=False, exclusions=None, publishers=("kafka.signals",)):
    text = textwrap.dedent(f"""
        name: Test Rule
        uid: rule-0001
        enabled: {str(enabled).lower()}
        queryEngine: opensearch.prod
        query: SELECT user FROM logs
        publishers: [{', '.join(publishers)}]
        output:
          format: raw
    """)
    if exclusions:
        text += f"exclusionsPath: {exclusions}\n"
    if llm:
        text += "llm:\n  enabled: true\n  prompt: \"$formatted_results\"\n"
    return text


@pytest.fixture
def paths(tmp_path):
    def write(rule_text, global_text=_GLOBAL):
        rule = tmp_path / "rule.yaml"
        rule.write_text(textwrap.dedent(rule_text))
        glob = tmp_path / "global.yaml"
        glob.write_text(textwrap.dedent(global_text))
        return ["-r", str(rule), "-c", str(glob)]
    return write


@pytest.fixture
def registry(monkeypatch):
    """Replace connector construction with in-memory fakes."""
    handles = {
        "runner": FakeRunner([{"user": "alice"}, {"user": "bob"}]),
        "publisher": FakePublisher(),
    }

    def build(cfg):
        return Registry({"opensearch.prod": handles["runner"]},
                        {"kafka.signals": handles["publisher"]})

    monkeypatch.setattr(cli, "build_registry", build)
    return handles


class TestExitCodes:
    def test_success(self, paths, registry):
        assert cli.main(paths(_rule_text())) == 0
        assert registry["publisher"].published == [{"user": "alice"}, {"user": "bob"}]

    def test_disabled_rule_does_nothing(self, paths, registry):
        assert cli.main(paths(_rule_text(enabled=False))) == 0
        assert registry["publisher"].published == []

    def test_missing_rule_file(self, tmp_path, registry):
        assert cli.main(["-r", str(tmp_path / "missing.yaml")]) == 1

    def test_invalid_rule(self, paths, registry):
        assert cli.main(paths("name: only-a-name\n")) == 1

    def test_invalid_global_config(self, paths, registry):
        assert cli.main(paths(_rule_text(), global_text="splunk: {}\n")) == 1

    def test_unknown_publisher(self, paths, registry):
        args = paths(_rule_text(publishers=("kafka.signals", "webhook.soc")))
        assert cli.main(args) == 1
        assert registry["publisher"].published == []

    def test_query_failure(self, paths, registry):
        registry["runner"].error = QueryFailed("connection refused")
        assert cli.main(paths(_rule_text())) == 1

    def test_publish_failure_still_exits_zero(self, paths, registry):
        registry["publisher"].error = PublishFailed("broker down")
        assert cli.main(paths(_rule_text())) == 0

    def test_bad_exclusion_file(self, paths, registry, tmp_path):
        bad = tmp_path / "exclusions.yaml"
        bad.write_text("- conditions:\n    or:\n      - {field: user, operator: like, value: x}\n")
        assert cli.main(paths(_rule_text(exclusions=bad))) == 1

    def test_exclusions_applied(self, paths, registry, tmp_path):
        excl = tmp_path / "exclusions.yaml"
        excl.write_text("- conditions:\n    or:\n      - {field: user, operator: equals, value: bob}\n")
        assert cli.main(paths(_rule_text(exclusions=excl))) == 0
        assert registry["publisher"].published == [{"user": "alice"}]

    def test_unknown_llm_provider(self, paths, registry):
        global_text = "llm:\n  provider: cohere\n  model: x\n  apiKey: k\n"
        assert cli.main(paths(_rule_text(llm=True), global_text=global_text)) == 1

    def test_enrichment_failure(self, paths, registry, monkeypatch):
        monkeypatch.setattr(cli, "new_client", lambda cfg: FakeLLM(error=TimeoutError("slow")))
        assert cli.main(paths(_rule_text(llm=True))) == 1
        assert registry["publisher"].published == []

    def test_unparseable_llm_reply(self, paths, registry, monkeypatch):
        monkeypatch.setattr(cli, "new_client", lambda cfg: FakeLLM("I found nothing."))
        assert cli.main(paths(_rule_text(llm=True))) == 1

    def test_llm_findings_published(self, paths, registry, monkeypatch):
        monkeypatch.setattr(cli, "new_client",
                            lambda cfg: FakeLLM('[{"user": "bob", "reason": "new country"}]'))
        assert cli.main(paths(_rule_text(llm=True))) == 0
        assert registry["publisher"].published == [{"user": "bob", "reason": "new country"}]


class TestArgs:
    def test_defaults(self):
        args = cli.parse_args(["-r", "rule.yaml"])
        assert args.global_config == cli.DEFAULT_GLOBAL_CONFIG
        assert args.log_level == "info"

    def test_log_level_case_insensitive(self):
        assert cli.parse_args(["-r", "x", "-l", "DEBUG"]).log_level == "debug"

    def test_invalid_log_level(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["-r", "x", "-l", "verbose"])

    def test_rule_required(self):
        with pytest.raises(SystemExit):
            cli.parse_args([])
