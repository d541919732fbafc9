"""Tests for the webhook connector."""

import json

import pytest
import requests

from connector.webhook import WebhookPublisher, format_message
from detection.config import RuleConfig
from detection.errors import PublishFailed


def _rule():
    return RuleConfig.model_validate({
        "name": "Suspicious Login",
        "uid": "rule-0001",
        "queryEngine": "opensearch.prod",
        "query": "SELECT 1",
        "output": {"format": "raw"},
    })


class FakeResponse:
    def __init__(self, status=200):
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.posts = []

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        return FakeResponse(self.statuses.pop(0) if self.statuses else 200)


_URL = "https://hooks.example.com/services/T000/B000"


class TestWebhookPublisher:
    def test_one_post_per_result(self):
        session = FakeSession()
        WebhookPublisher(_URL, session=session).publish(
            [{"user": "alice"}, {"user": "bob"}], _rule())
        assert [url for url, _ in session.posts] == [_URL, _URL]
        text = session.posts[1][1]["json"]["text"]
        assert text.startswith("*Suspicious Login* (rule-0001)\n```")
        assert json.loads(text.split("```")[1]) == {"user": "bob"}

    def test_empty_batch(self):
        session = FakeSession()
        WebhookPublisher(_URL, session=session).publish([], _rule())
        assert session.posts == []

    def test_failed_post_does_not_stop_batch(self):
        session = FakeSession(500, 200)
        with pytest.raises(PublishFailed, match="1 of 2"):
            WebhookPublisher(_URL, session=session).publish(
                [{"user": "alice"}, {"user": "bob"}], _rule())
        assert len(session.posts) == 2

    def test_format_message(self):
        assert format_message(_rule(), '{"a":"1"}') == '*Suspicious Login* (rule-0001)\n```{"a":"1"}```'
