"""OpenSearch connector: SQL plugin for queries, bulk API for signals.

Queries go through ``/_plugins/_sql``, which answers with a column schema
and positional rows; each row is zipped back into a record keyed by the
column alias when the query set one, otherwise by the column name.
Published outputs are appended to the ``signals`` index with one bulk
request per batch.
"""

import json
import logging

import requests

from connector import render_outputs
from detection.config import RuleConfig
from detection.errors import PublishFailed, QueryFailed
from detection.record import Record, stringify

logger = logging.getLogger(__name__)

OUTPUT_INDEX = "signals"
SQL_PLUGIN_PATH = "/_plugins/_sql"
BULK_PATH = "/_bulk"


class OpenSearchClient:

    def __init__(self, url: str, username: str, password: str,
                 insecure_skip_verify: bool = False, timeout: int = 60,
                 session: requests.Session | None = None):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.auth = (username, password)
        self._session.verify = not insecure_skip_verify

    # ------------------------------------------------------------------
    # QueryRunner
    # ------------------------------------------------------------------

    def query(self, rule: RuleConfig) -> list[Record]:
        try:
            resp = self._session.post(
                self.url + SQL_PLUGIN_PATH,
                json={"query": rule.query},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise QueryFailed(f"OpenSearch query request failed: {e}") from e

        if not resp.ok:
            raise QueryFailed(_describe_error(resp))

        try:
            body = resp.json()
        except ValueError as e:
            raise QueryFailed(f"error decoding query response: {e}") from e

        columns = [c.get("alias") or c.get("name") for c in body.get("schema", [])]
        results = []
        for row in body.get("datarows", []):
            results.append({col: stringify(value) for col, value in zip(columns, row)})
        logger.info("OpenSearch query returned %d result(s)", len(results))
        return results

    # ------------------------------------------------------------------
    # Publisher
    # ------------------------------------------------------------------

    def publish(self, results: list[Record], rule: RuleConfig) -> None:
        if not results:
            return

        payloads, failed = render_outputs(results, rule)
        if payloads:
            failed.extend(self._bulk(payloads))

        if failed:
            raise PublishFailed(
                f"{len(failed)} of {len(results)} result(s) not indexed: "
                + "; ".join(failed[:5])
            )
        logger.info("Indexed %d document(s) into '%s'", len(payloads), OUTPUT_INDEX)

    def _bulk(self, payloads: list[str]) -> list[str]:
        """Send one bulk request, return an error string per rejected item."""
        action = json.dumps({"create": {"_index": OUTPUT_INDEX}})
        body = "".join(f"{action}\n{doc}\n" for doc in payloads)
        try:
            resp = self._session.post(
                self.url + BULK_PATH,
                data=body.encode("utf-8"),
                headers={"Content-Type": "application/x-ndjson"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            bulk = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise PublishFailed(f"bulk request failed: {e}") from e

        errors = []
        if bulk.get("errors"):
            for item in bulk.get("items", []):
                for op, result in item.items():
                    status = result.get("status", 0)
                    if status >= 400:
                        errors.append(f"error in {op}: {status}")
        return errors


def _describe_error(resp: requests.Response) -> str:
    prefix = f"server responded with unexpected status code {resp.status_code}"
    try:
        error = resp.json().get("error", {})
    except ValueError:
        return prefix
    if not isinstance(error, dict):
        return f"{prefix}: {error}"
    return f"{prefix}: {error.get('reason', '')} (details: {error.get('details', '')})"
