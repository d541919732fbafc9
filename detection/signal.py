"""Signal construction: map a query result onto the normalized signal shape.

The rule's ``output.fields`` list says which result column feeds which
signal attribute:

    output:
      format: signal
      fields:
        - {field: Timestamp, source: event_time}
        - {field: ActorUserName, source: user}

Target names form a closed set (``TargetField``); each has a setter in
``_SETTERS``.  Anything else is rejected rather than ignored, so a typo in
a rule surfaces on the first record instead of producing empty signals.

``format: raw`` skips all of this and ships the result row as-is.
"""

import json
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum

from detection.config import OutputFormat, RuleConfig
from detection.errors import (
    FieldCountMismatch,
    MissingSourceField,
    TimestampParseError,
    UnsupportedOutputField,
)
from detection.record import Record, stringify

CONFIDENCE_IDS = {
    "unknown": 0,
    "low": 1,
    "medium": 2,
    "high": 3,
}

# Date, 'T', time, optional fraction, mandatory offset.
_RFC3339 = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$"
)


# ---------------------------------------------------------------------------
# Signal shape
# ---------------------------------------------------------------------------

@dataclass
class User:
    name: str = ""
    uid: str = ""


@dataclass
class Actor:
    user: User = field(default_factory=User)


@dataclass
class Resource:
    name: str = ""
    type: str = ""
    uid: str = ""


@dataclass
class Endpoint:
    hostname: str = ""
    ip: str = ""


@dataclass
class Metadata:
    event_id: str = ""
    event_index: str = ""


@dataclass
class Signal:
    timestamp: datetime | None = None
    rule_id: str = ""
    rule_name: str = ""
    confidenceid: int = 0
    confidence: str = "unknown"
    ttps: list[dict] = field(default_factory=list)
    actor: Actor = field(default_factory=Actor)
    resource: Resource = field(default_factory=Resource)
    src_endpoint: Endpoint = field(default_factory=Endpoint)
    dst_endpoint: Endpoint = field(default_factory=Endpoint)
    message: str = ""
    metadata: Metadata = field(default_factory=Metadata)
    rule_specific_data: dict[str, str] | None = None

    def to_dict(self) -> dict:
        d = asdict(self)
        ts = self.timestamp
        d["timestamp"] = ts.isoformat().replace("+00:00", "Z") if ts else None
        return d


# ---------------------------------------------------------------------------
# Target fields
# ---------------------------------------------------------------------------

class TargetField(str, Enum):
    TIMESTAMP = "Timestamp"
    ACTOR_USER_NAME = "ActorUserName"
    ACTOR_USER_UID = "ActorUserUID"
    RESOURCE_NAME = "ResourceName"
    RESOURCE_TYPE = "ResourceType"
    RESOURCE_UID = "ResourceUID"
    SRC_HOSTNAME = "SrcHostname"
    SRC_IP = "SrcIP"
    DST_HOSTNAME = "DstHostname"
    DST_IP = "DstIP"
    MESSAGE = "Message"
    EVENT_ID = "EventID"
    EVENT_INDEX = "EventIndex"
    RULE_SPECIFIC_DATA = "RuleSpecificData"


def _set_timestamp(sig: Signal, value: str) -> None:
    sig.timestamp = parse_timestamp(value)


def _set_rule_specific_data(sig: Signal, value: str) -> None:
    try:
        data = json.loads(value)
    except ValueError:
        data = None
    if isinstance(data, dict):
        sig.rule_specific_data = {k: stringify(v) for k, v in data.items()}
    else:
        sig.rule_specific_data = {"raw": value}


def _setter(*path):
    """Setter assigning ``value`` to the attribute at ``path`` on a Signal."""
    *parents, attr = path

    def set_(sig: Signal, value: str) -> None:
        target = sig
        for name in parents:
            target = getattr(target, name)
        setattr(target, attr, value)
    return set_


_SETTERS = {
    TargetField.TIMESTAMP: _set_timestamp,
    TargetField.ACTOR_USER_NAME: _setter("actor", "user", "name"),
    TargetField.ACTOR_USER_UID: _setter("actor", "user", "uid"),
    TargetField.RESOURCE_NAME: _setter("resource", "name"),
    TargetField.RESOURCE_TYPE: _setter("resource", "type"),
    TargetField.RESOURCE_UID: _setter("resource", "uid"),
    TargetField.SRC_HOSTNAME: _setter("src_endpoint", "hostname"),
    TargetField.SRC_IP: _setter("src_endpoint", "ip"),
    TargetField.DST_HOSTNAME: _setter("dst_endpoint", "hostname"),
    TargetField.DST_IP: _setter("dst_endpoint", "ip"),
    TargetField.MESSAGE: _setter("message"),
    TargetField.EVENT_ID: _setter("metadata", "event_id"),
    TargetField.EVENT_INDEX: _setter("metadata", "event_index"),
    TargetField.RULE_SPECIFIC_DATA: _set_rule_specific_data,
}


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def build_output(record: Record, rule: RuleConfig) -> Record | Signal:
    """Shape one result for a sink according to the rule's output format."""
    if rule.output.format == OutputFormat.RAW:
        return record
    return build_signal(record, rule)


def build_signal(record: Record, rule: RuleConfig) -> Signal:
    fields = rule.output.fields
    if len(record) < len(fields):
        raise FieldCountMismatch(
            f"result has {len(record)} fields, output expects {len(fields)}"
        )

    sig = Signal(
        rule_id=rule.uid,
        rule_name=rule.name,
        confidenceid=confidence_id(rule.confidence),
        confidence=rule.confidence,
        ttps=[
            {"framework": t.framework, "tactic": t.tactic, "name": t.name, "id": t.id}
            for t in rule.ttps
        ],
    )

    for mapping in fields:
        if mapping.source not in record:
            raise MissingSourceField(
                f"source field '{mapping.source}' not found in query result"
            )
        try:
            target = TargetField(mapping.field)
        except ValueError:
            raise UnsupportedOutputField(
                f"unsupported output field '{mapping.field}'"
            ) from None
        _SETTERS[target](sig, record[mapping.source])

    return sig


def serialize(output: Record | Signal) -> str:
    """JSON text of a built output, as shipped to sinks."""
    if isinstance(output, Signal):
        output = output.to_dict()
    return json.dumps(output)


def confidence_id(label: str) -> int:
    return CONFIDENCE_IDS.get(label, 0)


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp; the offset is required."""
    if not _RFC3339.fullmatch(value):
        raise TimestampParseError(f"failed to parse timestamp '{value}'")
    text = value
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(_trim_fraction(text))
    except ValueError as e:
        raise TimestampParseError(f"failed to parse timestamp '{value}': {e}") from e


def _trim_fraction(text: str) -> str:
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits.
    m = re.match(r"^(.*T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(.*)$", text)
    head, frac, offset = m.groups()
    if not frac:
        return head + offset
    return f"{head}.{frac[:6].ljust(6, '0')}{offset}"
