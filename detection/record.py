"""Row-record shape shared by every stage.

A record is one query result row: field name to string value.  Backends
stringify on the way in, so exclusion and enrichment never deal with
typed values; the signal builder is the only place that re-types a field
(timestamps).
"""

import json

Record = dict[str, str]


def stringify(value) -> str:
    """Render a decoded JSON value as record text.

    Strings pass through, null becomes "", arrays and objects are
    re-serialized compactly, booleans use JSON spelling.
    """
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def to_record(row: dict) -> Record:
    """Stringify every value of a backend row."""
    return {str(k): stringify(v) for k, v in row.items()}
