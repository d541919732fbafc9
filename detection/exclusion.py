"""Exclusion rules: drop known-benign query results before they become signals.

An exclusion file is an ordered YAML list.  Each entry holds one condition
group, either all-of (``and``) or any-of (``or``):

    - conditions:
        and:
          - {field: user, operator: equals, value: svc-backup}
          - {field: host, operator: regex, value: "^bkp-\\d+$"}
    - conditions:
        or:
          - {field: src_ip, operator: in, values: ["10.0.0.1", "10.0.0.2"]}

A record is excluded when any entry matches.  Matching is exact-string:
no case folding and no numeric coercion.  A condition on a field the
record does not have is never satisfied, whatever the operator, so
``not_equals`` and ``not_in`` cannot exclude a record that lacks the field.

Scalars are read with YAML's base loader, so every value stays the text
the author wrote: ``1.10``, ``no`` and ``010`` are not reinterpreted.

The whole file is validated when loaded; a bad operator, regex or empty
``values`` list rejects the file before any record is evaluated.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from detection.errors import (
    AmbiguousConditionGroup,
    EmptyValueSet,
    ExclusionFileInvalid,
    InvalidOperator,
    InvalidRegex,
)
from detection.record import Record

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# File schema
# ---------------------------------------------------------------------------

class Condition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    field: str
    operator: str
    value: str = ""
    values: tuple[str, ...] = ()


class ConditionGroup(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    and_: tuple[Condition, ...] = Field(default=(), alias="and")
    or_: tuple[Condition, ...] = Field(default=(), alias="or")


class ExclusionRule(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    conditions: ConditionGroup = ConditionGroup()


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------
# Each takes the record's value and the compiled condition.

_OPS = {
    "equals": lambda actual, cond: actual == cond.value,
    "not_equals": lambda actual, cond: actual != cond.value,
    "contains": lambda actual, cond: cond.value in actual,
    "regex": lambda actual, cond: cond.pattern.search(actual) is not None,
    "in": lambda actual, cond: actual in cond.values,
    "not_in": lambda actual, cond: actual not in cond.values,
}

OPERATORS = frozenset(_OPS)


@dataclass(frozen=True)
class _Compiled:
    field: str
    operator: str
    value: str
    values: frozenset
    pattern: re.Pattern | None = None

    def test(self, record: Record) -> bool:
        if self.field not in record:
            return False
        return _OPS[self.operator](record[self.field], self)


class Excluder:
    """Evaluates records against a validated, immutable exclusion rule set."""

    def __init__(self, rules: list[ExclusionRule]):
        # (mode, conditions) per rule; mode is None for an empty group.
        self._rules = tuple(
            _compile_rule(index, rule) for index, rule in enumerate(rules, start=1)
        )

    @classmethod
    def load(cls, path: str | Path) -> "Excluder":
        """Parse and validate an exclusion file."""
        path = Path(path)
        with open(path) as f:
            try:
                data = yaml.load(f, Loader=yaml.BaseLoader)
            except yaml.YAMLError as e:
                raise ExclusionFileInvalid(f"{path.name}: invalid YAML: {e}") from e

        if not isinstance(data, list):
            raise ExclusionFileInvalid(
                f"{path.name}: expected a list of exclusion rules"
            )

        rules = []
        for index, item in enumerate(data, start=1):
            try:
                rules.append(ExclusionRule.model_validate(item))
            except ValidationError as e:
                raise ExclusionFileInvalid(f"{path.name}: rule {index}: {e}") from e
        return cls(rules)

    def is_excluded(self, record: Record) -> bool:
        """True if any rule matches the record."""
        for mode, conditions in self._rules:
            if mode == "and" and all(c.test(record) for c in conditions):
                return True
            if mode == "or" and any(c.test(record) for c in conditions):
                return True
        return False

    def filter(self, records: list[Record]) -> list[Record]:
        """Return the records that survive, in their original order."""
        kept = []
        for record in records:
            if self.is_excluded(record):
                logger.debug("Excluded result: %s", record)
                continue
            kept.append(record)
        return kept

    def __len__(self) -> int:
        return len(self._rules)


def _compile_rule(index: int, rule: ExclusionRule):
    group = rule.conditions
    if group.and_ and group.or_:
        raise AmbiguousConditionGroup(
            f"rule {index}: condition group sets both 'and' and 'or'"
        )
    if group.and_:
        return "and", tuple(_compile_condition(index, c) for c in group.and_)
    if group.or_:
        return "or", tuple(_compile_condition(index, c) for c in group.or_)
    return None, ()


def _compile_condition(index: int, cond: Condition) -> _Compiled:
    if cond.operator not in OPERATORS:
        raise InvalidOperator(
            f"rule {index}: unsupported operator '{cond.operator}'"
        )

    pattern = None
    if cond.operator == "regex":
        try:
            pattern = re.compile(cond.value)
        except re.error as e:
            raise InvalidRegex(
                f"rule {index}: invalid regex pattern '{cond.value}': {e}"
            ) from e
    elif cond.operator in ("in", "not_in") and not cond.values:
        raise EmptyValueSet(
            f"rule {index}: operator '{cond.operator}' requires non-empty 'values'"
        )

    return _Compiled(
        field=cond.field,
        operator=cond.operator,
        value=cond.value,
        values=frozenset(cond.values),
        pattern=pattern,
    )
