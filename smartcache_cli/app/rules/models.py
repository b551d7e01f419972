"""
Rule data models for the Smart Cache CLI.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import timedelta
from enum import Enum
from typing import Dict, Optional, List

from pydantic import BaseModel, Field, field_validator

from shared.errors import DecodeWarning


_DURATION_PART = r"(\d+(?:\.\d+)?)(ns|us|ms|s|m|h|d)"
_DURATION_PATTERN = re.compile(rf"^(?:{_DURATION_PART})+$")
_DURATION_PARTS = re.compile(_DURATION_PART)

# seconds per unit
_DURATION_UNITS: Dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``300s``, ``1.5h`` or ``1h30m``.

    Raises ValueError for anything that is not a sequence of numbers, each
    followed by a unit.
    """
    if value is None:
        raise ValueError("duration is required")
    value = value.strip()
    if not _DURATION_PATTERN.match(value):
        raise ValueError(
            f"'{value}' is not a duration; expected numbers with time units (e.g. 1h, 300s, 1h30m)"
        )
    seconds = sum(float(amount) * _DURATION_UNITS[unit] for amount, unit in _DURATION_PARTS.findall(value))
    return timedelta(seconds=seconds)


def split_csv(value: Optional[str]) -> Optional[List[str]]:
    """Split user supplied comma separated input, ignoring blanks."""
    if value is None or value.strip() == "":
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


class RuleStatus(str, Enum):
    """Status of a rule row in an editing session."""
    CURRENT = "current"
    NEW = "new"
    EDITING = "editing"
    DELETE = "delete"


@dataclass
class Rule:
    """Query caching rule.

    ``None`` on a matching field means the field is not part of the rule;
    an empty list or string means it is set but empty. A rule with every
    matching field ``None`` is a catch-all.
    """
    ttl: str
    tables: Optional[List[str]] = None
    tables_any: Optional[List[str]] = None
    tables_all: Optional[List[str]] = None
    regex: Optional[str] = None
    query_ids: Optional[List[str]] = None

    def is_catch_all(self) -> bool:
        return (
            self.tables is None
            and self.tables_any is None
            and self.tables_all is None
            and self.regex is None
            and self.query_ids is None
        )

    def copy(self) -> "Rule":
        """Copy with independent list fields."""
        return replace(
            self,
            tables=_copy_list(self.tables),
            tables_any=_copy_list(self.tables_any),
            tables_all=_copy_list(self.tables_all),
            query_ids=_copy_list(self.query_ids),
        )


def _copy_list(values: Optional[List[str]]) -> Optional[List[str]]:
    return list(values) if values is not None else None


def validate_rule(rule: Rule) -> Rule:
    """Reject rules with an unparseable TTL or regex (raises ValueError)."""
    parse_duration(rule.ttl)
    if rule.regex is not None:
        try:
            re.compile(rule.regex)
        except re.error as e:
            raise ValueError(f"invalid regex: {e}")
    return rule


@dataclass
class QueryInfo:
    """Observed SQL query with its resolved and pending rules."""
    id: str
    table: str = ""
    sql: str = ""
    key: str = ""
    count: int = 0
    mean_time: float = 0.0
    rule: Optional[Rule] = None
    pending_rule: Optional[Rule] = None

    @property
    def current_ttl(self) -> str:
        return self.rule.ttl if self.rule else ""

    @property
    def pending_ttl(self) -> str:
        return self.pending_rule.ttl if self.pending_rule else ""


@dataclass
class TableInfo:
    """Observed table with aggregate statistics."""
    name: str
    access_frequency: int = 0
    avg_query_time: float = 0.0
    rule: Optional[Rule] = None


@dataclass
class RuleSnapshot:
    """One committed version of the rule list as read from Redis."""
    rules: List[Rule] = field(default_factory=list)
    version: Optional[str] = None
    cleared: bool = False
    warnings: List[DecodeWarning] = field(default_factory=list)

    @property
    def exists(self) -> bool:
        return self.version is not None


@dataclass
class RuleRow:
    """Rule plus its editing status, as shown to the operator."""
    rule: Rule
    status: RuleStatus = RuleStatus.CURRENT


class RuleCreateRequest(BaseModel):
    """Operator input for a new rule."""
    ttl: str = Field(..., description="Time to live as a duration, e.g. 5m")
    tables: Optional[str] = Field(None, description="Exact set of tables (comma separated)")
    tables_any: Optional[str] = Field(None, description="Match if any of these tables appear")
    tables_all: Optional[str] = Field(None, description="Match if all of these tables appear")
    query_ids: Optional[str] = Field(None, description="Query ids the rule applies to")
    regex: Optional[str] = Field(None, description="Regular expression matched against the SQL")

    @field_validator("ttl")
    @classmethod
    def _check_ttl(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("TTL missing")
        parse_duration(value)
        return value

    @field_validator("regex")
    @classmethod
    def _check_regex(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid regex: {e}")
        return value

    def to_rule(self) -> Rule:
        return Rule(
            ttl=self.ttl,
            tables=split_csv(self.tables),
            tables_any=split_csv(self.tables_any),
            tables_all=split_csv(self.tables_all),
            regex=self.regex,
            query_ids=split_csv(self.query_ids),
        )
