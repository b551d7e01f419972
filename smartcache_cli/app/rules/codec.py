"""
Wire encodings for rule lists.

Two encodings are supported:

- document: a RedisJSON document ``{"rules": [...]}`` holding one object per
  rule with camelCase field names and ``null`` for unset fields;
- fields: a flat field map, one stream entry per version, keyed
  ``rules.<n>.<component>`` for scalars and ``rules.<n>.<component>.<i>``
  for list items. Both ``n`` and ``i`` are 1-based.

Older writers stored list fields comma-joined under
``rules.<n>.<component>`` and used camelCase component names; both forms
are accepted when decoding. An empty list is written as the single field
``rules.empty = "true"``; older writers stored a lone catch-all rule with a
zero TTL instead, which also decodes as a cleared list.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from shared.errors import DecodeWarning
from shared.logging import get_logger
from .models import Rule, parse_duration

logger = get_logger("smartcache.rules.codec")

EMPTY_RULES_FIELD = "rules.empty"
EMPTY_RULES_VALUE = "true"

_FIELD_KEY = re.compile(r"^rules\.(\d+)\.([A-Za-z][A-Za-z-]*)(?:\.(\d+))?$")

# component name in the field map -> Rule attribute
_COMPONENTS: Dict[str, str] = {
    "ttl": "ttl",
    "regex": "regex",
    "tables": "tables",
    "tables-any": "tables_any",
    "tablesAny": "tables_any",
    "tables-all": "tables_all",
    "tablesAll": "tables_all",
    "query-ids": "query_ids",
    "queryIds": "query_ids",
}

_SCALAR_ATTRS = ("ttl", "regex")

# Rule attribute -> (document name, field map name)
_LIST_ATTRS: Dict[str, Tuple[str, str]] = {
    "tables": ("tables", "tables"),
    "tables_any": ("tablesAny", "tables-any"),
    "tables_all": ("tablesAll", "tables-all"),
    "query_ids": ("queryIds", "query-ids"),
}


@dataclass
class DecodeResult:
    """Rules decoded from one stored version."""
    rules: List[Rule] = field(default_factory=list)
    warnings: List[DecodeWarning] = field(default_factory=list)
    cleared: bool = False


def _warn(warnings: List[DecodeWarning], key: str, value: Optional[str], reason: str) -> None:
    logger.warning("Skipping malformed rule entry", field=key, reason=reason)
    warnings.append(DecodeWarning(field=key, value=value, reason=reason))


# Document encoding

def rule_to_document(rule: Rule) -> Dict[str, Any]:
    return {
        "tables": rule.tables,
        "tablesAny": rule.tables_any,
        "tablesAll": rule.tables_all,
        "regex": rule.regex,
        "queryIds": rule.query_ids,
        "ttl": rule.ttl,
    }


def _optional_str_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError(f"expected a list, got {type(value).__name__}")
    return [str(item) for item in value]


def rule_from_document(data: Dict[str, Any]) -> Rule:
    """Build a rule from its document form; raises ValueError when invalid."""
    if not isinstance(data, dict):
        raise ValueError("rule must be an object")
    ttl = data.get("ttl")
    if not ttl:
        raise ValueError("rule has no ttl")
    regex = data.get("regex")
    return Rule(
        ttl=str(ttl),
        tables=_optional_str_list(data.get("tables")),
        tables_any=_optional_str_list(data.get("tablesAny")),
        tables_all=_optional_str_list(data.get("tablesAll")),
        regex=str(regex) if regex is not None else None,
        query_ids=_optional_str_list(data.get("queryIds")),
    )


def encode_document(rules: List[Rule]) -> str:
    """Serialize a rule list as the stored configuration document."""
    return json.dumps({"rules": [rule_to_document(rule) for rule in rules]})


def decode_document(raw: Optional[str]) -> DecodeResult:
    """Decode a stored document.

    Accepts the ``{"rules": [...]}`` document, a bare array of rules, and
    the array-wrapped reply of a ``$`` JSONPath query.
    """
    result = DecodeResult()
    if raw is None:
        return result

    data = json.loads(raw)
    if isinstance(data, list) and len(data) == 1 and isinstance(data[0], dict) and "rules" in data[0]:
        data = data[0]
    if isinstance(data, dict):
        data = data.get("rules") or []
    if not isinstance(data, list):
        raise ValueError("rules document must hold a list")

    if not data:
        result.cleared = True

    for position, item in enumerate(data):
        try:
            result.rules.append(rule_from_document(item))
        except ValueError as e:
            _warn(result.warnings, f"rules[{position}]", json.dumps(item), str(e))

    return result


# Field map encoding

def rule_to_fields(rule: Rule, number: int) -> Dict[str, str]:
    """Flatten one rule into field map entries for position ``number``."""
    prefix = f"rules.{number}"
    fields = {f"{prefix}.ttl": rule.ttl}
    if rule.regex is not None:
        fields[f"{prefix}.regex"] = rule.regex

    for attr, (_, component) in _LIST_ATTRS.items():
        values = getattr(rule, attr)
        if values is None:
            continue
        if not values:
            fields[f"{prefix}.{component}"] = ""
            continue
        for index, value in enumerate(values, start=1):
            fields[f"{prefix}.{component}.{index}"] = value

    return fields


def encode_fields(rules: List[Rule]) -> Dict[str, str]:
    """Flatten a rule list; an empty list becomes the empty sentinel."""
    if not rules:
        return {EMPTY_RULES_FIELD: EMPTY_RULES_VALUE}

    fields: Dict[str, str] = {}
    for number, rule in enumerate(rules, start=1):
        fields.update(rule_to_fields(rule, number))
    return dict(sorted(fields.items()))


def decode_fields(fields: Dict[str, str]) -> DecodeResult:
    """Rebuild the ordered rule list from a stored field map."""
    result = DecodeResult()
    if fields.get(EMPTY_RULES_FIELD) == EMPTY_RULES_VALUE:
        result.cleared = True

    scalars: Dict[int, Dict[str, str]] = {}
    joined: Dict[int, Dict[str, str]] = {}
    indexed: Dict[int, Dict[str, Dict[int, str]]] = {}

    for key, value in fields.items():
        if key == EMPTY_RULES_FIELD:
            continue
        matched = _FIELD_KEY.match(key)
        if not matched:
            _warn(result.warnings, key, value, "unrecognized field key")
            continue

        number = int(matched.group(1))
        attr = _COMPONENTS.get(matched.group(2))
        item_index = matched.group(3)
        if attr is None:
            _warn(result.warnings, key, value, "unknown rule component")
            continue

        if attr in _SCALAR_ATTRS:
            if item_index is not None:
                _warn(result.warnings, key, value, "indexed value for scalar component")
                continue
            scalars.setdefault(number, {})[attr] = value
        elif item_index is None:
            joined.setdefault(number, {})[attr] = value
        else:
            indexed.setdefault(number, {}).setdefault(attr, {})[int(item_index)] = value

    for number in sorted(set(scalars) | set(joined) | set(indexed)):
        rule_scalars = scalars.get(number, {})
        ttl = rule_scalars.get("ttl")
        if not ttl:
            _warn(result.warnings, f"rules.{number}", None, "rule has no ttl")
            continue

        rule = Rule(ttl=ttl, regex=rule_scalars.get("regex"))
        for attr in _LIST_ATTRS:
            items = indexed.get(number, {}).get(attr)
            if items is not None:
                setattr(rule, attr, [items[i] for i in sorted(items)])
                continue
            legacy = joined.get(number, {}).get(attr)
            if legacy is not None:
                setattr(rule, attr, legacy.split(",") if legacy else [])
        result.rules.append(rule)

    if len(result.rules) == 1 and _is_legacy_empty_marker(result.rules[0]):
        result.rules = []
        result.cleared = True

    return result


def _is_legacy_empty_marker(rule: Rule) -> bool:
    if not rule.is_catch_all():
        return False
    try:
        return not parse_duration(rule.ttl)
    except ValueError:
        return False


# Content hash

_FNV_OFFSET = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK = 0xFFFFFFFFFFFFFFFF

_UNSET = b"\x00"
_SET = b"\x01"
_ITEM_SEP = b"\x1f"
_FIELD_SEP = b"\x1e"


def _fnv1a(data: bytes, value: int) -> int:
    for byte in data:
        value ^= byte
        value = (value * _FNV_PRIME) & _MASK
    return value


def rule_hash(rule: Rule) -> int:
    """64-bit FNV-1a fingerprint of every rule field, in a fixed order."""
    value = _FNV_OFFSET
    parts: List[Optional[List[str]]] = [
        [rule.ttl],
        rule.query_ids,
        rule.tables,
        rule.tables_any,
        rule.tables_all,
        [rule.regex] if rule.regex is not None else None,
    ]
    for part in parts:
        if part is None:
            value = _fnv1a(_UNSET + _FIELD_SEP, value)
            continue
        value = _fnv1a(_SET, value)
        for item in part:
            value = _fnv1a(item.encode("utf-8") + _ITEM_SEP, value)
        value = _fnv1a(_FIELD_SEP, value)
    return value
