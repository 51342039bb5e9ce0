"""Typed feature values.

Tier bindings store raw JSON (``true``, ``"10"``, ``"advanced"``). They are
resolved here once into a tagged union and never re-parsed downstream.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

UNLIMITED = -1


@dataclass(frozen=True)
class BooleanValue:
    kind: ClassVar[str] = "boolean"
    enabled: bool

    def to_json(self):
        return self.enabled


@dataclass(frozen=True)
class LimitValue:
    kind: ClassVar[str] = "limit"
    limit: int

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    def to_json(self):
        return self.limit


@dataclass(frozen=True)
class EnumValue:
    kind: ClassVar[str] = "enum"
    option: str

    def to_json(self):
        return self.option


FeatureValue = Union[BooleanValue, LimitValue, EnumValue]


def parse_limit(raw) -> int:
    if isinstance(raw, bool):
        return 0
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw)
    if isinstance(raw, str):
        txt = raw.strip()
        sign = ""
        if txt and txt[0] in "+-":
            sign, txt = txt[0], txt[1:]
        digits = ""
        for ch in txt:
            if not ch.isdigit():
                break
            digits += ch
        return int(sign + digits) if digits else 0
    return 0


def _parse_bool(raw) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return raw.strip().lower() == "true"
    if isinstance(raw, (int, float)):
        return raw != 0
    return False


def parse_feature_value(feature_type: str, raw) -> FeatureValue:
    if feature_type == "boolean":
        return BooleanValue(_parse_bool(raw))
    if feature_type == "limit":
        return LimitValue(parse_limit(raw))
    if feature_type == "enum":
        return EnumValue("" if raw is None else str(raw))
    raise ValueError(f"unknown feature type: {feature_type}")


def grants_access(value: FeatureValue | None) -> bool:
    # A limit of 0 means the tier has the feature switched off.
    if value is None:
        return False
    if isinstance(value, BooleanValue):
        return value.enabled
    if isinstance(value, LimitValue):
        return value.limit != 0
    return value.option not in ("", "false", "none")
