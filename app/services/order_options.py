"""Normalization of the free-form option selection sent with each line item.

Client apps send accompaniments as a list and the drink choice as a boolean,
a single name or a list of names. The raw shape is parsed into ``DrinkChoice``
and immediately collapsed into ``NormalizedOptions``; nothing past this module
sees the ambiguous input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.core.config import DEFAULT_DRINK_NAME

logger = logging.getLogger(__name__)

ACCOMPANIMENT_KEYS = ("accompaniments", "accompagnements")
DRINK_KEYS = ("drinks", "drink", "boisson")


class DrinkChoiceKind(str, Enum):
    NONE = "none"
    FLAG = "flag"
    SINGLE = "single"
    MANY = "many"


@dataclass(frozen=True)
class DrinkChoice:
    kind: DrinkChoiceKind
    names: tuple[str, ...] = ()

    @classmethod
    def parse(cls, raw: Any) -> DrinkChoice:
        if raw is True:
            return cls(DrinkChoiceKind.FLAG)
        if raw is None or raw is False:
            return cls(DrinkChoiceKind.NONE)
        if isinstance(raw, str):
            name = raw.strip()
            return cls(DrinkChoiceKind.SINGLE, (name,)) if name else cls(DrinkChoiceKind.NONE)
        if isinstance(raw, (list, tuple)):
            names = tuple(_clean_names(raw))
            return cls(DrinkChoiceKind.MANY, names) if names else cls(DrinkChoiceKind.NONE)
        logger.info("Ignoring unsupported drink selection type=%s", type(raw).__name__)
        return cls(DrinkChoiceKind.NONE)

    def to_names(self, default_drink: str = DEFAULT_DRINK_NAME) -> list[str]:
        if self.kind == DrinkChoiceKind.FLAG:
            return [default_drink]
        if self.kind in (DrinkChoiceKind.SINGLE, DrinkChoiceKind.MANY):
            return list(self.names)
        return []


@dataclass(frozen=True)
class NormalizedOptions:
    accompaniments: list[str] = field(default_factory=list)
    drinks: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, list[str]]:
        return {"accompaniments": list(self.accompaniments), "drinks": list(self.drinks)}


def _clean_names(values) -> list[str]:
    names: list[str] = []
    for value in values:
        if value is None or isinstance(value, (dict, list, tuple)):
            continue
        name = str(value).strip()
        if name:
            names.append(name)
    return names


def _first_present(options: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        if options.get(key) is not None:
            return options[key]
    return None


def normalize_options(raw: Any, *, default_drink: str = DEFAULT_DRINK_NAME) -> NormalizedOptions:
    # no cap on the number of accompaniments or drinks
    if not isinstance(raw, dict):
        return NormalizedOptions()

    accompaniments_raw = _first_present(raw, ACCOMPANIMENT_KEYS)
    accompaniments = _clean_names(accompaniments_raw) if isinstance(accompaniments_raw, (list, tuple)) else []

    drink_choice = DrinkChoice.parse(_first_present(raw, DRINK_KEYS))
    return NormalizedOptions(accompaniments=accompaniments, drinks=drink_choice.to_names(default_drink))
