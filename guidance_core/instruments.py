from __future__ import annotations
import json, importlib.resources as ir
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, FrozenSet, List, Optional, Tuple

from .types import INSTRUMENT_TYPES, Question


@dataclass(frozen=True)
class ItemDef:
    index: int
    key: str
    text: str
    choices: Tuple[Tuple[int, str, str], ...]  # (value, wire enum, label)
    scored: bool = True
    reverse: bool = False
    section: Optional[str] = None

    @property
    def min_value(self) -> int:
        return self.choices[0][0]

    @property
    def max_value(self) -> int:
        return self.choices[-1][0]

    def wire_value(self, value: int) -> str:
        for val, wire, _ in self.choices:
            if val == value:
                return wire
        return self.choices[0][1]


@dataclass(frozen=True)
class Instrument:
    key: str
    title: str
    items: Tuple[ItemDef, ...]
    max_score: int
    sections: Tuple[Tuple[str, str], ...] = ()

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def scored_indices(self) -> Tuple[int, ...]:
        return tuple(it.index for it in self.items if it.scored)

    @property
    def reverse_scored(self) -> FrozenSet[int]:
        return frozenset(it.index for it in self.items if it.reverse)

    def item(self, index: int) -> ItemDef:
        if not 0 <= index < len(self.items):
            raise IndexError(f"{self.key} has no item {index}")
        return self.items[index]

    def questions(self) -> List[Question]:
        return [
            Question(
                index=it.index,
                text=it.text,
                choices=[(val, label) for val, _, label in it.choices],
                section=it.section,
            )
            for it in self.items
        ]


def _choices(sets: Dict[str, list], name: str) -> Tuple[Tuple[int, str, str], ...]:
    return tuple((int(v), str(w), str(l)) for v, w, l in sets[name])


def _build(key: str, raw: dict, sets: Dict[str, list]) -> Instrument:
    default_choices = raw.get("choices", "yes_no")
    items: List[ItemDef] = []
    sections: List[Tuple[str, str]] = []
    if key == "checklist":
        for sec in raw.get("sections", []):
            sections.append((sec["key"], sec["title"]))
            for text in sec["items"]:
                number = len(items) + 1
                items.append(
                    ItemDef(
                        index=len(items),
                        key=str(number),
                        text=text,
                        choices=_choices(sets, default_choices),
                        section=sec["key"],
                    )
                )
    else:
        for idx, r in enumerate(raw.get("items", [])):
            items.append(
                ItemDef(
                    index=idx,
                    key=r["key"],
                    text=r["text"],
                    choices=_choices(sets, r.get("choices", default_choices)),
                    scored=bool(r.get("scored", True)),
                    reverse=bool(r.get("reverse", False)),
                )
            )
    return Instrument(
        key=key,
        title=raw.get("title", key),
        items=tuple(items),
        max_score=int(raw["max_score"]),
        sections=tuple(sections),
    )


@lru_cache(maxsize=1)
def load_instruments() -> Dict[str, Instrument]:
    data = ir.files(__package__).joinpath("data/instruments.json").read_text(encoding="utf-8")
    raw = json.loads(data)
    sets = raw["choice_sets"]
    return {key: _build(key, raw[key], sets) for key in INSTRUMENT_TYPES}


def get_instrument(key: str) -> Instrument:
    instruments = load_instruments()
    if key not in instruments:
        raise KeyError(f"unknown instrument: {key!r}")
    return instruments[key]
