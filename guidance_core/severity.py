# guidance_core/severity.py
from __future__ import annotations
from typing import Dict, List, Tuple

from .instruments import get_instrument

ThresholdTable = List[Tuple[int, str]]  # (upper bound inclusive, label), ascending

THRESHOLDS: Dict[str, ThresholdTable] = {
    "anxiety": [(4, "minimal"), (9, "mild"), (14, "moderate"), (21, "severe")],
    "depression": [
        (4, "minimal"),
        (9, "mild"),
        (14, "moderate"),
        (19, "moderately_severe"),
        (27, "severe"),
    ],
    "stress": [(13, "low"), (26, "moderate"), (40, "high")],
    "suicide": [(1, "low"), (3, "moderate"), (8, "high")],
    # checklist: >10 high concern, >5 moderate concern, else manageable
    "checklist": [(5, "manageable"), (10, "moderate_concern"), (183, "high_concern")],
}

_DISPLAY_OVERRIDES = {"moderately_severe": "Moderately Severe"}


def _check_table(instrument: str, table: ThresholdTable) -> None:
    bounds = [b for b, _ in table]
    if any(b2 <= b1 for b1, b2 in zip(bounds, bounds[1:])):
        raise ValueError(f"{instrument}: threshold bounds must be strictly ascending")
    if bounds[0] < 0:
        raise ValueError(f"{instrument}: first bound below score floor")
    if bounds[-1] != get_instrument(instrument).max_score:
        raise ValueError(f"{instrument}: last bound must equal the max score")


for _name, _table in THRESHOLDS.items():
    _check_table(_name, _table)


def classify(instrument: str, score: int) -> str:
    """First band whose inclusive upper bound holds the score wins."""

    table = THRESHOLDS[instrument]
    s = max(0, min(int(score), table[-1][0]))
    for upper, label in table:
        if s <= upper:
            return label
    return table[-1][1]


def severity_levels(instrument: str) -> List[str]:
    return [label for _, label in THRESHOLDS[instrument]]


def severity_rank(instrument: str, label: str) -> int:
    levels = severity_levels(instrument)
    if label not in levels:
        raise ValueError(f"{instrument}: unknown severity {label!r}")
    return levels.index(label)


def display_label(label: str) -> str:
    if label in _DISPLAY_OVERRIDES:
        return _DISPLAY_OVERRIDES[label]
    return label.replace("_", " ").title()


def needs_professional_help(instrument: str, label: str) -> bool:
    if instrument in ("suicide", "checklist"):
        return severity_rank(instrument, label) == len(severity_levels(instrument)) - 1
    return severity_rank(instrument, label) >= len(severity_levels(instrument)) - 2
