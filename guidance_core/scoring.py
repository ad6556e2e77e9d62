from __future__ import annotations
from typing import Callable, Dict, Mapping

from .instruments import Instrument, get_instrument
from .branching import visible_indices


def _clamp_value(inst: Instrument, index: int, value) -> int:
    item = inst.item(index)
    try:
        v = int(value)
    except (TypeError, ValueError):
        return item.min_value
    if v < item.min_value: v = item.min_value
    if v > item.max_value: v = item.max_value
    return v


def _score_sum(inst: Instrument, responses: Mapping[int, int]) -> int:
    # missing base items count as 0; unscored items (difficulty) never contribute
    return sum(_clamp_value(inst, i, responses.get(i, 0)) for i in inst.scored_indices)


def _score_reverse(inst: Instrument, responses: Mapping[int, int]) -> int:
    reverse = inst.reverse_scored
    total = 0
    for i in inst.scored_indices:
        if i not in responses:
            continue
        item = inst.item(i)
        v = _clamp_value(inst, i, responses[i])
        total += (item.max_value - v) if i in reverse else v
    return total


def _score_applicable(inst: Instrument, responses: Mapping[int, int]) -> int:
    """Unweighted sum over the answers whose question is currently visible."""

    total = 0
    for i in visible_indices(inst.key, responses):
        if i in responses:
            total += _clamp_value(inst, i, responses[i])
    return total


def _score_count(inst: Instrument, responses: Mapping[int, int]) -> int:
    return sum(
        1
        for i in range(inst.item_count)
        if i in responses and _clamp_value(inst, i, responses[i]) > 0
    )


_SCORERS: Dict[str, Callable[[Instrument, Mapping[int, int]], int]] = {
    "anxiety": _score_sum,
    "depression": _score_sum,
    "stress": _score_reverse,
    "suicide": _score_applicable,
    "checklist": _score_count,
}


def compute_score(instrument: str, responses: Mapping[int, int]) -> int:
    """
    Returns the instrument score for a raw response map.
    Extraneous keys are ignored; values are clamped to each item's range.
    """
    inst = get_instrument(instrument)
    clean = {int(k): v for k, v in responses.items() if 0 <= int(k) < inst.item_count}
    return _SCORERS[inst.key](inst, clean)


def score_range(instrument: str) -> tuple[int, int]:
    return 0, get_instrument(instrument).max_score
