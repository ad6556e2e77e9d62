# guidance_core/branching.py
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .instruments import get_instrument
from .types import RawResponseMap

log = logging.getLogger(__name__)

Predicate = Callable[[Mapping[int, int]], bool]


def _any_positive(indices: range) -> Predicate:
    return lambda r: any(r.get(i, 0) > 0 for i in indices)


def _equals(index: int, value: int) -> Predicate:
    return lambda r: r.get(index) == value


# instrument -> question index -> visibility predicate over the effective answers.
# Indices without a rule are always visible. A rule may only read lower indices.
PREREQUISITES: Dict[str, Dict[int, Predicate]] = {
    "anxiety": {7: _any_positive(range(0, 7))},
    "depression": {9: _any_positive(range(0, 9))},
    "stress": {},
    "suicide": {
        2: _equals(1, 1),
        3: _equals(1, 1),
        4: _equals(1, 1),
        5: _equals(1, 1),
        6: _equals(5, 1),
    },
    "checklist": {},
}


def visible_indices(instrument: str, responses: Mapping[int, int]) -> List[int]:
    """
    Question indices visible for the given answers, ascending.
    Answers to hidden questions are ignored while evaluating later rules,
    so a stale dependent answer can never unlock its own dependents.
    """
    inst = get_instrument(instrument)
    rules = PREREQUISITES.get(inst.key, {})
    effective: Dict[int, int] = {}
    visible: List[int] = []
    for idx in range(inst.item_count):
        rule = rules.get(idx)
        if rule is not None and not rule(effective):
            continue
        visible.append(idx)
        if idx in responses:
            effective[idx] = responses[idx]
    return visible


def _cascade(instrument: str, responses: RawResponseMap) -> Tuple[RawResponseMap, Tuple[int, ...]]:
    visible = set(visible_indices(instrument, responses))
    cleared = tuple(sorted(k for k in responses if k not in visible))
    for k in cleared:
        del responses[k]
    return responses, cleared


def apply_answer(
    instrument: str,
    responses: Mapping[int, int],
    index: int,
    value: int,
) -> Tuple[RawResponseMap, Tuple[int, ...]]:
    """
    Returns (new response map, indices cleared by the cascade).
    The input map is never mutated.
    """
    inst = get_instrument(instrument)
    if not 0 <= index < inst.item_count:
        raise ValueError(f"{instrument}: no question {index}")
    item = inst.item(index)
    if index not in visible_indices(instrument, responses):
        raise ValueError(f"{instrument}: question {index} is not visible")
    if not item.min_value <= int(value) <= item.max_value:
        raise ValueError(
            f"{instrument}: value {value} outside {item.min_value}..{item.max_value} for question {index}"
        )
    updated: RawResponseMap = dict(responses)
    updated[index] = int(value)
    updated, cleared = _cascade(instrument, updated)
    if cleared:
        log.info("cascade-clear instrument=%s trigger=%s cleared=%s", instrument, index, list(cleared))
    return updated, cleared


def retract_answer(
    instrument: str,
    responses: Mapping[int, int],
    index: int,
) -> Tuple[RawResponseMap, Tuple[int, ...]]:
    updated: RawResponseMap = dict(responses)
    updated.pop(index, None)
    return _cascade(instrument, updated)


def missing_indices(instrument: str, responses: Mapping[int, int]) -> List[int]:
    return [i for i in visible_indices(instrument, responses) if i not in responses]


def stray_indices(instrument: str, responses: Mapping[int, int]) -> List[int]:
    visible = set(visible_indices(instrument, responses))
    return sorted(k for k in responses if k not in visible)


def is_complete(instrument: str, responses: Mapping[int, int]) -> bool:
    # visibility is recomputed on every call rather than trusting the cascade
    return not missing_indices(instrument, responses) and not stray_indices(instrument, responses)


class QuestionnaireSession:
    """Owns one RawResponseMap for a single questionnaire sitting."""

    def __init__(self, instrument: str):
        self.instrument = get_instrument(instrument).key
        self._responses: RawResponseMap = {}

    @property
    def responses(self) -> RawResponseMap:
        return dict(self._responses)

    def visible(self) -> List[int]:
        return visible_indices(self.instrument, self._responses)

    def answer(self, index: int, value: int) -> Tuple[int, ...]:
        self._responses, cleared = apply_answer(self.instrument, self._responses, index, value)
        return cleared

    def retract(self, index: int) -> Tuple[int, ...]:
        self._responses, cleared = retract_answer(self.instrument, self._responses, index)
        return cleared

    def reset(self) -> None:
        self._responses = {}

    def missing(self) -> List[int]:
        return missing_indices(self.instrument, self._responses)

    def is_complete(self) -> bool:
        return is_complete(self.instrument, self._responses)

    def next_unanswered(self) -> Optional[int]:
        missing = self.missing()
        return missing[0] if missing else None

    def preview(self) -> Tuple[int, str]:
        from .scoring import compute_score
        from .severity import classify

        score = compute_score(self.instrument, self._responses)
        return score, classify(self.instrument, score)
