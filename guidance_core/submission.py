# guidance_core/submission.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from .branching import missing_indices, stray_indices
from .cooldown import CooldownGate
from .errors import CooldownError, GuidanceError, SubmissionError, ValidationGap
from .instruments import get_instrument
from .protocols import SubmissionAPI
from .types import CooldownStatus, RawResponseMap, SubmissionResult

log = logging.getLogger(__name__)


@dataclass
class SubmissionOutcome:
    ok: bool
    result: Optional[SubmissionResult] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    cooldown: Optional[CooldownStatus] = None
    missing: Tuple[int, ...] = field(default_factory=tuple)
    stray: Tuple[int, ...] = field(default_factory=tuple)

    @classmethod
    def failed(cls, err: GuidanceError, cooldown: Optional[CooldownStatus] = None) -> "SubmissionOutcome":
        return cls(
            ok=False,
            error_kind=err.kind,
            message=err.message,
            cooldown=cooldown,
            missing=getattr(err, "missing", ()),
            stray=getattr(err, "stray", ()),
        )


def cooldown_message(status: Optional[CooldownStatus]) -> str:
    if status is None or status.days_remaining <= 0:
        return "This assessment is in its cooldown period."
    days = status.days_remaining
    unit = "day" if days == 1 else "days"
    when = f" (available on {status.next_available_date.date().isoformat()})" if status.next_available_date else ""
    return f"You can retake this assessment in {days} {unit}{when}."


def build_submission_payload(
    instrument: str,
    user_id: str,
    responses: Mapping[int, int],
) -> Dict[str, Any]:
    """
    Wire body for the Submission API: item keys mapped to choice enums.
    Checklist answers are grouped per section as ``{item_number: enum}``.
    """
    inst = get_instrument(instrument)
    payload: Dict[str, Any] = {"userId": user_id}
    for idx in sorted(responses):
        item = inst.item(idx)
        wire = item.wire_value(int(responses[idx]))
        if item.section:
            payload.setdefault(item.section, {})[item.key] = wire
        else:
            payload[item.key] = wire
    return payload


async def submit_responses(
    api: SubmissionAPI,
    instrument: str,
    user_id: str,
    responses: Mapping[int, int],
    gate: Optional[CooldownGate] = None,
) -> SubmissionOutcome:
    """
    Validate, gate and submit one questionnaire.

    Never raises for I/O failures; the outcome carries ``error_kind`` and a
    user-facing message instead.
    """
    inst = get_instrument(instrument)
    clean: RawResponseMap = {int(k): int(v) for k, v in responses.items()}

    missing = missing_indices(inst.key, clean)
    stray = stray_indices(inst.key, clean)
    if missing or stray:
        log.warning(
            "submission rejected instrument=%s missing=%s stray=%s", inst.key, missing, stray
        )
        return SubmissionOutcome.failed(
            ValidationGap("Please answer all questions before submitting.", missing, stray)
        )

    if gate is not None and not gate.can_submit(user_id, inst.key):
        status = gate.cached(user_id, inst.key)
        log.warning("submission blocked by cached cooldown instrument=%s user=%s", inst.key, user_id)
        return SubmissionOutcome(
            ok=False, error_kind="cooldown", message=cooldown_message(status), cooldown=status
        )

    try:
        result = await api.submit(user_id, inst.key, clean)
    except CooldownError as exc:
        if gate is not None:
            gate.apply_authoritative(user_id, inst.key, exc.status)
        log.warning("submission hit cooldown instrument=%s days=%s", inst.key, exc.status.days_remaining)
        return SubmissionOutcome(
            ok=False,
            error_kind=exc.kind,
            message=cooldown_message(exc.status),
            cooldown=exc.status,
        )
    except GuidanceError as exc:
        log.warning("submission failed instrument=%s kind=%s: %s", inst.key, exc.kind, exc.message)
        return SubmissionOutcome.failed(exc)
    except Exception as exc:
        log.warning("submission failed instrument=%s: %r", inst.key, exc)
        return SubmissionOutcome.failed(SubmissionError("Failed to submit assessment. Please try again."))

    if gate is not None and result.cooldown is not None:
        gate.apply_authoritative(user_id, inst.key, result.cooldown)
    log.info(
        "submitted instrument=%s user=%s score=%s severity=%s", inst.key, user_id, result.score, result.severity
    )
    return SubmissionOutcome(ok=True, result=result, cooldown=result.cooldown)
