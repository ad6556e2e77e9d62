from __future__ import annotations
from typing import Sequence

from .types import CooldownStatus


class GuidanceError(Exception):
    # Base class for failures surfaced to the user as kind + message.
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FetchError(GuidanceError):
    # Aggregation, student-list or cooldown query failed.
    kind = "fetch"


class SubmissionError(GuidanceError):
    # Submission API failed for any reason other than an active cooldown.
    kind = "submission"


class CooldownError(GuidanceError):
    # Retake attempted inside the interval; status is authoritative.
    kind = "cooldown"

    def __init__(self, message: str, status: CooldownStatus):
        super().__init__(message)
        self.status = status


class ValidationGap(GuidanceError):
    # Submission attempted while the questionnaire is incomplete.
    kind = "validation"

    def __init__(
        self,
        message: str,
        missing: Sequence[int] = (),
        stray: Sequence[int] = (),
    ):
        super().__init__(message)
        self.missing = tuple(missing)
        self.stray = tuple(stray)

