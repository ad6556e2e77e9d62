from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from guidance_core.errors import CooldownError, FetchError
from guidance_core.scoring import compute_score
from guidance_core.severity import classify
from guidance_core.types import (
    AggregationResult,
    CooldownStatus,
    FilterSet,
    InsightRow,
    StudentSummary,
    SubmissionResult,
)

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)

LEVEL_ROWS = {
    "overview": [("BSIT", 6), ("BSCS", 4)],
    "program": [("1st Year", 5), ("2nd Year", 5)],
    "year": [("Male", 3), ("Female", 7)],
    "gender": [("minimal", 2), ("mild", 1), ("severe", 1)],
}


def _depth(flt: FilterSet) -> str:
    if flt.gender:
        return "gender"
    if flt.year_level:
        return "year"
    if flt.program:
        return "program"
    return "overview"


def _selected(flt: FilterSet) -> str:
    return flt.gender or flt.year_level or flt.program or "overview"


class FakeBackend:
    """In-memory stand-in for all four backend services.

    ``hold(label)`` parks the next fetch whose newest filter value equals
    ``label`` until the returned event is set; ``fail(label)`` makes it raise.
    """

    def __init__(self):
        self.queries: list[tuple[str, FilterSet]] = []
        self.student_queries: list[tuple[str, FilterSet]] = []
        self.cooldown_queries: list[tuple[str, str]] = []
        self.submissions: list[tuple[str, str, dict]] = []
        self.holds: dict[str, asyncio.Event] = {}
        self.failures: dict[str, Exception] = {}
        self.history: dict[tuple[str, str], CooldownStatus] = {}
        self.cooldown_failures: dict[str, Exception] = {}
        self.submit_error: Exception | None = None
        self.available_years: tuple[int, ...] = (2025, 2024, 2023)
        self.now = NOW

    def hold(self, label: str) -> asyncio.Event:
        ev = asyncio.Event()
        self.holds[label] = ev
        return ev

    def fail(self, label: str, exc: Exception | None = None) -> None:
        self.failures[label] = exc or FetchError(f"Failed to load {label}.")

    def last_submitted(self, user_id: str, instrument: str, days_ago: float, severity: str | None = None) -> None:
        self.history[(user_id, instrument)] = CooldownStatus(
            is_active=True,
            last_submission=self.now - timedelta(days=days_ago),
            last_severity=severity,
        )

    async def _gate(self, label: str) -> None:
        ev = self.holds.get(label)
        if ev is not None:
            await ev.wait()
        exc = self.failures.get(label)
        if exc is not None:
            raise exc

    async def query(self, instrument: str, filter: FilterSet) -> AggregationResult:
        self.queries.append((instrument, filter))
        await self._gate(_selected(filter))
        rows = tuple(InsightRow(label=label, value=value) for label, value in LEVEL_ROWS[_depth(filter)])
        return AggregationResult(rows=rows, available_years=self.available_years)

    async def query_students(self, instrument: str, filter: FilterSet) -> list[StudentSummary]:
        self.student_queries.append((instrument, filter))
        await self._gate("students")
        return [
            StudentSummary(
                id="stu-1",
                first_name="Ana",
                last_name="Reyes",
                program=filter.program or "",
                year=filter.year_level or "",
                gender=filter.gender or "",
                severity="mild",
                score=7,
            )
        ]

    async def get_cooldown(self, user_id: str, instrument: str) -> CooldownStatus:
        self.cooldown_queries.append((user_id, instrument))
        await asyncio.sleep(0)
        if instrument in self.cooldown_failures:
            raise self.cooldown_failures[instrument]
        return self.history.get((user_id, instrument), CooldownStatus.inactive())

    async def submit(self, user_id: str, instrument: str, responses) -> SubmissionResult:
        self.submissions.append((user_id, instrument, dict(responses)))
        if self.submit_error is not None:
            raise self.submit_error
        score = compute_score(instrument, responses)
        return SubmissionResult(score=score, severity=classify(instrument, score), assessment_id="a-1")


def cooldown_violation(days_remaining: int = 12, now: datetime = NOW) -> CooldownError:
    status = CooldownStatus(
        is_active=True,
        last_submission=now - timedelta(days=30 - days_remaining),
        next_available_date=now + timedelta(days=days_remaining),
        days_remaining=days_remaining,
        interval_days=30,
    )
    return CooldownError("Assessment is in its cooldown period.", status)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def clock():
    return lambda: NOW
