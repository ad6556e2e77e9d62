from __future__ import annotations
import calendar
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple

InstrumentType = Literal["anxiety", "depression", "stress", "suicide", "checklist"]
INSTRUMENT_TYPES: Tuple[str, ...] = ("anxiety", "depression", "stress", "suicide", "checklist")
LevelKind = Literal["overview", "program", "year", "gender", "students"]
RawResponseMap = Dict[int, int]

_WIRE_NAMES = {
    "program": "program",
    "year_level": "yearLevel",
    "gender": "gender",
    "start_date": "startDate",
    "end_date": "endDate",
}


def parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        ts = raw
    else:
        try:
            ts = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError:
            return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


@dataclass(frozen=True)
class FilterSet:
    program: Optional[str] = None
    year_level: Optional[str] = None
    gender: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    def keys(self) -> FrozenSet[str]:
        return frozenset(f.name for f in fields(self) if getattr(self, f.name) is not None)

    def merged(self, **updates: Optional[str]) -> "FilterSet":
        return replace(self, **updates)

    def to_wire(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for name, wire in _WIRE_NAMES.items():
            val = getattr(self, name)
            if val is not None:
                out[wire] = val
        return out


MIN_CHART_YEAR = 1900
MAX_CHART_YEAR = 9999


@dataclass(frozen=True)
class ChartFilters:
    """Cross-cutting date selection, independent of the drill path."""

    year: Optional[int] = None
    month: Optional[int] = None

    def __post_init__(self):
        if self.year is not None and not MIN_CHART_YEAR <= self.year <= MAX_CHART_YEAR:
            raise ValueError(f"year out of range: {self.year}")
        if self.month is not None and not 1 <= self.month <= 12:
            raise ValueError(f"month out of range: {self.month}")

    @classmethod
    def coerce(cls, raw: "ChartFilters | Mapping[str, Any] | None") -> "ChartFilters":
        if raw is None:
            return cls()
        if isinstance(raw, ChartFilters):
            return raw
        year = raw.get("year")
        month = raw.get("month")
        return cls(
            year=int(year) if year is not None else None,
            month=int(month) if month is not None else None,
        )

    def merged(self, other: "ChartFilters | Mapping[str, Any] | None") -> "ChartFilters":
        # a mapping key set to None clears that field; absent keys are kept
        if other is None:
            return self
        if isinstance(other, ChartFilters):
            return ChartFilters(
                year=other.year if other.year is not None else self.year,
                month=other.month if other.month is not None else self.month,
            )
        upd = ChartFilters.coerce(other)
        return ChartFilters(
            year=upd.year if "year" in other else self.year,
            month=upd.month if "month" in other else self.month,
        )

    def date_range(self) -> Tuple[Optional[str], Optional[str]]:
        # a month without a year carries no range
        if self.year is None:
            return None, None
        if self.month is not None:
            last_day = calendar.monthrange(self.year, self.month)[1]
            start = datetime(self.year, self.month, 1, tzinfo=timezone.utc)
            end = datetime(self.year, self.month, last_day, 23, 59, 59, 999000, tzinfo=timezone.utc)
        else:
            start = datetime(self.year, 1, 1, tzinfo=timezone.utc)
            end = datetime(self.year, 12, 31, 23, 59, 59, 999000, tzinfo=timezone.utc)
        return start.isoformat(), end.isoformat()

    def to_filter_set(self) -> FilterSet:
        start, end = self.date_range()
        return FilterSet(start_date=start, end_date=end)


@dataclass(frozen=True)
class InsightRow:
    label: str
    value: float
    percentage: Optional[float] = None
    color: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> "InsightRow":
        pct = raw.get("percentage")
        return cls(
            label=str(raw.get("label", "")),
            value=float(raw.get("value") or 0),
            percentage=float(pct) if pct is not None else None,
            color=raw.get("color"),
        )


@dataclass(frozen=True)
class DrilldownLevel:
    kind: LevelKind
    title: str
    rows: Tuple[InsightRow, ...]
    accumulated_filter: FilterSet
    parent_value: Optional[str] = None


@dataclass(frozen=True)
class AggregationResult:
    rows: Tuple[InsightRow, ...]
    total: Optional[float] = None
    available_years: Tuple[int, ...] = ()


@dataclass(frozen=True)
class StudentSummary:
    id: str
    student_number: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    program: str = ""
    year: str = ""
    gender: str = ""
    severity: Optional[str] = None
    score: Optional[int] = None
    assessment_date: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> "StudentSummary":
        score = raw.get("score")
        return cls(
            id=str(raw.get("id", "")),
            student_number=str(raw.get("studentNumber", "") or ""),
            first_name=str(raw.get("firstName", "") or ""),
            last_name=str(raw.get("lastName", "") or ""),
            email=str(raw.get("email", "") or ""),
            program=str(raw.get("program", "") or ""),
            year=str(raw.get("year", "") or ""),
            gender=str(raw.get("gender", "") or ""),
            severity=raw.get("severity"),
            score=int(score) if score is not None else None,
            assessment_date=raw.get("assessmentDate"),
        )


@dataclass(frozen=True)
class CooldownStatus:
    is_active: bool
    last_submission: Optional[datetime] = None
    next_available_date: Optional[datetime] = None
    days_remaining: int = 0
    interval_days: Optional[int] = None
    last_severity: Optional[str] = None
    manually_deactivated: bool = False

    @classmethod
    def inactive(cls) -> "CooldownStatus":
        return cls(is_active=False)

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> "CooldownStatus":
        """Parse the backend's ``cooldownInfo`` object."""

        period = raw.get("cooldownPeriodDays")
        return cls(
            is_active=bool(raw.get("isActive", False)),
            last_submission=parse_timestamp(raw.get("lastAssessmentDate")),
            next_available_date=parse_timestamp(raw.get("nextAvailableDate")),
            days_remaining=max(0, int(raw.get("daysRemaining", 0) or 0)),
            interval_days=int(period) if period is not None else None,
            last_severity=raw.get("lastSeverityLevel"),
            manually_deactivated=bool(raw.get("manuallyDeactivated", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isActive": self.is_active,
            "lastSubmission": _iso(self.last_submission),
            "nextAvailableDate": _iso(self.next_available_date),
            "daysRemaining": self.days_remaining,
            "intervalDays": self.interval_days,
            "lastSeverity": self.last_severity,
            "manuallyDeactivated": self.manually_deactivated,
        }


@dataclass(frozen=True)
class SubmissionResult:
    score: int
    severity: str
    cooldown: Optional[CooldownStatus] = None
    assessment_id: Optional[str] = None


@dataclass
class Question:
    index: int
    text: str
    choices: List[Tuple[int, str]] = field(default_factory=list)
    section: Optional[str] = None
