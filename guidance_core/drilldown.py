# guidance_core/drilldown.py
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .config import DEBUG_TRACE, DEFAULT_YEARS_BACK, TRACE_FIELDS
from .errors import FetchError, GuidanceError
from .protocols import AggregationQueryAPI, StudentListAPI
from .types import (
    INSTRUMENT_TYPES,
    AggregationResult,
    ChartFilters,
    DrilldownLevel,
    FilterSet,
    InsightRow,
    StudentSummary,
)

log = logging.getLogger(__name__)

MONTHS: Tuple[Tuple[int, str], ...] = (
    (1, "January"), (2, "February"), (3, "March"), (4, "April"),
    (5, "May"), (6, "June"), (7, "July"), (8, "August"),
    (9, "September"), (10, "October"), (11, "November"), (12, "December"),
)

PALETTE: Tuple[str, ...] = (
    "#3B82F6", "#EC4899", "#10B981", "#F59E0B", "#8B5CF6", "#EF4444", "#14B8A6", "#6366F1",
)

# kind -> (next kind, filter field the selected label fills)
_TRANSITIONS: Dict[str, Tuple[str, str]] = {
    "overview": ("program", "program"),
    "program": ("year", "year_level"),
    "year": ("gender", "gender"),
}

_TITLE_SUFFIX = {
    "program": "By Academic Year",
    "year": "By Gender",
    "gender": "By Severity",
    "students": "Students",
}


def _emit_trace(**values: object) -> None:
    if not DEBUG_TRACE:
        return
    ordered = []
    for key in TRACE_FIELDS:
        if key in values:
            ordered.append(f"{key}={values[key]}")
    if ordered:
        log.info("trace %s", " ".join(str(val) for val in ordered))


def _level_title(kind: str, flt: FilterSet) -> str:
    if kind == "overview":
        return "By Program"
    path = " ".join(p for p in (flt.program, flt.year_level, flt.gender) if p)
    return f"{path} - {_TITLE_SUFFIX[kind]}"


def normalize_rows(result: AggregationResult) -> Tuple[InsightRow, ...]:
    """Fill missing percentages from the total and missing colours from the palette."""

    rows = list(result.rows)
    total = result.total
    if total is None:
        total = sum(float(r.value or 0) for r in rows)
    out: List[InsightRow] = []
    for idx, row in enumerate(rows):
        pct = row.percentage
        if pct is None and total and total > 0:
            pct = float(round(float(row.value) / float(total) * 100))
        color = row.color or PALETTE[idx % len(PALETTE)]
        out.append(replace(row, percentage=pct, color=color))
    return tuple(out)


def _default_years(now: datetime) -> Tuple[int, ...]:
    return tuple(now.year - k for k in range(DEFAULT_YEARS_BACK + 1))


class NavigationStack:
    """Drill-down levels, overview at the bottom, displayed level on top."""

    def __init__(self, levels: Iterable[DrilldownLevel] = ()):
        self._levels: List[DrilldownLevel] = []
        for level in levels:
            self.push(level)

    def __len__(self) -> int:
        return len(self._levels)

    @property
    def levels(self) -> Tuple[DrilldownLevel, ...]:
        return tuple(self._levels)

    @property
    def top(self) -> DrilldownLevel:
        if not self._levels:
            raise IndexError("navigation stack is empty")
        return self._levels[-1]

    def push(self, level: DrilldownLevel) -> None:
        if self._levels:
            prev = self._levels[-1].accumulated_filter.keys()
            if not prev < level.accumulated_filter.keys():
                raise ValueError(
                    f"{level.kind} filter must strictly extend {self._levels[-1].kind} filter"
                )
        self._levels.append(level)

    def pop(self) -> DrilldownLevel:
        if len(self._levels) <= 1:
            raise IndexError("cannot pop the overview level")
        return self._levels.pop()

    def reset(self, level: DrilldownLevel) -> None:
        self._levels = [level]


@dataclass(frozen=True)
class InsightsState:
    type: str
    current_level: DrilldownLevel
    filters: ChartFilters
    available_years: Tuple[int, ...] = ()
    available_months: Tuple[Tuple[int, str], ...] = MONTHS


class DrilldownAnalyticsEngine:
    """
    Navigation over program -> year -> gender -> students aggregations.

    Every fetch is tagged with a sequence number; a response whose number is
    below the highest applied one is dropped, as is anything landing after
    ``dispose()``. Fetch failures are recorded on ``error``/``error_kind``
    and leave the displayed state untouched.
    """

    def __init__(
        self,
        aggregation_api: AggregationQueryAPI,
        student_api: StudentListAPI,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._aggregation = aggregation_api
        self._students = student_api
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._stack = NavigationStack()
        self._insights: Optional[InsightsState] = None
        self._student_view: Optional[DrilldownLevel] = None
        self._student_list: Tuple[StudentSummary, ...] = ()
        self._issued = 0
        self._applied = 0
        self._pending: Set[int] = set()
        self._disposed = False
        self.error: Optional[str] = None
        self.error_kind: Optional[str] = None

    # ---- read-only state ----
    @property
    def insights(self) -> Optional[InsightsState]:
        return self._insights

    @property
    def current_level(self) -> Optional[DrilldownLevel]:
        return self._insights.current_level if self._insights else None

    @property
    def current_filter(self) -> Optional[FilterSet]:
        level = self.current_level
        return level.accumulated_filter if level else None

    @property
    def navigation_stack(self) -> Tuple[DrilldownLevel, ...]:
        return self._stack.levels

    @property
    def student_list(self) -> Tuple[StudentSummary, ...]:
        return self._student_list

    @property
    def loading(self) -> bool:
        return self._issued in self._pending

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def is_student_view(self) -> bool:
        return self._student_view is not None

    @property
    def can_drill_down(self) -> bool:
        level = self.current_level
        return level is not None and level.kind != "students"

    @property
    def can_navigate_back(self) -> bool:
        return self._student_view is not None or len(self._stack) > 1

    def clear_error(self) -> None:
        self.error = None
        self.error_kind = None

    def dispose(self) -> None:
        self._disposed = True
        self._pending.clear()
        log.info("drilldown engine disposed issued=%s applied=%s", self._issued, self._applied)

    # ---- operations ----
    async def fetch_insights(
        self,
        instrument: str,
        filters: ChartFilters | Mapping[str, Any] | None = None,
    ) -> Optional[InsightsState]:
        if instrument not in INSTRUMENT_TYPES:
            raise ValueError(f"unknown instrument: {instrument!r}")
        if self._disposed:
            log.warning("fetch_insights ignored: engine disposed")
            return None
        ok = await self._load_overview(instrument, ChartFilters.coerce(filters), "fetch insights")
        return self._insights if ok else None

    async def drill_down(self, selected_label: str) -> bool:
        if self._disposed or self._insights is None:
            log.warning("drill_down ignored: engine not ready")
            return False
        current = self._insights.current_level
        if current.kind == "students":
            log.warning("drill_down ignored: student list is terminal")
            return False

        instrument = self._insights.type
        base_levels = self._stack.levels

        if current.kind == "gender":
            flt = current.accumulated_filter

            def apply_students(students: List[StudentSummary]) -> None:
                marker = DrilldownLevel(
                    kind="students",
                    title=_level_title("students", flt),
                    rows=(),
                    accumulated_filter=flt,
                    parent_value=selected_label,
                )
                self._stack = NavigationStack(base_levels)
                self._student_view = marker
                self._student_list = tuple(students)
                self._show(marker)

            return await self._request(
                "load students",
                lambda: self._students.query_students(instrument, flt),
                apply_students,
                kind_before=current.kind,
                kind_after="students",
                label=selected_label,
            )

        next_kind, field_name = _TRANSITIONS[current.kind]
        flt = current.accumulated_filter.merged(**{field_name: selected_label})

        def apply_level(result: AggregationResult) -> None:
            level = DrilldownLevel(
                kind=next_kind,
                title=_level_title(next_kind, flt),
                rows=normalize_rows(result),
                accumulated_filter=flt,
                parent_value=selected_label,
            )
            stack = NavigationStack(base_levels)
            stack.push(level)
            self._stack = stack
            self._student_view = None
            self._student_list = ()
            self._show(level)

        return await self._request(
            "drill down",
            lambda: self._aggregation.query(instrument, flt),
            apply_level,
            kind_before=current.kind,
            kind_after=next_kind,
            label=selected_label,
        )

    def navigate_back(self) -> bool:
        if self._disposed or self._insights is None:
            return False
        kind_before = self._insights.current_level.kind
        if self._student_view is not None:
            self._student_view = None
            self._student_list = ()
        elif len(self._stack) > 1:
            self._stack.pop()
        else:
            return False
        # supersedes anything still in flight
        seq = self._next_seq()
        self._applied = seq
        top = self._stack.top
        self._show(top)
        log.info("navigate back %s -> %s depth=%s", kind_before, top.kind, len(self._stack))
        _emit_trace(seq=seq, op="back", kind_before=kind_before, kind_after=top.kind,
                    depth=len(self._stack), filter=top.accumulated_filter.to_wire())
        return True

    async def update_filters(self, new_filters: ChartFilters | Mapping[str, Any]) -> bool:
        """
        Merge the date selection and reload the overview, dropping the drill position.

        An out-of-range year or month raises ValueError before any request is issued.
        """

        if self._disposed or self._insights is None:
            log.warning("update_filters ignored: engine not ready")
            return False
        chart = self._insights.filters.merged(new_filters)
        log.info("filters changed year=%s month=%s, resetting to overview", chart.year, chart.month)
        return await self._load_overview(self._insights.type, chart, "update filters")

    # ---- internals ----
    def _next_seq(self) -> int:
        self._issued += 1
        return self._issued

    def _show(self, level: DrilldownLevel) -> None:
        if self._insights is not None:
            self._insights = replace(self._insights, current_level=level)

    async def _load_overview(self, instrument: str, chart: ChartFilters, op: str) -> bool:
        base = chart.to_filter_set()

        def apply(result: AggregationResult) -> None:
            level = DrilldownLevel(
                kind="overview",
                title=_level_title("overview", base),
                rows=normalize_rows(result),
                accumulated_filter=base,
            )
            self._stack.reset(level)
            self._student_view = None
            self._student_list = ()
            self._insights = InsightsState(
                type=instrument,
                current_level=level,
                filters=chart,
                available_years=tuple(result.available_years) or _default_years(self._clock()),
            )

        return await self._request(
            op,
            lambda: self._aggregation.query(instrument, base),
            apply,
            kind_before=self._insights.current_level.kind if self._insights else None,
            kind_after="overview",
        )

    async def _request(
        self,
        op: str,
        call: Callable[[], Awaitable[Any]],
        apply: Callable[[Any], None],
        **trace: object,
    ) -> bool:
        seq = self._next_seq()
        self._pending.add(seq)
        try:
            result = await call()
        except Exception as exc:
            if self._stale(seq):
                log.warning("dropping failed stale %s seq=%s applied=%s", op, seq, self._applied)
                return False
            err = exc if isinstance(exc, GuidanceError) else FetchError(f"Failed to {op}.")
            self.error = err.message
            self.error_kind = err.kind
            log.warning("%s failed seq=%s: %s", op, seq, exc)
            return False
        finally:
            self._pending.discard(seq)

        if self._stale(seq):
            log.warning("dropping stale %s response seq=%s applied=%s", op, seq, self._applied)
            return False
        apply(result)
        self._applied = seq
        self.clear_error()
        level = self.current_level
        log.info("%s applied seq=%s kind=%s depth=%s", op, seq, level.kind if level else None, len(self._stack))
        _emit_trace(seq=seq, op=op, depth=len(self._stack),
                    filter=level.accumulated_filter.to_wire() if level else {}, **trace)
        return True

    def _stale(self, seq: int) -> bool:
        return self._disposed or seq < self._applied
