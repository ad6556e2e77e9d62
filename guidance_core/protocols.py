"""
External Service Protocols

Interfaces the core consumes. Transport, serialization and retries belong
to the implementations; every method may raise.
"""

from typing import List, Mapping, Protocol

from .types import AggregationResult, CooldownStatus, FilterSet, StudentSummary, SubmissionResult


class AggregationQueryAPI(Protocol):
    """Aggregated counts for one drill-down level."""

    async def query(self, instrument: str, filter: FilterSet) -> AggregationResult:
        """
        Fetch aggregation rows scoped by a filter.

        Args:
            instrument: Instrument type key
            filter: Accumulated filter for the requested level

        Returns:
            AggregationResult with rows and an optional total
        """
        ...


class StudentListAPI(Protocol):
    """Student rows behind the terminal drill-down step."""

    async def query_students(self, instrument: str, filter: FilterSet) -> List[StudentSummary]:
        """
        Fetch the students matching a fully drilled filter.

        Args:
            instrument: Instrument type key
            filter: Filter with program, year level and gender applied

        Returns:
            List of StudentSummary
        """
        ...


class CooldownQueryAPI(Protocol):
    """Last-submission lookup used by the cooldown gate."""

    async def get_cooldown(self, user_id: str, instrument: str) -> CooldownStatus:
        """
        Fetch the cooldown record for a user and instrument.

        Only ``last_submission``, ``last_severity`` and
        ``manually_deactivated`` are relied on; the gate recomputes the rest.
        """
        ...


class SubmissionAPI(Protocol):
    """Persists a completed questionnaire."""

    async def submit(
        self,
        user_id: str,
        instrument: str,
        responses: Mapping[int, int],
    ) -> SubmissionResult:
        """
        Submit a completed response map.

        Raises:
            CooldownError: retake attempted inside the interval
            SubmissionError: any other failure
        """
        ...
