# guidance_core/http_client.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .config import API_BASE_URL, HTTP_TIMEOUT_SEC
from .errors import CooldownError, FetchError, SubmissionError
from .scoring import compute_score
from .severity import classify
from .submission import build_submission_payload
from .types import (
    AggregationResult,
    CooldownStatus,
    FilterSet,
    InsightRow,
    StudentSummary,
    SubmissionResult,
    parse_timestamp,
)

log = logging.getLogger(__name__)


def _unwrap(body: Any) -> Any:
    # backend answers either a bare payload or {"success": ..., "data": ...}
    if isinstance(body, Mapping) and "data" in body:
        return body["data"]
    return body


def _records(body: Any, what: str, *keys: str) -> List[Mapping[str, Any]]:
    # list payloads come bare, under "data", or under one of ``keys``
    records: Any = body
    if isinstance(body, Mapping):
        found = [k for k in ("data",) + keys if k in body]
        records = body[found[0]] if found else body
        if records is None:
            return []
    if not isinstance(records, list) or not all(isinstance(r, Mapping) for r in records):
        log.warning("%s payload has unexpected shape: %s", what, type(records).__name__)
        raise FetchError(f"Failed to load {what}.")
    return records


class GuidanceApiClient:
    """
    REST adapter for the guidance backend.

    Implements the aggregation, student-list, cooldown and submission
    protocols over a shared ``httpx.AsyncClient``. Pass ``client`` to reuse
    a pooled client (or a mock transport in tests); it is then not closed
    by ``aclose``.
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        timeout: float = HTTP_TIMEOUT_SEC,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GuidanceApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _fetch_json(self, method: str, path: str, what: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, self._url(path), **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            log.warning("%s failed status=%s url=%s", what, exc.response.status_code, exc.request.url)
            raise FetchError(f"Failed to load {what}.") from exc
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("%s failed: %r", what, exc)
            raise FetchError(f"Failed to load {what}.") from exc

    # ---- AggregationQueryAPI ----
    async def query(self, instrument: str, filter: FilterSet) -> AggregationResult:
        body = await self._fetch_json(
            "POST", "/metrics/insights", "insights",
            json={"type": instrument, "filter": filter.to_wire()},
        )
        rows = _records(body, "insights", "rows")
        total = body.get("total") if isinstance(body, Mapping) else None
        years = body.get("availableYears") if isinstance(body, Mapping) else None
        try:
            return AggregationResult(
                rows=tuple(InsightRow.from_payload(r) for r in rows),
                total=float(total) if total is not None else None,
                available_years=tuple(sorted((int(y) for y in years or ()), reverse=True)),
            )
        except (TypeError, ValueError) as exc:
            log.warning("insights payload rejected: %r", exc)
            raise FetchError("Failed to load insights.") from exc

    # ---- StudentListAPI ----
    async def query_students(self, instrument: str, filter: FilterSet) -> List[StudentSummary]:
        body = await self._fetch_json(
            "POST", "/metrics/insights/students", "students",
            json={"type": instrument, "filter": filter.to_wire()},
        )
        rows = _records(body, "students", "students", "rows")
        try:
            return [StudentSummary.from_payload(r) for r in rows]
        except (TypeError, ValueError) as exc:
            log.warning("students payload rejected: %r", exc)
            raise FetchError("Failed to load students.") from exc

    # ---- CooldownQueryAPI ----
    async def get_cooldown(self, user_id: str, instrument: str) -> CooldownStatus:
        what = f"{instrument} history"
        body = await self._fetch_json(
            "GET", f"/{instrument}", what,
            params={"userId": user_id, "limit": 1, "order": "desc"},
        )
        records = _records(body, what, "assessments")
        if not records:
            return CooldownStatus.inactive()
        latest = records[0]
        # cooldownActive=false on the latest record means a counselor lifted it
        lifted = latest.get("cooldownActive") is False
        return CooldownStatus(
            is_active=not lifted,
            last_submission=parse_timestamp(latest.get("assessmentDate") or latest.get("createdAt")),
            last_severity=latest.get("severityLevel") or latest.get("riskLevel"),
            manually_deactivated=lifted,
        )

    # ---- SubmissionAPI ----
    async def submit(
        self,
        user_id: str,
        instrument: str,
        responses: Mapping[int, int],
    ) -> SubmissionResult:
        payload = build_submission_payload(instrument, user_id, responses)
        try:
            resp = await self._client.post(self._url(f"/{instrument}"), json=payload)
        except httpx.HTTPError as exc:
            log.warning("submit %s transport error: %r", instrument, exc)
            raise SubmissionError("Failed to submit assessment. Please try again.") from exc

        if resp.status_code == 429:
            body = self._safe_json(resp)
            info = body.get("cooldownInfo") if isinstance(body, Mapping) else None
            if info:
                raise CooldownError(
                    body.get("message") or "Assessment is in its cooldown period.",
                    CooldownStatus.from_payload(info),
                )
        if resp.is_error:
            log.warning("submit %s failed status=%s", instrument, resp.status_code)
            body = self._safe_json(resp)
            msg = body.get("message") if isinstance(body, Mapping) else None
            raise SubmissionError(msg or "Failed to submit assessment. Please try again.")

        record = _unwrap(self._safe_json(resp))
        if not isinstance(record, Mapping):
            record = {}
        score = record.get("totalScore")
        if score is None:
            score = compute_score(instrument, responses)
        severity = record.get("severityLevel") or record.get("riskLevel") or classify(instrument, int(score))
        info = record.get("cooldownInfo")
        return SubmissionResult(
            score=int(score),
            severity=str(severity),
            cooldown=CooldownStatus.from_payload(info) if info else None,
            assessment_id=record.get("id"),
        )

    @staticmethod
    def _safe_json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
