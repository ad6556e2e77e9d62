from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from guidance_core.cooldown import CooldownGate
from guidance_core.errors import CooldownError, FetchError, SubmissionError
from guidance_core.http_client import GuidanceApiClient
from guidance_core.types import FilterSet

BASE = "http://backend.test/api"


def _run(handler, call):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            api = GuidanceApiClient(base_url=BASE, client=http)
            return await call(api)

    return asyncio.run(scenario())


def test_query_posts_camel_case_filter():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "data": [{"label": "BSIT", "value": 3, "color": "#fff"}, {"label": "BSCS", "value": 1}],
                "total": 4,
                "availableYears": [2023, 2025],
            },
        )

    flt = FilterSet(program="BSIT", year_level="1st Year", start_date="2024-01-01T00:00:00+00:00")
    result = _run(handler, lambda api: api.query("anxiety", flt))

    assert seen["url"] == f"{BASE}/metrics/insights"
    assert seen["body"] == {
        "type": "anxiety",
        "filter": {"program": "BSIT", "yearLevel": "1st Year", "startDate": "2024-01-01T00:00:00+00:00"},
    }
    assert [r.label for r in result.rows] == ["BSIT", "BSCS"]
    assert result.rows[0].color == "#fff"
    assert result.total == 4
    assert result.available_years == (2025, 2023)


def test_query_failure_is_fetch_error():
    def handler(request):
        return httpx.Response(500, json={"message": "db down"})

    with pytest.raises(FetchError):
        _run(handler, lambda api: api.query("anxiety", FilterSet()))


def test_transport_failure_is_fetch_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(FetchError):
        _run(handler, lambda api: api.query_students("stress", FilterSet(program="BSIT")))


def test_query_students_parses_rows():
    def handler(request):
        assert request.url.path == "/api/metrics/insights/students"
        return httpx.Response(
            200,
            json={"data": [{"id": "s1", "firstName": "Ana", "lastName": "Reyes", "studentNumber": "2021-1", "score": 9}]},
        )

    students = _run(handler, lambda api: api.query_students("anxiety", FilterSet(gender="Female")))
    assert students[0].first_name == "Ana"
    assert students[0].student_number == "2021-1"
    assert students[0].score == 9


def test_get_cooldown_reads_latest_assessment():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        seen["path"] = request.url.path
        return httpx.Response(
            200,
            json={"data": [{"assessmentDate": "2025-03-05T08:00:00Z", "severityLevel": "moderate", "cooldownActive": True}]},
        )

    status = _run(handler, lambda api: api.get_cooldown("u1", "depression"))
    assert seen["path"] == "/api/depression"
    assert seen["params"] == {"userId": "u1", "limit": "1", "order": "desc"}
    assert status.last_submission.isoformat() == "2025-03-05T08:00:00+00:00"
    assert status.last_severity == "moderate"
    assert not status.manually_deactivated


def test_get_cooldown_lifted_and_empty():
    def lifted(request):
        return httpx.Response(200, json={"data": [{"assessmentDate": "2025-03-05T08:00:00Z", "cooldownActive": False}]})

    assert _run(lifted, lambda api: api.get_cooldown("u1", "stress")).manually_deactivated

    def empty(request):
        return httpx.Response(200, json={"data": []})

    status = _run(empty, lambda api: api.get_cooldown("u1", "stress"))
    assert not status.is_active and status.last_submission is None


def test_submit_sends_wire_payload():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"data": {"id": "a-9", "totalScore": 12, "severityLevel": "moderate"}})

    responses = {i: 2 for i in range(7)}
    responses[7] = 0
    result = _run(handler, lambda api: api.submit("u1", "anxiety", responses))
    assert seen["path"] == "/api/anxiety"
    assert seen["body"]["userId"] == "u1"
    assert seen["body"]["trouble_relaxing"] == "more_than_half_days"
    assert seen["body"]["difficulty_level"] == "not_difficult_at_all"
    assert (result.score, result.severity, result.assessment_id) == (12, "moderate", "a-9")


def test_submit_falls_back_to_local_score():
    def handler(request):
        return httpx.Response(201, json={"id": "a-1"})

    result = _run(handler, lambda api: api.submit("u1", "stress", {i: 2 for i in range(10)}))
    assert (result.score, result.severity) == (20, "moderate")


def test_submit_429_is_cooldown_error():
    def handler(request):
        return httpx.Response(
            429,
            json={
                "error": "cooldown",
                "message": "Please wait before retaking.",
                "cooldownInfo": {
                    "isActive": True,
                    "daysRemaining": 6,
                    "nextAvailableDate": "2025-03-21T00:00:00Z",
                    "cooldownPeriodDays": 14,
                    "lastSeverityLevel": "moderate",
                    "manuallyDeactivated": False,
                },
            },
        )

    with pytest.raises(CooldownError) as info:
        _run(handler, lambda api: api.submit("u1", "anxiety", {i: 0 for i in range(7)}))
    status = info.value.status
    assert info.value.message == "Please wait before retaking."
    assert status.is_active and status.days_remaining == 6
    assert status.interval_days == 14


def test_submit_other_failures_are_submission_errors():
    def server_error(request):
        return httpx.Response(500, json={"message": "Internal error"})

    with pytest.raises(SubmissionError) as info:
        _run(server_error, lambda api: api.submit("u1", "anxiety", {i: 0 for i in range(7)}))
    assert info.value.message == "Internal error"

    def bare_429(request):
        return httpx.Response(429, text="slow down")

    with pytest.raises(SubmissionError):
        _run(bare_429, lambda api: api.submit("u1", "anxiety", {i: 0 for i in range(7)}))

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(SubmissionError):
        _run(refused, lambda api: api.submit("u1", "anxiety", {i: 0 for i in range(7)}))


def test_query_accepts_rows_envelope():
    def handler(request):
        return httpx.Response(200, json={"rows": [{"label": "BSIT", "value": 3}], "availableYears": [2024]})

    result = _run(handler, lambda api: api.query("anxiety", FilterSet()))
    assert [(r.label, r.value) for r in result.rows] == [("BSIT", 3)]
    assert result.available_years == (2024,)


def test_malformed_payloads_are_fetch_errors():
    bodies = [
        {"message": "ok"},
        {"data": {"label": "BSIT"}},
        {"rows": ["BSIT", "BSCS"]},
        {"data": [{"label": "BSIT", "value": "lots", "score": "lots"}]},
        "BSIT",
    ]
    for body in bodies:
        def handler(request, body=body):
            return httpx.Response(200, json=body)

        with pytest.raises(FetchError):
            _run(handler, lambda api: api.query("anxiety", FilterSet()))
        with pytest.raises(FetchError):
            _run(handler, lambda api: api.query_students("anxiety", FilterSet(gender="Male")))


def test_get_cooldown_reads_assessments_envelope():
    now = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)

    def handler(request):
        return httpx.Response(
            200,
            json={"assessments": [{"assessmentDate": "2025-03-12T12:00:00Z", "severityLevel": "minimal", "cooldownActive": True}]},
        )

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            gate = CooldownGate(GuidanceApiClient(base_url=BASE, client=http), clock=lambda: now)
            return await gate.check_all("u1", ("anxiety",))

    check = asyncio.run(scenario())["anxiety"]
    assert check.ok, check.error
    assert check.status.is_active
    assert check.status.days_remaining == 27


def test_get_cooldown_unknown_shape_is_fetch_error():
    def handler(request):
        return httpx.Response(200, json={"total": 0})

    with pytest.raises(FetchError):
        _run(handler, lambda api: api.get_cooldown("u1", "anxiety"))
