from __future__ import annotations

import asyncio
from datetime import timedelta

from guidance_core.cooldown import CooldownGate, CooldownPolicy
from guidance_core.errors import SubmissionError
from guidance_core.submission import build_submission_payload, submit_responses

from tests.conftest import NOW, cooldown_violation

COMPLETE_GAD7 = {0: 1, 1: 0, 2: 2, 3: 0, 4: 0, 5: 0, 6: 0, 7: 1}


def _gate(backend, clock):
    return CooldownGate(backend, policies={"anxiety": CooldownPolicy("anxiety", 30)}, clock=clock)


def test_incomplete_submission_never_reaches_api(backend):
    outcome = asyncio.run(submit_responses(backend, "anxiety", "u1", {0: 1, 1: 2}))
    assert not outcome.ok
    assert outcome.error_kind == "validation"
    assert outcome.missing == (2, 3, 4, 5, 6, 7)
    assert backend.submissions == []


def test_stray_answers_are_rejected(backend):
    responses = {0: 0, 1: 0, 2: 1}
    outcome = asyncio.run(submit_responses(backend, "suicide", "u1", responses))
    assert outcome.error_kind == "validation"
    assert outcome.stray == (2,)
    assert backend.submissions == []


def test_successful_submission(backend):
    outcome = asyncio.run(submit_responses(backend, "anxiety", "u1", COMPLETE_GAD7))
    assert outcome.ok, outcome.message
    assert outcome.result.score == 3
    assert outcome.result.severity == "minimal"
    assert backend.submissions == [("u1", "anxiety", COMPLETE_GAD7)]


def test_cached_cooldown_blocks_submission(backend, clock):
    backend.last_submitted("u1", "anxiety", days_ago=5)
    gate = _gate(backend, clock)

    async def scenario():
        await gate.check_cooldown("u1", "anxiety")
        return await submit_responses(backend, "anxiety", "u1", COMPLETE_GAD7, gate)

    outcome = asyncio.run(scenario())
    assert outcome.error_kind == "cooldown"
    assert outcome.cooldown.days_remaining == 25
    assert "25 days" in outcome.message
    assert backend.submissions == []


def test_cooldown_error_overrides_local_state(backend, clock):
    backend.submit_error = cooldown_violation(days_remaining=12)
    gate = _gate(backend, clock)

    async def scenario():
        await gate.check_cooldown("u1", "anxiety")
        assert gate.can_submit("u1", "anxiety")
        return await submit_responses(backend, "anxiety", "u1", COMPLETE_GAD7, gate)

    outcome = asyncio.run(scenario())
    assert outcome.error_kind == "cooldown"
    assert outcome.cooldown.days_remaining == 12
    assert "12 days" in outcome.message
    assert not gate.can_submit("u1", "anxiety"), "server status must replace the cache"
    assert gate.cached("u1", "anxiety").next_available_date == NOW + timedelta(days=12)


def test_submission_errors_are_typed(backend):
    backend.submit_error = SubmissionError("Server rejected the assessment.")
    outcome = asyncio.run(submit_responses(backend, "anxiety", "u1", COMPLETE_GAD7))
    assert outcome.error_kind == "submission"
    assert outcome.message == "Server rejected the assessment."

    backend.submit_error = RuntimeError("boom")
    outcome = asyncio.run(submit_responses(backend, "anxiety", "u1", COMPLETE_GAD7))
    assert outcome.error_kind == "submission"
    assert outcome.message


def test_exempt_instrument_ignores_gate(backend, clock):
    gate = _gate(backend, clock)
    outcome = asyncio.run(submit_responses(backend, "suicide", "u1", {0: 0, 1: 0}, gate))
    assert outcome.ok
    assert outcome.result.severity == "low"


def test_payload_uses_wire_keys():
    payload = build_submission_payload("anxiety", "u1", COMPLETE_GAD7)
    assert payload["userId"] == "u1"
    assert payload["feeling_nervous_anxious_edge"] == "several_days"
    assert payload["worrying_too_much_different_things"] == "more_than_half_days"
    assert payload["difficulty_level"] == "somewhat_difficult"


def test_payload_omits_hidden_items():
    payload = build_submission_payload("suicide", "u1", {0: 1, 1: 0})
    assert payload == {
        "userId": "u1",
        "wished_dead_or_sleep_not_wake_up": "yes",
        "actually_had_thoughts_killing_self": "no",
    }


def test_checklist_payload_groups_by_section():
    payload = build_submission_payload("checklist", "u1", {0: 2, 1: 1, 182: 1})
    assert payload["social_friends_problems"] == {"1": "circled_most_important", "2": "checked"}
    assert payload["dating_sex_problems"] == {"183": "checked"}
