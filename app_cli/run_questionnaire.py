# app_cli/run_questionnaire.py
from __future__ import annotations
import argparse, asyncio, logging
from guidance_core.branching import QuestionnaireSession
from guidance_core.config import load_config
from guidance_core.cooldown import CooldownGate
from guidance_core.http_client import GuidanceApiClient
from guidance_core.instruments import get_instrument
from guidance_core.severity import display_label, needs_professional_help
from guidance_core.submission import cooldown_message, submit_responses
from guidance_core.types import INSTRUMENT_TYPES


def _ask_choice(prompt: str, choices, allow_back: bool) -> int | None:
    values = [v for v, _ in choices]
    while True:
        s = input(prompt).strip().lower()
        if allow_back and s == "b":
            return None
        if s.lstrip("-").isdigit() and int(s) in values:
            return int(s)
        print(f"Enter one of {values}" + (" or 'b' to go back." if allow_back else "."))


def _preview_line(sess: QuestionnaireSession) -> str:
    score, sev = sess.preview()
    return f"score so far: {score} ({display_label(sev)})"


def run_interactive(sess: QuestionnaireSession) -> None:
    inst = get_instrument(sess.instrument)
    questions = inst.questions()
    history: list[int] = []
    section = None
    while True:
        idx = sess.next_unanswered()
        if idx is None:
            break
        q = questions[idx]
        if q.section and q.section != section:
            section = q.section
            print(f"\n== {dict(inst.sections).get(section, section)} ==")
        print(f"\n[{idx + 1}/{inst.item_count}] {q.text}")
        for v, label in q.choices:
            print(f"  {v}: {label}")
        val = _ask_choice("Your choice ('b' = back): ", q.choices, allow_back=bool(history))
        if val is None:
            sess.retract(history.pop())
            continue
        cleared = sess.answer(idx, val)
        history.append(idx)
        if cleared:
            history = [h for h in history if h not in cleared]
            print(f"  (cleared follow-up answers: {[c + 1 for c in cleared]})")
        print(f"  {_preview_line(sess)}")


def api_settings(override: str | None = None) -> tuple[str, float]:
    cfg = load_config()
    return override or cfg["GUIDANCE_API_URL"], float(cfg["HTTP_TIMEOUT_SEC"])


async def _submit(sess: QuestionnaireSession, user_id: str, base_url: str, timeout: float) -> int:
    async with GuidanceApiClient(base_url=base_url, timeout=timeout) as api:
        gate = CooldownGate(api)
        checks = await gate.check_all(user_id, (sess.instrument,))
        check = checks.get(sess.instrument)
        if check and check.ok and check.status.is_active:
            print(cooldown_message(check.status))
            return 2
        outcome = await submit_responses(api, sess.instrument, user_id, sess.responses, gate)
    if outcome.ok:
        print(f"Submitted. id={outcome.result.assessment_id} severity={display_label(outcome.result.severity)}")
        return 0
    print(f"Submission failed ({outcome.error_kind}): {outcome.message}")
    return 1


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Answer a screening questionnaire in the terminal.")
    ap.add_argument("type", choices=list(INSTRUMENT_TYPES))
    ap.add_argument("--submit", action="store_true", help="send the completed answers to the backend")
    ap.add_argument("--user", help="user id for --submit")
    ap.add_argument("--api", help="backend base URL (default: config.json or GUIDANCE_API_URL)")
    ap.add_argument("-v", "--verbose", action="store_true")
    a = ap.parse_args(argv)
    logging.basicConfig(level=logging.INFO if a.verbose else logging.WARNING)
    if a.submit and not a.user:
        ap.error("--submit needs --user")

    sess = QuestionnaireSession(a.type)
    inst = get_instrument(a.type)
    print(f"{inst.title}. Ctrl+C to exit.")
    try:
        run_interactive(sess)
    except (KeyboardInterrupt, EOFError):
        print("\nAborted.")
        return 130

    score, sev = sess.preview()
    print(f"\nDone. Score {score} -> {display_label(sev)}")
    if needs_professional_help(a.type, sev):
        print("Consider reaching out to the guidance office for support.")
    if a.submit:
        base_url, timeout = api_settings(a.api)
        return asyncio.run(_submit(sess, a.user, base_url, timeout))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
