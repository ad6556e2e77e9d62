from __future__ import annotations
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from dataclasses import asdict
from datetime import datetime, timezone
import logging, uuid, typing as t

from guidance_core.branching import QuestionnaireSession
from guidance_core.config import ALLOWED_ORIGINS, API_BASE_URL
from guidance_core.cooldown import CooldownGate
from guidance_core.drilldown import DrilldownAnalyticsEngine
from guidance_core.http_client import GuidanceApiClient
from guidance_core.instruments import Instrument, get_instrument, load_instruments
from guidance_core.scoring import compute_score, score_range
from guidance_core.severity import classify, display_label, needs_professional_help, severity_levels
from guidance_core.submission import submit_responses
from guidance_core.types import MAX_CHART_YEAR, MIN_CHART_YEAR, DrilldownLevel

log = logging.getLogger(__name__)

# REST backend; tests swap in a fake implementing the same protocols
BACKEND: t.Any = GuidanceApiClient()

SESS: dict[str, QuestionnaireSession] = {}
SESSION_INFO: dict[str, dict[str, t.Any]] = {}
GATES: dict[str, CooldownGate] = {}
INSIGHTS: dict[str, DrilldownAnalyticsEngine] = {}

app = FastAPI(title="Guidance Assessment API")


@app.get("/")
def root():
    return {"status": "ok", "service": "guidance-assessment-api"}


app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

# ---- Schemas ----
class ScoreReq(BaseModel):
    type: str
    responses: dict[int, int] = {}

class StartReq(BaseModel):
    type: str
    user_id: str | None = None

class AnswerReq(BaseModel):
    index: int
    value: int

class SubmitReq(BaseModel):
    user_id: str | None = None

class InsightsStartReq(BaseModel):
    type: str
    year: int | None = Field(None, ge=MIN_CHART_YEAR, le=MAX_CHART_YEAR)
    month: int | None = Field(None, ge=1, le=12)

class DrillReq(BaseModel):
    label: str

class FiltersReq(BaseModel):
    year: int | None = Field(None, ge=MIN_CHART_YEAR, le=MAX_CHART_YEAR)
    month: int | None = Field(None, ge=1, le=12)

# ---- Helpers ----
def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _instrument_or_404(key: str) -> Instrument:
    try:
        return get_instrument(key)
    except KeyError:
        raise HTTPException(404, f"unknown instrument: {key}")


def _session_or_404(sid: str) -> QuestionnaireSession:
    sess = SESS.get(sid)
    if not sess:
        raise HTTPException(404, "session not found")
    return sess


def _engine_or_404(sid: str) -> DrilldownAnalyticsEngine:
    engine = INSIGHTS.get(sid)
    if not engine:
        raise HTTPException(404, "insights session not found")
    return engine


def _serialize_instrument(inst: Instrument) -> dict[str, t.Any]:
    lo, hi = score_range(inst.key)
    return {
        "type": inst.key,
        "title": inst.title,
        "itemCount": inst.item_count,
        "scoreRange": [lo, hi],
        "severityLevels": list(severity_levels(inst.key)),
        "sections": [{"key": k, "title": title} for k, title in inst.sections],
        "questions": [
            {
                "index": q.index,
                "text": q.text,
                "section": q.section,
                "choices": [{"value": v, "label": label} for v, label in q.choices],
            }
            for q in inst.questions()
        ],
    }


def _serialize_score(instrument: str, score: int, severity: str) -> dict[str, t.Any]:
    return {
        "score": score,
        "severity": severity,
        "severityLabel": display_label(severity),
        "needsProfessionalHelp": needs_professional_help(instrument, severity),
    }


def _serialize_session(sid: str, sess: QuestionnaireSession, cleared: tuple[int, ...] = ()) -> dict[str, t.Any]:
    score, severity = sess.preview()
    info = SESSION_INFO.get(sid, {})
    return {
        "session_id": sid,
        "type": sess.instrument,
        "user_id": info.get("user_id"),
        "responses": sess.responses,
        "visible": sess.visible(),
        "missing": sess.missing(),
        "cleared": list(cleared),
        "complete": sess.is_complete(),
        "next": sess.next_unanswered(),
        "preview": _serialize_score(sess.instrument, score, severity),
        "cooldown": info.get("cooldown"),
    }


def _serialize_level(level: DrilldownLevel | None) -> dict[str, t.Any] | None:
    if level is None:
        return None
    return {
        "kind": level.kind,
        "title": level.title,
        "parentValue": level.parent_value,
        "filter": level.accumulated_filter.to_wire(),
        "rows": [asdict(r) for r in level.rows],
    }


def _serialize_insights(sid: str, engine: DrilldownAnalyticsEngine) -> dict[str, t.Any]:
    state = engine.insights
    return {
        "session_id": sid,
        "type": state.type if state else None,
        "currentLevel": _serialize_level(engine.current_level),
        "depth": len(engine.navigation_stack),
        "filters": {"year": state.filters.year, "month": state.filters.month} if state else {},
        "availableYears": list(state.available_years) if state else [],
        "availableMonths": [{"value": v, "label": name} for v, name in state.available_months] if state else [],
        "students": [asdict(s) for s in engine.student_list],
        "loading": engine.loading,
        "error": engine.error,
        "errorKind": engine.error_kind,
        "canDrillDown": engine.can_drill_down,
        "canNavigateBack": engine.can_navigate_back,
        "isStudentView": engine.is_student_view,
    }


def _raise_engine_error(engine: DrilldownAnalyticsEngine, fallback: str) -> t.NoReturn:
    if engine.error_kind:
        raise HTTPException(502, {"message": engine.error, "kind": engine.error_kind})
    raise HTTPException(409, fallback)

# ---- Health ----
@app.get("/health")
def health():
    return {
        "backend": API_BASE_URL,
        "questionnaire_sessions": len(SESS),
        "insights_sessions": len(INSIGHTS),
    }

# ---- Instruments ----
@app.get("/instruments")
def list_instruments():
    return {
        "instruments": [
            {"type": inst.key, "title": inst.title, "itemCount": inst.item_count}
            for inst in load_instruments().values()
        ]
    }


@app.get("/instruments/{type}")
def instrument_detail(type: str):
    return _serialize_instrument(_instrument_or_404(type))


@app.post("/score")
def score(req: ScoreReq):
    inst = _instrument_or_404(req.type)
    total = compute_score(inst.key, req.responses)
    return _serialize_score(inst.key, total, classify(inst.key, total))

# ---- Questionnaire sessions ----
@app.post("/questionnaire/start")
async def start_questionnaire(req: StartReq):
    inst = _instrument_or_404(req.type)
    sid = str(uuid.uuid4())
    SESS[sid] = QuestionnaireSession(inst.key)
    SESSION_INFO[sid] = {"user_id": req.user_id, "started_at": _now_iso(), "cooldown": None}
    if req.user_id:
        gate = CooldownGate(BACKEND)
        GATES[sid] = gate
        checks = await gate.check_all(req.user_id, (inst.key,))
        check = checks[inst.key]
        if check.ok:
            SESSION_INFO[sid]["cooldown"] = check.status.to_dict()
        else:
            log.warning("cooldown lookup failed at start sid=%s: %s", sid, check.error.message)
    log.info("questionnaire started sid=%s type=%s", sid, inst.key)
    return _serialize_session(sid, SESS[sid])


@app.post("/questionnaire/{sid}/answer")
def answer(sid: str, req: AnswerReq):
    sess = _session_or_404(sid)
    try:
        cleared = sess.answer(req.index, req.value)
    except (IndexError, ValueError) as e:
        raise HTTPException(422, str(e))
    return _serialize_session(sid, sess, cleared)


@app.delete("/questionnaire/{sid}/answer/{index}")
def retract(sid: str, index: int):
    sess = _session_or_404(sid)
    cleared = sess.retract(index)
    return _serialize_session(sid, sess, cleared)


@app.get("/questionnaire/{sid}")
def get_questionnaire(sid: str):
    return _serialize_session(sid, _session_or_404(sid))


@app.post("/questionnaire/{sid}/submit")
async def submit(sid: str, req: SubmitReq | None = None):
    sess = _session_or_404(sid)
    info = SESSION_INFO.get(sid, {})
    user_id = (req.user_id if req else None) or info.get("user_id")
    if not user_id:
        raise HTTPException(422, "user_id is required to submit")

    outcome = await submit_responses(BACKEND, sess.instrument, user_id, sess.responses, GATES.get(sid))
    if outcome.ok:
        res = outcome.result
        SESS.pop(sid, None)
        SESSION_INFO.pop(sid, None)
        GATES.pop(sid, None)
        return {
            "ok": True,
            "assessment_id": res.assessment_id,
            **_serialize_score(sess.instrument, res.score, res.severity),
            "cooldown": res.cooldown.to_dict() if res.cooldown else None,
        }
    if outcome.error_kind == "validation":
        raise HTTPException(422, {"message": outcome.message, "missing": list(outcome.missing), "stray": list(outcome.stray)})
    if outcome.error_kind == "cooldown":
        raise HTTPException(429, {
            "message": outcome.message,
            "cooldown": outcome.cooldown.to_dict() if outcome.cooldown else None,
        })
    raise HTTPException(502, {"message": outcome.message, "kind": outcome.error_kind})

# ---- Cooldowns ----
@app.get("/users/{user_id}/cooldowns")
async def user_cooldowns(user_id: str):
    checks = await CooldownGate(BACKEND).check_all(user_id)
    return {
        "user_id": user_id,
        "cooldowns": {
            inst: {
                "ok": check.ok,
                "status": check.status.to_dict() if check.status else None,
                "error": check.error.message if check.error else None,
                "errorKind": check.error.kind if check.error else None,
            }
            for inst, check in checks.items()
        },
    }

# ---- Insights (one engine per view) ----
@app.post("/insights/start")
async def start_insights(req: InsightsStartReq):
    inst = _instrument_or_404(req.type)
    engine = DrilldownAnalyticsEngine(BACKEND, BACKEND)
    state = await engine.fetch_insights(inst.key, {"year": req.year, "month": req.month})
    if state is None:
        engine.dispose()
        _raise_engine_error(engine, "insights unavailable")
    sid = str(uuid.uuid4())
    INSIGHTS[sid] = engine
    return _serialize_insights(sid, engine)


@app.post("/insights/{sid}/drill")
async def drill(sid: str, req: DrillReq):
    engine = _engine_or_404(sid)
    if not engine.can_drill_down:
        raise HTTPException(409, "no further drill-down from the student list")
    if not await engine.drill_down(req.label):
        _raise_engine_error(engine, "drill-down was not applied")
    return _serialize_insights(sid, engine)


@app.post("/insights/{sid}/back")
def back(sid: str):
    engine = _engine_or_404(sid)
    if not engine.navigate_back():
        raise HTTPException(409, "already at the overview level")
    return _serialize_insights(sid, engine)


@app.post("/insights/{sid}/filters")
async def update_filters(sid: str, req: FiltersReq):
    engine = _engine_or_404(sid)
    if not await engine.update_filters(req.model_dump(exclude_unset=True)):
        _raise_engine_error(engine, "filters were not applied")
    return _serialize_insights(sid, engine)


@app.get("/insights/{sid}")
def get_insights(sid: str):
    return _serialize_insights(sid, _engine_or_404(sid))


@app.delete("/insights/{sid}")
def close_insights(sid: str):
    engine = INSIGHTS.pop(sid, None)
    if not engine:
        raise HTTPException(404, "insights session not found")
    engine.dispose()
    return {"ok": True}
