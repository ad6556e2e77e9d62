from __future__ import annotations
import os, json, pathlib


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


API_BASE_URL: str = "http://localhost:5000/api"
HTTP_TIMEOUT_SEC: float = 10.0

COOLDOWN_DEFAULT_DAYS: dict[str, int] = {
    "anxiety": 30,
    "depression": 30,
    "stress": 30,
}
# interval keyed by the severity of the last submission
COOLDOWN_BY_SEVERITY: dict[str, dict[str, int]] = {
    "anxiety": {"minimal": 30, "mild": 25, "moderate": 14, "severe": 2},
    "depression": {
        "minimal": 30,
        "mild": 25,
        "moderate": 14,
        "moderately_severe": 7,
        "severe": 2,
    },
    "stress": {"low": 30, "moderate": 14, "high": 7},
}
COOLDOWN_EXEMPT: tuple[str, ...] = ("suicide", "checklist")
COOLDOWN_BATCH: tuple[str, ...] = ("anxiety", "depression", "stress")

DEFAULT_YEARS_BACK: int = 4

ALLOWED_ORIGINS: list[str] = [
    "http://localhost:3000",
    "http://localhost:5173",
]

DEBUG_TRACE: bool = False
TRACE_FIELDS: tuple[str, ...] = (
    "seq",
    "op",
    "kind_before",
    "kind_after",
    "label",
    "depth",
    "filter",
)

# // env overrides for staging/ops
API_BASE_URL = os.getenv("GUIDANCE_API_URL", API_BASE_URL)
HTTP_TIMEOUT_SEC = _env_float("HTTP_TIMEOUT_SEC", HTTP_TIMEOUT_SEC)
for _key in COOLDOWN_BATCH:
    COOLDOWN_DEFAULT_DAYS[_key] = _env_int(
        f"COOLDOWN_DAYS_{_key.upper()}", COOLDOWN_DEFAULT_DAYS[_key]
    )
DEBUG_TRACE = _env_bool("DEBUG_TRACE", DEBUG_TRACE)
ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS", ALLOWED_ORIGINS)


def load_config() -> dict:
    cfg = {}
    p = pathlib.Path("config.json")
    if p.exists():
        try: cfg = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError): cfg = {}
    e = os.environ
    cfg.setdefault("GUIDANCE_API_URL", API_BASE_URL)
    cfg.setdefault("HTTP_TIMEOUT_SEC", HTTP_TIMEOUT_SEC)
    if e.get("GUIDANCE_API_URL"): cfg["GUIDANCE_API_URL"] = e.get("GUIDANCE_API_URL")
    if e.get("HTTP_TIMEOUT_SEC"): cfg["HTTP_TIMEOUT_SEC"] = _env_float("HTTP_TIMEOUT_SEC", HTTP_TIMEOUT_SEC)
    return cfg
