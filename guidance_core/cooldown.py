# guidance_core/cooldown.py
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from .config import COOLDOWN_BATCH, COOLDOWN_BY_SEVERITY, COOLDOWN_DEFAULT_DAYS, COOLDOWN_EXEMPT
from .errors import FetchError, GuidanceError
from .protocols import CooldownQueryAPI
from .types import CooldownStatus

log = logging.getLogger(__name__)

_DAY_SECONDS = 86400.0


@dataclass(frozen=True)
class CooldownPolicy:
    instrument: str
    interval_days: int
    severity_intervals: Mapping[str, int] = field(default_factory=dict)

    def interval_for(self, last_severity: Optional[str]) -> int:
        if last_severity and last_severity in self.severity_intervals:
            return int(self.severity_intervals[last_severity])
        return int(self.interval_days)


def default_policies() -> Dict[str, CooldownPolicy]:
    return {
        key: CooldownPolicy(
            instrument=key,
            interval_days=days,
            severity_intervals=dict(COOLDOWN_BY_SEVERITY.get(key, {})),
        )
        for key, days in COOLDOWN_DEFAULT_DAYS.items()
        if key not in COOLDOWN_EXEMPT
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_cooldown(
    instrument: str,
    last_submission: Optional[datetime],
    *,
    now: datetime,
    policy: Optional[CooldownPolicy],
    last_severity: Optional[str] = None,
    manually_deactivated: bool = False,
) -> CooldownStatus:
    """
    Cooldown status from the last submission time.

    ``is_active`` holds while less than the interval has elapsed;
    ``days_remaining`` is the ceiling of the remaining days, never negative.
    """
    if instrument in COOLDOWN_EXEMPT or policy is None:
        return CooldownStatus.inactive()
    days = policy.interval_for(last_severity)
    if last_submission is None:
        return CooldownStatus(is_active=False, interval_days=days)

    interval = timedelta(days=days)
    elapsed = now - last_submission
    remaining = (interval - elapsed).total_seconds() / _DAY_SECONDS
    active = elapsed < interval and not manually_deactivated
    return CooldownStatus(
        is_active=active,
        last_submission=last_submission,
        next_available_date=last_submission + interval,
        days_remaining=max(0, math.ceil(remaining)) if active else 0,
        interval_days=days,
        last_severity=last_severity,
        manually_deactivated=manually_deactivated,
    )


@dataclass(frozen=True)
class CooldownCheck:
    instrument: str
    status: Optional[CooldownStatus] = None
    error: Optional[GuidanceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CooldownGate:
    """Retake eligibility per user and instrument; one gate per owning view."""

    def __init__(
        self,
        api: CooldownQueryAPI,
        *,
        policies: Optional[Dict[str, CooldownPolicy]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.api = api
        self.policies = policies if policies is not None else default_policies()
        self._clock = clock or _utcnow
        self._cache: Dict[Tuple[str, str], CooldownStatus] = {}

    async def check_cooldown(self, user_id: str, instrument: str) -> CooldownStatus:
        """Raises FetchError when the lookup fails."""

        policy = self.policies.get(instrument)
        if instrument in COOLDOWN_EXEMPT or policy is None:
            return CooldownStatus.inactive()
        try:
            record = await self.api.get_cooldown(user_id, instrument)
        except FetchError:
            raise
        except Exception as exc:
            raise FetchError(f"Could not load the {instrument} cooldown status.") from exc

        status = compute_cooldown(
            instrument,
            record.last_submission,
            now=self._clock(),
            policy=policy,
            last_severity=record.last_severity,
            manually_deactivated=record.manually_deactivated,
        )
        self._cache[(user_id, instrument)] = status
        return status

    async def check_all(
        self,
        user_id: str,
        instruments: Sequence[str] = COOLDOWN_BATCH,
    ) -> Dict[str, CooldownCheck]:
        """Concurrent lookups; each branch settles to a status or its own error."""

        results = await asyncio.gather(
            *(self.check_cooldown(user_id, inst) for inst in instruments),
            return_exceptions=True,
        )
        out: Dict[str, CooldownCheck] = {}
        for inst, res in zip(instruments, results):
            if isinstance(res, GuidanceError):
                log.warning("cooldown check failed instrument=%s: %s", inst, res.message)
                out[inst] = CooldownCheck(inst, error=res)
            elif isinstance(res, BaseException):
                raise res
            else:
                out[inst] = CooldownCheck(inst, status=res)
        return out

    def apply_authoritative(self, user_id: str, instrument: str, status: CooldownStatus) -> None:
        """Store a server-issued status, replacing whatever was cached."""

        log.info(
            "authoritative cooldown user=%s instrument=%s active=%s days=%s",
            user_id, instrument, status.is_active, status.days_remaining,
        )
        self._cache[(user_id, instrument)] = status

    def cached(self, user_id: str, instrument: str) -> Optional[CooldownStatus]:
        status = self._cache.get((user_id, instrument))
        if status is None:
            return None
        return self._refresh(status)

    def can_submit(self, user_id: str, instrument: str) -> bool:
        if instrument in COOLDOWN_EXEMPT:
            return True
        status = self.cached(user_id, instrument)
        return status is None or not status.is_active

    def _refresh(self, status: CooldownStatus) -> CooldownStatus:
        if not status.is_active or status.next_available_date is None:
            return status
        remaining = (status.next_available_date - self._clock()).total_seconds() / _DAY_SECONDS
        if remaining <= 0:
            return replace(status, is_active=False, days_remaining=0)
        return replace(status, days_remaining=math.ceil(remaining))
