"""Spin allocation: one prize and one coupon per identity, all or nothing.

Each attempt runs in its own transaction. The authoritative "already spun"
check, the prize draw against freshly read win counts, the coupon insert and
the win counter increment either all commit or none do. Two concurrent
writers are told apart by the ledger, never by process state:

* a second spin for the same identity trips the ``(campaign_id, phone)`` /
  ``(campaign_id, email)`` unique constraints (``IntegrityError``);
* a win on a capped prize is a conditional ``UPDATE ... WHERE win_count <
  max_wins``; matching no row (``PrizeCapReached``) means the last unit went
  to someone else, so a cap read as "one left" cannot be spent twice.

Both are rolled back and the whole attempt is replayed, which re-reads the
ledger and then reports ``AlreadySpun`` or draws again with the new counts.

Wins on uncapped prizes and fallback wins are plain atomic increments and
never conflict.
"""
import logging
import random
import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import ledger
from .config import Settings, settings as default_settings
from .eligibility import resolve_live_campaign
from .errors import (
    NO_ACTIVE_CAMPAIGN, NOT_WHITELISTED, AllocationConflict, AllocationTimeout, AlreadySpun,
    CodeGenerationExhausted, LedgerUnavailable, NoPrizesConfigured, NotEligible, PrizeCapReached,
)
from .models import Coupon, Spin, as_utc
from .schedule import ScheduleStatus, is_open
from .schemas import AllocationResult, CouponOut, PrizePublic
from .utils import Identity, generate_code, select_prize

logger = logging.getLogger(__name__)

# conflicts that a fresh attempt can resolve
RETRYABLE = (IntegrityError, PrizeCapReached, CodeGenerationExhausted)


class SpinAllocator:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        rng: random.Random | None = None,
        settings: Settings = default_settings,
        schedule: Callable[..., ScheduleStatus] = is_open,
    ):
        self.session_factory = session_factory
        # SystemRandom unless a seeded source is injected
        self.rng = rng or random.SystemRandom()
        self.settings = settings
        self.schedule = schedule

    def allocate(
        self,
        campaign_id: int | None,
        phone: str | None = None,
        email: str | None = None,
        source_address: str = "unknown",
        user_agent: str = "",
        now: datetime | None = None,
        timeout: float | None = None,
    ) -> AllocationResult:
        """Spin once for ``phone``/``email`` and issue the coupon.

        Raises ``MissingIdentity``/``InvalidIdentity`` before touching the
        ledger, ``NotEligible`` (``AlreadySpun`` included) and
        ``NoPrizesConfigured`` as terminal outcomes, ``AllocationConflict``
        (or ``AllocationTimeout``) when conflicts outlast the retry budget,
        ``CodeGenerationExhausted`` when every attempt ran out of codes, and
        ``LedgerUnavailable`` on infrastructure errors, which are not retried.
        """
        identity = Identity.from_raw(phone, email)
        if timeout is None:
            timeout = self.settings.allocation_timeout_seconds
        deadline = time.monotonic() + timeout
        max_attempts = max(1, self.settings.allocation_max_attempts)

        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            if attempt > 1 and time.monotonic() >= deadline:
                raise AllocationTimeout(
                    f"allocation timed out after {attempt - 1} attempt(s)"
                ) from last_error
            try:
                return self._attempt(campaign_id, identity, source_address, user_agent, now)
            except RETRYABLE as e:
                last_error = e
                logger.warning(
                    "Allocation conflict (%s) for %s in campaign %s, attempt %d/%d",
                    type(e).__name__, identity, campaign_id, attempt, max_attempts,
                )
            except SQLAlchemyError as e:
                logger.error("Ledger failure during allocation for campaign %s", campaign_id, exc_info=True)
                raise LedgerUnavailable(str(getattr(e, "orig", None) or e)) from e

        if isinstance(last_error, CodeGenerationExhausted):
            raise last_error
        raise AllocationConflict(
            f"gave up after {max_attempts} conflicting attempts"
        ) from last_error

    def _attempt(
        self,
        campaign_id: int | None,
        identity: Identity,
        source_address: str,
        user_agent: str,
        now: datetime | None,
    ) -> AllocationResult:
        now = now or datetime.now(timezone.utc)
        with self.session_factory() as db, db.begin():
            campaign, _ = resolve_live_campaign(db, campaign_id, now, self.schedule)
            if campaign is None:
                raise NotEligible(NO_ACTIVE_CAMPAIGN)

            if campaign.require_whitelist and identity.phone:
                if not ledger.is_whitelisted(db, campaign.id, identity.phone):
                    raise NotEligible(NOT_WHITELISTED)

            if ledger.find_spin(db, campaign.id, identity) is not None:
                raise AlreadySpun()

            prizes = ledger.active_prizes(db, campaign.id)
            if not prizes:
                raise NoPrizesConfigured(f"campaign {campaign.id} has no active prizes")

            selection = select_prize(prizes, self.rng)
            prize = selection.prize
            if selection.fallback:
                logger.warning(
                    "Campaign %s has no prize capacity left, awarding fallback prize %s (win_count=%s, max_wins=%s)",
                    campaign.id, prize.id, prize.win_count, prize.max_wins,
                )

            code, shared = generate_code(
                prize,
                lambda c: ledger.code_exists(db, c),
                self.rng,
                self.settings.coupon_code_prefix,
                self.settings.code_generation_attempts,
            )

            spin = Spin(
                campaign_id=campaign.id,
                prize_id=prize.id,
                phone=identity.phone,
                email=identity.email,
                coupon_code=code,
                ip_address=source_address,
                user_agent=user_agent,
                created_at=now,
            )
            db.add(spin)
            db.flush()  # identity unique constraints fire here

            coupon = Coupon(
                code=code,
                shared=shared,
                prize_id=prize.id,
                spin_id=spin.id,
                phone=identity.phone,
                email=identity.email,
                expires_at=now + timedelta(days=self.settings.coupon_expiry_days),
                created_at=now,
            )
            db.add(coupon)
            db.flush()

            if not ledger.increment_win_count(db, prize.id, within_cap=not selection.fallback):
                raise PrizeCapReached(f"prize {prize.id} reached max_wins={prize.max_wins}")

            allocated_in = campaign.id
            result = AllocationResult(
                prize=PrizePublic.model_validate(prize),
                prize_index=[p.id for p in prizes].index(prize.id),
                coupon=CouponOut(code=coupon.code, expires_at=as_utc(coupon.expires_at)),
                redirect_url=campaign.redirect_url,
                fallback=selection.fallback,
            )

        logger.info(
            "Spin allocated: campaign=%s prize=%s (%s) code=%s %s",
            allocated_in, result.prize.id, result.prize.name,
            result.coupon.code, identity,
        )
        return result
