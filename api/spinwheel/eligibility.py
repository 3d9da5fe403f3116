import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import ledger
from .config import Settings, settings as default_settings
from .errors import (
    ALREADY_SPUN, NO_ACTIVE_CAMPAIGN, NOT_WHITELISTED, RATE_LIMITED, LedgerUnavailable,
)
from .models import Campaign
from .schedule import ScheduleStatus, is_open
from .utils import Identity

logger = logging.getLogger(__name__)

MESSAGES = {
    None: "Ready to spin!",
    NO_ACTIVE_CAMPAIGN: "No active campaign",
    NOT_WHITELISTED: "This phone number is not eligible for this promotion.",
    ALREADY_SPUN: "You have already used your spin for this campaign!",
    RATE_LIMITED: "Too many attempts. Please try again later.",
}


class EligibilityResult(BaseModel):
    eligible: bool
    reason: Optional[str] = None
    # set when the campaign exists but its daily window is closed
    next_open: Optional[str] = None

    @property
    def message(self) -> str:
        if self.reason == NO_ACTIVE_CAMPAIGN and self.next_open:
            return f"The wheel opens at {self.next_open}."
        return MESSAGES[self.reason]


def resolve_live_campaign(
    db: Session,
    campaign_id: int | None,
    now: datetime,
    schedule: Callable[..., ScheduleStatus] = is_open,
) -> tuple[Campaign | None, ScheduleStatus]:
    """Campaign if it is active, unexpired and inside its schedule window.

    With no ``campaign_id`` the oldest live campaign is used. A closed window
    returns ``(None, status)`` so callers can tell the user when it reopens.
    """
    if campaign_id is None:
        campaign = ledger.find_live_campaign(db, now)
    else:
        campaign = ledger.get_campaign(db, campaign_id)
    if campaign is None or not campaign.is_live(now):
        return None, ScheduleStatus(open=False)

    status = schedule(campaign.schedule_start, campaign.schedule_end, campaign.timezone, now)
    if not status.open:
        return None, status
    return campaign, status


def check_eligibility(
    db: Session,
    campaign_id: int | None,
    phone: str | None = None,
    email: str | None = None,
    source_address: str = "unknown",
    now: datetime | None = None,
    schedule: Callable[..., ScheduleStatus] = is_open,
    settings: Settings = default_settings,
) -> EligibilityResult:
    """Fast, read-only pre-check; the allocator re-verifies inside its transaction.

    Checks run in order and the first failure is reported: live campaign,
    whitelist (only when the campaign requires it and a phone was given),
    no earlier spin by this phone or email, and the per-source-address rate
    limit counted across every campaign.
    """
    identity = Identity.from_raw(phone, email)
    now = now or datetime.now(timezone.utc)

    try:
        campaign, status = resolve_live_campaign(db, campaign_id, now, schedule)
        if campaign is None:
            return EligibilityResult(
                eligible=False, reason=NO_ACTIVE_CAMPAIGN, next_open=status.next_open_display
            )

        if campaign.require_whitelist and identity.phone:
            if not ledger.is_whitelisted(db, campaign.id, identity.phone):
                return EligibilityResult(eligible=False, reason=NOT_WHITELISTED)

        if ledger.find_spin(db, campaign.id, identity) is not None:
            return EligibilityResult(eligible=False, reason=ALREADY_SPUN)

        since = now - timedelta(minutes=settings.rate_limit_window_minutes)
        recent = ledger.count_recent_spins(db, source_address, since)
        if recent >= settings.rate_limit_max_spins:
            logger.info("Rate limited %s: %d spins in the last %d min",
                        source_address, recent, settings.rate_limit_window_minutes)
            return EligibilityResult(eligible=False, reason=RATE_LIMITED)
    except SQLAlchemyError as e:
        logger.error("Eligibility check failed for campaign %s", campaign_id, exc_info=True)
        raise LedgerUnavailable(str(getattr(e, "orig", None) or e)) from e

    return EligibilityResult(eligible=True)
