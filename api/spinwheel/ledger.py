"""Query helpers over the spin ledger.

All reads and writes the engine performs against campaigns, prizes, spins,
coupons and whitelist entries go through here. None of these helpers commit;
the caller owns the unit of work.
"""
import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .models import AllowedPhone, Campaign, Coupon, Prize, Spin
from .utils import Identity, normalize_phone
from .errors import InvalidIdentity

logger = logging.getLogger(__name__)


def get_campaign(db: Session, campaign_id: int) -> Campaign | None:
    return db.get(Campaign, campaign_id)


def get_campaign_by_slug(db: Session, slug: str) -> Campaign | None:
    return db.query(Campaign).filter(Campaign.slug == slug).first()


def find_live_campaign(db: Session, now: datetime) -> Campaign | None:
    """Oldest active, unexpired campaign."""
    return (
        db.query(Campaign)
          .filter(
              Campaign.active == True,
              or_(Campaign.expiration_date.is_(None), Campaign.expiration_date > now),
          )
          .order_by(Campaign.id.asc())
          .first()
    )


def active_prizes(db: Session, campaign_id: int) -> list[Prize]:
    return (
        db.query(Prize)
          .filter(Prize.campaign_id == campaign_id, Prize.active == True)
          .order_by(Prize.id.asc())
          .all()
    )


def find_spin(db: Session, campaign_id: int, identity: Identity) -> Spin | None:
    """Existing spin in this campaign matching the phone OR the email."""
    clauses = []
    if identity.phone:
        clauses.append(Spin.phone == identity.phone)
    if identity.email:
        clauses.append(Spin.email == identity.email)
    if not clauses:
        return None
    return (
        db.query(Spin)
          .filter(Spin.campaign_id == campaign_id, or_(*clauses))
          .first()
    )


def count_recent_spins(db: Session, ip_address: str, since: datetime) -> int:
    """Spins from one source address across every campaign since ``since``."""
    return (
        db.query(func.count(Spin.id))
          .filter(Spin.ip_address == ip_address, Spin.created_at > since)
          .scalar()
    ) or 0


def is_whitelisted(db: Session, campaign_id: int, phone: str) -> bool:
    return (
        db.query(AllowedPhone.id)
          .filter(AllowedPhone.campaign_id == campaign_id, AllowedPhone.phone == phone)
          .first()
    ) is not None


def code_exists(db: Session, code: str) -> bool:
    """True if ``code`` was issued before or is configured as a fixed prize code."""
    if db.query(Coupon.id).filter(Coupon.code == code).first() is not None:
        return True
    return db.query(Prize.id).filter(Prize.coupon_code == code).first() is not None


def increment_win_count(db: Session, prize_id: int, within_cap: bool = True) -> bool:
    """Atomically add one win to a prize.

    With ``within_cap`` the UPDATE only matches while ``win_count < max_wins``
    (uncapped prizes always match), so a cap is enforced by the database row
    rather than by the count read before the draw. Returns False when no row
    was updated.
    """
    q = db.query(Prize).filter(Prize.id == prize_id)
    if within_cap:
        q = q.filter(or_(Prize.max_wins.is_(None), Prize.win_count < Prize.max_wins))
    updated = q.update({Prize.win_count: Prize.win_count + 1}, synchronize_session=False)
    return updated == 1


def add_allowed_phones(
    db: Session,
    campaign_id: int,
    entries: Iterable[str | tuple[str, str | None]],
    source: str = "manual",
) -> tuple[int, int]:
    """Normalize and insert whitelist entries, skipping invalid and duplicate phones.

    Returns ``(added, skipped)``.
    """
    existing = {
        p for (p,) in db.query(AllowedPhone.phone).filter(AllowedPhone.campaign_id == campaign_id)
    }
    added = skipped = 0
    for entry in entries:
        raw, name = (entry, None) if isinstance(entry, str) else entry
        try:
            phone = normalize_phone(raw)
        except InvalidIdentity:
            skipped += 1
            continue
        if phone in existing:
            skipped += 1
            continue
        db.add(AllowedPhone(campaign_id=campaign_id, phone=phone, name=name, source=source))
        existing.add(phone)
        added += 1
    db.flush()
    logger.info("Whitelist for campaign %s: added %d, skipped %d (%s)", campaign_id, added, skipped, source)
    return added, skipped


def campaign_stats(db: Session, campaign_id: int) -> dict:
    """Raw counters for one campaign."""
    total_spins = db.query(func.count(Spin.id)).filter(Spin.campaign_id == campaign_id).scalar() or 0

    unique_phones = (
        db.query(func.count(func.distinct(Spin.phone)))
          .filter(Spin.campaign_id == campaign_id, Spin.phone.isnot(None))
          .scalar()
    ) or 0
    unique_emails = (
        db.query(func.count(func.distinct(Spin.email)))
          .filter(Spin.campaign_id == campaign_id, Spin.email.isnot(None))
          .scalar()
    ) or 0

    coupons_redeemed = (
        db.query(func.count(Coupon.id))
          .join(Prize, Coupon.prize_id == Prize.id)
          .filter(Prize.campaign_id == campaign_id, Coupon.used == True)
          .scalar()
    ) or 0

    prizes = db.query(Prize).filter(Prize.campaign_id == campaign_id).order_by(Prize.id.asc()).all()

    return {
        "total_spins": total_spins,
        "unique_users": max(unique_phones, unique_emails),
        "coupons_redeemed": coupons_redeemed,
        "prizes": [
            {
                "prize_id": p.id,
                "name": p.name,
                "win_count": p.win_count,
                "max_wins": p.max_wins,
                "active": p.active,
            }
            for p in prizes
        ],
    }
