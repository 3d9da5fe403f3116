"""Create tables and the demo "gateway-launch" campaign.

    python -m spinwheel.seed
"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from . import ledger
from .config import settings
from .db import Base, engine, SessionLocal
from .log import setup_logging
from .models import Campaign, Prize

logger = logging.getLogger(__name__)

CAMPAIGN_SLUG = "gateway-launch"

PRIZES = [
    {"name": "10% Off", "weight": 40, "color": "#FFD700", "coupon_type": "percent_off", "coupon_value": 10},
    {"name": "$5 Off", "weight": 25, "color": "#FF6B6B", "coupon_type": "fixed_amount", "coupon_value": 5},
    {"name": "15% Off", "weight": 15, "color": "#4ECDC4", "coupon_type": "percent_off", "coupon_value": 15},
    {"name": "Free Shipping", "weight": 10, "color": "#9B59B6", "coupon_type": "free_shipping", "coupon_value": None},
    {"name": "$20 Off", "weight": 7, "color": "#3498DB", "coupon_type": "fixed_amount", "coupon_value": 20},
    {"name": "25% Off!", "weight": 3, "color": "#E74C3C", "coupon_type": "percent_off", "coupon_value": 25, "max_wins": 50},
]


def seed(db: Session) -> Campaign:
    campaign = ledger.get_campaign_by_slug(db, CAMPAIGN_SLUG)
    if campaign is None:
        campaign = Campaign(
            slug=CAMPAIGN_SLUG,
            name="Gateway Market Launch",
            active=True,
            redirect_url="https://gateway.market/dashboard",
            expiration_date=datetime.now(timezone.utc) + timedelta(days=90),
            timezone=settings.default_timezone,
        )
        db.add(campaign)
        db.flush()
        logger.info("Created campaign: %s", campaign.name)

    existing = {p.name: p for p in campaign.prizes}
    for data in PRIZES:
        prize = existing.get(data["name"])
        if prize is None:
            campaign.prizes.append(Prize(**data))
            logger.info("  Created prize: %s (weight %s)", data["name"], data["weight"])
        else:
            for key, value in data.items():
                setattr(prize, key, value)
    db.commit()
    return campaign


def main():
    setup_logging(settings.log_level)
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        seed(db)
    logger.info("Seeding complete")


if __name__ == "__main__":
    main()
