import os
import random
import tempfile

# keep the app-level engine away from the working directory
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="spinwheel-"), "app.db").replace("\\", "/"),
)

import pytest
from sqlalchemy.orm import sessionmaker

from spinwheel.config import settings
from spinwheel.db import Base, make_engine
from spinwheel.models import Campaign, Prize

GATEWAY_PRIZES = [
    {"name": "10% Off", "weight": 40, "color": "#FFD700", "coupon_type": "percent_off", "coupon_value": 10},
    {"name": "$5 Off", "weight": 25, "color": "#FF6B6B", "coupon_type": "fixed_amount", "coupon_value": 5},
    {"name": "15% Off", "weight": 15, "color": "#4ECDC4", "coupon_type": "percent_off", "coupon_value": 15},
    {"name": "Free Shipping", "weight": 10, "color": "#9B59B6", "coupon_type": "free_shipping"},
    {"name": "$20 Off", "weight": 7, "color": "#3498DB", "coupon_type": "fixed_amount", "coupon_value": 20},
    {"name": "25% Off!", "weight": 3, "color": "#E74C3C", "coupon_type": "percent_off", "coupon_value": 25, "max_wins": 50},
]


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def rng():
    return random.Random(20240601)


@pytest.fixture
def test_settings():
    # generous retry budget; contention in tests is far above production levels
    return settings.model_copy(update={"allocation_max_attempts": 10, "allocation_timeout_seconds": 60.0})


@pytest.fixture
def make_campaign(db):
    def _make(slug="gateway-launch", prizes=GATEWAY_PRIZES, **fields):
        fields.setdefault("name", slug.replace("-", " ").title())
        fields.setdefault("redirect_url", "https://gateway.market/dashboard")
        campaign = Campaign(slug=slug, active=fields.pop("active", True), **fields)
        for data in prizes:
            campaign.prizes.append(Prize(**data))
        db.add(campaign)
        db.commit()
        return campaign

    return _make
