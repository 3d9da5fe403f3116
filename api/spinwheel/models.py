from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import (
    Integer, String, Boolean, Float, ForeignKey, DateTime, Index, UniqueConstraint, text,
)
from datetime import datetime, timezone
from .db import Base

utcnow = lambda: datetime.now(timezone.utc)

COUPON_TYPES = ("percent_off", "fixed_amount", "free_shipping")


def as_utc(dt: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class Campaign(Base):
    __tablename__ = "campaigns"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    headline: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    redirect_url: Mapped[str | None] = mapped_column(String, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    expiration_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # "HH:MM" in `timezone`; both unset means always open
    schedule_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    schedule_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
    timezone: Mapped[str] = mapped_column(String, default="America/New_York")
    require_whitelist: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    prizes: Mapped[list["Prize"]] = relationship(
        back_populates="campaign", cascade="all, delete-orphan", order_by="Prize.id"
    )
    allowed_phones: Mapped[list["AllowedPhone"]] = relationship(
        back_populates="campaign", cascade="all, delete-orphan"
    )

    def is_live(self, now: datetime) -> bool:
        exp = as_utc(self.expiration_date)
        return bool(self.active) and (exp is None or exp > now)


class Prize(Base):
    __tablename__ = "prizes"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    weight: Mapped[int] = mapped_column(Integer, default=1)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    coupon_type: Mapped[str] = mapped_column(String, default="percent_off")
    coupon_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    coupon_code: Mapped[str | None] = mapped_column(String, nullable=True)  # shared by every winner
    max_wins: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = unlimited
    win_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    campaign: Mapped[Campaign] = relationship(back_populates="prizes")

    @property
    def has_capacity(self) -> bool:
        return self.max_wins is None or (self.win_count or 0) < self.max_wins


class AllowedPhone(Base):
    __tablename__ = "allowed_phones"
    __table_args__ = (UniqueConstraint("campaign_id", "phone", name="uq_allowed_phones_campaign_phone"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=False)
    phone: Mapped[str] = mapped_column(String(10), nullable=False)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    source: Mapped[str] = mapped_column(String, default="manual")  # manual | csv | webhook
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    campaign: Mapped[Campaign] = relationship(back_populates="allowed_phones")


class Spin(Base):
    __tablename__ = "spins"
    # NULLs never collide, so phone-only and email-only spins coexist
    __table_args__ = (
        UniqueConstraint("campaign_id", "phone", name="uq_spins_campaign_phone"),
        UniqueConstraint("campaign_id", "email", name="uq_spins_campaign_email"),
        Index("ix_spins_ip_created", "ip_address", "created_at"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    campaign_id: Mapped[int] = mapped_column(Integer, ForeignKey("campaigns.id"), nullable=False)
    prize_id: Mapped[int] = mapped_column(Integer, ForeignKey("prizes.id"), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(10), nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    coupon_code: Mapped[str] = mapped_column(String, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Coupon(Base):
    __tablename__ = "coupons"
    # generated codes are globally unique; a prize's fixed code is shared on purpose
    __table_args__ = (
        Index(
            "uq_coupons_code_generated", "code", unique=True,
            sqlite_where=text("shared = 0"),
            postgresql_where=text("NOT shared"),
        ),
        Index("ix_coupons_code", "code"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String, nullable=False)
    shared: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    prize_id: Mapped[int] = mapped_column(Integer, ForeignKey("prizes.id"), nullable=False)
    spin_id: Mapped[int] = mapped_column(Integer, ForeignKey("spins.id"), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(10), nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
