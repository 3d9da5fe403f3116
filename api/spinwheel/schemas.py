from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime
from typing import Optional, List


class PrizePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    color: Optional[str] = None
    coupon_type: str
    coupon_value: Optional[float] = None


class CouponOut(BaseModel):
    code: str
    expires_at: datetime


class AllocationResult(BaseModel):
    prize: PrizePublic
    # wedge position among the campaign's active prizes, ordered by id
    prize_index: int
    coupon: CouponOut
    redirect_url: Optional[str] = None
    fallback: bool = False


class SpinRequest(BaseModel):
    phone: Optional[str] = Field(default=None, max_length=40)
    email: Optional[EmailStr] = None
    campaign_id: Optional[int] = None


class VerifyResponse(BaseModel):
    eligible: bool
    reason: Optional[str] = None
    message: str
    next_open: Optional[str] = None


class ExecuteResponse(AllocationResult):
    success: bool = True


class CampaignOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    headline: Optional[str] = None
    description: Optional[str] = None
    redirect_url: Optional[str] = None


class CampaignResponse(BaseModel):
    campaign: CampaignOut
    prizes: List[PrizePublic]


class AdminLoginRequest(BaseModel):
    password: str


class AdminLoginResponse(BaseModel):
    token: str


class PrizeStats(BaseModel):
    prize_id: int
    name: str
    win_count: int
    max_wins: Optional[int] = None
    active: bool


class CampaignStatsResponse(BaseModel):
    total_spins: int
    unique_users: int
    coupons_redeemed: int
    prizes: List[PrizeStats]
