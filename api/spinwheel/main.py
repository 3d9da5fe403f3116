import logging
import os
from datetime import datetime, timezone

from fastapi import FastAPI, Depends, HTTPException, Request, Path
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import ledger
from .allocation import SpinAllocator
from .config import settings
from .db import Base, engine, get_db, SessionLocal
from .eligibility import check_eligibility, resolve_live_campaign
from .errors import (
    SpinError, NotEligible, MissingIdentity, InvalidIdentity, NoPrizesConfigured, LedgerUnavailable,
)
from .log import setup_logging
from .schemas import (
    SpinRequest, VerifyResponse, ExecuteResponse, CampaignResponse, CampaignOut, PrizePublic,
    AdminLoginRequest, AdminLoginResponse, CampaignStatsResponse,
)
from .security import (
    verify_admin_password, make_admin_token, require_admin,
    check_login_throttle, mark_login_failure, clear_login_failures,
)
from . import models  # noqa: F401  register tables before create_all

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_allocator = SpinAllocator(SessionLocal)


def get_allocator() -> SpinAllocator:
    return _allocator


def source_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


app = FastAPI(title="Spin Wheel API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,           # exact list
    allow_origin_regex=settings.allowed_origin_regex, # regex (e.g. r"^https://.*\.vercel\.app$")
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Dev convenience: create tables if they don't exist
Base.metadata.create_all(bind=engine)


@app.exception_handler(StarletteHTTPException)
async def http_exc_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail), "code": "HTTP_ERROR"})

@app.exception_handler(RequestValidationError)
async def validation_exc_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"message": "Validation error", "code": "VALIDATION_ERROR", "errors": exc.errors()})

@app.exception_handler(SpinError)
async def spin_exc_handler(request: Request, exc: SpinError):
    if isinstance(exc, NotEligible):
        return JSONResponse(status_code=400, content={"message": exc.message, "code": exc.kind, "reason": exc.reason})
    if isinstance(exc, (MissingIdentity, InvalidIdentity)):
        return JSONResponse(status_code=422, content={"message": exc.message, "code": exc.kind})
    if isinstance(exc, NoPrizesConfigured):
        logger.error("Spin requested but campaign has no prizes: %s", exc.message)
        return JSONResponse(status_code=404, content={"message": "No active campaign or prizes", "code": exc.kind})
    if isinstance(exc, LedgerUnavailable):
        return JSONResponse(status_code=503, content={"message": "Service unavailable", "code": exc.kind})
    # conflicts / code exhaustion
    return JSONResponse(status_code=503, content={"message": "Spin failed, please try again.", "code": exc.kind, "retryable": exc.retryable})


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/api/campaign", response_model=CampaignResponse)
def current_campaign(db: Session = Depends(get_db)):
    campaign, status = resolve_live_campaign(db, None, utcnow())
    if campaign is None:
        detail = f"The wheel opens at {status.next_open_display}." if status.next_open_display else "No active campaign"
        raise HTTPException(status_code=404, detail=detail)
    prizes = ledger.active_prizes(db, campaign.id)
    return CampaignResponse(
        campaign=CampaignOut.model_validate(campaign),
        prizes=[PrizePublic.model_validate(p) for p in prizes],
    )


@app.post("/api/spin/verify", response_model=VerifyResponse)
def verify(payload: SpinRequest, request: Request, db: Session = Depends(get_db)):
    result = check_eligibility(
        db,
        payload.campaign_id,
        phone=payload.phone,
        email=payload.email,
        source_address=source_address(request),
    )
    return VerifyResponse(
        eligible=result.eligible,
        reason=result.reason,
        message=result.message,
        next_open=result.next_open,
    )


@app.post("/api/spin/execute", response_model=ExecuteResponse)
def execute(payload: SpinRequest, request: Request, allocator: SpinAllocator = Depends(get_allocator)):
    result = allocator.allocate(
        payload.campaign_id,
        phone=payload.phone,
        email=payload.email,
        source_address=source_address(request),
        user_agent=request.headers.get("user-agent", ""),
    )
    return ExecuteResponse(**result.model_dump())


@app.post("/api/admin/login", response_model=AdminLoginResponse)
def admin_login(body: AdminLoginRequest, request: Request):
    ip = request.client.host if request.client else "unknown"
    check_login_throttle(ip)

    if not verify_admin_password(body.password):
        mark_login_failure(ip)
        raise HTTPException(status_code=401, detail="Wrong password")

    clear_login_failures(ip)
    return AdminLoginResponse(token=make_admin_token())


@app.get("/api/admin/campaigns/{campaign_id}/stats", response_model=CampaignStatsResponse)
def admin_campaign_stats(
    campaign_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    _=Depends(require_admin),
):
    if ledger.get_campaign(db, campaign_id) is None:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return CampaignStatsResponse(**ledger.campaign_stats(db, campaign_id))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "spinwheel.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=False,
    )
