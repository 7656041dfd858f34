from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from shared.audit import audit
from shared.security import create_access_token, decode_challenge_token
from . import otp
from .db import get_db
from .models import SecurityAuditLog
from .schemas import SendOtpRequest, VerifyOtpRequest

router = APIRouter()

_VERIFIED_MESSAGES = {
    "login": "Login verified",
    "enable_2fa": "Two-factor authentication enabled",
    "disable_2fa": "Two-factor authentication disabled",
}

_AUDIT_ACTIONS = {
    "enable_2fa": "two_factor_enabled",
    "disable_2fa": "two_factor_disabled",
}


def too_many(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": message, "retryAfter": otp.RATE_WINDOW_SECONDS},
        headers={"Retry-After": str(otp.RATE_WINDOW_SECONDS)},
    )


def require_login_challenge(token: str | None, email: str):
    if not token:
        raise HTTPException(status_code=401, detail="Two-factor challenge token required")
    claims = decode_challenge_token(token)
    if claims["sub"] != email:
        raise HTTPException(status_code=401, detail="Challenge token does not match this account")


@router.post("/otp/send")
async def send_otp(data: SendOtpRequest, db: AsyncSession = Depends(get_db)):
    email = data.email.strip().lower()
    if not otp.valid_email(email):
        raise HTTPException(status_code=400, detail="Invalid email format")

    try:
        await otp.send_code(db, email, data.purpose)
    except otp.OtpRateLimited:
        return too_many("Too many OTP requests. Please try again later.")

    return {"success": True, "message": otp.GENERIC_SEND_MESSAGE}


@router.post("/otp/verify")
async def verify_otp(data: VerifyOtpRequest, request: Request, db: AsyncSession = Depends(get_db)):
    email = data.email.strip().lower()
    if not otp.valid_email(email):
        raise HTTPException(status_code=400, detail="Invalid email format")
    if not otp.valid_code(data.code):
        raise HTTPException(status_code=400, detail="Invalid verification code format")

    if data.purpose == "login":
        require_login_challenge(data.challenge_token, email)

    try:
        user = await otp.verify_code(db, email, data.code, data.purpose)
    except otp.OtpRateLimited:
        return too_many("Too many verification attempts. Please wait before trying again.")
    except otp.OtpVerificationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    body = {"success": True, "message": _VERIFIED_MESSAGES[data.purpose]}
    if data.purpose == "login":
        body["access_token"] = create_access_token(user.email, user.roles)
    else:
        audit(db, SecurityAuditLog, request, user.email, _AUDIT_ACTIONS[data.purpose], "auth_user", str(user.id))
        await db.commit()
    return body
