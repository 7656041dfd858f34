"""
Email one-time codes for login and for toggling two-factor authentication.

Codes are 6 digits, live for 10 minutes and are single use: every
verification attempt consumes the newest unused code, matching or not, so
the used-code count doubles as the failed-attempt counter.
"""
import asyncio
import hmac
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, update

from .mailer import send_otp_email
from .models import AuthUser, OtpCode

logger = logging.getLogger(__name__)

OTP_TTL = timedelta(minutes=10)
RATE_WINDOW = timedelta(hours=1)
RATE_WINDOW_SECONDS = 3600
MAX_SENDS_PER_HOUR = 5
MAX_VERIFY_ATTEMPTS_PER_HOUR = 10

GENERIC_SEND_MESSAGE = "If this email exists, an OTP has been sent"

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CODE_RE = re.compile(r"[0-9]{6}")

_rng = secrets.SystemRandom()


class OtpRateLimited(Exception):
    pass


class OtpVerificationError(Exception):
    pass


def valid_email(email: str) -> bool:
    return bool(email) and len(email) <= 255 and bool(_EMAIL_RE.match(email))


def valid_code(code: str) -> bool:
    return bool(code) and bool(_CODE_RE.fullmatch(code))


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def enumeration_delay():
    # roughly the cost of the known-email path
    await asyncio.sleep(_rng.uniform(0.15, 0.25))


async def send_code(db, email: str, purpose: str, now: datetime | None = None) -> None:
    """
    Issue and email a code. Unknown emails return normally after a short
    random delay so callers cannot tell them apart. Raises OtpRateLimited.
    """
    now = now or datetime.now(timezone.utc)

    res = await db.execute(
        select(func.count(OtpCode.id)).where(
            OtpCode.email == email,
            OtpCode.created_at >= now - RATE_WINDOW,
        )
    )
    if res.scalar_one() >= MAX_SENDS_PER_HOUR:
        logger.info("OTP send rate limit exceeded for %s", email)
        raise OtpRateLimited()

    res = await db.execute(select(AuthUser).where(AuthUser.email == email))
    user = res.scalar_one_or_none()
    if not user:
        await enumeration_delay()
        return

    code = generate_code()

    await db.execute(
        update(OtpCode)
        .where(
            OtpCode.user_id == user.id,
            OtpCode.purpose == purpose,
            OtpCode.used.is_(False),
        )
        .values(used=True)
    )
    db.add(OtpCode(
        user_id=user.id,
        email=email,
        code=code,
        purpose=purpose,
        used=False,
        expires_at=now + OTP_TTL,
        created_at=now,
    ))
    await db.commit()

    await send_otp_email(email, code, purpose)


async def verify_code(db, email: str, code: str, purpose: str, now: datetime | None = None) -> AuthUser:
    """
    Check a submitted code and apply its purpose. Returns the account on
    success; raises OtpRateLimited or OtpVerificationError otherwise.
    """
    now = now or datetime.now(timezone.utc)

    res = await db.execute(
        select(func.count(OtpCode.id)).where(
            OtpCode.email == email,
            OtpCode.purpose == purpose,
            OtpCode.used.is_(True),
            OtpCode.created_at >= now - RATE_WINDOW,
        )
    )
    if res.scalar_one() >= MAX_VERIFY_ATTEMPTS_PER_HOUR:
        logger.info("OTP verify attempts exceeded for %s", email)
        raise OtpRateLimited()

    res = await db.execute(
        select(OtpCode)
        .where(
            OtpCode.email == email,
            OtpCode.purpose == purpose,
            OtpCode.used.is_(False),
        )
        .order_by(OtpCode.created_at.desc(), OtpCode.id.desc())
        .limit(1)
    )
    record = res.scalar_one_or_none()
    if not record:
        raise OtpVerificationError("Invalid or expired verification code")

    record.used = True

    if _as_utc(record.expires_at) < now:
        await db.commit()
        raise OtpVerificationError("Verification code has expired")

    if not hmac.compare_digest(code.encode("ascii"), record.code.encode("ascii")):
        await db.commit()
        raise OtpVerificationError("Invalid verification code")

    user = await db.get(AuthUser, record.user_id)
    if purpose == "login" and not user.two_factor_enabled:
        await db.commit()
        raise OtpVerificationError("Two-factor authentication is not enabled for this account")

    if purpose == "enable_2fa":
        user.two_factor_enabled = True
    elif purpose == "disable_2fa":
        user.two_factor_enabled = False

    await db.commit()
    logger.info("OTP verified for %s (%s)", email, purpose)
    return user
