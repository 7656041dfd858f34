import asyncio
import logging

import resend

from . import config

logger = logging.getLogger(__name__)

_PURPOSE_TEXT = {
    "login": "login to your account",
    "enable_2fa": "enable two-factor authentication",
    "disable_2fa": "disable two-factor authentication",
}


def render_otp_email(code: str, purpose: str) -> str:
    purpose_text = _PURPOSE_TEXT.get(purpose, "verify your account")
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h1 style="color: #D4A853;">Subhakary Verification Code</h1>
      <p>You requested to {purpose_text}. Use the code below to verify:</p>
      <div style="background: #f4f4f4; padding: 20px; border-radius: 8px; text-align: center; margin: 20px 0;">
        <span style="font-size: 32px; font-weight: bold; letter-spacing: 8px; color: #333;">{code}</span>
      </div>
      <p style="color: #666;">This code expires in 10 minutes.</p>
      <p style="color: #666;">If you didn't request this, please ignore this email.</p>
    </div>
    """


async def send_otp_email(to: str, code: str, purpose: str) -> bool:
    """
    Email a verification code through Resend. Returns False when the send
    failed or no API key is configured; the caller never fails on it.
    """
    if not config.RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not set; OTP for %s (%s): %s", to, purpose, code)
        return False

    resend.api_key = config.RESEND_API_KEY
    params = {
        "from": config.EMAIL_FROM_ADDRESS,
        "to": [to],
        "subject": f"Your verification code: {code}",
        "html": render_otp_email(code, purpose),
    }

    try:
        response = await asyncio.to_thread(resend.Emails.send, params)
    except Exception as e:
        logger.error("OTP email send to %s failed: %s", to, e)
        return False

    logger.info("OTP email sent to %s: %s", to, response)
    return True
