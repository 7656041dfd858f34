import os

DATABASE_URL = os.getenv("AUTH_DB")
if not DATABASE_URL:
    raise RuntimeError("AUTH_DB environment variable is not set")

DB_ECHO = (os.getenv("AUTH_DB_ECHO") or "false").lower() == "true"

# Unset: codes are written to the log instead of emailed (dev only)
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS") or "Subhakary <noreply@subhakary.com>"

RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE") or "120")
