import os

DATABASE_URL = os.getenv("BOOKING_DB")
if not DATABASE_URL:
    raise RuntimeError("BOOKING_DB environment variable is not set")

DB_ECHO = (os.getenv("BOOKING_DB_ECHO") or "false").lower() == "true"

RABBIT_URL = os.getenv("RABBIT_URL")  # optional in dev, required if you want events

# Shared secret for the scheduler calling the auto-complete sweep
CRON_SECRET_TOKEN = os.getenv("CRON_SECRET_TOKEN")

# 0 disables the in-process sweep loop (external scheduler only)
AUTO_COMPLETE_INTERVAL_SECONDS = int(os.getenv("AUTO_COMPLETE_INTERVAL_SECONDS") or "0")

RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE") or "120")

RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID") or ""
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL") or "https://api.razorpay.com/v1"
RAZORPAY_TIMEOUT_SECONDS = float(os.getenv("RAZORPAY_TIMEOUT_SECONDS") or "10")

# Calendar day boundaries for past-date checks and the month overlay
SERVICE_TIMEZONE = os.getenv("SERVICE_TIMEZONE") or "Asia/Kolkata"
