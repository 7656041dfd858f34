import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from shared.rbac import require_role
from shared.security import get_current_user
from . import auto_complete, config
from .razorpay import cb_razorpay
from .schemas import AutoCompleteResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def require_cron_token(request: Request):
    expected = config.CRON_SECRET_TOKEN
    if not expected:
        logger.error("CRON_SECRET_TOKEN is not configured")
        raise HTTPException(status_code=500, detail="Server misconfiguration")

    auth = request.headers.get("Authorization") or ""
    scheme, _, token = auth.partition(" ")
    presented = token.strip().encode("utf-8")
    if scheme.lower() != "bearer" or not hmac.compare_digest(presented, expected.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post(
    "/cron/auto-complete-bookings",
    response_model=AutoCompleteResponse,
    dependencies=[Depends(require_cron_token)],
)
async def run_auto_complete():
    try:
        count = await auto_complete.auto_complete_due_bookings()
    except Exception as e:
        logger.exception("Auto-complete sweep failed")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return AutoCompleteResponse(success=True, message=f"Auto-completed {count} bookings", count=count)


@router.get("/system/breakers")
async def breakers(user=Depends(get_current_user)):
    require_role(user, ["admin"])
    return {"breakers": [await cb_razorpay.status()]}
