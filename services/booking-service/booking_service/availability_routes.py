from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.rbac import has_role, require_role
from shared.security import get_current_user
from . import availability
from .db import get_db
from .schemas import (
    AvailabilityBlockResponse,
    AvailabilityOverlay,
    BlockDatesRequest,
    SetWeekdaysRequest,
    ToggleDateResponse,
    ToggleWeekdayResponse,
)

router = APIRouter()


def ensure_calendar_owner(user: dict, provider_id: str):
    require_role(user, ["provider", "admin"])
    if has_role(user, "admin"):
        return
    if user["sub"] != provider_id:
        raise HTTPException(status_code=403, detail="You can only manage your own availability")


async def commit_blocks(db: AsyncSession):
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Availability changed concurrently; retry")


@router.get("/availability/{provider_id}", response_model=AvailabilityOverlay)
async def get_month(
    provider_id: str,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    db: AsyncSession = Depends(get_db),
):
    today = availability.service_today()
    overlay = await availability.month_overlay(db, provider_id, year, month, today)
    return AvailabilityOverlay(provider_id=provider_id, year=year, month=month, **overlay)


@router.get("/availability/{provider_id}/blocks", response_model=List[AvailabilityBlockResponse])
async def get_blocks(provider_id: str, db: AsyncSession = Depends(get_db)):
    blocks = await availability.list_blocks(db, provider_id)
    return [
        AvailabilityBlockResponse(
            id=b.id,
            specific_date=b.specific_date,
            day_of_week=b.day_of_week,
            is_blocked=bool(b.is_blocked),
        )
        for b in blocks
    ]


@router.post("/availability/{provider_id}/dates/{day}/toggle", response_model=ToggleDateResponse)
async def toggle_date(
    provider_id: str,
    day: date,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    ensure_calendar_owner(user, provider_id)

    blocked = await availability.toggle_date_block(db, provider_id, day)
    await commit_blocks(db)
    return ToggleDateResponse(date=day, blocked=blocked)


@router.post("/availability/{provider_id}/weekdays/{weekday}/toggle", response_model=ToggleWeekdayResponse)
async def toggle_weekday(
    provider_id: str,
    weekday: int = Path(..., ge=0, le=6),
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    ensure_calendar_owner(user, provider_id)

    blocked = await availability.toggle_weekday_block(db, provider_id, weekday)
    await commit_blocks(db)
    return ToggleWeekdayResponse(day_of_week=weekday, blocked=blocked)


@router.post("/availability/{provider_id}/dates")
async def block_dates(
    provider_id: str,
    data: BlockDatesRequest,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    ensure_calendar_owner(user, provider_id)

    added = await availability.block_dates(db, provider_id, data.dates)
    await commit_blocks(db)
    return {"provider_id": provider_id, "blocked": added}


@router.put("/availability/{provider_id}/weekdays")
async def set_weekdays(
    provider_id: str,
    data: SetWeekdaysRequest,
    db: AsyncSession = Depends(get_db),
    user=Depends(get_current_user),
):
    ensure_calendar_owner(user, provider_id)

    await availability.set_recurring_weekdays(db, provider_id, data.days)
    await commit_blocks(db)
    return {"provider_id": provider_id, "days": data.days}
