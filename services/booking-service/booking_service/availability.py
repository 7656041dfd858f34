import calendar
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import and_, delete, or_, select

from . import config
from .lifecycle import ACTIVE_STATUSES
from .models import AvailabilityBlock, Booking


def service_today(now: datetime | None = None) -> date:
    """The current calendar day where the marketplace operates."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(config.SERVICE_TIMEZONE)).date()


def js_day_of_week(d: date) -> int:
    """0=Sunday .. 6=Saturday, the numbering stored on recurring blocks."""
    return (d.weekday() + 1) % 7


def month_days(year: int, month: int) -> list[date]:
    _, last = calendar.monthrange(year, month)
    return [date(year, month, day) for day in range(1, last + 1)]


def booking_dates(service_date: date, start_date: date | None = None, end_date: date | None = None) -> set[date]:
    days = {service_date}
    if start_date and end_date and end_date >= start_date:
        cur = start_date
        while cur <= end_date:
            days.add(cur)
            cur += timedelta(days=1)
    return days


def is_blocked(d: date, blocked_dates: set[date], blocked_weekdays: set[int]) -> bool:
    return d in blocked_dates or js_day_of_week(d) in blocked_weekdays


def classify_month(
    year: int,
    month: int,
    *,
    booked: set[date],
    blocked_dates: set[date],
    blocked_weekdays: set[int],
    today: date,
) -> dict[str, list[date]]:
    """
    Split a month into disjoint booked / blocked / available lists.
    Blocked wins over booked; past days that are neither are left out.
    """
    result = {"booked": [], "blocked": [], "available": []}
    for d in month_days(year, month):
        if is_blocked(d, blocked_dates, blocked_weekdays):
            result["blocked"].append(d)
        elif d in booked:
            result["booked"].append(d)
        elif d >= today:
            result["available"].append(d)
    return result


# ---- persistence helpers (caller commits) ----

async def list_blocks(db, provider_id: str) -> list[AvailabilityBlock]:
    res = await db.execute(
        select(AvailabilityBlock)
        .where(AvailabilityBlock.provider_id == provider_id)
        .order_by(AvailabilityBlock.specific_date, AvailabilityBlock.day_of_week)
    )
    return list(res.scalars().all())


async def load_block_sets(db, provider_id: str) -> tuple[set[date], set[int]]:
    blocks = await list_blocks(db, provider_id)
    blocked_dates = {b.specific_date for b in blocks if b.specific_date and b.is_blocked}
    blocked_weekdays = {b.day_of_week for b in blocks if b.day_of_week is not None and b.is_blocked}
    return blocked_dates, blocked_weekdays


async def load_booked_dates(db, provider_id: str, window_start: date, window_end: date) -> set[date]:
    res = await db.execute(
        select(Booking.service_date, Booking.start_date, Booking.end_date).where(
            Booking.provider_id == provider_id,
            Booking.status.in_(ACTIVE_STATUSES),
            or_(
                and_(Booking.service_date >= window_start, Booking.service_date <= window_end),
                and_(Booking.start_date <= window_end, Booking.end_date >= window_start),
            ),
        )
    )
    booked: set[date] = set()
    for service_date, start_date, end_date in res.all():
        booked |= booking_dates(service_date, start_date, end_date)
    return booked


async def month_overlay(db, provider_id: str, year: int, month: int, today: date) -> dict[str, list[date]]:
    days = month_days(year, month)
    blocked_dates, blocked_weekdays = await load_block_sets(db, provider_id)
    booked = await load_booked_dates(db, provider_id, days[0], days[-1])
    return classify_month(
        year,
        month,
        booked=booked,
        blocked_dates=blocked_dates,
        blocked_weekdays=blocked_weekdays,
        today=today,
    )


async def unavailable_dates(db, provider_id: str, requested: set[date]) -> list[date]:
    if not requested:
        return []
    blocked_dates, blocked_weekdays = await load_block_sets(db, provider_id)
    booked = await load_booked_dates(db, provider_id, min(requested), max(requested))
    return sorted(
        d for d in requested
        if is_blocked(d, blocked_dates, blocked_weekdays) or d in booked
    )


async def toggle_date_block(db, provider_id: str, day: date) -> bool:
    """Insert a block for the date if absent, delete it if present. Returns the new state."""
    res = await db.execute(
        select(AvailabilityBlock).where(
            AvailabilityBlock.provider_id == provider_id,
            AvailabilityBlock.specific_date == day,
        )
    )
    existing = res.scalars().all()
    if existing:
        for block in existing:
            await db.delete(block)
        return False

    db.add(AvailabilityBlock(provider_id=provider_id, specific_date=day, is_blocked=True))
    return True


async def toggle_weekday_block(db, provider_id: str, weekday: int) -> bool:
    res = await db.execute(
        select(AvailabilityBlock).where(
            AvailabilityBlock.provider_id == provider_id,
            AvailabilityBlock.day_of_week == weekday,
        )
    )
    existing = res.scalars().all()
    if existing:
        for block in existing:
            await db.delete(block)
        return False

    db.add(AvailabilityBlock(provider_id=provider_id, day_of_week=weekday, is_blocked=True))
    return True


async def block_dates(db, provider_id: str, dates: list[date]) -> list[date]:
    blocked_dates, _ = await load_block_sets(db, provider_id)
    added = sorted(set(dates) - blocked_dates)
    for d in added:
        db.add(AvailabilityBlock(provider_id=provider_id, specific_date=d, is_blocked=True))
    return added


async def set_recurring_weekdays(db, provider_id: str, weekdays: list[int]) -> None:
    await db.execute(
        delete(AvailabilityBlock).where(
            AvailabilityBlock.provider_id == provider_id,
            AvailabilityBlock.day_of_week.is_not(None),
        )
    )
    for wd in weekdays:
        db.add(AvailabilityBlock(provider_id=provider_id, day_of_week=wd, is_blocked=True))
