import enum
from datetime import date, datetime
from zoneinfo import ZoneInfo

from app.config import settings


# Half-open range [SERVICE_START_HOUR, SERVICE_END_HOUR) in property-local time
SERVICE_START_HOUR = 8
SERVICE_END_HOUR = 17
# datetime.weekday(): Monday=0 .. Sunday=6
WEEKEND_DAYS = (5, 6)


class WindowStatus(str, enum.Enum):
    OK = "ok"
    WEEKEND = "weekend"
    OFF_HOURS = "off_hours"


def property_timezone() -> ZoneInfo:
    return ZoneInfo(settings.PROPERTY_TIMEZONE)


def to_property_time(now: datetime) -> datetime:
    """Convert an aware datetime to the property's local time zone."""
    return now.astimezone(property_timezone())


def property_today(now: datetime) -> date:
    return to_property_time(now).date()


def check_service_window(now: datetime) -> WindowStatus:
    """
    Classify a moment against the contractor service window.

    Contractors may work Monday-Friday, 8:00 AM - 5:00 PM property time.
    """
    local = to_property_time(now)
    if local.weekday() in WEEKEND_DAYS:
        return WindowStatus.WEEKEND
    if local.hour < SERVICE_START_HOUR or local.hour >= SERVICE_END_HOUR:
        return WindowStatus.OFF_HOURS
    return WindowStatus.OK


def is_within_service_window(now: datetime) -> bool:
    return check_service_window(now) is WindowStatus.OK
