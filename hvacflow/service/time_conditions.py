from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Tuple, Union

from hvacflow.service.errors import UnsupportedOperatorError, ValidationError

CONDITION_TYPES = ("timeOfDay", "dayOfWeek", "specificDate", "businessHours", "weekend")

# Sunday = 0, matching the numbering used by the workflow editor
_DAYS = {
    "sunday": 0,
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
}

BUSINESS_OPEN_HOUR = 9
BUSINESS_CLOSE_HOUR = 17


def _weekday_index(moment: datetime) -> int:
    return (moment.weekday() + 1) % 7


def parse_reference(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(
            "referenceDate must be an ISO 8601 date", detail={"referenceDate": value}
        ) from exc


def _time_of_day(moment: datetime, time: Optional[str]) -> bool:
    if not time:
        raise ValidationError("missing required parameter: time")
    try:
        hours, minutes = (int(part) for part in time.split(":", 1))
    except ValueError as exc:
        raise ValidationError("time must be HH:MM", detail={"time": time}) from exc
    return moment.hour == hours and moment.minute == minutes


def _day_of_week(moment: datetime, day: Union[str, int, None]) -> bool:
    if day is None or day == "":
        raise ValidationError("missing required parameter: dayOfWeek")
    if isinstance(day, str):
        target = _DAYS.get(day.strip().lower())
        if target is None:
            raise ValidationError("unknown dayOfWeek", detail={"dayOfWeek": day})
    else:
        target = int(day)
    return _weekday_index(moment) == target


def _specific_date(moment: datetime, target: Optional[str]) -> bool:
    if not target:
        raise ValidationError("missing required parameter: date")
    try:
        wanted = date.fromisoformat(target[:10])
    except ValueError as exc:
        raise ValidationError("date must be YYYY-MM-DD", detail={"date": target}) from exc
    return moment.date() == wanted


def _business_hours(moment: datetime) -> bool:
    return 1 <= _weekday_index(moment) <= 5 and BUSINESS_OPEN_HOUR <= moment.hour < BUSINESS_CLOSE_HOUR


def _weekend(moment: datetime) -> bool:
    return _weekday_index(moment) in (0, 6)


def evaluate_time_condition(
    condition_type: str,
    reference: datetime,
    *,
    time: Optional[str] = None,
    day_of_week: Union[str, int, None] = None,
    target_date: Optional[str] = None,
) -> Tuple[bool, str]:
    """Evaluate a time condition at ``reference``; returns (result, description)."""
    if condition_type == "timeOfDay":
        result = _time_of_day(reference, time)
        return result, f"Current time is {'' if result else 'not '}{time}"
    if condition_type == "dayOfWeek":
        result = _day_of_week(reference, day_of_week)
        return result, f"Current day is {'' if result else 'not '}{day_of_week}"
    if condition_type == "specificDate":
        result = _specific_date(reference, target_date)
        return result, f"Current date is {'' if result else 'not '}{target_date}"
    if condition_type == "businessHours":
        result = _business_hours(reference)
        return result, f"Current time is {'' if result else 'not '}within business hours"
    if condition_type == "weekend":
        result = _weekend(reference)
        return result, f"Current day is {'' if result else 'not '}a weekend"
    raise UnsupportedOperatorError(
        f"unsupported condition type: {condition_type}",
        detail={"allowed": list(CONDITION_TYPES)},
    )
