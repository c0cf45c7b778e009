"""Chat schedule command parsing ("schedule 6:30 PM weekdays" -> UTC cron)."""
import re
from typing import Optional, Tuple

# US Central standard time, fixed offset
CST_UTC_OFFSET_HOURS = 6

_AMPM = re.compile(r'\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b', re.IGNORECASE)
_H24 = re.compile(r'\b([01]?\d|2[0-3]):([0-5]\d)\b')
_WEEKDAYS = re.compile(r'weekday|work.?day|mon.*fri', re.IGNORECASE)

def parse_schedule_command(text: str) -> Optional[Tuple[str, str]]:
    """
    Parse a time of day (12h or 24h, read as CST) and an optional weekday
    qualifier into a UTC cron expression.

    Returns:
        (cron, label), e.g. ("30 0 * * 2-6", "6:30 PM CST weekdays"),
        or None when no time can be found
    """
    match = _AMPM.search(text)
    if match:
        hours = int(match.group(1))
        minutes = int(match.group(2) or 0)
        period = match.group(3).lower()
        if period == 'pm' and hours != 12:
            hours += 12
        if period == 'am' and hours == 12:
            hours = 0
    else:
        match = _H24.search(text)
        if not match:
            return None
        hours = int(match.group(1))
        minutes = int(match.group(2))

    if hours > 23 or minutes > 59:
        return None

    utc_hours = hours + CST_UTC_OFFSET_HOURS
    rolls_over = utc_hours >= 24
    if rolls_over:
        utc_hours -= 24

    # Mon-Fri evenings in CST land on Tue-Sat in UTC
    weekdays = bool(_WEEKDAYS.search(text))
    if weekdays:
        days = '2-6' if rolls_over else '1-5'
    else:
        days = '*'

    cron = f"{minutes} {utc_hours} * * {days}"
    h12 = hours - 12 if hours > 12 else (12 if hours == 0 else hours)
    label = f"{h12}:{minutes:02d} {'PM' if hours >= 12 else 'AM'} CST {'weekdays' if weekdays else 'daily'}"
    return cron, label
