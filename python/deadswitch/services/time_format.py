"""Human-readable remaining-time labels for reminder emails.

All units are floored, never rounded: 23.9 hours reads "23 hours" and 1.9 days
reads "1 day". The label understates the time left, which is the intended
direction for a deadline reminder.
"""

import math

MINUTES_PER_DAY = 1440
HOURS_PER_DAY = 24
LESS_THAN_A_MINUTE = "less than a minute"


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}" if n == 1 else f"{n} {unit}s"


def format_remaining(fractional_days: float) -> str:
    """Format a remaining duration given in fractional days.

    Examples:
        format_remaining(7.9)        -> "7 days"
        format_remaining(0.5)        -> "12 hours"
        format_remaining(55 / 1440)  -> "55 minutes"
        format_remaining(0)          -> "less than a minute"
    """
    if fractional_days <= 0:
        return LESS_THAN_A_MINUTE

    if fractional_days < 1 / HOURS_PER_DAY:
        minutes = math.floor(fractional_days * MINUTES_PER_DAY)
        if minutes == 0:
            return LESS_THAN_A_MINUTE
        return _plural(minutes, "minute")

    if fractional_days < 1:
        return _plural(math.floor(fractional_days * HOURS_PER_DAY), "hour")

    return _plural(math.floor(fractional_days), "day")


def format_elapsed(fractional_days: float) -> str:
    """Format a past-due duration, e.g. "3 hours ago".

    The sign of the input is ignored; unit selection matches format_remaining.
    """
    return f"{format_remaining(abs(fractional_days))} ago"
