# carehome_api/common/months.py
from __future__ import annotations

import calendar
from datetime import date, datetime

from carehome_api.common.errors import ValidationError


def parse_month(value) -> date:
    """
    Accept 'YYYY-MM', 'YYYY-MM-DD' or a date and return the first of that month.
    Raises ValidationError on anything else.
    """
    if isinstance(value, datetime):
        return value.date().replace(day=1)
    if isinstance(value, date):
        return value.replace(day=1)
    s = (value or "").strip() if isinstance(value, str) else ""
    for fmt in ("%Y-%m", "%Y-%m-%d"):
        try:
            return datetime.strptime(s, fmt).date().replace(day=1)
        except ValueError:
            continue
    raise ValidationError("month must be YYYY-MM", {"month": value})


def days_in_month(month: date) -> int:
    return calendar.monthrange(month.year, month.month)[1]


def month_key(month: date) -> str:
    return f"{month.year:04d}-{month.month:02d}"
