# app/services/periods.py
#
# Date Range Utilities
# Month arithmetic for dashboard summaries.

from datetime import date
from typing import Optional, Tuple

from app.errors import Invalid


def get_month_range(month_str: Optional[str], today: Optional[date] = None) -> Tuple[date, date, str]:
    """
    month_str: 'YYYY-MM' or None.
    Returns (start_date, end_date_exclusive, normalized_month_str).
    If month_str is None, uses the CURRENT month; a malformed value is Invalid.
    """
    today = today or date.today()

    # 1) pick year/month
    if month_str:
        try:
            year_str, month_only_str = month_str.strip().split("-")
            year = int(year_str)
            month = int(month_only_str)
        except ValueError as exc:
            raise Invalid(f"month must look like YYYY-MM, got {month_str!r}") from exc
        if not (1 <= month <= 12) or year < 1:
            raise Invalid(f"month must look like YYYY-MM, got {month_str!r}")
    else:
        year, month = today.year, today.month

    # 2) compute start and first day of next month
    try:
        start_date = date(year, month, 1)
        if month == 12:
            end_date_exclusive = date(year + 1, 1, 1)
        else:
            end_date_exclusive = date(year, month + 1, 1)
    except ValueError as exc:
        # year beyond date.max, including December 9999
        raise Invalid(f"month out of range: {month_str!r}") from exc

    normalized = f"{year:04d}-{month:02d}"
    return start_date, end_date_exclusive, normalized
