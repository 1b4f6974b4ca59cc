import re
from datetime import date
from typing import Optional

_SEPARATORS = re.compile(r"[.\s/]+")


def parse_flexible_date(text: Optional[str]) -> Optional[date]:
    """
    Parse the date formats printed on medicine packs.

    Accepts DD-MM-YYYY, YYYY-MM-DD, MM-YYYY and YYYY-MM with '.', '/', '-'
    or whitespace as separators. Month-only dates resolve to the 1st.
    Returns None when the text can't be read as a date.
    """
    if not text or not text.strip():
        return None

    normalized = _SEPARATORS.sub("-", text.strip())
    parts = [p.zfill(2) for p in normalized.split("-")]
    if not all(p.isdigit() for p in parts):
        return None

    if len(parts) == 3:
        if len(parts[0]) == 4:
            year, month, day = parts
        else:
            day, month, year = parts
    elif len(parts) == 2:
        if len(parts[0]) == 4:
            year, month = parts
        else:
            month, year = parts
        day = "01"
    else:
        return None

    if len(year) != 4:
        return None

    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None
