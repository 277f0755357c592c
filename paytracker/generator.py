from datetime import date, timedelta
from typing import Callable, Iterable, List, Optional
from uuid import uuid4

from dateutil.relativedelta import relativedelta

from paytracker.models import (
    MONTH_INDEX, Bill, BillTemplate, Entry, Payday, PaydayTemplate, Template, month_token
)


IdFactory = Callable[[], str]

STEPS = {
    "weekly": relativedelta(weeks=1),
    "bi-weekly": relativedelta(weeks=2),
}


def new_id() -> str:
    return str(uuid4())


def month_window(template: Template) -> tuple[int, int]:
    """Zero-based (start, end) month indices; unknown names fall back to the bound."""
    start = MONTH_INDEX.get(template.start_month, 0) if template.start_month else 0
    end = MONTH_INDEX.get(template.end_month, 11) if template.end_month else 11
    return start, end


def anchor_date(year: int, month_index: int, day: int) -> date:
    # day may overflow the month (Feb 31 -> Mar 3), same as a calendar rollover
    return date(year, month_index + 1, 1) + timedelta(days=day - 1)


def make_entry(template: Template, month_index: int, day: int, year: int, id_factory: IdFactory) -> Entry:
    token = month_token(month_index, year)
    if template.kind == "bill":
        return Bill(
            id=id_factory(),
            name=template.name,
            month=token,
            date=day,
            amounts=dict(template.amounts),
            paid=False,
            template_id=template.id,
        )
    if template.kind == "payday":
        return Payday(
            id=id_factory(),
            name=template.name,
            month=token,
            date=day,
            balances=dict(template.balances),
            template_id=template.id,
        )
    raise TypeError(f"Unsupported template kind: {template.kind!r}")


def occurrences(template: Template, year: int) -> List[tuple[int, int]]:
    """(month_index, day) pairs the template's rule produces for ``year``."""
    if not template.auto_generate or not template.is_active:
        return []

    start, end = month_window(template)
    recurrence = template.recurrence
    result = []

    if recurrence in ("one-time", "yearly"):
        target = MONTH_INDEX.get(template.month or "Jan")
        if target is not None and start <= target <= end:
            result.append((target, template.day))

    elif recurrence == "monthly":
        for idx in range(start, end + 1):
            result.append((idx, template.day))

    elif recurrence == "semi-monthly":
        for idx in range(start, end + 1):
            result.append((idx, template.day))
            if template.day2:
                result.append((idx, template.day2))

    elif recurrence in STEPS:
        step = STEPS[recurrence]
        current = anchor_date(year, start, template.day)
        while current.year == year:
            # later steps may run past end month; keep walking to the year's end
            if start <= current.month - 1 <= end:
                result.append((current.month - 1, current.day))
            current += step

    return result


def expand(template: Template, year: int, id_factory: Optional[IdFactory] = None) -> List[Entry]:
    make_id = id_factory or new_id
    return [make_entry(template, idx, day, year, make_id) for idx, day in occurrences(template, year)]


def generate_entries(
        templates: Iterable[BillTemplate],
        payday_templates: Iterable[PaydayTemplate],
        year: int,
        id_factory: Optional[IdFactory] = None,
) -> List[Entry]:
    entries = []
    for template in templates:
        entries.extend(expand(template, year, id_factory))
    for template in payday_templates:
        entries.extend(expand(template, year, id_factory))
    return entries
