from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional

from paytracker.config import current_year
from paytracker.models import Bill, BillTemplate, Entry, parse_month_token

ChangeType = Literal["increase", "decrease", "none"]

# differences below a cent are noise
CHANGE_THRESHOLD = 0.01


@dataclass
class BillAnalytics:
    template_id: str
    template_name: str
    ytd_paid: float
    ytd_planned: float
    paid_count: int
    planned_count: int
    current_amount: float
    average_paid_amount: float
    has_change: bool = False
    change_type: ChangeType = "none"
    change_amount: float = 0.0
    change_percentage: float = 0.0


def total_amount(amounts: dict) -> float:
    return sum(v for v in amounts.values() if v)


def _in_year(entry: Entry, year: int) -> bool:
    parsed = parse_month_token(entry.month)
    return parsed is not None and parsed[0] == year


def template_bills(template: BillTemplate, entries: Iterable[Entry], year: int) -> List[Bill]:
    """Bills of ``year`` that belong to ``template``.

    Manual bills without a template count when their name matches.
    """
    matched = []
    for entry in entries:
        if entry.type != "bill" or not _in_year(entry, year):
            continue
        if entry.template_id == template.id or (entry.template_id is None and entry.name == template.name):
            matched.append(entry)
    return matched


def analyze_template(template: BillTemplate, entries: Iterable[Entry], year: int) -> BillAnalytics:
    bills = template_bills(template, entries, year)
    paid = [b for b in bills if b.paid]

    ytd_paid = sum(total_amount(b.amounts) for b in paid)
    current_amount = total_amount(template.amounts)
    average = ytd_paid / len(paid) if paid else 0.0

    result = BillAnalytics(
        template_id=template.id,
        template_name=template.name,
        ytd_paid=ytd_paid,
        ytd_planned=len(bills) * current_amount,
        paid_count=len(paid),
        planned_count=len(bills),
        current_amount=current_amount,
        average_paid_amount=average,
    )

    if paid and average > 0:
        diff = current_amount - average
        if abs(diff) > CHANGE_THRESHOLD:
            result.has_change = True
            result.change_amount = diff
            result.change_percentage = diff / average * 100
            result.change_type = "increase" if diff > 0 else "decrease"

    return result


def calculate_bill_analytics(
        templates: Iterable[BillTemplate],
        entries: Iterable[Entry],
        year: Optional[int] = None,
) -> List[BillAnalytics]:
    entries = list(entries)
    year = year or current_year()
    return [analyze_template(t, entries, year) for t in templates]


def changed_bills(analytics: Iterable[BillAnalytics]) -> List[BillAnalytics]:
    return [a for a in analytics if a.has_change]
