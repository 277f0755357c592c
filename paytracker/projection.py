"""Pay-period segmentation and per-account balance projection.

Entries are ordered by a real ``(year, month, day)`` key parsed from the
month token, split into periods that each start at a payday, and every
payday is annotated with the balance left once the period's *paid* bills
are taken out. Unpaid bills never move money.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from paytracker.models import Account, Amounts, Bill, Entry, Payday, parse_month_token

# unparseable month tokens sort after everything else
_UNKNOWN_MONTH = (10**6, 0)


@dataclass
class Period:
    payday: Payday
    bills: List[Bill] = field(default_factory=list)


def entry_sort_key(entry: Entry) -> Tuple[int, int, int]:
    year, month_index = parse_month_token(entry.month) or _UNKNOWN_MONTH
    return year, month_index, entry.date


def sort_entries(entries: Iterable[Entry]) -> List[Entry]:
    # stable, so same-day entries keep their stored order
    return sorted(entries, key=entry_sort_key)


def split_periods(entries: Sequence[Entry]) -> Tuple[List[Bill], List[Period]]:
    """Group already-sorted entries into (orphan bills, periods)."""
    orphans: List[Bill] = []
    periods: List[Period] = []
    current: Optional[Period] = None

    for entry in entries:
        if entry.type == "payday":
            current = Period(payday=entry)
            periods.append(current)
        elif entry.type == "bill":
            if current is None:
                orphans.append(entry)
            else:
                current.bills.append(entry)
        else:
            raise TypeError(f"Unknown entry type: {entry.type!r}")

    return orphans, periods


def period_balances(period: Period, accounts: Optional[Iterable[Account]] = None) -> Amounts:
    balances: Dict[str, float] = {}
    for account in accounts or ():
        balances[account.id] = 0
    for account_id, amount in period.payday.balances.items():
        balances[account_id] = amount or 0

    for bill in period.bills:
        if not bill.paid:
            continue
        for account_id, amount in bill.amounts.items():
            if amount:
                balances[account_id] = balances.get(account_id, 0) - amount

    return balances


def project(entries: Iterable[Entry], accounts: Optional[Iterable[Account]] = None) -> List[Entry]:
    """Annotated copies of ``entries`` in chronological order; inputs are untouched."""
    accounts = list(accounts or ())
    orphans, periods = split_periods(sort_entries(entries))

    result: List[Entry] = list(orphans)
    for period in periods:
        remaining = period_balances(period, accounts)
        result.append(replace(
            period.payday,
            calculated_balances=dict(remaining),
            total_owed=dict(period.payday.balances),
        ))
        result.extend(replace(bill, calculated_balances=dict(remaining)) for bill in period.bills)

    return result


def occurrence_key(entry: Entry) -> Optional[tuple]:
    """(template, month, day) identity of a generated entry; None for manual ones."""
    if entry.template_id is None:
        return None
    return entry.template_id, parse_month_token(entry.month) or entry.month, entry.date


def dedupe_entries(entries: Iterable[Entry]) -> List[Entry]:
    """Collapse generated duplicates left behind by racing syncs.

    The first copy of each occurrence keeps its place; a paid copy replaces
    an unpaid one so payment history is never hidden.
    """
    result: List[Entry] = []
    positions: Dict[tuple, int] = {}

    for entry in entries:
        key = occurrence_key(entry)
        if key is None:
            result.append(entry)
            continue
        if key not in positions:
            positions[key] = len(result)
            result.append(entry)
            continue
        kept = result[positions[key]]
        if getattr(entry, "paid", False) and not getattr(kept, "paid", False):
            result[positions[key]] = entry

    return result
