from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Literal, Optional, Tuple, Union


Recurrence = Literal["weekly", "bi-weekly", "semi-monthly", "monthly", "yearly", "one-time"]
EntryType = Literal["bill", "payday"]

RECURRENCES = ("weekly", "bi-weekly", "semi-monthly", "monthly", "yearly", "one-time")
MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
MONTH_INDEX = {name: i for i, name in enumerate(MONTHS)}

# "Jan '26", "Jan 26" and "Jan 2026" all show up in older saves
_TOKEN_RE = re.compile(r"^\s*([A-Za-z]{3})\s*'?\s*(\d{2}|\d{4})\s*$")

Amounts = Dict[str, float]


def month_token(month_index: int, year: int) -> str:
    return f"{MONTHS[month_index]} '{year % 100:02d}"


def parse_month_token(token: Optional[str]) -> Optional[Tuple[int, int]]:
    """Turn a month token into ``(year, month_index)``, or None if it can't be read."""
    if not isinstance(token, str):
        return None
    match = _TOKEN_RE.match(token)
    if not match:
        return None
    name, year = match.groups()
    index = MONTH_INDEX.get(name.capitalize())
    if index is None:
        return None
    year_num = int(year)
    if len(year) == 2:
        year_num += 2000
    return year_num, index


@dataclass
class Account:
    id: str
    name: str
    order: int = 0

    def to_record(self) -> dict:
        return {"id": self.id, "name": self.name, "order": self.order}


@dataclass
class BillTemplate:
    id: str
    name: str
    recurrence: Recurrence
    day: int
    amounts: Amounts = field(default_factory=dict)
    day2: Optional[int] = None
    month: Optional[str] = None
    start_month: Optional[str] = None
    end_month: Optional[str] = None
    auto_generate: bool = True
    is_active: bool = True

    kind: ClassVar[EntryType] = "bill"

    @property
    def values(self) -> Amounts:
        return self.amounts

    def to_record(self) -> dict:
        record = _template_record(self)
        record["amounts"] = dict(self.amounts)
        return record


@dataclass
class PaydayTemplate:
    id: str
    name: str
    recurrence: Recurrence
    day: int
    balances: Amounts = field(default_factory=dict)
    day2: Optional[int] = None
    month: Optional[str] = None
    start_month: Optional[str] = None
    end_month: Optional[str] = None
    auto_generate: bool = True
    is_active: bool = True

    kind: ClassVar[EntryType] = "payday"

    @property
    def values(self) -> Amounts:
        return self.balances

    def to_record(self) -> dict:
        record = _template_record(self)
        record["balances"] = dict(self.balances)
        return record


Template = Union[BillTemplate, PaydayTemplate]


@dataclass
class Bill:
    id: str
    name: str
    month: str
    date: int
    amounts: Amounts = field(default_factory=dict)
    paid: bool = False
    template_id: Optional[str] = None
    type: EntryType = field(default="bill", init=False)
    # filled in by projection, never persisted
    calculated_balances: Optional[Amounts] = field(default=None, compare=False, repr=False)

    def to_record(self) -> dict:
        record = _entry_record(self)
        record["paid"] = self.paid
        record["amounts"] = dict(self.amounts)
        return record


@dataclass
class Payday:
    id: str
    name: str
    month: str
    date: int
    balances: Amounts = field(default_factory=dict)
    template_id: Optional[str] = None
    type: EntryType = field(default="payday", init=False)
    calculated_balances: Optional[Amounts] = field(default=None, compare=False, repr=False)
    total_owed: Optional[Amounts] = field(default=None, compare=False, repr=False)

    def to_record(self) -> dict:
        record = _entry_record(self)
        record["balances"] = dict(self.balances)
        return record


Entry = Union[Bill, Payday]


def _template_record(template: Template) -> dict:
    record = {
        "id": template.id,
        "name": template.name,
        "recurrence": template.recurrence,
        "day": template.day,
        "autoGenerate": template.auto_generate,
        "isActive": template.is_active,
    }
    for key, value in (
        ("day2", template.day2),
        ("month", template.month),
        ("startMonth", template.start_month),
        ("endMonth", template.end_month),
    ):
        if value is not None:
            record[key] = value
    return record


def _entry_record(entry: Entry) -> dict:
    record = {
        "id": entry.id,
        "type": entry.type,
        "name": entry.name,
        "month": entry.month,
        "date": entry.date,
    }
    if entry.template_id is not None:
        record["templateId"] = entry.template_id
    return record


def _clean_amounts(raw) -> Amounts:
    if not isinstance(raw, dict):
        return {}
    return {str(k): v for k, v in raw.items() if v is not None}


def account_from_record(record: dict) -> Account:
    return Account(id=record["id"], name=record.get("name", ""), order=int(record.get("order", 0)))


def template_from_record(record: dict, kind: EntryType) -> Template:
    """Build a template from a stored/imported record.

    Older backups lack ``isActive`` (and sometimes ``autoGenerate``); both
    default to True the same way a freshly created template does.
    """
    common = dict(
        id=record["id"],
        name=record.get("name", ""),
        recurrence=record.get("recurrence", "monthly"),
        day=int(record.get("day", 1)),
        day2=record.get("day2"),
        month=record.get("month"),
        start_month=record.get("startMonth"),
        end_month=record.get("endMonth"),
        auto_generate=bool(record.get("autoGenerate", True)),
        is_active=bool(record.get("isActive", True)),
    )
    if kind == "bill":
        return BillTemplate(amounts=_clean_amounts(record.get("amounts")), **common)
    return PaydayTemplate(balances=_clean_amounts(record.get("balances")), **common)


def entry_from_record(record: dict) -> Entry:
    entry_type = record.get("type")
    if entry_type is None:
        entry_type = "payday" if "balances" in record else "bill"
    common = dict(
        id=record["id"],
        name=record.get("name", ""),
        month=record.get("month", ""),
        date=int(record.get("date", 1)),
        template_id=record.get("templateId"),
    )
    if entry_type == "payday":
        return Payday(balances=_clean_amounts(record.get("balances")), **common)
    if entry_type == "bill":
        return Bill(amounts=_clean_amounts(record.get("amounts")), paid=bool(record.get("paid", False)), **common)
    raise ValueError(f"Unknown entry type: {entry_type!r}")


def validate_template(template: Template) -> List[str]:
    """Creation-time checks. The generator trusts its input, so run these first."""
    errors = []
    if template.recurrence not in RECURRENCES:
        errors.append(f"Unknown recurrence '{template.recurrence}'")
    if not isinstance(template.day, int) or not 1 <= template.day <= 31:
        errors.append("Day must be between 1 and 31")
    if template.recurrence == "semi-monthly":
        if template.day2 is None:
            errors.append("Semi-monthly templates need a second day")
        elif not 1 <= template.day2 <= 31:
            errors.append("Second day must be between 1 and 31")
    if template.recurrence in ("yearly", "one-time"):
        if not template.month:
            errors.append(f"{template.recurrence.capitalize()} templates need a month")
        elif template.month not in MONTH_INDEX:
            errors.append(f"Unknown month '{template.month}'")
    for label, value in (("start", template.start_month), ("end", template.end_month)):
        if value is not None and value not in MONTH_INDEX:
            errors.append(f"Unknown {label} month '{value}'")
    if not template.name.strip():
        errors.append("Name is required")
    return errors
