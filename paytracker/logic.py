import logging
from typing import Iterable, List, Optional, Set

from paytracker.config import current_year
from paytracker.generator import IdFactory, expand, new_id
from paytracker.models import (
    Account, BillTemplate, Entry, PaydayTemplate, Template,
    account_from_record, entry_from_record, parse_month_token, template_from_record,
)
from paytracker.projection import dedupe_entries, occurrence_key, project
from paytracker.storage import (
    ACCOUNTS, ENTRIES, PAYDAY_TEMPLATES, TEMPLATES, Store, StoreError, export_backup, import_backup,
)

logger = logging.getLogger(__name__)


def _template_collection(template: Template) -> str:
    if template.kind == "bill":
        return TEMPLATES
    if template.kind == "payday":
        return PAYDAY_TEMPLATES
    raise TypeError(f"Unsupported template kind: {template.kind!r}")


def _is_removable(entry: Entry) -> bool:
    # paid bills are history and stay; paydays have no paid flag
    return entry.type == "payday" or not entry.paid


class Planner:
    """Store-backed operations on accounts, templates and entries.

    Template changes regenerate the template's entries for ``year``. Every
    store write is awaited on its own, in order; a failure stops the batch
    and propagates, leaving whatever was already written in place.
    """

    def __init__(self, store: Store, year: Optional[int] = None, id_factory: Optional[IdFactory] = None):
        self.store = store
        self.year = year or current_year()
        self.id_factory = id_factory or new_id

    # ===== READS =====
    async def entries(self) -> List[Entry]:
        entries = []
        for record in await self.store.list(ENTRIES):
            try:
                entries.append(entry_from_record(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable entry %r: %s", record.get("id"), e)
        return entries

    async def accounts(self) -> List[Account]:
        accounts = [account_from_record(r) for r in await self.store.list(ACCOUNTS)]
        return sorted(accounts, key=lambda a: a.order)

    async def templates(self) -> List[BillTemplate]:
        return [template_from_record(r, "bill") for r in await self.store.list(TEMPLATES)]

    async def payday_templates(self) -> List[PaydayTemplate]:
        return [template_from_record(r, "payday") for r in await self.store.list(PAYDAY_TEMPLATES)]

    async def find_template(self, template_id: str) -> Optional[Template]:
        for template in [*await self.templates(), *await self.payday_templates()]:
            if template.id == template_id:
                return template
        return None

    async def projection(self) -> List[Entry]:
        """Entries in date order with per-period balances attached."""
        return project(dedupe_entries(await self.entries()), await self.accounts())

    # ===== ENTRIES =====
    async def add_entry(self, entry: Entry) -> Entry:
        await self.store.create(ENTRIES, entry.to_record())
        return entry

    async def update_entry(self, entry: Entry) -> Entry:
        await self.store.update(ENTRIES, entry.id, entry.to_record())
        return entry

    async def delete_entry(self, entry_id: str) -> None:
        await self.store.delete(ENTRIES, entry_id)

    async def set_paid(self, entry_id: str, paid: bool = True) -> None:
        for entry in await self.entries():
            if entry.id == entry_id:
                if entry.type != "bill":
                    raise ValueError("Only bills can be marked paid")
                await self.store.update(ENTRIES, entry_id, {"paid": paid})
                return
        raise ValueError(f"Entry not found: {entry_id}")

    # ===== ACCOUNTS =====
    async def add_account(self, name: str) -> Optional[Account]:
        """Add an account; returns None if the name is taken (case-insensitive)."""
        name = name.strip()
        accounts = await self.accounts()
        if not name or any(a.name.lower() == name.lower() for a in accounts):
            return None
        account = Account(id=self.id_factory(), name=name, order=len(accounts))
        await self.store.create(ACCOUNTS, account.to_record())
        return account

    async def rename_account(self, account_id: str, name: str) -> None:
        await self.store.update(ACCOUNTS, account_id, {"name": name.strip()})

    async def remove_account(self, account_id: str) -> None:
        # entries keep their amounts for this id as dangling keys
        await self.store.delete(ACCOUNTS, account_id)

    async def reorder_accounts(self, account_ids: Iterable[str]) -> None:
        """Put ``account_ids`` first; the rest follow in their current order."""
        accounts = await self.accounts()
        known = {a.id for a in accounts}
        leading = []
        for account_id in account_ids:
            if account_id not in known:
                raise ValueError(f"Unknown account: {account_id}")
            if account_id not in leading:
                leading.append(account_id)
        ordered = leading + [a.id for a in accounts if a.id not in leading]
        for index, account_id in enumerate(ordered):
            await self.store.update(ACCOUNTS, account_id, {"order": index})

    # ===== TEMPLATES =====
    async def add_template(self, template: BillTemplate) -> List[Entry]:
        return await self._add(template)

    async def update_template(self, template: BillTemplate) -> List[Entry]:
        return await self._update(template)

    async def delete_template(self, template_id: str) -> bool:
        return await self._delete(template_id, TEMPLATES)

    async def add_payday_template(self, template: PaydayTemplate) -> List[Entry]:
        return await self._add(template)

    async def update_payday_template(self, template: PaydayTemplate) -> List[Entry]:
        return await self._update(template)

    async def delete_payday_template(self, template_id: str) -> bool:
        return await self._delete(template_id, PAYDAY_TEMPLATES)

    async def _add(self, template: Template) -> List[Entry]:
        await self.store.create(_template_collection(template), template.to_record())
        return await self.sync_template(template)

    async def _update(self, template: Template) -> List[Entry]:
        await self.store.update(_template_collection(template), template.id, template.to_record())
        return await self.sync_template(template)

    async def _delete(self, template_id: str, collection: str) -> bool:
        records = await self.store.list(collection)
        record = next((r for r in records if r.get("id") == template_id), None)
        if record is None:
            return False
        template = template_from_record(record, "bill" if collection == TEMPLATES else "payday")
        await self.store.delete(collection, template_id)
        await self.purge_template_entries(template)
        return True

    # ===== SYNCHRONIZATION =====
    async def sync_template(self, template: Template) -> List[Entry]:
        """Add the template's occurrences for this year that aren't stored yet.

        Existing entries for the same (template, month, day) are never
        touched or duplicated. Entries the rule no longer produces are left
        alone too; see ``prune_stale_entries``.
        """
        existing: Set[tuple] = {occurrence_key(e) for e in await self.entries()}
        created = []
        for entry in expand(template, self.year, self.id_factory):
            key = occurrence_key(entry)
            if key in existing:
                continue
            await self._write(self.store.create(ENTRIES, entry.to_record()), "add", created, template)
            existing.add(key)
            created.append(entry)
        logger.info("Synced template %s (%s): %d new entries", template.id, template.name, len(created))
        return created

    async def purge_template_entries(self, template: Template) -> List[str]:
        """Remove unpaid entries linked to a deleted template; paid bills remain."""
        removed = []
        for entry in await self.entries():
            if entry.template_id != template.id or not _is_removable(entry):
                continue
            await self._write(self.store.delete(ENTRIES, entry.id), "delete", removed, template)
            removed.append(entry.id)
        logger.info("Removed %d entries of deleted template %s", len(removed), template.id)
        return removed

    async def prune_stale_entries(self, template: Template) -> List[str]:
        """User-requested cleanup of unpaid entries the template's rule no longer yields.

        Only entries in the planner's year are considered.
        """
        wanted = {occurrence_key(e) for e in expand(template, self.year, self.id_factory)}
        removed = []
        for entry in await self.entries():
            if entry.template_id != template.id or not _is_removable(entry):
                continue
            parsed = parse_month_token(entry.month)
            if parsed is None or parsed[0] != self.year or occurrence_key(entry) in wanted:
                continue
            await self._write(self.store.delete(ENTRIES, entry.id), "delete", removed, template)
            removed.append(entry.id)
        logger.info("Pruned %d stale entries of template %s", len(removed), template.id)
        return removed

    async def _write(self, operation, action: str, done: list, template: Template) -> None:
        try:
            await operation
        except StoreError:
            logger.error(
                "Store %s failed for template %s after %d completed writes", action, template.id, len(done)
            )
            raise

    # ===== BACKUP =====
    async def export_data(self) -> dict:
        return await export_backup(self.store)

    async def import_data(self, payload: dict) -> dict:
        return await import_backup(self.store, payload)
