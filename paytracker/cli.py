import asyncio
import cmd
import shlex
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from paytracker.analytics import calculate_bill_analytics, changed_bills
from paytracker.generator import new_id
from paytracker.logic import Planner
from paytracker.models import (
    MONTH_INDEX, RECURRENCES, Account, Bill, BillTemplate, Payday, PaydayTemplate, Template,
    month_token, validate_template,
)
from paytracker.storage import BackupFormatError, StoreError, read_backup, write_backup

TEMPLATE_FLAGS = ("inactive", "active", "manual")
ENTRY_FLAGS = ("paid",)


class PayTrackerCLI(cmd.Cmd):
    prompt = "(paytracker) "

    def __init__(self, planner: Planner, stdout=None):
        super().__init__(stdout=stdout)
        self.planner = planner
        self.intro = "Welcome to Pay Tracker. Type 'help' for commands."

    def _run(self, coro):
        return asyncio.run(coro)

    def _say(self, text: str = "") -> None:
        self.stdout.write(text + "\n")

    def onecmd(self, line):
        try:
            return super().onecmd(line)
        except (ValueError, BackupFormatError) as e:
            self._say(f"Invalid input: {e}")
        except IndexError:
            self._say("Invalid input: missing argument")
        except StoreError as e:
            self._say(f"Error: {e}")
        except OSError as e:
            self._say(f"Error: {e}")
        return False

    # ===== ACCOUNTS =====
    def do_account(self, arg):
        """Manage accounts: account <add|list|rename|remove|order> [args]

        account add <name>
        account rename <name> <new name>
        account remove <name>
        account order <name> <name> ...
        """
        args = shlex.split(arg)
        if not args:
            self._say(self.do_account.__doc__)
            return

        action, rest = args[0], args[1:]
        if action == "add":
            account = self._run(self.planner.add_account(" ".join(rest)))
            if account is None:
                self._say("An account with that name already exists")
            else:
                self._say(f"✓ Added account: {account.name}")
        elif action == "list":
            accounts = self._run(self.planner.accounts())
            if not accounts:
                self._say("No accounts defined")
                return
            self._say("\nAccounts:")
            for account in accounts:
                self._say(f"  {account.order}. {account.name} [{account.id}]")
        elif action == "rename":
            account = self._account(rest[0])
            self._run(self.planner.rename_account(account.id, " ".join(rest[1:])))
            self._say(f"✓ Renamed account: {account.name}")
        elif action == "remove":
            account = self._account(rest[0])
            self._run(self.planner.remove_account(account.id))
            self._say(f"✓ Removed account: {account.name}")
        elif action == "order":
            ids = [self._account(name).id for name in rest]
            self._run(self.planner.reorder_accounts(ids))
            self._say("✓ Accounts reordered")
        else:
            self._say(self.do_account.__doc__)

    # ===== TEMPLATES =====
    def do_bill(self, arg):
        """Manage bill templates: bill <add|edit|list|delete|prune> [args]

        bill add name=Rent recurrence=monthly day=1 acct:Checking=1200 [day2=N] [month=Mon]
                 [start=Mon] [end=Mon] [inactive] [manual]
        bill edit <template id> key=value ...
        bill delete <template id>     (paid bills are kept)
        bill prune <template id>      (drop unpaid bills the rule no longer produces)
        """
        self._template_command(arg, "bill")

    def do_payday(self, arg):
        """Manage payday templates: payday <add|edit|list|delete|prune> [args]

        payday add name=Payday recurrence=bi-weekly day=9 acct:Checking=2500
        """
        self._template_command(arg, "payday")

    def _template_command(self, arg, kind):
        args = shlex.split(arg)
        if not args:
            self._say(getattr(self, f"do_{kind}").__doc__)
            return

        action, rest = args[0], args[1:]
        if action == "list":
            self._list_templates(kind)
        elif action == "add":
            options = self._parse_options(rest)
            template = self._build_template(kind, new_id(), options)
            created = self._run(
                self.planner.add_template(template) if kind == "bill"
                else self.planner.add_payday_template(template)
            )
            self._say(f"✓ Added {kind} template '{template.name}' ({len(created)} entries generated)")
        elif action == "edit":
            current = self._template(rest[0], kind)
            options = self._parse_options(rest[1:], current)
            template = self._build_template(kind, current.id, options)
            created = self._run(
                self.planner.update_template(template) if kind == "bill"
                else self.planner.update_payday_template(template)
            )
            self._say(f"✓ Updated '{template.name}' ({len(created)} new entries)")
        elif action == "delete":
            deleted = self._run(
                self.planner.delete_template(rest[0]) if kind == "bill"
                else self.planner.delete_payday_template(rest[0])
            )
            self._say(f"✓ Deleted template {rest[0]}" if deleted else "Template not found")
        elif action == "prune":
            template = self._template(rest[0], kind)
            removed = self._run(self.planner.prune_stale_entries(template))
            self._say(f"✓ Removed {len(removed)} stale entries")
        else:
            self._say(getattr(self, f"do_{kind}").__doc__)

    def _list_templates(self, kind):
        templates = self._run(self.planner.templates() if kind == "bill" else self.planner.payday_templates())
        if not templates:
            self._say(f"No {kind} templates defined")
            return
        names = self._account_names()
        self._say(f"\n{kind.capitalize()} templates:")
        for t in templates:
            status = "" if t.is_active else " (inactive)"
            values = ", ".join(f"{names.get(k, k)}: ${v:,.2f}" for k, v in t.values.items())
            self._say(f"  {t.name} [{t.id}] {t.recurrence} day {t.day}{status} - {values}")

    # ===== ENTRIES =====
    def do_entry(self, arg):
        """Manual entries: entry add <bill|payday> name=X month=Mon day=N acct:Name=amount [paid]
        entry delete <entry id>"""
        args = shlex.split(arg)
        if len(args) < 2:
            self._say(self.do_entry.__doc__)
            return

        if args[0] == "add":
            kind = args[1]
            options = self._parse_options(args[2:], flags=ENTRY_FLAGS)
            month = options.get("month", "Jan")
            if month not in MONTH_INDEX:
                raise ValueError(f"Unknown month '{month}'")
            common = dict(
                id=new_id(),
                name=options.get("name", "Payday" if kind == "payday" else ""),
                month=month_token(MONTH_INDEX[month], int(options.get("year", self.planner.year))),
                date=int(options.get("day", 1)),
            )
            if kind == "bill":
                entry = Bill(amounts=options["values"], paid=bool(options.get("paid")), **common)
            elif kind == "payday":
                if options.get("paid"):
                    raise ValueError("Paydays cannot be marked paid")
                entry = Payday(balances=options["values"], **common)
            else:
                raise ValueError("Entry type must be 'bill' or 'payday'")
            self._run(self.planner.add_entry(entry))
            self._say(f"✓ Added {kind} '{entry.name}' on {entry.month} {entry.date} [{entry.id}]")
        elif args[0] == "delete":
            self._run(self.planner.delete_entry(args[1]))
            self._say(f"✓ Deleted entry {args[1]}")
        else:
            self._say(self.do_entry.__doc__)

    def do_pay(self, arg):
        """Mark a bill paid: pay <entry id>"""
        self._run(self.planner.set_paid(arg.strip(), True))
        self._say(f"✓ Marked {arg.strip()} paid")

    def do_unpay(self, arg):
        """Mark a bill unpaid: unpay <entry id>"""
        self._run(self.planner.set_paid(arg.strip(), False))
        self._say(f"✓ Marked {arg.strip()} unpaid")

    # ===== VIEWS =====
    def do_table(self, arg):
        """Show entries by pay period with starting and remaining balances"""
        entries = self._run(self.planner.projection())
        if not entries:
            self._say("No entries")
            return
        names = self._account_names()

        def fmt(values):
            return ", ".join(f"{names.get(k, k)}: ${v:,.2f}" for k, v in values.items()) or "-"

        for entry in entries:
            label = f"{entry.month} {entry.date:>2}  {entry.name}"
            if entry.type == "payday":
                self._say(f"\n{' ' + label + ' ':=^60}")
                self._say(f"  Starting:  {fmt(entry.total_owed or {})}")
                self._say(f"  Remaining: {fmt(entry.calculated_balances or {})}")
            else:
                mark = "x" if entry.paid else " "
                self._say(f"  [{mark}] {label}  {fmt(entry.amounts)}  [{entry.id}]")

    def do_analytics(self, arg):
        """Year-to-date bill totals: analytics [--changed]"""
        planner = self.planner
        templates = self._run(planner.templates())
        entries = self._run(planner.entries())
        results = calculate_bill_analytics(templates, entries, planner.year)
        if "--changed" in arg.split():
            results = changed_bills(results)
        if not results:
            self._say("No bill analytics available")
            return
        self._say(f"\n{' Bills ' + str(planner.year) + ' ':-^50}")
        for a in results:
            self._say(f"  {a.template_name}: paid ${a.ytd_paid:,.2f} of ${a.ytd_planned:,.2f} "
                      f"({a.paid_count}/{a.planned_count})")
            if a.has_change:
                self._say(f"    {a.change_type}: ${a.change_amount:+,.2f} ({a.change_percentage:+.1f}%)")

    # ===== DATA MANAGEMENT =====
    def do_export(self, arg):
        """Export a JSON backup: export <file>"""
        if not arg.strip():
            raise ValueError("Missing file name")
        payload = self._run(self.planner.export_data())
        path = write_backup(payload, Path(arg.strip()))
        self._say(f"✓ Exported {len(payload['entries'])} entries to {path}")

    def do_import(self, arg):
        """Import a JSON backup: import <file>"""
        if not arg.strip():
            raise ValueError("Missing file name")
        payload = read_backup(Path(arg.strip()))
        counts = self._run(self.planner.import_data(payload))
        self._say(f"✓ Imported {counts['entries']} entries, {counts['accounts']} accounts, "
                  f"{counts['templates'] + counts['paydayTemplates']} templates")

    # ===== UTILITIES =====
    def do_exit(self, arg):
        """Exit the program"""
        self._say("Goodbye!")
        return True

    # ===== HELPERS =====
    def _account_names(self) -> Dict[str, str]:
        return {a.id: a.name for a in self._run(self.planner.accounts())}

    def _account(self, ref: str) -> Account:
        for account in self._run(self.planner.accounts()):
            if account.id == ref or account.name.lower() == ref.lower():
                return account
        raise ValueError(f"Unknown account: {ref}")

    def _template(self, template_id: str, kind: str) -> Template:
        template = self._run(self.planner.find_template(template_id))
        if template is None or template.kind != kind:
            raise ValueError(f"{kind.capitalize()} template not found: {template_id}")
        return template

    def _parse_options(self, args: List[str], current: Optional[Template] = None,
                       flags: Tuple[str, ...] = TEMPLATE_FLAGS) -> dict:
        """Parse key=value / acct:Name=amount / bare flag tokens"""
        if current is not None:
            options = {
                "name": current.name,
                "recurrence": current.recurrence,
                "day": current.day,
                "day2": current.day2,
                "month": current.month,
                "start": current.start_month,
                "end": current.end_month,
                "inactive": not current.is_active,
                "manual": not current.auto_generate,
                "values": dict(current.values),
            }
        else:
            options = {"values": {}}

        for token in args:
            if token in flags:
                options["inactive" if token == "active" else token] = token != "active"
                continue
            if "=" not in token:
                raise ValueError(f"Unexpected argument: {token}")
            key, value = token.split("=", 1)
            if key.startswith("acct:"):
                account = self._account(key[5:])
                options["values"][account.id] = float(value)
            else:
                options[key] = value or None
        return options

    @staticmethod
    def _build_template(kind: str, template_id: str, options: dict) -> Template:
        recurrence = options.get("recurrence", "monthly")
        if recurrence not in RECURRENCES:
            raise ValueError(f"Recurrence must be one of: {', '.join(RECURRENCES)}")
        common = dict(
            id=template_id,
            name=options.get("name") or "",
            recurrence=recurrence,
            day=int(options.get("day") or 1),
            day2=int(options["day2"]) if options.get("day2") else None,
            month=options.get("month"),
            start_month=options.get("start"),
            end_month=options.get("end"),
            auto_generate=not options.get("manual"),
            is_active=not options.get("inactive"),
        )
        if kind == "bill":
            template = BillTemplate(amounts=options["values"], **common)
        else:
            template = PaydayTemplate(balances=options["values"], **common)
        errors = validate_template(template)
        if errors:
            raise ValueError("; ".join(errors))
        return template
