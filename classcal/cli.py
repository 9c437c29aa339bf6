"""
CLI (Command Line Interface).

Terminal commands around the class lifecycle service, e.g.:

    classcal create class.json
    classcal preview class.json
    classcal list --search yoga
    classcal instances <class_id>
    classcal edit-instance <class_id> 2026-02-03 --start 09:00 --status cancelled
    classcal regenerate <class_id>
    classcal calendar 2026-02-01 2026-02-28
    classcal export 2026-02-01 2026-02-28 out.ics

Payload files use the camelCase JSON of the class API:

    {"title": "Yoga", "isRecurring": true,
     "recurrence": {"type": "weekly", "startDate": "2026-02-01",
                    "dayWiseTimeSlots": [{"day": "tuesday",
                                          "timeSlots": [{"startTime": "09:00", "endTime": "10:00"}]}]}}

Data lives in the JSON file named by CLASSCAL_DB_PATH (see classcal.config).
"""

from __future__ import annotations

import argparse
import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from classcal.config import Settings, load_settings
from classcal.errors import ClassCalError, ValidationError
from classcal.expander import expand
from classcal.export_ics import export_entries_to_ics
from classcal.model import CLASS_STATUSES, INSTANCE_STATUSES, ClassInstance, ClassRecord
from classcal.service import CalendarEntry, ClassQuery, ClassService, Pagination
from classcal.storage import JsonDatabase
from classcal.validation import (
    normalize_time,
    parse_date,
    validate_class_status,
    validate_create_class,
    validate_instance_changes,
    validate_instance_status,
    validate_update_class,
)

logger = logging.getLogger(__name__)

console = Console()


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _open_service(settings: Settings) -> ClassService:
    db = JsonDatabase(settings.db_path)
    return ClassService(db.classes, db.instances, settings=settings)


def _load_payload(path: str) -> Any:
    """
    Load a JSON payload file. Problems with the file are reported as a
    ValidationError so the command fails cleanly.
    """
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ValidationError(f"File not found: {path}") from None
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Cannot read JSON from {path}: {e}") from None


def _date_arg(value: str, name: str) -> date:
    try:
        return parse_date(value)
    except ValueError:
        raise ValidationError("Invalid input data", [{"field": name, "message": f"Invalid date: {value!r}"}]) from None


def _time_arg(value: Optional[str], name: str) -> Optional[str]:
    if value is None:
        return None
    try:
        return normalize_time(value)
    except ValueError:
        raise ValidationError(
            "Invalid input data", [{"field": name, "message": f"{name} must be in HH:mm format"}]
        ) from None


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _print_instances(instances: Iterable[ClassInstance], title: str) -> None:
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("Date")
    table.add_column("Day")
    table.add_column("Time")
    table.add_column("Status")
    table.add_column("ID", overflow="fold")
    for inst in instances:
        table.add_row(
            inst.scheduled_date.isoformat(),
            inst.scheduled_date.strftime("%a"),
            f"{inst.start_time}-{inst.end_time}",
            inst.status,
            inst.id or "-",
        )
    console.print(table)


def _print_classes(classes: list[ClassRecord], pagination: Pagination) -> None:
    table = Table(title=f"Classes (page {pagination.page}/{max(pagination.total_pages, 1)})", box=box.SIMPLE)
    table.add_column("ID", overflow="fold")
    table.add_column("Title")
    table.add_column("Instructor")
    table.add_column("Schedule")
    table.add_column("Status")
    for c in classes:
        if c.is_recurring and c.recurrence is not None:
            schedule = f"{c.recurrence.type} from {c.recurrence.start_date.isoformat()}"
        elif c.scheduled_date is not None:
            schedule = f"{c.scheduled_date.isoformat()} {c.start_time or ''}-{c.end_time or ''}"
        else:
            schedule = "-"
        table.add_row(c.id or "-", c.title, c.instructor or "", schedule, c.status)
    console.print(table)
    print(f"Total: {pagination.total}")


def _print_calendar(entries: list[CalendarEntry], title: str) -> None:
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("Date")
    table.add_column("Time")
    table.add_column("Title")
    table.add_column("Location")
    table.add_column("Type")
    table.add_column("Status")
    for e in entries:
        table.add_row(
            e.scheduled_date.isoformat(),
            f"{e.start_time}-{e.end_time}",
            e.title,
            e.location or "",
            e.kind,
            e.status,
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_create(args: argparse.Namespace, service: ClassService) -> int:
    record = validate_create_class(_load_payload(args.file))
    saved, instances = service.create_class(record)
    if instances is None:
        print(f"Created class {saved.id}")
    else:
        print(f"Created class {saved.id} with {len(instances)} instances")
    return 0


def _cmd_preview(args: argparse.Namespace, settings: Settings) -> int:
    """
    Show the instances a class payload would generate, without storing anything.
    """
    record = validate_create_class(_load_payload(args.file))
    if not record.is_recurring or record.recurrence is None:
        print("Not a recurring class: nothing to expand.")
        return 0

    instances = expand(record.recurrence, "preview", settings.hard_cap)
    shown = instances[: args.limit] if args.limit else instances
    _print_instances(shown, title=f"{record.title}: {len(instances)} instances")
    if len(shown) < len(instances):
        print(f"... and {len(instances) - len(shown)} more")
    return 0


def _cmd_list(args: argparse.Namespace, service: ClassService) -> int:
    recurring: Optional[bool] = None
    if args.recurring:
        recurring = True
    elif args.one_time:
        recurring = False

    start = _date_arg(args.date_from, "from") if args.date_from else None
    end = _date_arg(args.date_to, "to") if args.date_to else None

    query = ClassQuery(
        status=args.status,
        is_recurring=recurring,
        search=args.search,
        start_date=start,
        end_date=end,
        page=args.page,
        limit=args.limit,
    )
    classes, pagination = service.list_classes(query)
    if not classes:
        print("No classes.")
        return 0
    _print_classes(classes, pagination)
    return 0


def _cmd_show(args: argparse.Namespace, service: ClassService) -> int:
    record = service.get_class(args.class_id)
    print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    return 0


def _cmd_update(args: argparse.Namespace, service: ClassService) -> int:
    changes = validate_update_class(_load_payload(args.file))
    if not changes:
        print("Nothing to update.")
        return 1
    updated, instances = service.update_class(args.class_id, changes)
    if instances is None:
        print(f"Updated class {updated.id}")
    else:
        print(f"Updated class {updated.id}; {len(instances)} instances regenerated")
    return 0


def _cmd_status(args: argparse.Namespace, service: ClassService) -> int:
    status = validate_class_status(args.status)
    updated = service.update_class_status(args.class_id, status)
    print(f"Class {updated.id} is now {updated.status}")
    return 0


def _cmd_delete(args: argparse.Namespace, service: ClassService) -> int:
    removed = service.delete_class(args.class_id)
    print(f"Deleted class {args.class_id} ({removed} instances)")
    return 0


def _cmd_regenerate(args: argparse.Namespace, service: ClassService) -> int:
    inserted = service.regenerate_instances(args.class_id)
    print(f"Regenerated {len(inserted)} instances for class {args.class_id}")
    return 0


def _cmd_instances(args: argparse.Namespace, service: ClassService) -> int:
    service.get_class(args.class_id)
    instances, pagination = service.get_instances_by_class(args.class_id, page=args.page, limit=args.limit)
    if not instances:
        print("No instances.")
        return 0
    _print_instances(
        instances, title=f"Instances (page {pagination.page}/{max(pagination.total_pages, 1)}, total {pagination.total})"
    )
    return 0


def _cmd_calendar(args: argparse.Namespace, service: ClassService) -> int:
    start = _date_arg(args.start, "start")
    end = _date_arg(args.end, "end")
    entries = service.get_calendar_view(start, end)
    if args.status:
        entries = [e for e in entries if e.status == args.status]
    if not entries:
        print("Nothing scheduled.")
        return 0
    _print_calendar(entries, title=f"{start.isoformat()} .. {end.isoformat()}")
    return 0


def _cmd_set_instance(args: argparse.Namespace, service: ClassService) -> int:
    status = validate_instance_status(args.status)
    inst = service.update_instance_status(args.instance_id, status)
    print(f"Instance {inst.id} on {inst.scheduled_date.isoformat()} {inst.start_time} is now {inst.status}")
    return 0


def _cmd_edit_instance(args: argparse.Namespace, service: ClassService) -> int:
    day = _date_arg(args.date, "date")
    start = _time_arg(args.start, "start")

    payload: dict[str, Any] = {}
    if args.status:
        payload["status"] = args.status
    if args.new_date:
        payload["scheduledDate"] = args.new_date
    if args.new_start:
        payload["startTime"] = args.new_start
    if args.new_end:
        payload["endTime"] = args.new_end
    changes = validate_instance_changes(payload)

    inst = service.update_instance_by_details(args.class_id, day, start, changes)
    print(
        f"Instance {inst.id}: {inst.scheduled_date.isoformat()} {inst.start_time}-{inst.end_time} ({inst.status})"
    )
    return 0


def _cmd_export(args: argparse.Namespace, service: ClassService) -> int:
    """
    Export the calendar view of a date range into an iCalendar (.ics) file.
    """
    start = _date_arg(args.start, "start")
    end = _date_arg(args.end, "end")

    out_path = (args.out or "").strip()
    if not out_path:
        print("Please provide output .ics path.")
        return 1

    entries = service.get_calendar_view(start, end)
    if not entries:
        print("Nothing to export.")
        return 0

    n = export_entries_to_ics(entries, out_path)
    print(f"Exported {n} events to: {out_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="classcal", description="Recurring class scheduler")
    sub = parser.add_subparsers(dest="command", required=True)

    p_create = sub.add_parser("create", help="Create a class from a JSON payload file")
    p_create.add_argument("file", type=str, help="Payload file (JSON)")

    p_preview = sub.add_parser("preview", help="Show the instances a payload would generate")
    p_preview.add_argument("file", type=str, help="Payload file (JSON)")
    p_preview.add_argument("--limit", type=int, default=20, help="Rows to show (0 = all)")

    p_list = sub.add_parser("list", help="List classes")
    p_list.add_argument("--status", choices=CLASS_STATUSES)
    p_list.add_argument("--search", type=str, help="Match title or instructor")
    kind = p_list.add_mutually_exclusive_group()
    kind.add_argument("--recurring", action="store_true", help="Only recurring classes")
    kind.add_argument("--one-time", action="store_true", help="Only one-time classes")
    p_list.add_argument("--from", dest="date_from", type=str, help="Range start (YYYY-MM-DD)")
    p_list.add_argument("--to", dest="date_to", type=str, help="Range end (YYYY-MM-DD)")
    p_list.add_argument("--page", type=int, default=1)
    p_list.add_argument("--limit", type=int, default=None)

    p_show = sub.add_parser("show", help="Show one class as JSON")
    p_show.add_argument("class_id", type=str)

    p_update = sub.add_parser("update", help="Update a class from a JSON payload file")
    p_update.add_argument("class_id", type=str)
    p_update.add_argument("file", type=str, help="Payload file with the changed fields (JSON)")

    p_status = sub.add_parser("status", help="Set class status")
    p_status.add_argument("class_id", type=str)
    p_status.add_argument("status", choices=CLASS_STATUSES)

    p_delete = sub.add_parser("delete", help="Delete a class and its instances")
    p_delete.add_argument("class_id", type=str)

    p_regen = sub.add_parser("regenerate", help="Regenerate future instances of a recurring class")
    p_regen.add_argument("class_id", type=str)

    p_inst = sub.add_parser("instances", help="List instances of a class")
    p_inst.add_argument("class_id", type=str)
    p_inst.add_argument("--page", type=int, default=1)
    p_inst.add_argument("--limit", type=int, default=None)

    p_cal = sub.add_parser("calendar", help="Show everything scheduled in a date range")
    p_cal.add_argument("start", type=str, help="YYYY-MM-DD")
    p_cal.add_argument("end", type=str, help="YYYY-MM-DD")
    p_cal.add_argument("--status", choices=INSTANCE_STATUSES + CLASS_STATUSES[:1])

    p_set = sub.add_parser("set-instance", help="Set the status of one instance by id")
    p_set.add_argument("instance_id", type=str)
    p_set.add_argument("status", choices=INSTANCE_STATUSES)

    p_edit = sub.add_parser("edit-instance", help="Edit the instance of a class on a given date")
    p_edit.add_argument("class_id", type=str)
    p_edit.add_argument("date", type=str, help="Scheduled date (YYYY-MM-DD)")
    p_edit.add_argument("--start", type=str, help="Start time of the instance (HH:MM)")
    p_edit.add_argument("--status", choices=INSTANCE_STATUSES)
    p_edit.add_argument("--new-date", type=str, help="Move to date (YYYY-MM-DD)")
    p_edit.add_argument("--new-start", type=str, help="New start time (HH:MM)")
    p_edit.add_argument("--new-end", type=str, help="New end time (HH:MM)")

    p_export = sub.add_parser("export", help="Export a date range to .ics")
    p_export.add_argument("start", type=str, help="YYYY-MM-DD")
    p_export.add_argument("end", type=str, help="YYYY-MM-DD")
    p_export.add_argument("out", type=str, help="Output file path (e.g. out.ics)")

    return parser


_HANDLERS = {
    "create": _cmd_create,
    "list": _cmd_list,
    "show": _cmd_show,
    "update": _cmd_update,
    "status": _cmd_status,
    "delete": _cmd_delete,
    "regenerate": _cmd_regenerate,
    "instances": _cmd_instances,
    "calendar": _cmd_calendar,
    "set-instance": _cmd_set_instance,
    "edit-instance": _cmd_edit_instance,
    "export": _cmd_export,
}


def _print_error(err: ClassCalError) -> None:
    print(f"Error: {err.message}")
    for detail in getattr(err, "errors", []):
        print(f"  - {detail.get('field')}: {detail.get('message')}")


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, dispatches to command handlers,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings()
    _setup_logging(settings.log_level)

    try:
        if args.command == "preview":
            raise SystemExit(_cmd_preview(args, settings))

        handler = _HANDLERS.get(args.command)
        if handler is None:
            raise SystemExit(2)

        service = _open_service(settings)
        raise SystemExit(handler(args, service))
    except ClassCalError as e:
        if e.is_operational:
            logger.error("%s failed: %s", args.command, e.message, exc_info=True)
        _print_error(e)
        raise SystemExit(1) from e
