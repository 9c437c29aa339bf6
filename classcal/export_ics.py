"""
iCalendar (.ics) export.

We convert calendar view entries (one-time classes and recurring class
instances) into a calendar file that can be imported into:
- Google Calendar
- Outlook
- Apple Calendar

Every instance is exported as its own VEVENT (no RRULE), so cancelled or
moved instances come out exactly as stored.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterable

from classcal.service import CalendarEntry

# entry status -> ICS STATUS
_ICS_STATUS = {
    "scheduled": "CONFIRMED",
    "active": "CONFIRMED",
    "completed": "CONFIRMED",
    "cancelled": "CANCELLED",
}


def _ics_escape(text: str) -> str:
    """
    Escape text for ICS fields (very small subset, sufficient for our use).
    """
    return (
        text.replace("\\", "\\\\").replace("\r\n", "\\n").replace("\n", "\\n").replace(";", "\\;").replace(",", "\\,")
    )


def _dt_local(day: date, time_hh_mm: str) -> str:
    """
    Convert date + time to ICS local datetime string 'YYYYMMDDTHHMM00'.
    """
    dt = datetime.strptime(f"{day.isoformat()} {time_hh_mm}", "%Y-%m-%d %H:%M")
    return dt.strftime("%Y%m%dT%H%M00")


def export_entries_to_ics(entries: Iterable[CalendarEntry], out_path: str | Path) -> int:
    """
    Export calendar entries to an .ics file. Returns number of exported events.
    """
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    lines: list[str] = []
    lines.append("BEGIN:VCALENDAR")
    lines.append("VERSION:2.0")
    lines.append("PRODID:-//classcal//EN")
    lines.append("CALSCALE:GREGORIAN")

    dtstamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    count = 0
    for entry in entries:
        if not (entry.start_time and entry.end_time):
            continue

        try:
            dtstart = _dt_local(entry.scheduled_date, entry.start_time)
            dtend = _dt_local(entry.scheduled_date, entry.end_time)
        except ValueError:
            continue

        summary = entry.title.strip() or "Class"
        uid = f"{entry.id}-{dtstart}@classcal"

        lines.append("BEGIN:VEVENT")
        lines.append(f"UID:{_ics_escape(uid)}")
        lines.append(f"DTSTAMP:{dtstamp}")
        lines.append(f"DTSTART:{dtstart}")
        lines.append(f"DTEND:{dtend}")
        lines.append(f"SUMMARY:{_ics_escape(summary)}")
        if entry.location:
            lines.append(f"LOCATION:{_ics_escape(entry.location.strip())}")

        notes: list[str] = []
        if entry.description and entry.description.strip():
            notes.append(entry.description.strip())
        if entry.instructor and entry.instructor.strip():
            notes.append(f"Instructor: {entry.instructor.strip()}")
        if notes:
            description = "\n".join(notes)
            lines.append(f"DESCRIPTION:{_ics_escape(description)}")

        lines.append(f"STATUS:{_ICS_STATUS.get(entry.status, 'CONFIRMED')}")
        lines.append("END:VEVENT")
        count += 1

    lines.append("END:VCALENDAR")

    # ICS standard uses CRLF
    out.write_text("\r\n".join(lines) + "\r\n", encoding="utf-8")
    return count
