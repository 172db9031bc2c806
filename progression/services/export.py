"""CSV export of an event's registrations."""
from sqlalchemy.orm import Session
from datetime import date, datetime
from typing import Iterable, List, Optional
import csv
import io
import re
from progression.services.registration_query import (
    RegistrationQuery, RegistrationQueryEngine, RegistrationRow,
)

EXPORT_HEADERS = [
    "Name",
    "Email",
    "LinkedIn",
    "Registration Date",
    "Attended",
    "Screening Status",
    "Test Score",
    "Test Percentage",
    "Test Passed",
    "Time Taken",
    "Tab Switches",
    "Presentation Status",
    "GitHub Link",
    "Deployment Link",
    "Presentation Link",
    "Qualification Status",
    "Award Type",
    "Admin Score",
    "Admin Notes",
    "Payment Amount",
]


def format_time_taken(seconds: Optional[int]) -> str:
    if seconds is None:
        return ""
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


def _yes_no(value: Optional[bool]) -> str:
    if value is None:
        return ""
    return "Yes" if value else "No"


def _date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


def export_row(row: RegistrationRow) -> list:
    registration = row.registration
    attempt = row.attempt
    return [
        row.user.full_name or "",
        row.user.email or "",
        row.user.profile_url or "",
        _date(registration.registered_at),
        _yes_no(registration.attended),
        registration.screening_status.value,
        f"{attempt.correct_count}/{attempt.total_questions}" if attempt else "",
        f"{attempt.score}%" if attempt else "",
        _yes_no(attempt.passed) if attempt else "",
        format_time_taken(attempt.time_taken_seconds) if attempt else "",
        attempt.tab_switches if attempt else "",
        registration.presentation_status.value,
        registration.repository_url or "",
        registration.demo_url or "",
        registration.presentation_url or "",
        registration.qualification_status.value,
        registration.award_type.value,
        registration.admin_score if registration.admin_score is not None else "",
        registration.admin_notes or "",
        f"{registration.amount_paid:.2f}" if registration.amount_paid is not None else "",
    ]


def write_csv(rows: Iterable[RegistrationRow], stream) -> int:
    writer = csv.writer(stream, quoting=csv.QUOTE_ALL)
    writer.writerow(EXPORT_HEADERS)
    count = 0
    for row in rows:
        writer.writerow(export_row(row))
        count += 1
    return count


def export_csv(db: Session, event_id: int, query: RegistrationQuery, use_denormalized: Optional[bool] = None) -> str:
    """Every registration matching the query, with the current filters and sort, as CSV text."""
    rows: List[RegistrationRow] = RegistrationQueryEngine(db, use_denormalized).export(event_id, query)
    buffer = io.StringIO()
    write_csv(rows, buffer)
    return buffer.getvalue()


def export_filename(event_title: str, today: Optional[date] = None) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", (event_title or "event").lower()).strip("_") or "event"
    return f"{slug}_registrations_{(today or date.today()).isoformat()}.csv"
