from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum


class ComplianceStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLIANT = "compliant"
    AT_RISK = "at_risk"
    NON_COMPLIANT = "non_compliant"


AT_RISK_WINDOW_DAYS = 7


def as_utc(value: datetime) -> datetime:
    # sqlite drops tzinfo on round-trip; treat naive values as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _days_until(due: date | datetime, now: datetime) -> int:
    # Calendar dates compare by day; instants truncate elapsed hours toward zero.
    if isinstance(due, datetime):
        return int((as_utc(due) - now).total_seconds() / 86400)
    return (due - now.date()).days


def derive_status(
    evidence_count: int,
    next_due_date: date | datetime | None,
    now: datetime,
    *,
    at_risk_window_days: int = AT_RISK_WINDOW_DAYS,
) -> ComplianceStatus:
    """Compute a requirement's compliance status.

    Pure function of the stored counter, the optional due date and the
    caller-supplied clock. Rules are evaluated in order:

    1. no evidence -> not started
    2. no due date -> compliant
    3. due date in the past -> non-compliant
    4. due within the at-risk window (whole days) -> at risk
    5. otherwise compliant
    """
    if evidence_count <= 0:
        return ComplianceStatus.NOT_STARTED
    if next_due_date is None:
        return ComplianceStatus.COMPLIANT
    days_until_due = _days_until(next_due_date, as_utc(now))
    if days_until_due < 0:
        return ComplianceStatus.NON_COMPLIANT
    if days_until_due <= at_risk_window_days:
        return ComplianceStatus.AT_RISK
    if evidence_count > 0:
        return ComplianceStatus.COMPLIANT
    return ComplianceStatus.IN_PROGRESS
