"""
Visit pattern calculator.

Derives a customer's typical rebooking cadence and preferred service from
their most recent appointments. Pure function: no I/O, no clock.
"""

from __future__ import annotations

from collections.abc import Sequence

from engagement.features.retention.domain.models import (
    Appointment,
    AppointmentStatus,
    VisitPattern,
)

HISTORY_WINDOW = 10


def calculate_visit_pattern(appointments: Sequence[Appointment]) -> VisitPattern:
    """
    Build a VisitPattern from appointment history.

    Args:
        appointments: History ordered newest first. Only the first
            HISTORY_WINDOW entries are considered; anything not COMPLETED
            inside that window is discarded.

    Returns:
        VisitPattern. ``average_interval_days`` is None and ``confidence`` is
        0.0 when fewer than two completed visits are available.
    """
    window = list(appointments[:HISTORY_WINDOW])
    completed = [a for a in window if a.status == AppointmentStatus.COMPLETED]
    # sorted() is stable, so same-day visits keep their input order
    completed = sorted(completed, key=lambda a: a.date, reverse=True)

    sample_count = len(completed)
    most_frequent = _most_frequent_service(completed)

    if sample_count < 2:
        return VisitPattern(
            average_interval_days=None,
            most_frequent_service_id=most_frequent,
            confidence=0.0,
            sample_count=sample_count,
        )

    gaps = [
        (newer.date - older.date).total_seconds() / 86400
        for newer, older in zip(completed, completed[1:])
    ]

    return VisitPattern(
        average_interval_days=sum(gaps) / len(gaps),
        most_frequent_service_id=most_frequent,
        confidence=min(1.0, sample_count / HISTORY_WINDOW),
        sample_count=sample_count,
    )


def _most_frequent_service(completed: Sequence[Appointment]) -> str | None:
    """Mode of service_id; ties go to the service seen most recently."""
    counts: dict[str, int] = {}
    first_seen: dict[str, int] = {}
    for position, appointment in enumerate(completed):
        service_id = appointment.service_id
        if not service_id:
            continue
        counts[service_id] = counts.get(service_id, 0) + 1
        first_seen.setdefault(service_id, position)

    if not counts:
        return None

    return min(counts, key=lambda sid: (-counts[sid], first_seen[sid]))
