from datetime import UTC, datetime

from engagement.features.retention.domain import AppointmentStatus
from engagement.features.retention.pipeline import HISTORY_WINDOW, calculate_visit_pattern
from tests.fakes import make_appointment

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def test_empty_history_has_no_prediction():
    pattern = calculate_visit_pattern([])

    assert pattern.average_interval_days is None
    assert pattern.most_frequent_service_id is None
    assert pattern.confidence == 0.0
    assert pattern.sample_count == 0


def test_single_completed_visit_has_no_interval():
    pattern = calculate_visit_pattern([make_appointment("u1", 5, service_id="color", now=NOW)])

    assert pattern.average_interval_days is None
    assert pattern.confidence == 0.0
    assert pattern.most_frequent_service_id == "color"
    assert not pattern.has_prediction


def test_average_interval_over_completed_visits():
    history = [
        make_appointment("u1", 0, now=NOW),
        make_appointment("u1", 10, now=NOW),
        make_appointment("u1", 24, now=NOW),
    ]

    pattern = calculate_visit_pattern(history)

    assert pattern.average_interval_days == 12.0
    assert pattern.sample_count == 3
    assert pattern.confidence == 3 / HISTORY_WINDOW


def test_non_completed_appointments_are_ignored():
    history = [
        make_appointment("u1", 0, now=NOW),
        make_appointment("u1", 3, status=AppointmentStatus.CANCELLED, now=NOW),
        make_appointment("u1", 5, status=AppointmentStatus.NO_SHOW, now=NOW),
        make_appointment("u1", 10, now=NOW),
    ]

    pattern = calculate_visit_pattern(history)

    assert pattern.sample_count == 2
    assert pattern.average_interval_days == 10.0


def test_only_most_recent_window_is_considered():
    history = [make_appointment("u1", i * 7, now=NOW) for i in range(HISTORY_WINDOW)]
    # An old outlier past the window must not stretch the average
    history.append(make_appointment("u1", 400, now=NOW))

    pattern = calculate_visit_pattern(history)

    assert pattern.sample_count == HISTORY_WINDOW
    assert pattern.average_interval_days == 7.0
    assert pattern.confidence == 1.0


def test_most_frequent_service_tie_goes_to_most_recent():
    history = [
        make_appointment("u1", 0, service_id="beard", now=NOW),
        make_appointment("u1", 14, service_id="haircut", now=NOW),
        make_appointment("u1", 28, service_id="haircut", now=NOW),
        make_appointment("u1", 42, service_id="beard", now=NOW),
    ]

    pattern = calculate_visit_pattern(history)

    assert pattern.most_frequent_service_id == "beard"


def test_most_frequent_service_picks_mode():
    history = [
        make_appointment("u1", 0, service_id="beard", now=NOW),
        make_appointment("u1", 14, service_id="haircut", now=NOW),
        make_appointment("u1", 28, service_id="haircut", now=NOW),
    ]

    assert calculate_visit_pattern(history).most_frequent_service_id == "haircut"


def test_confidence_grows_with_samples_and_caps_at_one():
    confidences = []
    for count in range(2, 15):
        history = [make_appointment("u1", i * 10, now=NOW) for i in range(count)]
        confidences.append(calculate_visit_pattern(history).confidence)

    assert confidences == sorted(confidences)
    assert all(0.0 <= c <= 1.0 for c in confidences)
    assert confidences[-1] == 1.0


def test_input_order_does_not_matter():
    ordered = [make_appointment("u1", d, now=NOW) for d in (0, 10, 24)]
    shuffled = [ordered[1], ordered[2], ordered[0]]

    assert calculate_visit_pattern(shuffled) == calculate_visit_pattern(ordered)
