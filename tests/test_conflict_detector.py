"""Tests for interval overlap and conflict detection."""

from datetime import timedelta

import pytest

from app.schemas.appointments import AppointmentStatus
from app.services.conflict_detector import ConflictDetector, intervals_overlap
from tests.conftest import NOW

T0 = NOW + timedelta(days=2)


def at(minutes: int):
    return T0 + timedelta(minutes=minutes)


@pytest.mark.parametrize(
    ("new_start", "new_end", "expected"),
    [
        (at(15), at(45), True),  # starts inside
        (at(-15), at(15), True),  # ends inside
        (at(-15), at(45), True),  # contains
        (at(5), at(25), True),  # contained
        (at(0), at(30), True),  # identical
        (at(30), at(60), False),  # back to back after
        (at(-30), at(0), False),  # back to back before
        (at(60), at(90), False),  # disjoint
    ],
)
def test_intervals_overlap(new_start, new_end, expected) -> None:
    """Existing interval is [0, 30) minutes."""
    assert intervals_overlap(new_start, new_end, at(0), at(30)) is expected
    assert intervals_overlap(at(0), at(30), new_start, new_end) is expected


@pytest.fixture
def detector(repository, settings) -> ConflictDetector:
    return ConflictDetector(repository, settings.max_appointment_duration_minutes)


@pytest.mark.asyncio
async def test_doctor_conflict_detected(detector, repository, doctor, patient) -> None:
    """Test overlaps on the same doctor."""
    repository.seed_appointment(doctor, patient, at(0), duration_minutes=30)
    other_patient = repository.add_patient("Beatriz Rocha")

    assert await detector.has_conflict(doctor.id, other_patient.id, at(15), 30)
    assert await detector.has_conflict(doctor.id, other_patient.id, at(-15), 30)
    assert not await detector.has_conflict(doctor.id, other_patient.id, at(30), 30)
    assert not await detector.has_conflict(doctor.id, other_patient.id, at(-30), 30)


@pytest.mark.asyncio
async def test_patient_conflict_across_doctors(detector, repository, doctor, patient) -> None:
    """Test overlaps on the same patient with another doctor."""
    repository.seed_appointment(doctor, patient, at(0), duration_minutes=60)
    other_doctor = repository.add_doctor("Dr. Paulo Reis")

    conflict = await detector.find_conflict(other_doctor.id, patient.id, at(30), 30)

    assert conflict is not None
    assert conflict.patient_id == patient.id


@pytest.mark.asyncio
async def test_long_appointment_starting_earlier_conflicts(
    detector, repository, doctor, patient
) -> None:
    """Test a long appointment starting earlier is found."""
    repository.seed_appointment(doctor, patient, at(-240), duration_minutes=300)
    other_patient = repository.add_patient("Beatriz Rocha")

    assert await detector.has_conflict(doctor.id, other_patient.id, at(0), 30)
    assert not await detector.has_conflict(doctor.id, other_patient.id, at(60), 30)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status",
    [AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW],
)
async def test_terminal_appointments_do_not_conflict(
    detector, repository, doctor, patient, status
) -> None:
    """Test cancelled and finished appointments never conflict."""
    repository.seed_appointment(doctor, patient, at(0), status=status)

    assert not await detector.has_conflict(doctor.id, patient.id, at(0), 30)


@pytest.mark.asyncio
async def test_ignored_appointment_does_not_conflict_with_itself(
    detector, repository, doctor, patient
) -> None:
    """Test the rescheduled appointment is ignored."""
    existing = repository.seed_appointment(doctor, patient, at(0))

    assert await detector.has_conflict(doctor.id, patient.id, at(15), 30)
    assert not await detector.has_conflict(
        doctor.id, patient.id, at(15), 30, ignore_appointment_id=existing.id
    )


@pytest.mark.asyncio
async def test_unrelated_participants_do_not_conflict(
    detector, repository, doctor, patient
) -> None:
    """Test other doctors and patients are ignored."""
    repository.seed_appointment(doctor, patient, at(0))
    other_doctor = repository.add_doctor("Dr. Paulo Reis")
    other_patient = repository.add_patient("Beatriz Rocha")

    assert not await detector.has_conflict(other_doctor.id, other_patient.id, at(0), 30)
