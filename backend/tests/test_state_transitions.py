"""State transition tests for the GenerationJob model.

Tests focus on validating the job lifecycle state machine:
- Valid transitions: queued → running → succeeded/failed
- Invalid transitions are rejected with clear error messages
- Terminal states are never left
"""

import pytest

from mockforge.models import Attempt, AttemptMode, AttemptStatus, GenerationJob, JobStatus, JobType, Product
from mockforge.models.job import InvalidStateTransition


@pytest.mark.asyncio
async def test_valid_state_transitions(session):
    """Happy path: queued → running → succeeded, persisted through the session."""
    product = Product(name="Neon Tiger")
    session.add(product)
    await session.flush()

    job = GenerationJob(product_id=product.id, type=JobType.IMAGE, input={"prompt": "tiger"})
    session.add(job)
    await session.flush()
    assert job.status == JobStatus.QUEUED
    assert job.attempts == []

    job.mark_running()
    assert job.status == JobStatus.RUNNING

    job.mark_succeeded({"urls": ["https://cdn.test/a.png"]})
    assert job.status == JobStatus.SUCCEEDED
    assert job.output == {"urls": ["https://cdn.test/a.png"]}
    assert job.is_terminal

    await session.commit()
    await session.refresh(job)
    assert job.status == JobStatus.SUCCEEDED


def test_invalid_state_transition_raises_exception():
    """Cannot go directly from queued to succeeded without dispatch."""
    job = GenerationJob(product_id=Product(name="x").id, type=JobType.IMAGE)

    with pytest.raises(InvalidStateTransition) as exc_info:
        job.mark_succeeded({"urls": []})

    error_message = str(exc_info.value)
    assert "queued" in error_message
    assert "running" in error_message


def test_mark_failed_from_any_non_terminal_state():
    for initial_status in [JobStatus.QUEUED, JobStatus.RUNNING]:
        job = GenerationJob(product_id=Product(name="x").id, type=JobType.MOCKUP, status=initial_status)
        job.mark_failed("model-a: timeout")
        assert job.status == JobStatus.FAILED
        assert job.error == "model-a: timeout"


def test_cannot_transition_from_terminal_states():
    for terminal in [JobStatus.SUCCEEDED, JobStatus.FAILED]:
        job = GenerationJob(product_id=Product(name="x").id, type=JobType.IMAGE, status=terminal)

        with pytest.raises(InvalidStateTransition):
            job.mark_failed("late failure")
        with pytest.raises(InvalidStateTransition):
            job.mark_running()


def test_transitions_touch_updated_at():
    job = GenerationJob(product_id=Product(name="x").id, type=JobType.IMAGE)
    before = job.updated_at

    job.mark_running()

    assert job.updated_at >= before


def test_attempts_round_trip_through_json_column():
    job = GenerationJob(product_id=Product(name="x").id, type=JobType.IMAGE)
    attempts = [
        Attempt(backend_id="model-a", mode=AttemptMode.SYNCHRONOUS).succeeded("https://r.test/a.png"),
        Attempt(backend_id="model-b", mode=AttemptMode.ASYNCHRONOUS, external_handle="p-1"),
    ]

    job.set_attempts(attempts)

    assert job.attempts[0]["status"] == "succeeded"
    assert job.get_attempts() == attempts
    assert [a.is_outstanding for a in job.get_attempts()] == [False, True]


def test_attempt_failed_keeps_identity():
    attempt = Attempt(backend_id="model-b", mode=AttemptMode.ASYNCHRONOUS, external_handle="p-1")

    failed = attempt.failed("Prediction was canceled")

    assert failed.status == AttemptStatus.FAILED
    assert failed.external_handle == "p-1"
    assert attempt.status == AttemptStatus.PENDING
