"""Fan-out/fan-in reconciler tests.

- Status reduction over attempt statuses
- Idempotent publication across repeated settles
- Publication failures keep the job running
"""

import pytest
from conftest import FakeAsyncBackend, FakeSyncBackend, FakeUnitOfWork, add_job, make_registry

from mockforge.models import Attempt, AttemptMode, AttemptStatus, JobStatus, JobType
from mockforge.services.generation.adapter import GenerationAdapter
from mockforge.services.publisher import AssetPublisher
from mockforge.services.reconciler import Reconciler, reduce_status


def attempt(backend_id: str, status: AttemptStatus) -> Attempt:
    return Attempt(
        backend_id=backend_id,
        mode=AttemptMode.ASYNCHRONOUS,
        external_handle=f"{backend_id}-1",
        status=status,
        error="boom" if status == AttemptStatus.FAILED else None,
    )


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        ([AttemptStatus.PENDING, AttemptStatus.SUCCEEDED], JobStatus.RUNNING),
        ([AttemptStatus.PENDING, AttemptStatus.FAILED], JobStatus.RUNNING),
        ([AttemptStatus.FAILED, AttemptStatus.SUCCEEDED], JobStatus.SUCCEEDED),
        ([AttemptStatus.SUCCEEDED], JobStatus.SUCCEEDED),
        ([AttemptStatus.FAILED, AttemptStatus.FAILED], JobStatus.FAILED),
        ([], JobStatus.FAILED),
    ],
)
def test_reduce_status(statuses, expected):
    attempts = [attempt(f"model-{i}", s) for i, s in enumerate(statuses)]
    assert reduce_status(attempts) == expected


async def dispatch(store, product, registry, job_type=JobType.IMAGE, **job_input):
    """Create a running job with attempts from the adapter, as the scheduler does."""
    adapter = GenerationAdapter(registry)
    job = add_job(store, product, job_type, **job_input)
    attempts = await adapter.start(job.type, job.input)
    job.mark_running()
    job.set_attempts(attempts)
    return adapter, job


@pytest.mark.asyncio
async def test_publication_is_idempotent(store, product, blob_store):
    registry = make_registry(
        image=[FakeSyncBackend("model-a"), FakeAsyncBackend("model-b", polls_until_done=5)]
    )
    adapter, job = await dispatch(store, product, registry, prompt="tiger")
    reconciler = Reconciler(adapter, AssetPublisher(blob_store))
    uow = FakeUnitOfWork(store)

    for _ in range(3):
        outcome = await reconciler.settle(uow, job)
        assert outcome.status == JobStatus.RUNNING

    assert len(store.assets) == 1
    assert len(blob_store.objects) == 1
    asset = next(iter(store.assets.values()))
    assert asset.backend_id == "model-a"
    assert asset.job_id == job.id
    assert "model-a" in asset.path


@pytest.mark.asyncio
async def test_poll_persists_changes_and_settles(store, product, blob_store):
    registry = make_registry(image=[FakeAsyncBackend("model-b", polls_until_done=2)])
    adapter, job = await dispatch(store, product, registry, prompt="tiger")
    reconciler = Reconciler(adapter, AssetPublisher(blob_store))
    uow = FakeUnitOfWork(store)

    first = await reconciler.poll(uow, job)
    assert first.status == JobStatus.RUNNING
    assert store.commits == 0

    second = await reconciler.poll(uow, job)
    assert second.status == JobStatus.SUCCEEDED
    assert job.status == JobStatus.SUCCEEDED
    assert job.get_attempts()[0].status == AttemptStatus.SUCCEEDED

    asset = next(iter(store.assets.values()))
    # Single-attempt jobs keep the plain path
    assert "model-b" not in asset.path
    assert asset.asset_metadata["width"] == 1024
    assert job.output["assets"][0]["backend_id"] == "model-b"


@pytest.mark.asyncio
async def test_catalog_failure_keeps_job_running(store, product, blob_store):
    registry = make_registry(image=[FakeSyncBackend("model-a")])
    adapter, job = await dispatch(store, product, registry, prompt="tiger")
    reconciler = Reconciler(adapter, AssetPublisher(blob_store))
    uow = FakeUnitOfWork(store)
    store.catalog_failures = 1

    outcome = await reconciler.settle(uow, job)

    assert outcome.status == JobStatus.RUNNING
    assert "simulated catalog outage" in outcome.publication_error
    assert job.status == JobStatus.RUNNING
    assert store.rollbacks == 1

    outcome = await reconciler.settle(uow, job)
    assert outcome.status == JobStatus.SUCCEEDED
    assert len(store.assets) == 1


@pytest.mark.asyncio
async def test_all_failed_marks_job_failed(store, product, blob_store):
    registry = make_registry(
        image=[FakeSyncBackend("model-a", error="Rate limit exceeded"), FakeSyncBackend("model-b", error="NSFW")]
    )
    adapter, job = await dispatch(store, product, registry, prompt="tiger")
    reconciler = Reconciler(adapter, AssetPublisher(blob_store))

    outcome = await reconciler.settle(FakeUnitOfWork(store), job)

    assert outcome.status == JobStatus.FAILED
    assert job.error == "model-a: Rate limit exceeded; model-b: NSFW"
    assert store.assets == {}
