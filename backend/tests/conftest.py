"""pytest fixtures for mockforge backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- settings: Test Settings (validation skipped via APP_ENV=test)
- session: Function-scoped SQLite (aiosqlite) session with tables created
- uow_factory: Function-scoped UnitOfWork factory on the same database
- store / fake_uow_factory: In-memory job store, asset catalog and products
- blob_store: In-memory blob store with failure injection
- Fake synchronous/asynchronous generation backends
"""

import base64
import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

from mockforge.core.config import Settings
from mockforge.core.database import setup_db_session
from mockforge.models import (
    AssetRole,
    AttemptMode,
    GenerationJob,
    InvalidStateTransition,
    JobStatus,
    JobType,
    Product,
    ProductAsset,
)
from mockforge.services.exceptions import BackendDispatchError, BlobStoreError
from mockforge.services.generation.backends import (
    AsyncHandle,
    BackendRegistry,
    GenerationBackend,
    PollFailed,
    PollPending,
    PollSucceeded,
    SyncResult,
)
from mockforge.services.generation.payloads import GenerationRequest
from mockforge.uow import create_uow_factory

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        APP_ENV="test",
        POLL_INTERVAL_SECONDS=0.01,
        ERROR_BACKOFF_SECONDS=0.01,
        MAX_CONCURRENT_JOBS=4,
        STALE_JOB_TIMEOUT_MINUTES=30,
        DEPENDENCY_WAIT_TIMEOUT_MINUTES=120,
    )  # type: ignore[call-arg]


@pytest_asyncio.fixture(scope="function")
async def session_factory(settings) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to a fresh SQLite file with all tables created."""
    factory = setup_db_session(settings.database_url)
    engine = factory.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory on the test database."""
    return create_uow_factory(session_factory)


# In-memory job store, asset catalog and products


class FakeStore:
    """Shared state behind every FakeUnitOfWork."""

    def __init__(self):
        self.products: dict = {}
        self.jobs: dict = {}
        self.assets: dict = {}
        self.commits = 0
        self.rollbacks = 0
        # job_id -> exception raised by update_status for that job
        self.update_failures: dict = {}
        # number of upcoming catalog inserts that fail
        self.catalog_failures = 0


class FakeJobRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def add(self, job: GenerationJob) -> GenerationJob:
        self.store.jobs[job.id] = job
        return job

    async def get_by_id(self, job_id):
        return self.store.jobs.get(job_id)

    async def get_for_update(self, job_id):
        return self.store.jobs.get(job_id)

    async def list_by_status(self, status: JobStatus, limit: int | None = None):
        jobs = sorted(
            (job for job in self.store.jobs.values() if job.status == status),
            key=lambda job: job.created_at,
        )
        return jobs[:limit] if limit is not None else jobs

    async def get_latest_for_product(self, product_id, job_type: JobType):
        jobs = sorted(
            (
                job
                for job in self.store.jobs.values()
                if job.product_id == product_id and job.type == job_type
            ),
            key=lambda job: job.created_at,
        )
        return jobs[-1] if jobs else None

    async def list_by_product(self, product_id):
        return sorted(
            (job for job in self.store.jobs.values() if job.product_id == product_id),
            key=lambda job: job.created_at,
        )

    async def insert_attempts(self, job: GenerationJob, attempts) -> None:
        job.set_attempts(attempts)

    async def update_status(self, job: GenerationJob, status: JobStatus, output=None, error=None):
        if job.id in self.store.update_failures:
            raise self.store.update_failures[job.id]
        if status == JobStatus.RUNNING:
            job.mark_running()
        elif status == JobStatus.SUCCEEDED:
            job.mark_succeeded(output or {})
        elif status == JobStatus.FAILED:
            job.mark_failed(error or "Unknown error")
        else:
            raise InvalidStateTransition(f"Jobs cannot be moved back to {status.value}")

    async def append_input(self, job: GenerationJob, partial_input: dict) -> None:
        job.merge_input(partial_input)


class FakeAssetRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def add(self, asset: ProductAsset) -> ProductAsset:
        if self.store.catalog_failures:
            self.store.catalog_failures -= 1
            raise SQLAlchemyError("simulated catalog outage")
        for existing in self.store.assets.values():
            if asset.job_id and (existing.job_id, existing.backend_id) == (
                asset.job_id,
                asset.backend_id,
            ):
                raise SQLAlchemyError("UNIQUE constraint failed: uq_product_assets_attempt")
        self.store.assets[asset.id] = asset
        return asset

    async def get_by_id(self, asset_id):
        return self.store.assets.get(asset_id)

    async def list_by_product(self, product_id, roles=None):
        return [
            asset
            for asset in self.store.assets.values()
            if asset.product_id == product_id and (roles is None or asset.role in list(roles))
        ]

    async def get_latest_by_roles(self, product_id, roles):
        assets = await self.list_by_product(product_id, roles)
        return assets[-1] if assets else None

    async def list_by_job(self, job_id):
        return [asset for asset in self.store.assets.values() if asset.job_id == job_id]

    async def exists_for_attempt(self, job_id, backend_id: str) -> bool:
        return any(
            asset.job_id == job_id and asset.backend_id == backend_id
            for asset in self.store.assets.values()
        )


class FakeProductRepository:
    def __init__(self, store: FakeStore):
        self.store = store

    async def add(self, product: Product) -> Product:
        self.store.products[product.id] = product
        return product

    async def get_by_id(self, product_id):
        return self.store.products.get(product_id)

    async def append_image(self, product: Product, url: str) -> None:
        product.images = [*(product.images or []), url]


class FakeUnitOfWork:
    """UnitOfWork double with the same repository attributes as the real one."""

    def __init__(self, store: FakeStore):
        self.store = store
        self.jobs = FakeJobRepository(store)
        self.assets = FakeAssetRepository(store)
        self.products = FakeProductRepository(store)

    async def commit(self) -> None:
        self.store.commits += 1

    async def rollback(self) -> None:
        self.store.rollbacks += 1

    async def refresh(self, entity) -> None:
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def fake_uow_factory(store):
    async def _create_uow():
        return FakeUnitOfWork(store)

    return _create_uow


@pytest.fixture
def product(store) -> Product:
    product = Product(name="Neon Tiger", slug="neon-tiger", category="shirts")
    store.products[product.id] = product
    return product


def add_job(store: FakeStore, product: Product, job_type: JobType, **job_input) -> GenerationJob:
    job = GenerationJob(product_id=product.id, type=job_type, input=job_input)
    store.jobs[job.id] = job
    return job


def add_asset(store: FakeStore, product: Product, role: AssetRole, **kwargs) -> ProductAsset:
    asset = ProductAsset(
        product_id=product.id,
        role=role,
        path=f"graphics/{product.slug}/{role.value}/{product.slug}-{role.value}.png",
        url=f"https://cdn.test/{product.slug}/{role.value}.png",
        **kwargs,
    )
    store.assets[asset.id] = asset
    return asset


# Blob store


class FakeBlobStore:
    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.failures = 0

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        if self.failures:
            self.failures -= 1
            raise BlobStoreError(f"S3 upload failed for {path}: simulated outage")
        self.objects[path] = (data, content_type)
        return f"https://cdn.test/{path}"


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


# Generation backends


def _fake_payload(request: GenerationRequest) -> dict:
    if request.job_type == JobType.IMAGE:
        return {"prompt": request.prompt}
    return {"image": request.image_url}


class FakeSyncBackend(GenerationBackend):
    """Returns an inline PNG at dispatch, or raises a dispatch error."""

    mode = AttemptMode.SYNCHRONOUS

    def __init__(self, backend_id: str, error: str | None = None, result_ref: str = PNG_DATA_URL):
        self.backend_id = backend_id
        self.error = error
        self.result_ref = result_ref
        self.payloads: list[dict] = []

    def build_payload(self, request: GenerationRequest) -> dict:
        return _fake_payload(request)

    async def invoke(self, payload: dict) -> SyncResult:
        self.payloads.append(payload)
        if self.error:
            raise BackendDispatchError(self.error)
        return SyncResult(result_ref=self.result_ref, metadata={"model": self.backend_id})


class FakeAsyncBackend(GenerationBackend):
    """Prediction-style backend that settles after ``polls_until_done`` polls."""

    mode = AttemptMode.ASYNCHRONOUS

    def __init__(
        self,
        backend_id: str,
        polls_until_done: int = 1,
        fail_with: str | None = None,
        dispatch_error: str | None = None,
        never_completes: bool = False,
        result_ref: str = PNG_DATA_URL,
    ):
        self.backend_id = backend_id
        self.polls_until_done = polls_until_done
        self.fail_with = fail_with
        self.dispatch_error = dispatch_error
        self.never_completes = never_completes
        self.result_ref = result_ref
        self.payloads: list[dict] = []
        self.poll_counts: dict[str, int] = {}

    def build_payload(self, request: GenerationRequest) -> dict:
        return _fake_payload(request)

    async def invoke(self, payload: dict) -> AsyncHandle:
        if self.dispatch_error:
            raise BackendDispatchError(self.dispatch_error)
        self.payloads.append(payload)
        handle = f"{self.backend_id}-prediction-{len(self.payloads)}"
        self.poll_counts[handle] = 0
        return AsyncHandle(handle=handle, metadata={"model": self.backend_id})

    async def poll(self, handle: str):
        self.poll_counts[handle] = self.poll_counts.get(handle, 0) + 1
        if self.never_completes or self.poll_counts[handle] < self.polls_until_done:
            return PollPending(status="processing")
        if self.fail_with:
            return PollFailed(reason=self.fail_with)
        return PollSucceeded(result_ref=self.result_ref, metadata={"width": 1024, "height": 1024})


def make_registry(**backends_by_type) -> BackendRegistry:
    """Registry from keyword lists, e.g. ``make_registry(image=[a, b], mockup=[m])``."""
    registry = BackendRegistry()
    for type_name, backends in backends_by_type.items():
        for backend in backends:
            registry.register(JobType(type_name), backend)
    return registry
