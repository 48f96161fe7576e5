"""Central test fixtures."""

from collections.abc import Iterator
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from tandem.config import TandemSettings
from tandem.context import clear_context
from tandem.domains.challenge import ChallengeRepository
from tandem.domains.focus_area import FocusAreaRepository
from tandem.events import EventBus
from tandem.storage import InMemoryStorageClient
from tandem.testing import EventCollector, FlakyStorageClient, RecordingCacheInvalidator


@pytest.fixture(autouse=True)
def reset_execution_context() -> Iterator[None]:
    """Make sure no execution context leaks between tests."""
    clear_context()
    yield
    clear_context()


@pytest.fixture
def user_id() -> str:
    """Generate a unique user ID."""
    return str(uuid4())


@pytest.fixture
def settings() -> TandemSettings:
    """Settings with fast retries."""
    return TandemSettings(max_retries=3, retry_base_delay=0.01, retry_max_delay=0.05)


@pytest.fixture
def sleep() -> AsyncMock:
    """Replacement for asyncio.sleep that records backoff delays."""
    return AsyncMock()


@pytest.fixture
def memory_storage() -> InMemoryStorageClient:
    return InMemoryStorageClient()


@pytest.fixture
def storage(memory_storage: InMemoryStorageClient) -> FlakyStorageClient:
    """In-memory storage that can be told to fail."""
    return FlakyStorageClient(memory_storage)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus(record_history=True)


@pytest.fixture
def collector() -> EventCollector:
    return EventCollector()


@pytest.fixture
def invalidator() -> RecordingCacheInvalidator:
    return RecordingCacheInvalidator()


@pytest.fixture
def focus_area_repository(
    storage: FlakyStorageClient,
    event_bus: EventBus,
    invalidator: RecordingCacheInvalidator,
    settings: TandemSettings,
    sleep: AsyncMock,
) -> FocusAreaRepository:
    return FocusAreaRepository(
        storage,
        event_bus=event_bus,
        cache_invalidator=invalidator,
        settings=settings,
        sleep=sleep,
    )


@pytest.fixture
def challenge_repository(
    storage: FlakyStorageClient,
    event_bus: EventBus,
    invalidator: RecordingCacheInvalidator,
    settings: TandemSettings,
    sleep: AsyncMock,
) -> ChallengeRepository:
    return ChallengeRepository(
        storage,
        event_bus=event_bus,
        cache_invalidator=invalidator,
        settings=settings,
        sleep=sleep,
    )
