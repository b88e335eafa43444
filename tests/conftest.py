import pytest

from jobtracker.adapters.storage_inmemory import InMemoryStorageAdapter
from jobtracker.core.config import TrackerConfig
from jobtracker.core.managers.history_store import HistoryStore
from jobtracker.core.managers.polling_scheduler import PollingScheduler
from jobtracker.core.settings import NoOpLogger, set_logger

from fakes import FakeRemoteJobs, RecordingObserver


@pytest.fixture(autouse=True)
def quiet_logger():
    """Silence core logging during tests."""
    set_logger(NoOpLogger())


@pytest.fixture
def fast_config():
    """Short cadence and grace windows so lifecycle tests finish quickly."""
    return TrackerConfig(
        poll_interval=0.01,
        completed_grace=0.05,
        cancelled_grace=0.05,
        failed_grace=0.08,
        history_limit=50,
    )


@pytest.fixture
def remote():
    return FakeRemoteJobs()


@pytest.fixture
def storage():
    return InMemoryStorageAdapter()


@pytest.fixture
def history(storage):
    return HistoryStore(storage, limit=50)


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
async def scheduler(remote, history, fast_config, observer):
    sched = PollingScheduler(remote, history, fast_config, observers=[observer])
    yield sched
    await sched.shutdown()
