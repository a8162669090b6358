import pytest

from hostmon.alerts import AlertEngine
from hostmon.database import init_db, make_engine, make_session_factory
from hostmon.store import TelemetryStore


@pytest.fixture
def db_engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'telemetry.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def store(session_factory):
    return TelemetryStore(session_factory)


@pytest.fixture
def alert_engine(session_factory):
    return AlertEngine(session_factory)
