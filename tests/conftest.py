import pytest
from sqlalchemy.orm import sessionmaker

from wg_fakes import INTERFACE_CONF, NOW, FakeChannel, FakeConfig
from wgdash.core.engine import ReconciliationEngine
from wgdash.core.store import PeerRecordStore
from wgdash.db import Base, create_db_engine


@pytest.fixture()
def events() -> list[str]:
    return []


@pytest.fixture()
def store(tmp_path) -> PeerRecordStore:
    engine = create_db_engine(f"sqlite:///{tmp_path / 'peers.db'}")
    Base.metadata.create_all(engine)
    return PeerRecordStore(sessionmaker(engine, expire_on_commit=False))


@pytest.fixture()
def channel(events) -> FakeChannel:
    return FakeChannel(events)


@pytest.fixture()
def config(events) -> FakeConfig:
    return FakeConfig(events, INTERFACE_CONF)


@pytest.fixture()
def engine(store, channel, config) -> ReconciliationEngine:
    return ReconciliationEngine(store=store, channel=channel, durable=config, interface="wg0", clock=lambda: NOW)

