import pytest

from harvester.config import Settings
from harvester.database import create_session_factory, init_db
from harvester.repository import TelegramRepository


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        api_id=12345,
        api_hash="test-hash",
        phone_number="+10000000000",
        channel_username="@testchannel",
        sqlalchemy_url=f"sqlite:///{tmp_path / 'harvester.db'}",
    )


@pytest.fixture()
def session_factory(settings):
    factory = create_session_factory(settings.database_url)
    init_db(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture()
def repository(session_factory):
    return TelegramRepository(session_factory)
