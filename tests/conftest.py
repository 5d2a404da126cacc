from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from fidelity.bridge.notifier import Notifier
from fidelity.bridge.router import InteractionRouter
from fidelity.bridge.session import DiscordSession
from fidelity.bridge.updater import MessageUpdater
from fidelity.config import DiscordConfig
from fidelity.db.engine import Database

from fakes import FakeChannel, FakeClient, make_discord_config


@pytest.fixture
def discord_config() -> DiscordConfig:
    return make_discord_config()


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def channel(fake_client: FakeClient) -> FakeChannel:
    return fake_client.channel


@pytest_asyncio.fixture
async def db(tmp_path) -> Database:
    database = Database(str(tmp_path / "data"))
    await database.initialize()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def session(discord_config: DiscordConfig, fake_client: FakeClient) -> DiscordSession:
    discord_session = DiscordSession(discord_config, client=fake_client)
    assert await discord_session.connect() is True
    await asyncio.sleep(0)
    assert discord_session.is_ready()
    yield discord_session
    await discord_session.stop()


@pytest.fixture
def updater(session: DiscordSession) -> MessageUpdater:
    return MessageUpdater(session)


@pytest.fixture
def notifier(session: DiscordSession, db: Database, discord_config: DiscordConfig) -> Notifier:
    return Notifier(session=session, db=db, config=discord_config)


@pytest.fixture
def interaction_router(db: Database, notifier: Notifier, updater: MessageUpdater) -> InteractionRouter:
    return InteractionRouter(db=db, notifier=notifier, updater=updater)
