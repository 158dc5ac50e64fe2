"""Tests for the SQLite-backed credential store."""

import pytest
import pytest_asyncio

from devlink.database import close_database, get_database_path
from devlink.session import CredentialStore, Credentials


@pytest_asyncio.fixture(autouse=True)
async def closed_database():
    yield
    await close_database()


@pytest.mark.asyncio
async def test_save_then_load_after_restart(tmp_path):
    db_path = str(tmp_path / "creds.db")
    saved = Credentials(
        server_url="wss://dev.example:9001/ws",
        auth_id="pair-1",
        reconnection_token="token-abc",
        client_id="client-1",
    )

    await CredentialStore(db_path).save(saved)
    await close_database()  # simulate process restart

    loaded = await CredentialStore(db_path).load()

    assert loaded == saved
    assert get_database_path() == db_path


@pytest.mark.asyncio
async def test_last_save_wins(tmp_path):
    db_path = str(tmp_path / "creds.db")
    store = CredentialStore(db_path)

    await store.save(Credentials("ws://a/ws", "one", "T1", "C1"))
    await store.save(Credentials("ws://b/ws", "two"))
    await close_database()

    assert await CredentialStore(db_path).load() == Credentials("ws://b/ws", "two", "", "")


@pytest.mark.asyncio
async def test_missing_keys_load_empty(tmp_path):
    loaded = await CredentialStore(str(tmp_path / "fresh.db")).load()

    assert loaded == Credentials()
    assert loaded.has_stored_credentials() is False


@pytest.mark.asyncio
async def test_clear_wipes_everything(tmp_path):
    db_path = str(tmp_path / "creds.db")
    store = CredentialStore(db_path)
    await store.save(Credentials("ws://a/ws", "one", "T1", "C1"))

    cleared = await store.clear()
    await close_database()

    assert cleared == Credentials()
    assert await CredentialStore(db_path).load() == Credentials()
