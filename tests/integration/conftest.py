"""
Fixtures for the emulator suite.

Runs only when ``FIRESTORE_EMULATOR_HOST`` is set, e.g.::

    gcloud emulators firestore start --host-port=localhost:8080
    FIRESTORE_EMULATOR_HOST=localhost:8080 pytest tests/integration
"""

import pytest
import pytest_asyncio
import httpx

from bookforge import init_bookforge
from bookforge.auth import AuthContext
from bookforge.config import BookforgeSettings

SETTINGS = BookforgeSettings.from_env()

def pytest_collection_modifyitems(config, items):
    if SETTINGS.emulator_host:
        return
    skip = pytest.mark.skip(reason="FIRESTORE_EMULATOR_HOST is not set")
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(skip)

async def _wipe_emulator():
    db_name = SETTINGS.database or "(default)"
    url = (
        f"http://{SETTINGS.emulator_host}/emulator/v1/projects/"
        f"{SETTINGS.project_id}/databases/{db_name}/documents"
    )
    async with httpx.AsyncClient() as client:
        await client.delete(url)

@pytest.fixture()
def emulator_db():
    """
    Function-scoped so each test gets an AsyncClient bound to its own event
    loop (gRPC otherwise fails with 'Event loop is closed').
    """
    return init_bookforge(SETTINGS.create_db())

@pytest.fixture()
def raw_client(emulator_db):
    return emulator_db.client

@pytest_asyncio.fixture(autouse=True)
async def clean_emulator():
    if not SETTINGS.emulator_host:
        yield
        return
    await _wipe_emulator()
    yield
    await _wipe_emulator()

@pytest.fixture()
def writer():
    return AuthContext(uid="writer_1", display_name="Ada", email_verified=True)
