import pytest
from httpx import ASGITransport, AsyncClient

from blobtree.api import create_app
from blobtree.config import AuthOptions, Settings
from blobtree.fileops import FileOperations
from blobtree.objectstorage.memorystore import MemoryObjectStore
from tests.identity_keypair import PUBLIC_KEY
from tests.tools import build_headers

TEST_HOST = "http://test"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        storage="memory",
        host=TEST_HOST,
        auth=AuthOptions.authorized_users_only,
        token_secret="blobtree-unittest-secret",
        token_ttl=300,
        identity_public_key=PUBLIC_KEY,
        oidc_url=None,
        oidc_audience=None,
        reader_group_id="readers",
        uploader_group_id="uploaders",
        admin_group_id="admins",
    )


@pytest.fixture()
def store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture()
def files(store) -> FileOperations:
    return FileOperations(store)


@pytest.fixture()
def app(settings, store):
    return create_app(settings, store=store)


@pytest.fixture()
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url=TEST_HOST, follow_redirects=False) as client:
        yield client


@pytest.fixture()
def reader() -> dict:
    return build_headers(["readers"])


@pytest.fixture()
def uploader() -> dict:
    return build_headers(["uploaders"])


@pytest.fixture()
def admin() -> dict:
    return build_headers(["admins"])


@pytest.fixture()
def outsider() -> dict:
    """Authenticated, but not a member of any configured group"""
    return build_headers(["some-other-group"])
