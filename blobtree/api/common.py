"""Dependencies that hand the components built at startup to the request handlers."""

from fastapi import Request

from blobtree.authorization import AuthorizationGate
from blobtree.config import Settings
from blobtree.fileops import FileOperations
from blobtree.objectstorage.store import ObjectStore
from blobtree.tokens import CapabilityTokens
from blobtree.uploads import ChunkedUploadCoordinator


class Services:
    """Everything a request needs, constructed once per process from the settings and the store"""

    def __init__(self, settings: Settings, store: ObjectStore):
        self.settings = settings
        self.store = store
        self.tokens = CapabilityTokens(settings.token_secret, ttl=settings.token_ttl)
        self.gate = AuthorizationGate(self.tokens)
        self.chunks = ChunkedUploadCoordinator(
            store, max_chunks=settings.max_chunks, max_chunk_bytes=settings.max_chunk_bytes
        )
        self.files = FileOperations(store, self.chunks)


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


def services(request: Request) -> Services:
    svc = getattr(request.app.state, "services", None)
    if svc is None:
        raise ConnectionError("Object store not started")
    return svc
