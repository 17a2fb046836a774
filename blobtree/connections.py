import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session

from blobtree.config import Settings
from blobtree.objectstorage.memorystore import MemoryObjectStore
from blobtree.objectstorage.s3store import S3ObjectStore
from blobtree.objectstorage.store import ObjectStore


@asynccontextmanager
async def open_store(settings: Settings) -> AsyncGenerator[ObjectStore, None]:
    """
    Open the object store configured in settings, and close it afterwards.
    Use this once per process:
        - For running the server: in the FastAPI lifespan
        - For CLI commands: within the CLI command
    The store handle is then passed to whoever needs it.
    """
    if settings.storage == "memory":
        logging.warning("Using the in-memory object store, files will be lost when the server stops")
        store = MemoryObjectStore()
        try:
            yield store
        finally:
            await store.close()
        return

    async with _s3_client(settings) as client:
        store = S3ObjectStore(
            client,
            bucket=settings.s3_bucket,
            staging_prefix=settings.s3_staging_prefix,
            part_size=settings.upload_part_size,
        )
        await store.ensure_bucket()
        try:
            yield store
        finally:
            await store.close()


def _s3_client(settings: Settings):
    logging.debug(
        f"Connecting with S3 at {settings.s3_host or 'default endpoint'}, bucket {settings.s3_bucket}, "
        f"credentials? {'yes' if settings.s3_access_key else 'no'}"
    )
    kwargs = {}
    if settings.s3_host:
        kwargs["endpoint_url"] = settings.s3_host
    if settings.s3_region:
        kwargs["region_name"] = settings.s3_region
    if settings.s3_access_key and settings.s3_secret_key:
        kwargs["aws_access_key_id"] = settings.s3_access_key
        kwargs["aws_secret_access_key"] = settings.s3_secret_key

    session = get_session()
    # the client is an async context manager that owns the connection pool
    return session.create_client(service_name="s3", config=AioConfig(signature_version="s3v4"), **kwargs)


def s3_enabled(settings: Settings) -> bool:
    return settings.storage == "s3" and all([settings.s3_host, settings.s3_access_key, settings.s3_secret_key])
