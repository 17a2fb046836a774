"""blobtree API: files and folders on top of a flat object store."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from blobtree.api.common import Services
from blobtree.api.files import app_files
from blobtree.api.info import app_info
from blobtree.config import Settings, get_settings
from blobtree.connections import open_store
from blobtree.errors import BlobTreeError, UpstreamFailure
from blobtree.objectstorage.store import ObjectStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "services", None) is not None:
        # store was given to create_app, its owner closes it
        yield
        return
    settings: Settings = app.state.settings
    logging.info(f"Opening {settings.storage} object store...")
    async with open_store(settings) as store:
        app.state.services = Services(settings, store)
        yield
        app.state.services = None


async def blobtree_error_handler(request: Request, exc: BlobTreeError) -> JSONResponse:
    if isinstance(exc, UpstreamFailure):
        logging.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc.__cause__)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [{"loc": list(e.get("loc", [])), "msg": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={
            "error": "ValidationError",
            "detail": "There was an issue with the data you sent.",
            "fieldsInvalid": fields,
        },
    )


def create_app(settings: Settings | None = None, store: ObjectStore | None = None) -> FastAPI:
    """
    Create the API application
    :param settings: the settings to use, read from the environment if not given
    :param store: an already opened object store. If not given, the configured store is opened on startup
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="blobtree",
        description=__doc__ if __doc__ else "",
        openapi_tags=[
            dict(name="informational", description="Endpoints for server information"),
            dict(name="files", description="Endpoints to list, upload, download, move, and delete files and folders"),
        ],
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = Services(settings, store) if store is not None else None

    app.include_router(app_info)
    app.include_router(app_files)
    origins = settings.origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=bool(origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BlobTreeError, blobtree_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    return app
