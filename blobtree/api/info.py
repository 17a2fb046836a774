"""API Endpoints for server information."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from blobtree.api.common import app_settings
from blobtree.config import Settings, validate_settings

app_info = APIRouter(tags=["informational"])


class ConfigResponse(BaseModel):
    authorization: str = Field(..., description="The authorization mode")
    storage: str = Field(..., description="The object store backend")
    token_ttl: int = Field(..., description="Number of seconds a download token is valid")
    warnings: list[str] = Field(..., description="A list of configuration warnings")


@app_info.get("/health")
def health():
    """Liveness check, does not require authentication"""
    return {"status": "OK"}


@app_info.get("/config")
def get_config(settings: Settings = Depends(app_settings)) -> ConfigResponse:
    return ConfigResponse(
        authorization=settings.auth.value,
        storage=settings.storage,
        token_ttl=settings.token_ttl,
        warnings=validate_settings(settings),
    )
