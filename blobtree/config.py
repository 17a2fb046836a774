"""
blobtree configuration

We read configuration from 2 sources, in order of precedence (higher is more priority)
- Environment variables
- A .env file, either in the current working directory or in a location specified
  by the BLOBTREE_ENV_FILE environment variable

The settings are read and validated once at startup and then passed to the components that need them.
"""

import functools
import secrets
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal

from class_doc import extract_docs_from_cls_obj
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "blobtree_"

# S3 refuses smaller multipart parts
MIN_PART_SIZE = 5 * 1024 * 1024


class AuthOptions(str, Enum):
    #: everyone (that can reach the server) can do anything they want
    no_auth = "no_auth"

    #: every request needs a valid bearer token, and roles are taken from its group claims
    authorized_users_only = "authorized_users_only"

    @classmethod
    def validate(cls, value: str):
        if value not in cls.__members__:
            options = ", ".join(AuthOptions.__members__.keys())
            return f"{value} is not a valid authorization option. Choose one of {{{options}}}"


# Set the __doc__ attribute of each AuthOptions enum member using extract_docs_from_cls_obj
for field, doc in extract_docs_from_cls_obj(AuthOptions).items():
    AuthOptions[field].__doc__ = "\n".join(doc)


class Settings(BaseSettings):
    env_file: Annotated[
        Path,
        Field(
            description="Location of a .env file (if used) relative to working directory",
        ),
    ] = Path(".env")
    host: Annotated[
        str,
        Field(
            description="Host this instance is served at (used to build download links)",
        ),
    ] = "http://localhost:5000"

    auth: Annotated[AuthOptions, Field(description="Do we require authorization?")] = AuthOptions.authorized_users_only

    allowed_origins: Annotated[
        str,
        Field(description="Comma separated origins allowed to call the API from a browser (CORS). Empty means all origins"),
    ] = ""

    storage: Annotated[
        Literal["s3", "memory"],
        Field(description="Object store backend. 'memory' keeps everything in this process and is meant for development"),
    ] = "s3"

    s3_host: Annotated[str | None, Field(description="S3-compatible object storage host")] = None
    s3_region: Annotated[str | None, Field(description="S3 region (if required by the storage provider)")] = None
    s3_access_key: Annotated[str | None, Field(description="S3 access key")] = None
    s3_secret_key: Annotated[str | None, Field(description="S3 secret key")] = None
    s3_bucket: Annotated[str, Field(description="Bucket that holds all files")] = "blobtree"
    s3_staging_prefix: Annotated[
        str,
        Field(
            description=(
                "Key prefix for chunks of unfinished uploads. Add a lifecycle rule on this prefix to expire abandoned uploads"
            )
        ),
    ] = ".staging/"

    upload_part_size: Annotated[
        int,
        Field(description="Size in bytes of the parts that uploads are streamed to the object store in"),
    ] = 8 * 1024 * 1024
    max_chunk_bytes: Annotated[int, Field(description="Maximum size in bytes of a single upload chunk")] = 100 * 1024 * 1024
    max_chunks: Annotated[int, Field(ge=1, le=1_000_000, description="Maximum number of chunks in one upload")] = 1_000_000

    token_secret: Annotated[
        str,
        Field(
            description=(
                "Secret key for signing download tokens. "
                "If not set, a random key is used and tokens are only valid on this process until it restarts"
            ),
        ),
    ] = secrets.token_urlsafe(32)
    token_ttl: Annotated[int, Field(ge=1, description="Number of seconds a download token is valid")] = 300

    oidc_url: Annotated[
        str | None,
        Field(
            description="OIDC issuer URL. Signing keys are discovered from its .well-known/openid-configuration",
        ),
    ] = None
    oidc_audience: Annotated[str | None, Field(description="Expected audience (aud) of bearer tokens")] = None
    identity_public_key: Annotated[
        str | None,
        Field(description="PEM public key to verify bearer tokens with, instead of OIDC key discovery"),
    ] = None
    groups_claim: Annotated[str, Field(description="Token claim that lists the group memberships")] = "groups"
    reader_group_id: Annotated[str | None, Field(description="Group whose members have the READER role")] = None
    uploader_group_id: Annotated[str | None, Field(description="Group whose members have the UPLOADER role")] = None
    admin_group_id: Annotated[str | None, Field(description="Group whose members have the ADMIN role")] = None

    @model_validator(mode="after")
    def check_storage(self: Any) -> "Settings":
        if self.upload_part_size < MIN_PART_SIZE:
            raise ValueError(f"upload_part_size should be at least {MIN_PART_SIZE} bytes")
        if self.storage == "s3" and not self.s3_bucket:
            raise ValueError("s3_bucket is required when using s3 storage")
        return self

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX)


@functools.lru_cache()
def get_settings() -> Settings:
    temp = Settings()
    load_dotenv(temp.env_file, override=False)
    return Settings()


def validate_settings(settings: Settings) -> list[str]:
    """Return warnings about settings that work, but probably not as intended"""
    warnings = []
    if settings.auth == AuthOptions.no_auth:
        warnings.append(
            "No authentication is set up - everyone who can access this service can view and change all files"
        )
    else:
        if not (settings.identity_public_key or settings.oidc_url):
            warnings.append("Authentication is enabled, but neither oidc_url nor identity_public_key is set")
        if not any([settings.reader_group_id, settings.uploader_group_id, settings.admin_group_id]):
            warnings.append("No group ids are configured, so nobody has any role")
    if "token_secret" not in settings.model_fields_set:
        warnings.append("token_secret is not set, download tokens will not survive a restart or work across instances")
    if settings.storage == "s3" and not (settings.s3_access_key and settings.s3_secret_key):
        warnings.append("s3_access_key or s3_secret_key is not set, relying on the default AWS credential chain")
    return warnings
