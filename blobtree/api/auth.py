"""Authentication of API callers, and mapping their group memberships to roles."""

import logging

import httpx
from async_lru import alru_cache
from authlib.common.errors import AuthlibBaseError
from authlib.jose import JsonWebKey, JsonWebToken
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from blobtree.api.common import app_settings
from blobtree.config import AuthOptions, Settings
from blobtree.errors import UpstreamFailure
from blobtree.models import RoleFlags

bearer_scheme = HTTPBearer(auto_error=False, scheme_name="Bearer token")


class InvalidToken(ValueError):
    pass


@alru_cache(maxsize=4)
async def get_oidc_jwks(oidc_url: str) -> dict:
    """Discover and fetch the signing keys of the identity provider"""
    async with httpx.AsyncClient() as client:
        r = await client.get(oidc_url.rstrip("/") + "/.well-known/openid-configuration")
        r.raise_for_status()
        jwks_uri = r.json()["jwks_uri"]
        r = await client.get(jwks_uri)
        r.raise_for_status()
        return r.json()


async def verification_key(settings: Settings):
    if settings.identity_public_key:
        return settings.identity_public_key
    if settings.oidc_url:
        try:
            jwks = await get_oidc_jwks(settings.oidc_url)
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise UpstreamFailure("Could not retrieve the signing keys of the identity provider", step="identity") from e
        return JsonWebKey.import_key_set(jwks)
    raise InvalidToken("No identity provider configured, cannot verify bearer tokens")


async def verify_token(token: str, settings: Settings) -> dict:
    """
    Verifies the given bearer token and returns its claims

    raises a InvalidToken exception if the token could not be validated
    """
    key = await verification_key(settings)
    options: dict = {"exp": {"essential": True}}
    if settings.oidc_url:
        options["iss"] = {"essential": True, "value": settings.oidc_url}
    if settings.oidc_audience:
        options["aud"] = {"essential": True, "value": settings.oidc_audience}
    try:
        claims = JsonWebToken(["RS256"]).decode(token, key=key, claims_options=options)
        claims.validate()
    except AuthlibBaseError as e:
        raise InvalidToken(str(e)) from e
    except (ValueError, TypeError) as e:
        raise InvalidToken(f"Malformed token: {e}") from e
    return dict(claims)


def roles_from_claims(claims: dict, settings: Settings) -> RoleFlags:
    groups = claims.get(settings.groups_claim) or []
    if isinstance(groups, str):
        groups = [groups]
    groups = set(groups)

    def member(group_id: str | None) -> bool:
        return bool(group_id) and group_id in groups

    return RoleFlags(
        is_reader=member(settings.reader_group_id),
        is_uploader=member(settings.uploader_group_id),
        is_admin=member(settings.admin_group_id),
    )


async def _roles_for(token: str, settings: Settings) -> RoleFlags:
    try:
        claims = await verify_token(token, settings)
    except InvalidToken as e:
        logging.warning(f"Login failed: {e}")
        raise HTTPException(
            status_code=401, detail=f"Invalid bearer token: {e}", headers={"WWW-Authenticate": "Bearer"}
        ) from e
    roles = roles_from_claims(claims, settings)
    logging.debug(f"Authenticated {claims.get('sub')} with role {roles.highest().name}")
    return roles


async def authenticated_roles(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    settings: Settings = Depends(app_settings),
) -> RoleFlags:
    """
    The roles of the caller, based on the bearer token. Without authentication every caller has every role.
    """
    if settings.auth == AuthOptions.no_auth:
        return RoleFlags.everything()
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="This instance requires authentication. Please provide a valid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return await _roles_for(credentials.credentials, settings)


async def optional_roles(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    settings: Settings = Depends(app_settings),
) -> RoleFlags | None:
    """As authenticated_roles, but returns None for anonymous callers (who may still hold a download token)"""
    if settings.auth == AuthOptions.no_auth:
        return RoleFlags.everything()
    if credentials is None:
        return None
    return await _roles_for(credentials.credentials, settings)
