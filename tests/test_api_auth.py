from datetime import datetime

import pytest
from authlib.jose import JsonWebKey, jwt
from httpx import ASGITransport, AsyncClient

from blobtree.api import create_app
from blobtree.api.auth import InvalidToken, get_oidc_jwks, roles_from_claims, verify_token
from tests.identity_keypair import PUBLIC_KEY, TEST_KID
from tests.tools import build_headers, check, create_token

OIDC_URL = "https://idp.example.org/tenant/v2.0"
AUDIENCE = "api://blobtree"


def _now() -> int:
    return int(datetime.now().timestamp())


@pytest.fixture()
def oidc_settings(settings):
    settings.identity_public_key = None
    settings.oidc_url = OIDC_URL
    settings.oidc_audience = AUDIENCE
    return settings


@pytest.fixture()
def mock_oidc(httpx_mock):
    get_oidc_jwks.cache_clear()
    jwk = dict(JsonWebKey.import_key(PUBLIC_KEY, {"kty": "RSA"}).as_dict(), kid=TEST_KID, use="sig")
    httpx_mock.add_response(
        url=f"{OIDC_URL}/.well-known/openid-configuration",
        method="GET",
        json={"issuer": OIDC_URL, "jwks_uri": "https://idp.example.org/keys"},
    )
    httpx_mock.add_response(url="https://idp.example.org/keys", method="GET", json={"keys": [jwk]})
    yield
    get_oidc_jwks.cache_clear()


@pytest.fixture()
async def oidc_client(oidc_settings, store):
    app = create_app(oidc_settings, store=store)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def test_roles_from_claims(settings):
    assert roles_from_claims({"groups": ["readers", "x"]}, settings).highest().name == "READER"
    roles = roles_from_claims({"groups": ["uploaders", "admins"]}, settings)
    assert roles.is_uploader and roles.is_admin and not roles.is_reader
    assert roles_from_claims({"groups": "admins"}, settings).is_admin
    assert roles_from_claims({}, settings).highest().name == "NONE"
    assert roles_from_claims({"groups": None}, settings).highest().name == "NONE"

    settings.groups_claim = "roles"
    assert roles_from_claims({"roles": ["readers"]}, settings).is_reader
    assert not roles_from_claims({"groups": ["readers"]}, settings).is_reader


def test_unconfigured_groups_grant_nothing(settings):
    settings.admin_group_id = None
    assert not roles_from_claims({"groups": ["admins", ""]}, settings).is_admin


@pytest.mark.anyio
async def test_verify_token(settings):
    token = create_token(sub="me", exp=_now() + 100)
    assert (await verify_token(token, settings))["sub"] == "me"

    with pytest.raises(InvalidToken):
        await verify_token(create_token(sub="me", exp=_now() - 100), settings)
    with pytest.raises(InvalidToken):
        await verify_token(create_token(sub="me"), settings)
    with pytest.raises(InvalidToken):
        await verify_token("garbage", settings)
    hs_token = jwt.encode({"alg": "HS256"}, {"sub": "me", "exp": _now() + 100}, "shared-secret").decode("utf-8")
    with pytest.raises(InvalidToken):
        await verify_token(hs_token, settings)


@pytest.mark.anyio
async def test_no_identity_provider(settings):
    settings.identity_public_key = None
    with pytest.raises(InvalidToken):
        await verify_token(create_token(sub="me", exp=_now() + 100), settings)


@pytest.mark.anyio
async def test_invalid_bearer(client):
    res = await client.get("/api/files", headers={"Authorization": "Bearer garbage"})
    check(res, 401)
    assert res.headers["www-authenticate"] == "Bearer"
    expired = build_headers(["readers"], exp=_now() - 10)
    check(await client.get("/api/files", headers=expired), 401)
    # an invalid bearer token is not silently ignored for downloads either
    check(await client.get("/api/files/download/a.txt", headers={"Authorization": "Bearer garbage"}), 401)


@pytest.mark.anyio
async def test_oidc(oidc_client, mock_oidc):
    headers = build_headers(["readers"], iss=OIDC_URL, aud=AUDIENCE)
    check(await oidc_client.get("/api/files", headers=headers), 200)
    # keys are cached, so a second request does not fetch them again
    check(await oidc_client.get("/api/files", headers=headers), 200)

    check(await oidc_client.get("/api/files", headers=build_headers(["readers"], iss=OIDC_URL, aud="other")), 401)
    check(
        await oidc_client.get("/api/files", headers=build_headers(["readers"], iss="https://evil.org", aud=AUDIENCE)),
        401,
    )
    check(await oidc_client.get("/api/files", headers=build_headers(["readers"], aud=AUDIENCE)), 401)


@pytest.mark.anyio
async def test_oidc_unavailable(oidc_client, httpx_mock):
    get_oidc_jwks.cache_clear()
    httpx_mock.add_response(url=f"{OIDC_URL}/.well-known/openid-configuration", method="GET", status_code=503)
    res = await oidc_client.get("/api/files", headers=build_headers(["readers"], iss=OIDC_URL, aud=AUDIENCE))
    check(res, 502)
    assert res.json()["error"] == "UpstreamFailure"
    assert res.json()["step"] == "identity"
