# auth.py
# Cognito JWT verification (ID token) for Lambda Function URL.
# The token comes from the Authorization header or, for the browser calendar, the session cookie.

import os
import time
from typing import Optional

import httpx
import jwt as pyjwt
from fastapi import Cookie, Header, HTTPException
from jwcrypto import jwk

COGNITO_ISSUER = os.environ.get("COGNITO_ISSUER", "")
COGNITO_AUDIENCE = os.environ.get("COGNITO_AUDIENCE", "")
SESSION_COOKIE = os.environ.get("SESSION_COOKIE", "takeoff_session")

_JWKS_CACHE = {"exp": 0, "keys": None}


async def _get_jwks():
    now = int(time.time())
    if _JWKS_CACHE["exp"] > now and _JWKS_CACHE["keys"]:
        return _JWKS_CACHE["keys"]
    url = f"{COGNITO_ISSUER}/.well-known/jwks.json"
    async with httpx.AsyncClient(timeout=10.0) as client:
        r = await client.get(url)
        r.raise_for_status()
        keys = r.json()
    _JWKS_CACHE["keys"] = keys
    _JWKS_CACHE["exp"] = now + 3600  # cache 1 hour
    return keys


def _extract_token(authorization: Optional[str], session: Optional[str]) -> str:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1]
    if session:
        return session
    raise HTTPException(status_code=401, detail="Not signed in")


async def get_current_user(
    Authorization: Optional[str] = Header(None),
    takeoff_session: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
):
    token = _extract_token(Authorization, takeoff_session)

    try:
        headers = pyjwt.get_unverified_header(token)
    except pyjwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token header")

    try:
        jwks = await _get_jwks()
    except httpx.HTTPError:
        raise HTTPException(status_code=503, detail="Key set unavailable")
    kid = headers.get("kid")
    key_json = next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)
    if not key_json:
        raise HTTPException(status_code=401, detail="Unknown key id")

    public_key_pem = jwk.JWK(**key_json).export_to_pem()

    try:
        payload = pyjwt.decode(
            token,
            public_key_pem,
            algorithms=["RS256"],
            audience=COGNITO_AUDIENCE,
            issuer=COGNITO_ISSUER,
        )
    except pyjwt.PyJWTError as e:
        raise HTTPException(status_code=401, detail=f"JWT verify failed: {e}")

    return {
        "sub": payload.get("sub"),
        "email": payload.get("email"),
        "claims": payload,
    }
