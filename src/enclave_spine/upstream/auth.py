"""Credential helpers for the two upstream services.

The Registry takes a short-lived RS256 JWT whose issuer is the configured
member id; the ResultStore takes a static basic-auth credential. Both are
minted on every call, never cached.
"""

from __future__ import annotations

import base64
import time

import jwt

from enclave_spine.core.errors import UpstreamAuthError
from enclave_spine.core.settings import EnclaveSettings


def management_app_token(settings: EnclaveSettings) -> str:
    """Mint a signed bearer token for the Registry."""
    private_key = settings.management_app_private_key.get_secret_value()
    member_id = settings.management_app_member_id

    token = ""
    if private_key and member_id:
        now = int(time.time())
        try:
            token = jwt.encode(
                {"iss": member_id, "iat": now, "exp": now + settings.management_app_token_ttl_seconds},
                private_key,
                algorithm="RS256",
            )
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise UpstreamAuthError("Management app token failed to generate", cause=exc) from exc
    if not token:
        raise UpstreamAuthError("Management app token failed to generate")
    return token


def management_app_headers(settings: EnclaveSettings) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {management_app_token(settings)}",
        "Content-Type": "application/json",
    }


def toa_headers(settings: EnclaveSettings) -> dict[str, str]:
    """Basic-auth headers for the ResultStore."""
    credential = settings.toa_basic_auth.get_secret_value()
    token = base64.b64encode(credential.encode()).decode() if credential else ""
    if not token:
        raise UpstreamAuthError("TOA token failed to generate")
    return {
        "Authorization": f"Basic {token}",
        "Content-Type": "application/json",
    }
