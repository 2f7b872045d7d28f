"""Per-session user identity used to scope the configuration document."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os
import uuid
from typing import Optional

from ..logging import get_logger
from ..paths import var_dir

LOG = get_logger("identity")

GUEST_USER_ID = "guest"
IDENTITY_FILENAME = "anonymous-uid"


class IdentityError(Exception):
    pass


def _claim_from_token(token: str) -> Optional[str]:
    """Return the ``uid``/``sub`` claim of a JWT-shaped token, if readable.

    The signature is not verified; the token only selects a namespace.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return None
    body = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(body.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeEncodeError):
        return None
    if not isinstance(claims, dict):
        return None
    for key in ("uid", "sub", "user_id"):
        value = claims.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class LocalIdentityProvider:
    """Anonymous or custom-token sign-in backed by a file under ``var/``.

    - With a custom token the uid comes from the token's claims, or a
      SHA-256 fingerprint of the token when it carries none.
    - Anonymous sign-in reuses the uid persisted under var/identity/.
    """

    def __init__(self, root_dir: str) -> None:
        self.folder = os.path.join(var_dir(root_dir), "identity")

    def sign_in_with_custom_token(self, token: str) -> str:
        token = (token or "").strip()
        if not token:
            raise IdentityError("Custom token is empty")
        uid = _claim_from_token(token)
        if uid:
            return uid
        return hashlib.sha256(token.encode("utf-8")).hexdigest()[:28]

    def sign_in_anonymously(self) -> str:
        path = os.path.join(self.folder, IDENTITY_FILENAME)
        try:
            with open(path, "r", encoding="utf-8") as f:
                uid = f.read().strip()
            if uid:
                return uid
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise IdentityError(f"Cannot read anonymous identity: {exc}") from exc
        uid = uuid.uuid4().hex
        try:
            os.makedirs(self.folder, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(uid)
        except OSError as exc:
            raise IdentityError(f"Cannot persist anonymous identity: {exc}") from exc
        LOG.info("Created new anonymous identity")
        return uid


def acquire_user_id(provider, initial_auth_token: Optional[str] = None) -> str:
    """Sign in once for the session; fall back to the guest identity on failure."""
    try:
        if initial_auth_token:
            uid = provider.sign_in_with_custom_token(initial_auth_token)
        else:
            uid = provider.sign_in_anonymously()
    except Exception as exc:
        LOG.error(f"Error signing in: {exc}")
        return GUEST_USER_ID
    if not uid:
        uid = str(uuid.uuid4())
        LOG.warning("Identity provider returned no uid; using a random session id")
    LOG.info(f"Signed in as {uid}")
    return uid
