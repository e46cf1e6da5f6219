"""
System API - Authentication

Token checks for the internal REST route, single-sign-on token verification
against the platform API, and action nonces for the web flush trigger.
"""
import hashlib
import hmac
import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Union

import httpx
from fastapi import Request

from ..shared.config import SiteConfig

logger = logging.getLogger(__name__)

SITE_TOKEN_LENGTH = 32
SSO_TOKEN_LENGTH = 36

UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
TOKEN_PREFIX = re.compile(r"^(?:Token|Bearer)\s", re.IGNORECASE)


@dataclass
class SiteUser:
    """A logged-in user of the host."""
    id: int
    login: str = ""
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    session_token: str = ""

    def has_cap(self, capability: str) -> bool:
        return capability in self.capabilities


class SSOVerifier:
    """Verifies single-sign-on tokens with the platform API."""

    def __init__(self, site_config: SiteConfig, client: Optional[httpx.AsyncClient] = None):
        self.site_config = site_config
        self._client = client

    def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(verify=False)
        return self._client

    async def is_valid_token(self, token: str) -> bool:
        token = TOKEN_PREFIX.sub("", token or "").strip()

        if len(token) != SSO_TOKEN_LENGTH:
            logger.warning("Invalid SSO token length")
            return False

        site_uid = str(self.site_config.get("site_uid", ""))
        if not UUID_PATTERN.match(site_uid):
            logger.warning("Invalid site_uid format")
            return False

        api_url = self.site_config.get("api_url")
        if not api_url:
            logger.warning("Platform API URL missing")
            return False

        url = f"{api_url.rstrip('/')}/sites/{site_uid}/sso/{token}"
        try:
            response = await self.get_client().post(
                url,
                headers={"Accept": "application/json", "Content-Type": "application/json"}
            )
        except httpx.HTTPError as e:
            logger.warning(f"SSO verification request failed: {e}")
            return False

        if response.status_code != 200:
            logger.warning(f"SSO verification returned status {response.status_code}")
            return False

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if not isinstance(payload, dict) or not payload.get("successful"):
            logger.warning("Invalid SSO token")
            return False

        return True

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class TokenValidator:
    """Gate for the internal REST route."""

    QUERY_PARAM = "mwp-token"

    def __init__(self, site_config: SiteConfig, sso: SSOVerifier):
        self.site_config = site_config
        self.sso = sso

    def extract_token(self, request: Request) -> Optional[str]:
        """Token from the ``mwp-token`` query arg, else the Authorization header."""
        token = request.query_params.get(self.QUERY_PARAM) or request.headers.get("Authorization")
        if not token:
            return None
        return TOKEN_PREFIX.sub("", token).strip() or None

    async def is_valid(self, token: Optional[str]) -> bool:
        if not token:
            return False

        if len(token) == SITE_TOKEN_LENGTH:
            site_token = str(self.site_config.get("site_token", "") or "")
            if site_token and hmac.compare_digest(site_token.encode("utf-8"), token.encode("utf-8")):
                return True
            logger.warning("Invalid site token")
            return False

        if len(token) == SSO_TOKEN_LENGTH:
            return await self.sso.is_valid_token(token)

        return False

    async def authenticate(self, request: Request) -> bool:
        return await self.is_valid(self.extract_token(request))


class NonceManager:
    """
    Time-limited action nonces.

    A nonce is valid for ``lifetime`` seconds, split in two ticks. ``verify``
    returns 1 when the nonce was created in the current tick, 2 when it was
    created in the previous one, and False otherwise.
    """

    def __init__(self, secret_key: str, lifetime: int = 24 * 3600):
        self.secret_key = secret_key.encode("utf-8")
        self.lifetime = lifetime

    def tick(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        return math.ceil(now / (self.lifetime / 2))

    def _hash(self, tick: int, action: str, user_id: int, session: str) -> str:
        message = f"{tick}|{action}|{user_id}|{session}".encode("utf-8")
        digest = hmac.new(self.secret_key, message, hashlib.sha256).hexdigest()
        return digest[-12:-2]

    def create(self, action: str, user: Optional[SiteUser] = None, now: Optional[float] = None) -> str:
        user_id, session = (user.id, user.session_token) if user else (0, "")
        return self._hash(self.tick(now), action, user_id, session)

    def verify(
        self,
        nonce: Optional[str],
        action: str,
        user: Optional[SiteUser] = None,
        now: Optional[float] = None
    ) -> Union[int, bool]:
        if not nonce:
            return False

        user_id, session = (user.id, user.session_token) if user else (0, "")
        tick = self.tick(now)

        nonce = nonce.encode("utf-8")
        if hmac.compare_digest(self._hash(tick, action, user_id, session).encode("utf-8"), nonce):
            return 1
        if hmac.compare_digest(self._hash(tick - 1, action, user_id, session).encode("utf-8"), nonce):
            return 2

        return False
