"""Credential acquisition and caching for the card API.

Handles:
- Token acquisition from the ``/auth`` endpoint (API key or username/password)
- Refreshing the token before it expires (5 minute buffer by default)
- Fetching and caching the published key set (``/.well-known/jwks.json``)
- Optional local RS256 verification of issued tokens
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import httpx
import jwt

from cardwire.domain.events.api_events import EventSink, TokenRefreshed, dispatch
from cardwire.domain.interfaces.credentials import CredentialProvider
from cardwire.domain.models.common import Credential, KeySet, Role
from cardwire.domain.models.errors import (
    AuthenticationError,
    KeySetError,
    ResponseParseError,
    VerificationError,
    parse_error_body,
)
from cardwire.infrastructure.config.settings import ClientSettings

logger = logging.getLogger(__name__)

AUTH_PATH = "/auth"
KEY_SET_PATH = "/.well-known/jwks.json"
DEFAULT_EXPIRES_IN = 3600
TOKEN_ALGORITHM = "RS256"


class CredentialManager(CredentialProvider):
    """Owns the cached credential and key set.

    All reads and replacements of the credential go through one lock, so
    concurrent callers that find the token stale trigger a single refresh.
    """

    def __init__(
        self,
        settings: ClientSettings,
        http_client: httpx.Client,
        clock: Callable[[], float] = time.time,
        event_sink: Optional[EventSink] = None,
    ):
        """Initializes the manager.

        Args:
            settings: Validated client settings (credentials, base URL, TTLs).
            http_client: Shared HTTP client used for the auth and key set calls.
            clock: Wall-clock source in Unix seconds; injectable for tests.
            event_sink: Optional receiver for ``TokenRefreshed`` events.
        """
        self.settings = settings
        self._http = http_client
        self._clock = clock
        self._event_sink = event_sink
        self._credential: Optional[Credential] = None
        self._key_set: Optional[KeySet] = None
        self._lock = threading.Lock()
        self._key_lock = threading.Lock()

    @property
    def credential(self) -> Optional[Credential]:
        """The cached credential, if any. Read-only view."""
        with self._lock:
            return self._credential

    # --- CredentialProvider Interface Implementation ---

    def get_token(self) -> str:
        """Returns the cached token, or fetches a new one when it is stale.

        Raises:
            AuthenticationError: If the auth endpoint rejects the credentials.
            ResponseParseError: If the auth response is not valid JSON.
            VerificationError: If local verification is enabled and fails.
        """
        with self._lock:
            if self._is_valid_locked():
                return self._credential.token
            return self._fetch_credential_locked().token

    def refresh(self) -> str:
        """Discards the cached credential and fetches a new one."""
        if self.settings.verify_tokens:
            self.fetch_key_set(force=True)
        with self._lock:
            self._credential = None
            return self._fetch_credential_locked().token

    def is_valid(self) -> bool:
        with self._lock:
            return self._is_valid_locked()

    def clear_cache(self) -> None:
        with self._lock:
            self._credential = None
        with self._key_lock:
            self._key_set = None
        logger.debug("Credential and key set caches cleared.")

    # --- Key Set ---

    def fetch_key_set(self, force: bool = False) -> KeySet:
        """Returns the published verification keys, cached for ``key_set_ttl_seconds``.

        Args:
            force: Refetch even if the cached key set is still fresh.

        Raises:
            KeySetError: On network failure or a non-2xx response.
            ResponseParseError: If the response is not valid JSON.
        """
        with self._key_lock:
            if not force and self._key_set_valid_locked():
                return self._key_set

            url = self.settings.url_for(KEY_SET_PATH)
            try:
                response = self._http.get(url)
            except httpx.HTTPError as e:
                raise KeySetError(f"JWKS fetch failed: {e}") from e

            if not response.is_success:
                raise KeySetError(f"JWKS fetch failed: HTTP {response.status_code}", status=response.status_code)

            data = _decode_json(response, "JWKS")
            keys = data.get("keys") if isinstance(data, dict) else None
            if not isinstance(keys, list):
                raise ResponseParseError("JWKS parse failed: response has no 'keys' list")

            self._key_set = KeySet(
                keys={key["kid"]: key for key in keys if isinstance(key, dict) and key.get("kid")},
                fetched_at=self._clock(),
            )
            logger.debug(f"Fetched key set with {len(self._key_set.keys)} key(s).")
            return self._key_set

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Verifies a token's RS256 signature, issuer and time claims.

        Returns:
            The decoded token payload.

        Raises:
            VerificationError: If the token cannot be verified.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as e:
            raise VerificationError(f"Token verification failed: {e}") from e

        kid = header.get("kid")
        if not kid:
            raise VerificationError("Token missing kid claim")

        jwk = self.fetch_key_set().find(kid)
        if jwk is None:
            raise VerificationError(f"No matching key found for kid: {kid}")

        try:
            public_key = jwt.PyJWK(jwk, algorithm=TOKEN_ALGORITHM).key
            return jwt.decode(
                token,
                public_key,
                algorithms=[TOKEN_ALGORITHM],
                issuer=self.settings.issuer,
                options={"require": ["exp", "iat", "iss"]},
            )
        except jwt.PyJWTError as e:
            raise VerificationError(f"Token verification failed: {e}") from e

    # --- Internals (callers hold the relevant lock) ---

    def _is_valid_locked(self) -> bool:
        if self._credential is None:
            return False
        return self._credential.is_fresh(self._clock(), self.settings.refresh_buffer_seconds)

    def _key_set_valid_locked(self) -> bool:
        if self._key_set is None:
            return False
        return self._clock() < self._key_set.fetched_at + self.settings.key_set_ttl_seconds

    def _fetch_credential_locked(self) -> Credential:
        url = self.settings.url_for(AUTH_PATH)
        logger.info(f"Requesting new access token ({self.settings.auth_method} auth) from {url}")
        try:
            response = self._http.post(url, json=self.settings.auth_payload())
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Token fetch failed: {e}") from e

        if not response.is_success:
            body = parse_error_body(response.text)
            error_msg = body.get("message") or body.get("error") or "Unknown error"
            raise AuthenticationError(
                f"Token fetch failed (HTTP {response.status_code}): {error_msg}",
                status=response.status_code,
                error_code=body.get("error"),
                details=body.get("details"),
            )

        data = _decode_json(response, "Token response")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise ResponseParseError("Token response parse failed: no 'token' field")

        if self.settings.verify_tokens:
            self.verify_token(token)

        raw_expires_in = data.get("expires_in")
        try:
            expires_in = float(DEFAULT_EXPIRES_IN if raw_expires_in is None else raw_expires_in)
        except (TypeError, ValueError) as e:
            raise ResponseParseError(f"Token response parse failed: bad expires_in {raw_expires_in!r}") from e

        credential = Credential(
            token=token,
            expires_at=self._clock() + expires_in,
            role=Role(data.get("role") or self.settings.role),
        )
        self._credential = credential
        logger.info(f"Access token acquired (role={credential.role}, expires in {expires_in:g}s)")
        dispatch(self._event_sink, TokenRefreshed(role=credential.role, expires_at=credential.expires_at))
        return credential


def _decode_json(response: httpx.Response, what: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise ResponseParseError(f"{what} parse failed: {e}", status=response.status_code) from e
