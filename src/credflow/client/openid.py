"""
OpenID Connect ID tokens.

`IdToken` checks the standard claims; `IdTokenVerifier` bundles those checks
with an optional signature check against the provider's published JWKS.
See https://openid.net/specs/openid-connect-core-1_0.html#IDTokenValidation
"""

from __future__ import annotations as _annotations

import logging
import threading
from collections.abc import Iterable
from typing import Any

import httpx
import jwt
from pydantic import BaseModel, ConfigDict, Field

from credflow.errors import IdTokenVerificationError, PreconditionViolation
from credflow.shared.auth import TokenResponse
from credflow.shared.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)

DEFAULT_TIME_SKEW_SECONDS = 300
# JWK key type each supported signing algorithm needs
KEY_TYPES = {"RS256": "RSA", "ES256": "EC"}
SUPPORTED_ALGORITHMS = tuple(KEY_TYPES)
# how long fetched public keys are trusted before they are fetched again
JWKS_CACHE_MILLIS = 60 * 60 * 1000


class IdTokenPayload(BaseModel):
    iss: str | None = None
    sub: str | None = None
    aud: str | list[str] | None = None
    exp: int | None = None
    iat: int | None = None
    nbf: int | None = None
    auth_time: int | None = None
    nonce: str | None = None
    azp: str | None = None
    at_hash: str | None = None
    acr: str | None = None
    amr: list[str] | None = None

    model_config = ConfigDict(extra="allow")

    @property
    def audience(self) -> list[str]:
        if self.aud is None:
            return []
        return [self.aud] if isinstance(self.aud, str) else list(self.aud)


class IdTokenResponse(TokenResponse):
    """Token response that also carries an ID token."""

    id_token: str = Field(min_length=1)

    def parse_id_token(self) -> IdToken:
        return IdToken.parse(self.id_token)


class IdToken:
    """A decoded, not yet verified, ID token."""

    def __init__(self, header: dict[str, Any], payload: IdTokenPayload, encoded: str):
        self.header = header
        self.payload = payload
        self.encoded = encoded

    @classmethod
    def parse(cls, id_token: str) -> IdToken:
        header = jwt.get_unverified_header(id_token)
        claims = jwt.decode(id_token, options={"verify_signature": False})
        return cls(header, IdTokenPayload.model_validate(claims), id_token)

    def verify_issuer(self, expected_issuers: str | Iterable[str]) -> bool:
        if isinstance(expected_issuers, str):
            expected_issuers = {expected_issuers}
        return self.payload.iss in set(expected_issuers)

    def verify_audience(self, trusted_client_ids: Iterable[str]) -> bool:
        """True when every audience of the token is a trusted client id."""
        audience = self.payload.audience
        return bool(audience) and set(audience) <= set(trusted_client_ids)

    def verify_expiration_time(self, current_time_millis: int, acceptable_time_skew_seconds: int) -> bool:
        if self.payload.exp is None:
            return False
        return current_time_millis <= (self.payload.exp + acceptable_time_skew_seconds) * 1000

    def verify_issued_at_time(self, current_time_millis: int, acceptable_time_skew_seconds: int) -> bool:
        if self.payload.iat is None:
            return False
        return current_time_millis >= (self.payload.iat - acceptable_time_skew_seconds) * 1000

    def verify_time(self, current_time_millis: int, acceptable_time_skew_seconds: int) -> bool:
        return self.verify_expiration_time(
            current_time_millis, acceptable_time_skew_seconds
        ) and self.verify_issued_at_time(current_time_millis, acceptable_time_skew_seconds)


class IdTokenVerifier:
    """
    Thread-safe ID token verifier.

    Issuer and audience are only checked when configured. The signature is only
    checked when `certificates_location` points at a JWKS document.
    """

    def __init__(
        self,
        clock: Clock = SYSTEM_CLOCK,
        acceptable_time_skew_seconds: int = DEFAULT_TIME_SKEW_SECONDS,
        issuers: Iterable[str] | None = None,
        audience: Iterable[str] | None = None,
        certificates_location: str | None = None,
        http_client: httpx.Client | None = None,
    ):
        if acceptable_time_skew_seconds < 0:
            raise ValueError("acceptable_time_skew_seconds must not be negative")
        self.clock = clock
        self.acceptable_time_skew_seconds = acceptable_time_skew_seconds
        self.issuers = frozenset(issuers) if issuers is not None else None
        self.audience = frozenset(audience) if audience is not None else None
        self.certificates_location = certificates_location
        self.http_client = http_client

        self._lock = threading.Lock()
        self._jwks: jwt.PyJWKSet | None = None
        self._jwks_expires_at: int = 0

    def verify(self, id_token: IdToken) -> bool:
        if self.issuers is not None and not id_token.verify_issuer(self.issuers):
            return False
        if self.audience is not None and not id_token.verify_audience(self.audience):
            return False
        if not id_token.verify_time(self.clock.current_time_millis(), self.acceptable_time_skew_seconds):
            return False
        if self.certificates_location is None:
            return True
        try:
            self.verify_signature(id_token)
        except IdTokenVerificationError as e:
            logger.warning(f"ID token signature verification failed: {e}")
            return False
        return True

    def verify_signature(self, id_token: IdToken) -> None:
        algorithm = id_token.header.get("alg")
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise IdTokenVerificationError(f"Unexpected signing algorithm {algorithm}: expected RS256 or ES256")

        kid = id_token.header.get("kid")
        keys = [
            k
            for k in self._public_keys().keys
            if k.key_type == KEY_TYPES[algorithm] and (kid is None or k.key_id == kid)
        ]
        if not keys:
            raise IdTokenVerificationError(f"No public key found for key id {kid}")

        for key in keys:
            try:
                jwt.decode(
                    id_token.encoded,
                    key.key,
                    algorithms=[algorithm],
                    options={"verify_aud": False, "verify_exp": False, "verify_iat": False, "verify_nbf": False},
                )
                return
            except (jwt.InvalidSignatureError, jwt.InvalidKeyError, TypeError):
                continue
            except jwt.PyJWTError as e:
                raise IdTokenVerificationError(str(e)) from e
        raise IdTokenVerificationError("Signature does not match any published key")

    def _public_keys(self) -> jwt.PyJWKSet:
        if self.certificates_location is None:
            raise PreconditionViolation("certificates_location is not set")
        with self._lock:
            now = self.clock.current_time_millis()
            if self._jwks is None or now >= self._jwks_expires_at:
                logger.debug(f"Fetching public keys from {self.certificates_location}")
                try:
                    if self.http_client is not None:
                        response = self.http_client.get(self.certificates_location)
                    else:
                        response = httpx.get(self.certificates_location)
                    response.raise_for_status()
                    self._jwks = jwt.PyJWKSet.from_dict(response.json())
                except (httpx.HTTPError, ValueError, jwt.PyJWTError) as e:
                    raise IdTokenVerificationError(f"Unable to fetch public keys: {e}") from e
                self._jwks_expires_at = now + JWKS_CACHE_MILLIS
            return self._jwks
