"""
Client authentication for requests to the token endpoint.

A client authenticator is a pre-send hook: it receives the fully built token
request and decorates it with the client's credentials.
See https://datatracker.ietf.org/doc/html/rfc6749#section-2.3
"""

import uuid
from typing import Any, Protocol

import httpx
import jwt

from credflow.errors import PreconditionViolation
from credflow.shared._httpx_utils import get_form_fields, set_form_fields
from credflow.shared.clock import SYSTEM_CLOCK, Clock

GRANT_TYPE_KEY = "grant_type"
GRANT_TYPE_CLIENT_CREDENTIALS = "client_credentials"
CLIENT_ASSERTION_TYPE_KEY = "client_assertion_type"
CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
CLIENT_ASSERTION_KEY = "client_assertion"


class ClientAuthentication(Protocol):
    def __call__(self, request: httpx.Request) -> None:
        """Decorate the token request with client credentials."""
        ...


class BasicAuthentication:
    """
    HTTP Basic authentication with the client id and secret (client_secret_basic).
    """

    def __init__(self, client_id: str, client_secret: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self._auth = httpx.BasicAuth(client_id, client_secret)

    def __call__(self, request: httpx.Request) -> None:
        # BasicAuth's flow sets the Authorization header on the request it yields
        next(self._auth.sync_auth_flow(request))


class ClientParametersAuthentication:
    """
    Client id and secret sent as form parameters in the request body (client_secret_post).

    The secret is optional so public clients can identify themselves with only a client id.
    """

    def __init__(self, client_id: str, client_secret: str | None = None):
        if not client_id:
            raise PreconditionViolation("client_id is required")
        self.client_id = client_id
        self.client_secret = client_secret

    def __call__(self, request: httpx.Request) -> None:
        fields = [(k, v) for k, v in get_form_fields(request) if k not in ("client_id", "client_secret")]
        fields.append(("client_id", self.client_id))
        if self.client_secret is not None:
            fields.append(("client_secret", self.client_secret))
        set_form_fields(request, fields)


class JWTAuthentication:
    """
    Client authentication with a signed JWT assertion.
    See https://datatracker.ietf.org/doc/html/rfc7523#section-2.2

    Only the client_credentials grant is supported; the grant type is added when missing.
    """

    def __init__(self, jwt: str):
        if not jwt:
            raise PreconditionViolation("jwt is required")
        self.jwt = jwt

    def __call__(self, request: httpx.Request) -> None:
        fields = get_form_fields(request)
        grant_types = [v for k, v in fields if k == GRANT_TYPE_KEY]
        if not grant_types:
            fields.append((GRANT_TYPE_KEY, GRANT_TYPE_CLIENT_CREDENTIALS))
        elif grant_types[0] != GRANT_TYPE_CLIENT_CREDENTIALS:
            raise PreconditionViolation(
                f"{GRANT_TYPE_KEY} must be {GRANT_TYPE_CLIENT_CREDENTIALS}, not {grant_types[0]}."
            )

        fields = [(k, v) for k, v in fields if k not in (CLIENT_ASSERTION_TYPE_KEY, CLIENT_ASSERTION_KEY)]
        fields.append((CLIENT_ASSERTION_TYPE_KEY, CLIENT_ASSERTION_TYPE))
        fields.append((CLIENT_ASSERTION_KEY, self.jwt))
        set_form_fields(request, fields)


def create_client_assertion(
    client_id: str,
    audience: str,
    key: Any,
    algorithm: str = "RS256",
    clock: Clock = SYSTEM_CLOCK,
    lifetime_seconds: int = 300,
    headers: dict[str, Any] | None = None,
) -> str:
    """Sign a client assertion JWT suitable for `JWTAuthentication`.

    `iss` and `sub` are the client id and `aud` is the token endpoint, as RFC 7523
    section 3 requires. `key` is anything PyJWT accepts for `algorithm`.
    """
    now = clock.current_time_millis() // 1000
    claims = {
        "iss": client_id,
        "sub": client_id,
        "aud": audience,
        "iat": now,
        "exp": now + lifetime_seconds,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, key, algorithm=algorithm, headers=headers)
