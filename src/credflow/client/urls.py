"""
Authorization endpoint URLs.

`AuthorizationRequestUrl` is the URL the user agent is sent to, and
`AuthorizationCodeResponseUrl` is the redirect the authorization server sends back.
See https://datatracker.ietf.org/doc/html/rfc6749#section-4.1.1
"""

from __future__ import annotations as _annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass, field
from urllib.parse import parse_qsl

import httpx

from credflow.errors import AmbiguousResponseUrl, AuthorizationError, PreconditionViolation


@dataclass(frozen=True)
class AuthorizationRequestUrl:
    """Immutable set of authorization request parameters on top of the authorization endpoint URL."""

    authorization_server_url: str
    client_id: str
    response_types: tuple[str, ...] = ("code",)
    redirect_uri: str | None = None
    scopes: tuple[str, ...] = ()
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None
    extra_params: tuple[tuple[str, str], ...] = field(default=())

    def __post_init__(self):
        if not self.client_id:
            raise PreconditionViolation("client_id is required")
        if httpx.URL(self.authorization_server_url).fragment:
            raise PreconditionViolation("authorization server URL must not have a fragment")

    def replace(self, **changes) -> AuthorizationRequestUrl:
        if "scopes" in changes:
            changes["scopes"] = tuple(changes["scopes"] or ())
        return dataclasses.replace(self, **changes)

    def with_params(self, **params: str) -> AuthorizationRequestUrl:
        """Add provider-specific parameters (access_type, prompt, ...)."""
        return dataclasses.replace(self, extra_params=self.extra_params + tuple(params.items()))

    @property
    def response_type(self) -> str:
        return " ".join(self.response_types)

    @property
    def scope(self) -> str | None:
        return " ".join(self.scopes) if self.scopes else None

    def query_params(self) -> list[tuple[str, str]]:
        params = [
            ("response_type", self.response_type),
            ("client_id", self.client_id),
            ("redirect_uri", self.redirect_uri),
            ("scope", self.scope),
            ("state", self.state),
            ("code_challenge", self.code_challenge),
            ("code_challenge_method", self.code_challenge_method),
        ]
        return [(k, v) for k, v in params if v is not None] + list(self.extra_params)

    def build(self) -> str:
        url = httpx.URL(self.authorization_server_url)
        return str(url.copy_merge_params(self.query_params()))

    def __str__(self) -> str:
        return self.build()


def authorization_code_url(
    authorization_server_url: str,
    client_id: str,
    scopes: Iterable[str] = (),
    redirect_uri: str | None = None,
    state: str | None = None,
) -> AuthorizationRequestUrl:
    """Authorization request for the authorization code grant (response_type=code)."""
    return AuthorizationRequestUrl(
        authorization_server_url,
        client_id,
        response_types=("code",),
        redirect_uri=redirect_uri,
        scopes=tuple(scopes),
        state=state,
    )


def browser_client_url(
    authorization_server_url: str,
    client_id: str,
    scopes: Iterable[str] = (),
    redirect_uri: str | None = None,
    state: str | None = None,
) -> AuthorizationRequestUrl:
    """Authorization request for the implicit grant used by browser clients (response_type=token).

    See https://datatracker.ietf.org/doc/html/rfc6749#section-4.2.1
    """
    return AuthorizationRequestUrl(
        authorization_server_url,
        client_id,
        response_types=("token",),
        redirect_uri=redirect_uri,
        scopes=tuple(scopes),
        state=state,
    )


@dataclass(frozen=True)
class AuthorizationCodeResponseUrl:
    """
    Redirect from the authorization server: either a code or an error, never both.
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def __post_init__(self):
        if (self.code is None) == (self.error is None):
            raise AmbiguousResponseUrl("Authorization response must contain either code or error, but not both")

    @classmethod
    def parse(cls, encoded_response_url: str) -> AuthorizationCodeResponseUrl:
        params: dict[str, str] = {}
        for key, value in parse_qsl(httpx.URL(encoded_response_url).query.decode("ascii"), keep_blank_values=True):
            params.setdefault(key, value)
        return cls(
            code=params.get("code"),
            state=params.get("state"),
            error=params.get("error"),
            error_description=params.get("error_description"),
            error_uri=params.get("error_uri"),
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise AuthorizationError(self.error, self.error_description, self.error_uri, self.state)
