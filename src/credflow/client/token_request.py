"""
Token endpoint requests.

One `TokenRequest` is one round trip to the token endpoint: a form-encoded POST of
the grant parameters, decorated by the client authenticator, answered by a JSON
token response or a JSON error response.
See https://datatracker.ietf.org/doc/html/rfc6749#section-3.2
"""

from __future__ import annotations as _annotations

import logging
from collections.abc import Iterable

import httpx
from pydantic import ValidationError

from credflow.client.client_auth import ClientAuthentication
from credflow.errors import PreconditionViolation, TokenResponseException, stringify_pydantic_error
from credflow.shared.auth import TokenResponse

logger = logging.getLogger(__name__)


class TokenRequest:
    """A grant request against the token endpoint.

    Grant-specific fields are passed as keyword arguments; fields set to None are
    left out of the request body. The request is never retried here.
    """

    def __init__(
        self,
        http_client: httpx.Client,
        token_server_url: str | httpx.URL,
        grant_type: str,
        client_authentication: ClientAuthentication | None = None,
        scopes: Iterable[str] | None = None,
        **params: str | None,
    ):
        if http_client is None:
            raise PreconditionViolation("http_client is required")
        if not grant_type:
            raise PreconditionViolation("grant_type is required")
        url = httpx.URL(str(token_server_url))
        if url.fragment:
            raise PreconditionViolation("token server URL must not have a fragment")

        self.http_client = http_client
        self.token_server_url = url
        self.grant_type = grant_type
        self.client_authentication = client_authentication
        self.scopes = list(scopes) if scopes is not None else None
        self.params: dict[str, str | None] = dict(params)

    def set(self, name: str, value: str | None) -> TokenRequest:
        self.params[name] = value
        return self

    def form_data(self) -> dict[str, str]:
        data = {"grant_type": self.grant_type}
        data.update({k: v for k, v in self.params.items() if v is not None})
        if self.scopes:
            data["scope"] = " ".join(self.scopes)
        return data

    def build_request(self) -> httpx.Request:
        request = self.http_client.build_request(
            "POST",
            self.token_server_url,
            data=self.form_data(),
            headers={"Accept": "application/json"},
        )
        # client authentication runs last so it sees the complete request
        if self.client_authentication is not None:
            self.client_authentication(request)
        return request

    def execute_unparsed(self) -> httpx.Response:
        """Send the request and return the raw successful response.

        Raises TokenResponseException for a non-2xx response and lets
        httpx.TransportError propagate untouched.
        """
        request = self.build_request()
        logger.debug(f"Requesting token from {self.token_server_url} (grant_type={self.grant_type})")
        # auth=None keeps any httpx.Auth configured on the client (e.g. a Credential) out of the exchange
        response = self.http_client.send(request, auth=None)
        if response.is_success:
            return response
        raise TokenResponseException.from_response(response)

    def execute(self) -> TokenResponse:
        response = self.execute_unparsed()
        try:
            return TokenResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise TokenResponseException(
                f"Invalid token response: {stringify_pydantic_error(e)}",
                response.status_code,
                content=response.text,
                headers=response.headers,
            )


def authorization_code_token_request(
    http_client: httpx.Client,
    token_server_url: str | httpx.URL,
    code: str,
    redirect_uri: str | None = None,
    code_verifier: str | None = None,
    client_authentication: ClientAuthentication | None = None,
    scopes: Iterable[str] | None = None,
) -> TokenRequest:
    """See https://datatracker.ietf.org/doc/html/rfc6749#section-4.1.3"""
    if not code:
        raise PreconditionViolation("authorization code is required")
    return TokenRequest(
        http_client,
        token_server_url,
        "authorization_code",
        client_authentication=client_authentication,
        scopes=scopes,
        code=code,
        redirect_uri=redirect_uri,
        code_verifier=code_verifier,
    )


def refresh_token_request(
    http_client: httpx.Client,
    token_server_url: str | httpx.URL,
    refresh_token: str,
    client_authentication: ClientAuthentication | None = None,
    scopes: Iterable[str] | None = None,
) -> TokenRequest:
    """See https://datatracker.ietf.org/doc/html/rfc6749#section-6"""
    if not refresh_token:
        raise PreconditionViolation("refresh_token is required")
    return TokenRequest(
        http_client,
        token_server_url,
        "refresh_token",
        client_authentication=client_authentication,
        scopes=scopes,
        refresh_token=refresh_token,
    )


def password_token_request(
    http_client: httpx.Client,
    token_server_url: str | httpx.URL,
    username: str,
    password: str,
    client_authentication: ClientAuthentication | None = None,
    scopes: Iterable[str] | None = None,
) -> TokenRequest:
    """See https://datatracker.ietf.org/doc/html/rfc6749#section-4.3.2"""
    if username is None or password is None:
        raise PreconditionViolation("username and password are required")
    return TokenRequest(
        http_client,
        token_server_url,
        "password",
        client_authentication=client_authentication,
        scopes=scopes,
        username=username,
        password=password,
    )


def client_credentials_token_request(
    http_client: httpx.Client,
    token_server_url: str | httpx.URL,
    client_authentication: ClientAuthentication | None = None,
    scopes: Iterable[str] | None = None,
) -> TokenRequest:
    """See https://datatracker.ietf.org/doc/html/rfc6749#section-4.4.2"""
    return TokenRequest(
        http_client,
        token_server_url,
        "client_credentials",
        client_authentication=client_authentication,
        scopes=scopes,
    )
