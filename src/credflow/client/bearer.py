"""
Bearer token access methods.

Each access method knows how to put an OAuth 2.0 bearer token on an outgoing
request and how to read it back, as described in
https://datatracker.ietf.org/doc/html/rfc6750#section-2
"""

import re
from typing import Protocol

import httpx

from credflow.errors import PreconditionViolation
from credflow.shared._httpx_utils import get_form_field, is_form_encoded, set_form_field

PARAM_NAME = "access_token"

HEADER_PREFIX = "Bearer "

INVALID_TOKEN_ERROR = re.compile(r'\s*error\s*=\s*"?invalid_token"?')


class AccessMethod(Protocol):
    def intercept(self, request: httpx.Request, access_token: str) -> None:
        """Attach the access token to the request."""
        ...

    def get_access_token_from_request(self, request: httpx.Request) -> str | None:
        """Return the access token the request carries, or None."""
        ...


class AuthorizationHeaderAccessMethod:
    """Sends the token in the `Authorization: Bearer` header (RFC 6750 section 2.1)."""

    def intercept(self, request: httpx.Request, access_token: str) -> None:
        request.headers["Authorization"] = HEADER_PREFIX + access_token

    def get_access_token_from_request(self, request: httpx.Request) -> str | None:
        for header in request.headers.get_list("Authorization"):
            if header.startswith(HEADER_PREFIX):
                return header[len(HEADER_PREFIX) :]
        return None

    def __repr__(self) -> str:
        return "AuthorizationHeaderAccessMethod()"


class FormEncodedBodyAccessMethod:
    """Sends the token as a form-encoded body field (RFC 6750 section 2.2)."""

    def intercept(self, request: httpx.Request, access_token: str) -> None:
        if request.method == "GET":
            raise PreconditionViolation("HTTP GET method is not supported")
        if request.read() and not is_form_encoded(request):
            raise PreconditionViolation("request body is not application/x-www-form-urlencoded")
        set_form_field(request, PARAM_NAME, access_token)

    def get_access_token_from_request(self, request: httpx.Request) -> str | None:
        return get_form_field(request, PARAM_NAME)

    def __repr__(self) -> str:
        return "FormEncodedBodyAccessMethod()"


class QueryParameterAccessMethod:
    """Sends the token as the `access_token` URI query parameter (RFC 6750 section 2.3)."""

    def intercept(self, request: httpx.Request, access_token: str) -> None:
        request.url = request.url.copy_set_param(PARAM_NAME, access_token)

    def get_access_token_from_request(self, request: httpx.Request) -> str | None:
        return request.url.params.get(PARAM_NAME)

    def __repr__(self) -> str:
        return "QueryParameterAccessMethod()"


def authorization_header_access_method() -> AccessMethod:
    return AuthorizationHeaderAccessMethod()


def form_encoded_body_access_method() -> AccessMethod:
    return FormEncodedBodyAccessMethod()


def query_parameter_access_method() -> AccessMethod:
    return QueryParameterAccessMethod()
