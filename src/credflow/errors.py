from __future__ import annotations as _annotations

from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

if TYPE_CHECKING:
    from credflow.shared.auth import TokenErrorResponse


class OAuthError(Exception):
    """
    Base class for all credflow errors.
    """

    def __init__(self, error_description: str):
        super().__init__(error_description)
        self.error_description = error_description


class PreconditionViolation(OAuthError, ValueError):
    """Raised when the library is used in a way that can never work."""

    pass


class AmbiguousResponseUrl(OAuthError, ValueError):
    """Raised when an authorization redirect carries neither or both of code and error."""

    pass


class AuthorizationError(OAuthError):
    """
    The end user (or the authorization server) denied the authorization request.

    See https://datatracker.ietf.org/doc/html/rfc6749#section-4.1.2.1
    """

    def __init__(
        self,
        error: str,
        error_description: str | None = None,
        error_uri: str | None = None,
        state: str | None = None,
    ):
        super().__init__(error_description or error)
        self.error = error
        self.error_uri = error_uri
        self.state = state


class IdTokenVerificationError(OAuthError):
    """Raised when the signature of an ID token cannot be verified."""

    pass


class TokenResponseException(OAuthError):
    """
    Non-successful response from the token server.

    `details` is set when the body was a well-formed OAuth 2.0 error response
    (https://datatracker.ietf.org/doc/html/rfc6749#section-5.2). Otherwise it is
    None and `content` holds the raw body for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        details: TokenErrorResponse | None = None,
        content: str | None = None,
        headers: httpx.Headers | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.details = details
        self.content = content
        self.headers = headers if headers is not None else httpx.Headers()

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    @classmethod
    def from_response(cls, response: httpx.Response) -> TokenResponseException:
        """Build the exception from a token server response, parsing error details if possible."""
        from credflow.shared.auth import TokenErrorResponse

        details: TokenErrorResponse | None = None
        content = response.text or None
        content_type = response.headers.get("content-type", "")
        if not response.is_success and content and content_type.split(";")[0].strip().lower() == "application/json":
            try:
                details = TokenErrorResponse.model_validate_json(response.content)
                content = details.model_dump_json(exclude_none=True, indent=2)
            except ValidationError:
                details = None

        message = f"{response.status_code} {response.reason_phrase}".strip()
        if content:
            message = f"{message}\n{content}"
        return cls(message, response.status_code, details=details, content=content, headers=response.headers)


def stringify_pydantic_error(validation_error: ValidationError) -> str:
    return "\n".join(f"{'.'.join(str(loc) for loc in e['loc'])}: {e['msg']}" for e in validation_error.errors())
