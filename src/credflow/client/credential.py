"""
OAuth 2.0 credential with automatic, thread-safe token refresh.

A `Credential` holds an access token, an optional refresh token and the access
token's expiration time. It is an `httpx.Auth`, so attaching it to a client is
enough to have every request carry the access token, to refresh the token shortly
before it expires, and to refresh and retry once when the resource server rejects
the token.
"""

from __future__ import annotations as _annotations

import logging
import threading
from collections.abc import AsyncGenerator, Generator, Iterable
from typing import Protocol

import anyio.to_thread
import httpx

from credflow.client.bearer import HEADER_PREFIX, INVALID_TOKEN_ERROR, AccessMethod
from credflow.client.client_auth import ClientAuthentication
from credflow.client.token_request import refresh_token_request
from credflow.errors import PreconditionViolation, TokenResponseException
from credflow.shared.auth import StoredCredential, TokenErrorResponse, TokenResponse
from credflow.shared.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)

# refresh this many seconds before the access token actually expires
EXPIRY_GUARD_SECONDS = 60


class CredentialRefreshListener(Protocol):
    """Notified after every refresh attempt, successful or not."""

    def on_token_response(self, credential: Credential, token_response: TokenResponse) -> None:
        """Called after a new access token was obtained."""
        ...

    def on_token_error_response(self, credential: Credential, token_error_response: TokenErrorResponse | None) -> None:
        """Called after a failed refresh. The error response is None if the server sent no parseable error."""
        ...


class Credential(httpx.Auth):
    """
    Thread-safe OAuth 2.0 credential.

    All token fields are read and written under one re-entrant lock, which is also
    held for the whole refresh round trip. A thread that loses the race to refresh
    blocks until the winner is done and then sees the winner's token.
    """

    requires_response_body = False

    def __init__(
        self,
        method: AccessMethod,
        *,
        http_client: httpx.Client | None = None,
        token_server_url: str | httpx.URL | None = None,
        client_authentication: ClientAuthentication | None = None,
        clock: Clock = SYSTEM_CLOCK,
        refresh_listeners: Iterable[CredentialRefreshListener] = (),
    ):
        if method is None:
            raise PreconditionViolation("access method is required")
        if clock is None:
            raise PreconditionViolation("clock is required")
        self._lock = threading.RLock()
        self._method = method
        self._clock = clock
        self._http_client = http_client
        self._token_server_url = str(token_server_url) if token_server_url is not None else None
        self._client_authentication = client_authentication
        self._refresh_listeners = tuple(refresh_listeners)

        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._expiration_time_milliseconds: int | None = None

    # configuration

    @property
    def method(self) -> AccessMethod:
        return self._method

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def http_client(self) -> httpx.Client | None:
        return self._http_client

    @property
    def token_server_url(self) -> str | None:
        return self._token_server_url

    @property
    def client_authentication(self) -> ClientAuthentication | None:
        return self._client_authentication

    @property
    def refresh_listeners(self) -> tuple[CredentialRefreshListener, ...]:
        return self._refresh_listeners

    # token state

    @property
    def access_token(self) -> str | None:
        with self._lock:
            return self._access_token

    def set_access_token(self, access_token: str | None) -> Credential:
        with self._lock:
            self._access_token = access_token
        return self

    @property
    def refresh_token(self) -> str | None:
        with self._lock:
            return self._refresh_token

    def set_refresh_token(self, refresh_token: str | None) -> Credential:
        with self._lock:
            if refresh_token is not None and (
                self._http_client is None or self._token_server_url is None or self._client_authentication is None
            ):
                raise PreconditionViolation(
                    "A refresh token requires http_client, token_server_url and client_authentication"
                )
            self._refresh_token = refresh_token
        return self

    @property
    def expiration_time_milliseconds(self) -> int | None:
        with self._lock:
            return self._expiration_time_milliseconds

    def set_expiration_time_milliseconds(self, expiration_time_milliseconds: int | None) -> Credential:
        with self._lock:
            self._expiration_time_milliseconds = expiration_time_milliseconds
        return self

    @property
    def expires_in_seconds(self) -> int | None:
        """Remaining lifetime of the access token in seconds, negative once expired, None if unknown."""
        with self._lock:
            if self._expiration_time_milliseconds is None:
                return None
            return int((self._expiration_time_milliseconds - self._clock.current_time_millis()) / 1000)

    def set_expires_in_seconds(self, expires_in: int | None) -> Credential:
        return self.set_expiration_time_milliseconds(
            None if expires_in is None else self._clock.current_time_millis() + expires_in * 1000
        )

    def set_from_token_response(self, token_response: TokenResponse) -> Credential:
        """Copy the token fields from a token response.

        A response without a refresh token keeps the refresh token we already have.
        """
        with self._lock:
            self.set_access_token(token_response.access_token)
            if token_response.refresh_token is not None:
                self.set_refresh_token(token_response.refresh_token)
            self.set_expires_in_seconds(token_response.expires_in)
        return self

    def snapshot(self) -> StoredCredential:
        with self._lock:
            return StoredCredential(
                access_token=self._access_token,
                refresh_token=self._refresh_token,
                expiration_time_milliseconds=self._expiration_time_milliseconds,
            )

    # request lifecycle

    def intercept(self, request: httpx.Request) -> None:
        """Attach the access token, refreshing first when it is missing or about to expire."""
        with self._lock:
            expires_in = self.expires_in_seconds
            if self._access_token is None or (expires_in is not None and expires_in <= EXPIRY_GUARD_SECONDS):
                self.refresh()
                if self._access_token is None:
                    # nothing we can do without an access token
                    return
            self._method.intercept(request, self._access_token)

    def handle_response(self, request: httpx.Request, response: httpx.Response) -> bool:
        """Decide whether an unsuccessful response should be retried with a refreshed token.

        Returns True if the request should be retried, i.e. the token was refreshed,
        or another thread already replaced the token the request was sent with.
        """
        refresh = False
        bearer = False

        for authenticate in response.headers.get_list("WWW-Authenticate"):
            if authenticate.startswith(HEADER_PREFIX):
                # a Bearer challenge only asks for a new token when it says invalid_token
                bearer = True
                refresh = INVALID_TOKEN_ERROR.search(authenticate) is not None
                break

        # no Bearer challenge at all: fall back to the status code
        if not bearer:
            refresh = response.status_code == 401

        if not refresh:
            return False

        with self._lock:
            # another thread may have refreshed the token while this request was in flight
            if self._access_token != self._method.get_access_token_from_request(request):
                return True
            try:
                return self.refresh()
            except TokenResponseException as e:
                logger.error(f"Unable to refresh token: {e.status_code}")
                return False

    def refresh(self) -> bool:
        """Request a new access token with the refresh token.

        Returns True on success and False when there is no refresh token or the token
        server could not be reached or answered with a 5xx error; the current tokens
        are kept in that case. A 4xx answer means the grant is dead: the access token
        is cleared and the TokenResponseException is raised.
        """
        with self._lock:
            try:
                token_response = self.execute_refresh_token()
            except TokenResponseException as e:
                if e.details is not None and e.is_client_error:
                    # the refresh token was revoked or expired; our access token cannot be trusted either
                    self.set_access_token(None)
                    self.set_expires_in_seconds(None)
                for listener in self._refresh_listeners:
                    listener.on_token_error_response(self, e.details)
                if e.is_client_error:
                    raise
                logger.warning(f"Token refresh failed with status {e.status_code}, keeping current token")
                return False
            except httpx.TransportError as e:
                for listener in self._refresh_listeners:
                    listener.on_token_error_response(self, None)
                logger.warning(f"Token refresh failed: {e!r}, keeping current token")
                return False

            if token_response is None:
                return False

            self.set_from_token_response(token_response)
            for listener in self._refresh_listeners:
                listener.on_token_response(self, token_response)
            logger.debug("Token refresh successful")
            return True

    def execute_refresh_token(self) -> TokenResponse | None:
        """Run the refresh_token grant. Returns None when no refresh token is held."""
        with self._lock:
            if self._refresh_token is None:
                return None
            if self._http_client is None or self._token_server_url is None:
                raise PreconditionViolation("refreshing requires http_client and token_server_url")
            logger.debug("Refreshing access token")
            return refresh_token_request(
                self._http_client,
                self._token_server_url,
                self._refresh_token,
                client_authentication=self._client_authentication,
            ).execute()

    # httpx.Auth

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        self.intercept(request)
        response = yield request
        if not response.is_success and self.handle_response(request, response):
            self.intercept(request)
            yield request

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        # the refresh round trip blocks; run it off the event loop while keeping the same lock
        await anyio.to_thread.run_sync(self.intercept, request)
        response = yield request
        if not response.is_success and await anyio.to_thread.run_sync(self.handle_response, request, response):
            await anyio.to_thread.run_sync(self.intercept, request)
            yield request

    def __repr__(self) -> str:
        return f"Credential(method={self._method!r}, token_server_url={self._token_server_url!r})"
