"""
Authorization code flow.

Ties the pieces together: the flow builds the authorization URL, exchanges the
returned code for tokens, and creates, persists and reloads credentials per user.
See https://datatracker.ietf.org/doc/html/rfc6749#section-4.1
"""

from __future__ import annotations as _annotations

import base64
import hashlib
import logging
import secrets
from collections.abc import Iterable
from typing import TYPE_CHECKING, Literal, Protocol

import httpx
from pydantic import BaseModel, Field

from credflow.client.bearer import AccessMethod
from credflow.client.client_auth import ClientAuthentication
from credflow.client.credential import Credential, CredentialRefreshListener
from credflow.client.store import CredentialStore, CredentialStoreRefreshListener
from credflow.client.token_request import TokenRequest, authorization_code_token_request
from credflow.client.urls import AuthorizationRequestUrl, authorization_code_url
from credflow.errors import PreconditionViolation
from credflow.shared.auth import TokenResponse
from credflow.shared.clock import SYSTEM_CLOCK, Clock

if TYPE_CHECKING:
    from credflow.settings import OAuthClientSettings

logger = logging.getLogger(__name__)

PKCE_VERIFIER_BYTES = 32


def _urlsafe_b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


class PKCEParameters(BaseModel):
    """PKCE (Proof Key for Code Exchange) parameters, RFC 7636."""

    code_verifier: str = Field(..., min_length=43, max_length=128)
    code_challenge: str = Field(..., min_length=43, max_length=128)
    code_challenge_method: Literal["S256"] = Field(default="S256")

    @classmethod
    def generate(cls) -> PKCEParameters:
        """Generate new PKCE parameters."""
        code_verifier = _urlsafe_b64(secrets.token_bytes(PKCE_VERIFIER_BYTES))
        code_challenge = _urlsafe_b64(hashlib.sha256(code_verifier.encode("ascii")).digest())
        return cls(code_verifier=code_verifier, code_challenge=code_challenge)


class CredentialCreatedListener(Protocol):
    def on_credential_created(self, credential: Credential, token_response: TokenResponse) -> None:
        """Called after `create_and_store_credential` built (and stored) a credential."""
        ...


class AuthorizationCodeFlow:
    """
    Thread-safe authorization code flow.

    A typical web application calls `new_authorization_url` to send the user to the
    authorization server, then `new_token_request(code, redirect_uri).execute()` on
    the redirect, and finally `create_and_store_credential` to keep the tokens.
    Later requests for the same user start from `load_credential`.

    With `pkce=True` one verifier is generated per flow instance and reused by every
    authorization request it builds. Flows shared between users should pass a fresh
    `PKCEParameters.generate()` pair to both `new_authorization_url` and
    `new_token_request` instead.
    """

    def __init__(
        self,
        method: AccessMethod,
        http_client: httpx.Client,
        token_server_url: str | httpx.URL,
        client_authentication: ClientAuthentication,
        client_id: str,
        authorization_server_url: str,
        *,
        scopes: Iterable[str] = (),
        clock: Clock = SYSTEM_CLOCK,
        credential_store: CredentialStore | None = None,
        refresh_listeners: Iterable[CredentialRefreshListener] = (),
        credential_created_listener: CredentialCreatedListener | None = None,
        pkce: bool = False,
    ):
        if method is None or http_client is None or client_authentication is None:
            raise PreconditionViolation("method, http_client and client_authentication are required")
        if not client_id:
            raise PreconditionViolation("client_id is required")
        if httpx.URL(str(token_server_url)).fragment:
            raise PreconditionViolation("token server URL must not have a fragment")

        self.method = method
        self.http_client = http_client
        self.token_server_url = str(token_server_url)
        self.client_authentication = client_authentication
        self.client_id = client_id
        self.authorization_server_url = authorization_server_url
        self.scopes = tuple(scopes)
        self.clock = clock
        self.credential_store = credential_store
        self.refresh_listeners = tuple(refresh_listeners)
        self.credential_created_listener = credential_created_listener
        self.pkce = PKCEParameters.generate() if pkce else None

    @classmethod
    def from_settings(
        cls,
        settings: OAuthClientSettings,
        http_client: httpx.Client,
        **kwargs,
    ) -> AuthorizationCodeFlow:
        return cls(
            settings.build_access_method(),
            http_client,
            str(settings.token_server_url),
            settings.build_client_authentication(),
            settings.client_id,
            str(settings.authorization_server_url),
            scopes=settings.scopes,
            pkce=settings.use_pkce,
            **kwargs,
        )

    def new_authorization_url(
        self,
        state: str | None = None,
        redirect_uri: str | None = None,
        pkce_parameters: PKCEParameters | None = None,
    ) -> AuthorizationRequestUrl:
        """Authorization endpoint URL for this client, ready for `with_params`/`replace` tweaks."""
        url = authorization_code_url(
            self.authorization_server_url,
            self.client_id,
            scopes=self.scopes,
            redirect_uri=redirect_uri,
            state=state,
        )
        pkce = pkce_parameters if pkce_parameters is not None else self.pkce
        if pkce is not None:
            url = url.replace(
                code_challenge=pkce.code_challenge,
                code_challenge_method=pkce.code_challenge_method,
            )
        return url

    def new_token_request(
        self,
        code: str,
        redirect_uri: str | None = None,
        pkce_parameters: PKCEParameters | None = None,
    ) -> TokenRequest:
        pkce = pkce_parameters if pkce_parameters is not None else self.pkce
        return authorization_code_token_request(
            self.http_client,
            self.token_server_url,
            code,
            redirect_uri=redirect_uri,
            code_verifier=pkce.code_verifier if pkce is not None else None,
            client_authentication=self.client_authentication,
            scopes=self.scopes or None,
        )

    def create_and_store_credential(self, response: TokenResponse, user_id: str | None) -> Credential:
        """Create a credential from a token response and persist it for `user_id`."""
        credential = self._new_credential(user_id).set_from_token_response(response)
        if self.credential_store is not None and user_id is not None:
            self.credential_store.store(user_id, credential.snapshot())
            logger.debug(f"Created and stored credential for {user_id}")
        if self.credential_created_listener is not None:
            self.credential_created_listener.on_credential_created(credential, response)
        return credential

    def load_credential(self, user_id: str) -> Credential | None:
        """Rebuild the stored credential for `user_id`, or None if nothing is stored."""
        if self.credential_store is None:
            return None
        record = self.credential_store.load(user_id)
        if record is None:
            return None
        credential = self._new_credential(user_id)
        credential.set_access_token(record.access_token)
        credential.set_refresh_token(record.refresh_token)
        credential.set_expiration_time_milliseconds(record.expiration_time_milliseconds)
        return credential

    def delete_credential(self, user_id: str) -> None:
        if self.credential_store is None:
            return
        self.credential_store.delete(user_id, self.credential_store.load(user_id))

    def _new_credential(self, user_id: str | None) -> Credential:
        listeners: list[CredentialRefreshListener] = []
        if self.credential_store is not None and user_id is not None:
            listeners.append(CredentialStoreRefreshListener(user_id, self.credential_store))
        listeners.extend(self.refresh_listeners)
        return Credential(
            self.method,
            http_client=self.http_client,
            token_server_url=self.token_server_url,
            client_authentication=self.client_authentication,
            clock=self.clock,
            refresh_listeners=listeners,
        )
