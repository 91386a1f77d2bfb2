from credflow.client.bearer import (
    AccessMethod,
    authorization_header_access_method,
    form_encoded_body_access_method,
    query_parameter_access_method,
)
from credflow.client.client_auth import (
    BasicAuthentication,
    ClientAuthentication,
    ClientParametersAuthentication,
    JWTAuthentication,
    create_client_assertion,
)
from credflow.client.credential import Credential, CredentialRefreshListener
from credflow.client.flow import AuthorizationCodeFlow, CredentialCreatedListener, PKCEParameters
from credflow.client.store import (
    CredentialStore,
    CredentialStoreRefreshListener,
    FileCredentialStore,
    MemoryCredentialStore,
)
from credflow.client.token_request import (
    TokenRequest,
    authorization_code_token_request,
    client_credentials_token_request,
    password_token_request,
    refresh_token_request,
)
from credflow.client.urls import (
    AuthorizationCodeResponseUrl,
    AuthorizationRequestUrl,
    authorization_code_url,
    browser_client_url,
)
from credflow.errors import (
    AmbiguousResponseUrl,
    AuthorizationError,
    OAuthError,
    PreconditionViolation,
    TokenResponseException,
)
from credflow.oauth1.parameters import OAuthParameters
from credflow.oauth1.signers import HmacSha1Signer, HmacSha256Signer, RsaSha1Signer
from credflow.shared.auth import StoredCredential, TokenErrorResponse, TokenResponse
from credflow.shared.clock import Clock, FixedClock, SystemClock

__all__ = [
    "AccessMethod",
    "AmbiguousResponseUrl",
    "AuthorizationCodeFlow",
    "AuthorizationCodeResponseUrl",
    "AuthorizationError",
    "AuthorizationRequestUrl",
    "BasicAuthentication",
    "ClientAuthentication",
    "ClientParametersAuthentication",
    "Clock",
    "Credential",
    "CredentialCreatedListener",
    "CredentialRefreshListener",
    "CredentialStore",
    "CredentialStoreRefreshListener",
    "FileCredentialStore",
    "FixedClock",
    "HmacSha1Signer",
    "HmacSha256Signer",
    "JWTAuthentication",
    "MemoryCredentialStore",
    "OAuthError",
    "OAuthParameters",
    "PKCEParameters",
    "PreconditionViolation",
    "RsaSha1Signer",
    "StoredCredential",
    "SystemClock",
    "TokenErrorResponse",
    "TokenRequest",
    "TokenResponse",
    "TokenResponseException",
    "authorization_code_token_request",
    "authorization_code_url",
    "authorization_header_access_method",
    "browser_client_url",
    "client_credentials_token_request",
    "create_client_assertion",
    "form_encoded_body_access_method",
    "password_token_request",
    "query_parameter_access_method",
    "refresh_token_request",
]
