"""
Client configuration.

Settings are read from keyword arguments or from `CREDFLOW_*` /
`CREDFLOW_OAUTH1_*` environment variables.
"""

from typing import Literal

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from credflow.client.bearer import (
    AccessMethod,
    authorization_header_access_method,
    form_encoded_body_access_method,
    query_parameter_access_method,
)
from credflow.client.client_auth import BasicAuthentication, ClientAuthentication, ClientParametersAuthentication
from credflow.errors import PreconditionViolation
from credflow.oauth1.parameters import OAuthParameters
from credflow.oauth1.signers import SIGNERS


class OAuthClientSettings(BaseSettings):
    """Settings for an OAuth 2.0 client using the authorization code grant."""

    model_config = SettingsConfigDict(env_prefix="CREDFLOW_")

    client_id: str = Field(min_length=1)
    client_secret: str | None = None

    # Authorization server endpoints
    authorization_server_url: AnyHttpUrl
    token_server_url: AnyHttpUrl

    scopes: list[str] = Field(default_factory=list)
    redirect_uri: str | None = None
    use_pkce: bool = True

    # How the access token travels to the resource server
    access_method: Literal["header", "query", "form"] = "header"
    # How the client authenticates at the token endpoint
    client_authentication: Literal["client_secret_basic", "client_secret_post", "none"] = "client_secret_basic"

    def build_access_method(self) -> AccessMethod:
        return build_access_method(self.access_method)

    def build_client_authentication(self) -> ClientAuthentication:
        if self.client_authentication == "client_secret_basic":
            if self.client_secret is None:
                raise PreconditionViolation("client_secret_basic requires a client_secret")
            return BasicAuthentication(self.client_id, self.client_secret)
        if self.client_authentication == "client_secret_post":
            return ClientParametersAuthentication(self.client_id, self.client_secret)
        # public client: identify with the client id only
        return ClientParametersAuthentication(self.client_id)


class OAuth1Settings(BaseSettings):
    """Settings for signing requests with OAuth 1.0a."""

    model_config = SettingsConfigDict(env_prefix="CREDFLOW_OAUTH1_")

    consumer_key: str = Field(min_length=1)
    consumer_secret: str = ""
    token: str | None = None
    token_secret: str = ""
    signature_method: Literal["HMAC-SHA1", "HMAC-SHA256"] = "HMAC-SHA1"
    realm: str | None = None


def build_access_method(name: Literal["header", "query", "form"]) -> AccessMethod:
    if name == "header":
        return authorization_header_access_method()
    if name == "query":
        return query_parameter_access_method()
    if name == "form":
        return form_encoded_body_access_method()
    raise PreconditionViolation(f"Unknown access method: {name}")


def build_oauth1_parameters(settings: OAuth1Settings) -> OAuthParameters:
    """Signing parameters for an HMAC OAuth 1.0a client."""
    signer = SIGNERS[settings.signature_method](settings.consumer_secret, settings.token_secret)
    return OAuthParameters(
        signer=signer,
        consumer_key=settings.consumer_key,
        token=settings.token,
        realm=settings.realm,
    )
