from pydantic import BaseModel, ConfigDict, Field


class TokenResponse(BaseModel):
    """
    Successful access token response.
    See https://datatracker.ietf.org/doc/html/rfc6749#section-5.1
    """

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None

    # providers add their own fields (id_token, ...)
    model_config = ConfigDict(extra="allow")

    @property
    def scopes(self) -> list[str]:
        return self.scope.split() if self.scope else []


class TokenErrorResponse(BaseModel):
    """
    Error response from the token endpoint.
    See https://datatracker.ietf.org/doc/html/rfc6749#section-5.2
    """

    error: str
    error_description: str | None = None
    error_uri: str | None = None

    model_config = ConfigDict(extra="allow")


class StoredCredential(BaseModel):
    """
    Persisted view of a credential's token fields.

    Instances are immutable snapshots; a store never sees the live credential state.
    """

    access_token: str | None = None
    refresh_token: str | None = None
    expiration_time_milliseconds: int | None = Field(default=None)

    model_config = ConfigDict(frozen=True)
