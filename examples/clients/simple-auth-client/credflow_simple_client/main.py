"""
Command line client for the authorization code flow.

Prints the authorization URL, reads the redirect URL back from the terminal,
stores the tokens in a JSON file and fetches a protected resource with them.
Later runs reuse (and refresh) the stored credential.

Usage:
    CREDFLOW_CLIENT_ID=... CREDFLOW_CLIENT_SECRET=... \\
    CREDFLOW_AUTHORIZATION_SERVER_URL=https://auth.example.com/authorize \\
    CREDFLOW_TOKEN_SERVER_URL=https://auth.example.com/token \\
    python -m credflow_simple_client.main --resource https://api.example.com/me
"""

import logging
import secrets
from pathlib import Path

import click
import httpx
from pydantic import ValidationError

from credflow.client.flow import AuthorizationCodeFlow
from credflow.client.store import FileCredentialStore
from credflow.client.urls import AuthorizationCodeResponseUrl
from credflow.errors import OAuthError
from credflow.settings import OAuthClientSettings

logger = logging.getLogger(__name__)


def authorize(flow: AuthorizationCodeFlow, redirect_uri: str, user_id: str):
    state = secrets.token_urlsafe(32)
    click.echo("Open this URL in your browser and approve access:")
    click.echo(f"  {flow.new_authorization_url(state=state, redirect_uri=redirect_uri)}")
    response_url = AuthorizationCodeResponseUrl.parse(click.prompt("Paste the URL you were redirected to"))
    response_url.raise_for_error()
    if response_url.state != state:
        raise click.ClickException("State mismatch, refusing to exchange the code")

    if response_url.code is None:
        raise click.ClickException("No authorization code in the redirect URL")
    token_response = flow.new_token_request(response_url.code, redirect_uri).execute()
    return flow.create_and_store_credential(token_response, user_id)


@click.command()
@click.option("--resource", required=True, help="Protected resource URL to fetch")
@click.option("--user", default="default", help="Key of the stored credential")
@click.option("--redirect-uri", default="http://localhost:3030/callback", help="Registered redirect URI")
@click.option(
    "--store",
    default=str(Path.home() / ".credflow" / "credentials.json"),
    type=click.Path(dir_okay=False),
    help="Credential file",
)
def main(resource: str, user: str, redirect_uri: str, store: str) -> int:
    """Fetch a protected resource, authorizing first when no credential is stored."""
    logging.basicConfig(level=logging.INFO)

    try:
        settings = OAuthClientSettings()  # type: ignore[call-arg]
    except ValidationError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Set CREDFLOW_CLIENT_ID, CREDFLOW_AUTHORIZATION_SERVER_URL and CREDFLOW_TOKEN_SERVER_URL")
        return 1

    with httpx.Client(timeout=30.0) as http_client:
        flow = AuthorizationCodeFlow.from_settings(settings, http_client, credential_store=FileCredentialStore(store))
        try:
            credential = flow.load_credential(user) or authorize(flow, redirect_uri, user)
            response = http_client.get(resource, auth=credential)
        except OAuthError as e:
            logger.error(f"Authorization failed: {e}")
            return 1

        logger.info(f"{response.status_code} {response.reason_phrase}")
        click.echo(response.text)
        return 0 if response.is_success else 1


if __name__ == "__main__":
    main()  # type: ignore[call-arg]
