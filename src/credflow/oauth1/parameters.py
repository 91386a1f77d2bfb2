"""
OAuth 1.0a request signing.

`OAuthParameters` holds the protocol parameters of a client and is an `httpx.Auth`
that signs every outgoing request with a fresh nonce and timestamp.
See https://datatracker.ietf.org/doc/html/rfc5849#section-3
"""

from __future__ import annotations as _annotations

import dataclasses
import logging
import random
from collections.abc import Generator, Iterable
from dataclasses import dataclass, field
from urllib.parse import unquote_plus, urlsplit

import httpx

from credflow.oauth1.escape import escape
from credflow.oauth1.signers import OAuthSigner
from credflow.shared._httpx_utils import get_form_fields
from credflow.shared.clock import SYSTEM_CLOCK, Clock

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}

Parameter = tuple[str, str | None]


def parse_query(query: str) -> list[Parameter]:
    """Split a raw query string into decoded pairs.

    A name without `=` yields a None value, which is signed as the bare name.
    """
    params: list[Parameter] = []
    for part in query.split("&"):
        if not part:
            continue
        if "=" in part:
            name, value = part.split("=", 1)
            params.append((unquote_plus(name), unquote_plus(value)))
        else:
            params.append((unquote_plus(part), None))
    return params


def normalize_url(url: str | httpx.URL) -> str:
    """Scheme, host, non-default port and path of `url`; query and fragment are dropped."""
    parts = urlsplit(str(url))
    scheme = parts.scheme.lower()
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    port = parts.port
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        host = f"{host}:{port}"
    return f"{scheme}://{host}{parts.path}"


def normalize_parameters(parameters: Iterable[Parameter]) -> str:
    """Escape, sort and join parameters. Repeated entries are all kept."""
    escaped = [(escape(k), None if v is None else escape(v)) for k, v in parameters]
    escaped.sort(key=lambda p: (p[0], p[1] is not None, p[1] or ""))
    return "&".join(k if v is None else f"{k}={v}" for k, v in escaped)


@dataclass
class OAuthParameters(httpx.Auth):
    """
    OAuth 1.0a parameters and request signer.

    The instance is a template: `intercept` signs a copy carrying the request's
    own nonce, timestamp and signature, so one instance can sign concurrent requests.
    """

    signer: OAuthSigner | None = None
    consumer_key: str | None = None
    token: str | None = None
    callback: str | None = None
    verifier: str | None = None
    version: str | None = None
    realm: str | None = None
    nonce: str | None = None
    timestamp: str | None = None
    signature_method: str | None = None
    signature: str | None = None
    clock: Clock = field(default=SYSTEM_CLOCK, repr=False, compare=False)
    random_source: random.Random = field(default_factory=random.SystemRandom, repr=False, compare=False)

    # form fields are part of the signature
    requires_request_body = True

    def compute_nonce(self) -> str:
        # hex of a non-negative 64-bit value
        self.nonce = format(self.random_source.getrandbits(63), "x")
        return self.nonce

    def compute_timestamp(self) -> str:
        self.timestamp = str(self.clock.current_time_millis() // 1000)
        return self.timestamp

    def oauth_parameters(self) -> list[Parameter]:
        params = [
            ("oauth_callback", self.callback),
            ("oauth_consumer_key", self.consumer_key),
            ("oauth_nonce", self.nonce),
            ("oauth_signature_method", self.signature_method),
            ("oauth_timestamp", self.timestamp),
            ("oauth_token", self.token),
            ("oauth_verifier", self.verifier),
            ("oauth_version", self.version),
        ]
        return [(k, v) for k, v in params if v is not None]

    def signature_base_string(
        self,
        method: str,
        url: str | httpx.URL,
        extra_params: Iterable[Parameter] | None = None,
    ) -> str:
        parameters = self.oauth_parameters()
        parameters.extend(parse_query(urlsplit(str(url)).query))
        if extra_params is not None:
            parameters.extend(extra_params)
        return "&".join(
            [
                escape(method.upper()),
                escape(normalize_url(url)),
                escape(normalize_parameters(parameters)),
            ]
        )

    def compute_signature(
        self,
        method: str,
        url: str | httpx.URL,
        extra_params: Iterable[Parameter] | None = None,
    ) -> str:
        """Sign the request described by `method`, `url` and any form fields in `extra_params`."""
        if self.signer is None:
            raise ValueError("signer is required")
        self.signature_method = self.signer.signature_method
        base_string = self.signature_base_string(method, url, extra_params)
        self.signature = self.signer.compute_signature(base_string)
        return self.signature

    def get_authorization_header(self) -> str:
        params = [
            ("realm", self.realm),
            ("oauth_callback", self.callback),
            ("oauth_consumer_key", self.consumer_key),
            ("oauth_nonce", self.nonce),
            ("oauth_signature", self.signature),
            ("oauth_signature_method", self.signature_method),
            ("oauth_timestamp", self.timestamp),
            ("oauth_token", self.token),
            ("oauth_verifier", self.verifier),
            ("oauth_version", self.version),
        ]
        return "OAuth " + ", ".join(f'{escape(k)}="{escape(v)}"' for k, v in params if v is not None)

    def intercept(self, request: httpx.Request) -> OAuthParameters:
        """
        Sign `request` and set its Authorization header. Returns the per-request parameters.

        httpx gives an absolute URL with an empty path the path `/`, so a request for
        `https://example.local?foo=bar` is signed as `https://example.local/`. Only
        `compute_signature` called with a plain string keeps the empty path.
        """
        signed = dataclasses.replace(self, nonce=None, timestamp=None, signature=None)
        signed.compute_nonce()
        signed.compute_timestamp()
        # form fields are signed but the body goes out unchanged
        signed.compute_signature(request.method, request.url, get_form_fields(request))
        request.headers["Authorization"] = signed.get_authorization_header()
        logger.debug(f"Signed {request.method} {normalize_url(request.url)} with {signed.signature_method}")
        return signed

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        # httpx reads the body first for both the sync and the async flow
        self.intercept(request)
        yield request
