"""
OAuth 1.0a signature methods.
See https://datatracker.ietf.org/doc/html/rfc5849#section-3.4
"""

import base64
import hmac
from typing import Protocol

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from credflow.oauth1.escape import escape


class OAuthSigner(Protocol):
    signature_method: str

    def compute_signature(self, signature_base_string: str) -> str:
        """Return the base64 signature of the signature base string."""
        ...


class _HmacSigner:
    signature_method: str
    digestmod: str

    def __init__(self, client_shared_secret: str | None = None, token_shared_secret: str | None = None):
        self.client_shared_secret = client_shared_secret
        self.token_shared_secret = token_shared_secret

    def signing_key(self) -> str:
        client = escape(self.client_shared_secret) if self.client_shared_secret is not None else ""
        token = escape(self.token_shared_secret) if self.token_shared_secret is not None else ""
        return f"{client}&{token}"

    def compute_signature(self, signature_base_string: str) -> str:
        digest = hmac.new(
            self.signing_key().encode("utf-8"),
            signature_base_string.encode("utf-8"),
            self.digestmod,
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class HmacSha1Signer(_HmacSigner):
    """HMAC-SHA1 keyed with the escaped client and token shared secrets."""

    signature_method = "HMAC-SHA1"
    digestmod = "sha1"


class HmacSha256Signer(_HmacSigner):
    signature_method = "HMAC-SHA256"
    digestmod = "sha256"


class RsaSha1Signer:
    """RSASSA-PKCS1-v1_5 with SHA-1. Loading the private key is up to the caller."""

    signature_method = "RSA-SHA1"

    def __init__(self, private_key: rsa.RSAPrivateKey):
        self.private_key = private_key

    def compute_signature(self, signature_base_string: str) -> str:
        signature = self.private_key.sign(signature_base_string.encode("utf-8"), padding.PKCS1v15(), hashes.SHA1())
        return base64.b64encode(signature).decode("ascii")

    def __repr__(self) -> str:
        return "RsaSha1Signer()"


SIGNERS = {
    HmacSha1Signer.signature_method: HmacSha1Signer,
    HmacSha256Signer.signature_method: HmacSha256Signer,
}

__all__ = ["OAuthSigner", "HmacSha1Signer", "HmacSha256Signer", "RsaSha1Signer", "SIGNERS"]
