"""
Tests for OAuth 1.0a signature methods.
"""

import base64

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from credflow.oauth1.signers import HmacSha1Signer, HmacSha256Signer, RsaSha1Signer


class TestHmacSigners:
    def test_hmac_sha1(self):
        signer = HmacSha1Signer("abc", "def")
        assert signer.signature_method == "HMAC-SHA1"
        assert signer.compute_signature("foo") == "0anl6O7gtZfslLZ5j3QoTwd0uPY="

    def test_hmac_sha256(self):
        signer = HmacSha256Signer("apiSecret", "tokenSecret")
        assert signer.signature_method == "HMAC-SHA256"
        assert signer.compute_signature("baseString") == "xDJIQbKJTwGumZFvSG1V3ctym2tz6kD8fKGWPr5ImPU="

    def test_signing_key_escapes_secrets(self):
        assert HmacSha1Signer("a b", "c&d").signing_key() == "a%20b&c%26d"
        assert HmacSha1Signer("secret").signing_key() == "secret&"
        assert HmacSha1Signer().signing_key() == "&"


def test_rsa_sha1():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    signer = RsaSha1Signer(key)

    signature = signer.compute_signature("GET&https%3A%2F%2Fexample.local&foo%3Dbar")

    assert signer.signature_method == "RSA-SHA1"
    # raises InvalidSignature on mismatch
    key.public_key().verify(
        base64.b64decode(signature),
        b"GET&https%3A%2F%2Fexample.local&foo%3Dbar",
        padding.PKCS1v15(),
        hashes.SHA1(),
    )
