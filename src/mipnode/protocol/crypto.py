# SPDX-License-Identifier: MIT
# Copyright (c) 2026 MIP Node Contributors

"""Asymmetric crypto primitives for MIP.

Keys travel as PEM strings (PKCS#8 private, SubjectPublicKeyInfo public).
Signatures are RSA PKCS#1 v1.5 over SHA-256, base64 encoded. Fingerprints are
the MD5 of the DER public key rendered as colon-separated hex octets.

Verification failures are data, not exceptions: ``verify`` returns False for
malformed signatures, malformed keys and wrong keys alike.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from functools import lru_cache

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

logger = logging.getLogger(__name__)

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


@dataclass(frozen=True)
class KeyPair:
    """RSA key pair in PEM form."""

    private_key: str
    public_key: str


def generate_keypair() -> KeyPair:
    """Generate a new 2048-bit RSA key pair."""
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    return KeyPair(private_key=private_pem, public_key=public_key_from_private(private_pem))


def public_key_from_private(private_key_pem: str) -> str:
    """Derive the PEM public key for a PEM private key."""
    private_key = _load_private_key(private_key_pem)
    return (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )


def fingerprint(public_key_pem: str) -> str:
    """MD5 fingerprint of a public key, e.g. ``"3f:a1:..."``.

    Raises:
        ValueError: If the PEM cannot be parsed as a public key.
    """
    public_key = _load_public_key(public_key_pem)
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    digest = hashlib.md5(der, usedforsecurity=False).hexdigest()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def sign(private_key_pem: str, data: str | bytes) -> str:
    """Sign data with SHA-256 and return the base64 signature."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    private_key = _load_private_key(private_key_pem)
    signature = private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def verify(public_key_pem: str, signature_b64: str, data: str | bytes) -> bool:
    """Verify a base64 signature over data.

    Returns:
        True if the signature is valid, False for any failure
    """
    try:
        if isinstance(data, str):
            data = data.encode("utf-8")
        signature = base64.b64decode(signature_b64, validate=True)
        public_key = _load_public_key(public_key_pem)
        public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
        return True
    except InvalidSignature:
        return False
    except Exception as e:
        logger.debug(f"Signature verification error: {type(e).__name__}: {e}")
        return False


def encode_public_key_header(public_key_pem: str) -> str:
    """Base64-encode a PEM public key for the X-MIP-PUBLIC-KEY header."""
    return base64.b64encode(public_key_pem.encode("utf-8")).decode("ascii")


def decode_public_key_header(value: str) -> str | None:
    """Decode an X-MIP-PUBLIC-KEY header value, or None if it is not base64 text."""
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None


def is_valid_public_key(public_key_pem: str | None) -> bool:
    """Check whether a string parses as an RSA public key."""
    if not public_key_pem:
        return False
    try:
        _load_public_key(public_key_pem)
        return True
    except (ValueError, TypeError):
        return False


@lru_cache(maxsize=256)
def _load_public_key(public_key_pem: str) -> rsa.RSAPublicKey:
    key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("MIP keys must be RSA keys")
    return key


@lru_cache(maxsize=8)
def _load_private_key(private_key_pem: str) -> rsa.RSAPrivateKey:
    key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("MIP keys must be RSA keys")
    return key
