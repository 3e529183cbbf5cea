"""Ed25519-signed bearer credentials.

A credential is ``<claims>.<signature>``: both parts are unpadded base64url,
the claims are the canonical JSON of ``{sub, role, name, iat, exp}`` and the
signature covers those exact bytes.
"""

from __future__ import annotations

import base64
from datetime import datetime, timedelta
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from ..transport.canonical_json import canonical_dumps, loads
from ..transport.timestamps import TimestampError, format_timestamp, parse_timestamp, utcnow


class TokenError(ValueError):
    """Raised when a credential is malformed, forged or expired."""


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def load_public_key(pem: str) -> Ed25519PublicKey:
    if not pem:
        raise TokenError("public key missing")
    key = serialization.load_pem_public_key(pem.encode("utf-8"))
    if not isinstance(key, Ed25519PublicKey):
        raise TokenError("public key is not an Ed25519 key")
    return key


def load_private_key(pem: str) -> Ed25519PrivateKey:
    if not pem:
        raise TokenError("private key missing")
    key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    if not isinstance(key, Ed25519PrivateKey):
        raise TokenError("private key is not an Ed25519 key")
    return key


def generate_keypair() -> tuple[str, str]:
    """Return ``(private_pem, public_pem)`` for a fresh Ed25519 key."""
    private_key = Ed25519PrivateKey.generate()
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")
    return private_pem, public_pem


def issue_token(
    private_key_pem: str,
    *,
    subject: str,
    role: str = "buyer",
    name: str | None = None,
    ttl: timedelta = timedelta(hours=24),
    now: datetime | None = None,
) -> str:
    issued_at = now or utcnow()
    claims: dict[str, Any] = {
        "sub": subject,
        "role": role,
        "name": name or subject,
        "iat": format_timestamp(issued_at),
        "exp": format_timestamp(issued_at + ttl),
    }
    payload = canonical_dumps(claims)
    signature = load_private_key(private_key_pem).sign(payload)
    return f"{_b64encode(payload)}.{_b64encode(signature)}"


def verify_token(token: str, public_key_pem: str, *, now: datetime | None = None) -> dict[str, Any]:
    """Return the verified claims of ``token`` or raise TokenError."""
    if not token:
        raise TokenError("credential missing")
    try:
        encoded_claims, encoded_signature = token.split(".")
        payload = _b64decode(encoded_claims)
        signature = _b64decode(encoded_signature)
    except ValueError as exc:
        raise TokenError("credential is malformed") from exc
    try:
        load_public_key(public_key_pem).verify(signature, payload)
    except InvalidSignature as exc:
        raise TokenError("credential signature is invalid") from exc
    try:
        claims = loads(payload)
    except ValueError as exc:
        raise TokenError("credential claims are not JSON") from exc
    if not isinstance(claims, dict) or not claims.get("sub"):
        raise TokenError("credential subject missing")
    try:
        expires_at = parse_timestamp(claims.get("exp", ""))
    except TimestampError as exc:
        raise TokenError(f"credential expiry invalid: {exc}") from exc
    if expires_at <= (now or utcnow()):
        raise TokenError("credential has expired")
    return claims
