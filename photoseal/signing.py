"""Ed25519 signing and verification of payload bytes, plus key file helpers.

Keys are handled with PyNaCl. Public keys travel as 32 raw bytes wrapped in a
small JSON document::

    {"alg": "Ed25519", "publicKey_raw_base64": "..."}

The private side is stored as the 32-byte Ed25519 seed in a sibling document
that never leaves the issuing machine.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from pathlib import Path
from typing import Any, Mapping, Tuple, Union

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .errors import InvalidKeyMaterialError, InvalidSignatureLengthError

LOGGER = logging.getLogger("photoseal")

ALGORITHM = "Ed25519"
KEY_LENGTH = 32
SIGNATURE_LENGTH = 64

PUBLIC_KEY_FIELD = "publicKey_raw_base64"
PRIVATE_KEY_FIELD = "privateKey_seed_base64"

KeyInput = Union[bytes, bytearray, SigningKey, VerifyKey]


def generate_keypair() -> Tuple[SigningKey, VerifyKey]:
    signing_key = SigningKey.generate()
    return signing_key, signing_key.verify_key


def as_signing_key(key: KeyInput) -> SigningKey:
    if isinstance(key, SigningKey):
        return key
    raw = bytes(key)
    if len(raw) != KEY_LENGTH:
        raise InvalidKeyMaterialError(f"Ed25519 private seed must be {KEY_LENGTH} bytes, got {len(raw)}")
    return SigningKey(raw)


def as_verify_key(key: KeyInput) -> VerifyKey:
    if isinstance(key, VerifyKey):
        return key
    if isinstance(key, SigningKey):
        return key.verify_key
    raw = bytes(key)
    if len(raw) != KEY_LENGTH:
        raise InvalidKeyMaterialError(f"Ed25519 public key must be {KEY_LENGTH} bytes, got {len(raw)}")
    return VerifyKey(raw)


def sign_payload(private_key: KeyInput, payload: bytes) -> bytes:
    """Return the detached 64-byte Ed25519 signature over *payload*."""

    signed = as_signing_key(private_key).sign(bytes(payload))
    return bytes(signed.signature)


def verify_signature(public_key: KeyInput, payload: bytes, signature: bytes) -> bool:
    """Return whether *signature* is valid for *payload* under *public_key*.

    Raises:
        InvalidKeyMaterialError: If the public key is not 32 bytes.
        InvalidSignatureLengthError: If the signature is not 64 bytes.
    """
    key = as_verify_key(public_key)
    signature = bytes(signature)
    if len(signature) != SIGNATURE_LENGTH:
        raise InvalidSignatureLengthError(
            f"Ed25519 signature must be {SIGNATURE_LENGTH} bytes, got {len(signature)}"
        )
    try:
        key.verify(bytes(payload), signature)
    except BadSignatureError:
        LOGGER.debug("Ed25519 signature rejected")
        return False
    return True


_NON_BASE64 = re.compile(r"[^A-Za-z0-9+/=]")


def decode_base64_lenient(text: str) -> bytes:
    """Decode base64 that may have been mangled by copy/paste.

    Surrounding quotes and whitespace are stripped, the URL-safe alphabet is
    accepted, stray characters are dropped and missing padding is restored.
    """
    cleaned = str(text or "").strip().strip('"')
    cleaned = "".join(cleaned.split())
    cleaned = cleaned.replace("-", "+").replace("_", "/")
    cleaned = _NON_BASE64.sub("", cleaned).replace("=", "")

    remainder = len(cleaned) % 4
    if remainder == 1:
        raise InvalidKeyMaterialError(
            "Invalid base64 length (mod 4 = 1); the key text is likely truncated. "
            "Re-export the key file instead of editing it by hand."
        )
    if remainder:
        cleaned += "=" * (4 - remainder)
    try:
        return base64.b64decode(cleaned, validate=True)
    except binascii.Error as exc:
        raise InvalidKeyMaterialError(f"Key material is not valid base64: {exc}") from exc


def public_key_document(public_key: KeyInput) -> dict[str, str]:
    raw = bytes(as_verify_key(public_key))
    return {"alg": ALGORITHM, PUBLIC_KEY_FIELD: base64.b64encode(raw).decode("ascii")}


def public_key_from_document(document: Mapping[str, Any]) -> VerifyKey:
    """Build a :class:`VerifyKey` from a parsed public key document."""

    alg = document.get("alg", ALGORITHM)
    if alg != ALGORITHM:
        raise InvalidKeyMaterialError(f"Unsupported key algorithm: {alg!r}")
    encoded = document.get(PUBLIC_KEY_FIELD)
    if not encoded:
        raise InvalidKeyMaterialError(f"Public key document missing {PUBLIC_KEY_FIELD}")
    return as_verify_key(decode_base64_lenient(encoded))


def load_public_key(path: Path) -> VerifyKey:
    if not path.exists():
        raise FileNotFoundError(f"Public key file not found: {path}")
    try:
        document = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise InvalidKeyMaterialError(f"Public key file {path} is not valid JSON: {exc}") from exc
    if not isinstance(document, Mapping):
        raise InvalidKeyMaterialError(f"Public key file {path} must contain a JSON object")
    key = public_key_from_document(document)
    LOGGER.debug("Loaded issuer public key from %s", path)
    return key


def save_public_key(path: Path, public_key: KeyInput) -> None:
    path.write_text(json.dumps(public_key_document(public_key), indent=2) + "\n")


def save_private_key(path: Path, private_key: KeyInput) -> None:
    seed = bytes(as_signing_key(private_key))
    document = {"alg": ALGORITHM, PRIVATE_KEY_FIELD: base64.b64encode(seed).decode("ascii")}
    path.write_text(json.dumps(document, indent=2) + "\n")
    path.chmod(0o600)


def load_private_key(path: Path) -> SigningKey:
    if not path.exists():
        raise FileNotFoundError(f"Private key file not found: {path}")
    try:
        document = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise InvalidKeyMaterialError(f"Private key file {path} is not valid JSON: {exc}") from exc
    if not isinstance(document, Mapping) or not document.get(PRIVATE_KEY_FIELD):
        raise InvalidKeyMaterialError(f"Private key file {path} missing {PRIVATE_KEY_FIELD}")
    return as_signing_key(decode_base64_lenient(document[PRIVATE_KEY_FIELD]))


__all__ = [
    "ALGORITHM",
    "KEY_LENGTH",
    "as_signing_key",
    "as_verify_key",
    "SIGNATURE_LENGTH",
    "decode_base64_lenient",
    "generate_keypair",
    "load_private_key",
    "load_public_key",
    "public_key_document",
    "public_key_from_document",
    "save_private_key",
    "save_public_key",
    "sign_payload",
    "verify_signature",
]
