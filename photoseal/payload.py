"""Fixed-width binary credential record.

Layout (version 1, 39 bytes, big-endian integers)::

    issuer_id        2 bytes
    card_id         16 bytes
    expiration_days  4 bytes   days since 1970-01-01 (UTC)
    version          1 byte
    name_hash       16 bytes   SHA-256(full_name.strip().lower())[:16]
"""
from __future__ import annotations

import dataclasses
import hashlib
import logging
import secrets
import struct
from datetime import date, datetime, timedelta, timezone
from typing import Union

from .errors import MalformedPayloadError

LOGGER = logging.getLogger("photoseal")

PAYLOAD_VERSION = 1
PAYLOAD_LENGTH = 39
CARD_ID_LENGTH = 16
NAME_HASH_LENGTH = 16

EPOCH = date(1970, 1, 1)

_LAYOUT = struct.Struct(">H16sIB16s")
assert _LAYOUT.size == PAYLOAD_LENGTH


@dataclasses.dataclass(frozen=True)
class Payload:
    """Decoded credential claims."""

    issuer_id: int
    card_id: bytes
    expiration_date: date
    version: int
    name_hash: bytes

    @property
    def card_id_hex(self) -> str:
        return self.card_id.hex()

    @property
    def name_hash_hex(self) -> str:
        return self.name_hash.hex()

    def matches_name(self, full_name: str) -> bool:
        """Return ``True`` when *full_name* hashes to the embedded name hash."""

        return secrets.compare_digest(name_hash(full_name), self.name_hash)

    def as_dict(self) -> dict[str, object]:
        return {
            "issuer_id": self.issuer_id,
            "card_id": self.card_id_hex,
            "expiration_date": self.expiration_date.isoformat(),
            "version": self.version,
            "name_hash": self.name_hash_hex,
        }


def name_hash(full_name: str) -> bytes:
    normalised = full_name.strip().lower()
    return hashlib.sha256(normalised.encode("utf-8")).digest()[:NAME_HASH_LENGTH]


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def date_to_days(value: Union[date, datetime, str]) -> int:
    """Convert a calendar date (or ``YYYY-MM-DD`` string) to days since the epoch.

    Aware datetimes are converted to UTC first; naive ones keep their own date.
    """

    if isinstance(value, str):
        value = date.fromisoformat(value)
    if isinstance(value, datetime):
        value = (value.astimezone(timezone.utc) if value.tzinfo else value).date()
    return (value - EPOCH).days


def days_to_date(days: int) -> date:
    try:
        return EPOCH + timedelta(days=days)
    except OverflowError as exc:
        raise MalformedPayloadError(f"expiration days out of calendar range: {days}") from exc


def random_card_id() -> bytes:
    return secrets.token_bytes(CARD_ID_LENGTH)


def parse_card_id(hex_text: str) -> bytes:
    """Parse a card id given as exactly 32 hexadecimal digits."""

    cleaned = "".join(hex_text.split())
    try:
        raw = bytes.fromhex(cleaned)
    except ValueError as exc:
        raise MalformedPayloadError(f"Card id is not valid hexadecimal: {hex_text!r}") from exc
    if len(raw) != CARD_ID_LENGTH:
        raise MalformedPayloadError(
            f"Card id must be exactly {CARD_ID_LENGTH} bytes ({CARD_ID_LENGTH * 2} hex digits), got {len(raw)}"
        )
    return raw


def default_expiration(issued: date | None = None) -> date:
    """Return the date one year after *issued* (today in UTC by default)."""

    issued = issued or utc_today()
    try:
        return issued.replace(year=issued.year + 1)
    except ValueError:  # 29 February
        return issued.replace(year=issued.year + 1, day=28)


def encode_payload(
    issuer_id: int,
    card_id: bytes,
    expiration_date: Union[date, str],
    version: int = PAYLOAD_VERSION,
    full_name: str = "",
) -> bytes:
    """Pack credential claims into the fixed 39-byte record.

    Raises:
        MalformedPayloadError: If any field falls outside its encoded width.
    """
    if not 0 <= issuer_id <= 0xFFFF:
        raise MalformedPayloadError(f"issuer_id must fit in 16 bits, got {issuer_id}")
    card_id = bytes(card_id)
    if len(card_id) != CARD_ID_LENGTH:
        raise MalformedPayloadError(f"card_id must be {CARD_ID_LENGTH} bytes, got {len(card_id)}")
    if not 0 <= version <= 0xFF:
        raise MalformedPayloadError(f"version must fit in one byte, got {version}")
    days = date_to_days(expiration_date)
    if not 0 <= days <= 0xFFFFFFFF:
        raise MalformedPayloadError(f"expiration date out of range: {expiration_date}")

    packed = _LAYOUT.pack(issuer_id, card_id, days, version, name_hash(full_name))
    LOGGER.debug("Encoded payload for issuer %s card %s", issuer_id, card_id.hex())
    return packed


def decode_payload(data: bytes) -> Payload:
    """Unpack a 39-byte record into a :class:`Payload`.

    Raises:
        MalformedPayloadError: If *data* is not exactly 39 bytes long.
    """
    if len(data) != PAYLOAD_LENGTH:
        raise MalformedPayloadError(
            f"Unexpected payload size: expected {PAYLOAD_LENGTH} bytes, got {len(data)}"
        )
    issuer_id, card_id, days, version, digest = _LAYOUT.unpack(bytes(data))
    return Payload(
        issuer_id=issuer_id,
        card_id=card_id,
        expiration_date=days_to_date(days),
        version=version,
        name_hash=digest,
    )


__all__ = [
    "CARD_ID_LENGTH",
    "PAYLOAD_LENGTH",
    "PAYLOAD_VERSION",
    "Payload",
    "date_to_days",
    "days_to_date",
    "decode_payload",
    "default_expiration",
    "encode_payload",
    "name_hash",
    "parse_card_id",
    "random_card_id",
    "utc_today",
]
