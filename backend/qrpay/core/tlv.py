"""Tag-length-value codec for the QR payment payload.

Wire format::

    <tag:2 digits><length:2 digits><value> ... <crc:4 uppercase hex>

The checksum is CRC16-CCITT (polynomial 0x1021, initial value 0xFFFF) over
every character that precedes it. Lengths count characters; only ASCII is
accepted so that characters and bytes coincide.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from qrpay.core.errors import MalformedPayload, ValidationError

CRC_POLYNOMIAL = 0x1021
CRC_INITIAL = 0xFFFF
CRC_LENGTH = 4
TAG_LENGTH = 2
LENGTH_FIELD_LENGTH = 2
MAX_VALUE_LENGTH = 99

_HEX_DIGITS = frozenset("0123456789ABCDEF")


class QRTag(str, Enum):
    """Registered payload tags."""
    MERCHANT_ADDRESS = "01"  # Merchant settlement wallet
    AMOUNT = "02"  # Charge amount in whole fiat units
    SESSION_ID = "03"  # Payment session identifier
    TARGET_SYMBOL = "04"  # Target crypto symbol (extension)
    TARGET_AMOUNT = "05"  # Indicative crypto amount (extension)
    EXCHANGE_RATE = "06"  # Fiat per crypto unit used for the preview (extension)
    ISSUED_AT = "07"  # Epoch seconds the QR was rendered (extension)


REQUIRED_TAGS = (QRTag.MERCHANT_ADDRESS, QRTag.AMOUNT, QRTag.SESSION_ID)


def crc16_ccitt(data: str) -> str:
    """Return the CRC16-CCITT of ``data`` as 4 uppercase hex digits."""
    crc = CRC_INITIAL
    for char in data:
        crc ^= ord(char) << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = (crc << 1) ^ CRC_POLYNOMIAL
            else:
                crc <<= 1
            crc &= 0xFFFF
    return f"{crc:04X}"


def encode(fields: Sequence[Tuple[str, str]]) -> str:
    """
    Serialize an ordered list of (tag, value) pairs and append the checksum.

    Args:
        fields: Ordered (tag, value) pairs; tags are two digits

    Returns:
        TLV payload string ending in a 4-digit CRC

    Raises:
        ValidationError: If a tag is not two digits or repeated, or a value is
            non-ASCII or longer than 99 characters
    """
    parts = []
    seen = set()
    for tag, value in fields:
        tag = str(tag.value if isinstance(tag, QRTag) else tag)
        if len(tag) != TAG_LENGTH or not (tag.isascii() and tag.isdigit()):
            raise ValidationError(f"TLV tag must be two digits, got {tag!r}", tag=tag)
        if tag in seen:
            raise ValidationError(f"TLV tag {tag} appears more than once", tag=tag)
        seen.add(tag)
        if not isinstance(value, str):
            raise ValidationError(f"TLV value for tag {tag} must be a string", tag=tag)
        if not value.isascii():
            raise ValidationError(f"TLV value for tag {tag} must be ASCII", tag=tag)
        if len(value) > MAX_VALUE_LENGTH:
            raise ValidationError(
                f"TLV value for tag {tag} is {len(value)} characters; "
                f"maximum is {MAX_VALUE_LENGTH}",
                tag=tag,
            )
        parts.append(f"{tag}{len(value):02d}{value}")

    body = "".join(parts)
    return body + crc16_ccitt(body)


def decode(payload: str) -> Dict[str, str]:
    """
    Parse a TLV payload and verify its checksum.

    Returns:
        Mapping of tag to value, in payload order

    Raises:
        MalformedPayload: On any structural or checksum problem. Nothing is
            returned for a payload that fails validation.
    """
    if not isinstance(payload, str) or not payload.isascii():
        raise MalformedPayload("Payload must be an ASCII string")
    if len(payload) < CRC_LENGTH:
        raise MalformedPayload("Payload is shorter than its checksum")

    body, provided_crc = payload[:-CRC_LENGTH], payload[-CRC_LENGTH:]
    if not set(provided_crc) <= _HEX_DIGITS:
        raise MalformedPayload(f"Checksum {provided_crc!r} is not 4 uppercase hex digits")

    fields: Dict[str, str] = {}
    i = 0
    while i < len(body):
        header = body[i:i + TAG_LENGTH + LENGTH_FIELD_LENGTH]
        if len(header) < TAG_LENGTH + LENGTH_FIELD_LENGTH:
            raise MalformedPayload(f"Truncated tag/length field at offset {i}")

        tag, length_field = header[:TAG_LENGTH], header[TAG_LENGTH:]
        if not tag.isdigit():
            raise MalformedPayload(f"Non-numeric tag {tag!r} at offset {i}")
        if not length_field.isdigit():
            raise MalformedPayload(f"Non-numeric length {length_field!r} for tag {tag}")

        i += len(header)
        length = int(length_field)
        if i + length > len(body):
            raise MalformedPayload(
                f"Tag {tag} declares {length} characters but only {len(body) - i} remain"
            )
        if tag in fields:
            raise MalformedPayload(f"Duplicate tag {tag}")

        fields[tag] = body[i:i + length]
        i += length

    expected_crc = crc16_ccitt(body)
    if provided_crc != expected_crc:
        raise MalformedPayload("Checksum mismatch")

    return fields


def _format_decimal(value: Decimal) -> str:
    return format(value.normalize(), "f")


def _parse_decimal(tag: QRTag, raw: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise MalformedPayload(f"Tag {tag.value} is not a decimal: {raw!r}")
    if not value.is_finite():
        raise MalformedPayload(f"Tag {tag.value} is not finite: {raw!r}")
    return value


@dataclass(frozen=True)
class QRPayload:
    """Typed view over the payment QR fields."""

    merchant_address: str
    amount: int
    session_id: str
    target_symbol: Optional[str] = None
    target_amount: Optional[Decimal] = None
    exchange_rate: Optional[Decimal] = None
    issued_at: Optional[int] = None

    def to_fields(self) -> List[Tuple[str, str]]:
        fields = [
            (QRTag.MERCHANT_ADDRESS.value, self.merchant_address),
            (QRTag.AMOUNT.value, str(self.amount)),
            (QRTag.SESSION_ID.value, self.session_id),
        ]
        if self.target_symbol is not None:
            fields.append((QRTag.TARGET_SYMBOL.value, self.target_symbol))
        if self.target_amount is not None:
            fields.append((QRTag.TARGET_AMOUNT.value, _format_decimal(self.target_amount)))
        if self.exchange_rate is not None:
            fields.append((QRTag.EXCHANGE_RATE.value, _format_decimal(self.exchange_rate)))
        if self.issued_at is not None:
            fields.append((QRTag.ISSUED_AT.value, str(self.issued_at)))
        return fields

    def encode(self) -> str:
        return encode(self.to_fields())

    @classmethod
    def decode(cls, payload: str) -> "QRPayload":
        """Decode a payload and map the registered tags; unknown tags are ignored."""
        fields = decode(payload)

        missing = [tag.value for tag in REQUIRED_TAGS if not fields.get(tag.value)]
        if missing:
            raise MalformedPayload(f"Missing required tags: {', '.join(missing)}")

        raw_amount = fields[QRTag.AMOUNT.value]
        if not raw_amount.isdigit():
            raise MalformedPayload(f"Amount must be whole fiat units, got {raw_amount!r}")

        raw_issued_at = fields.get(QRTag.ISSUED_AT.value)
        if raw_issued_at is not None and not raw_issued_at.isdigit():
            raise MalformedPayload(f"Issue timestamp is not numeric: {raw_issued_at!r}")

        target_amount = fields.get(QRTag.TARGET_AMOUNT.value)
        exchange_rate = fields.get(QRTag.EXCHANGE_RATE.value)

        return cls(
            merchant_address=fields[QRTag.MERCHANT_ADDRESS.value],
            amount=int(raw_amount),
            session_id=fields[QRTag.SESSION_ID.value],
            target_symbol=fields.get(QRTag.TARGET_SYMBOL.value),
            target_amount=(
                _parse_decimal(QRTag.TARGET_AMOUNT, target_amount)
                if target_amount is not None else None
            ),
            exchange_rate=(
                _parse_decimal(QRTag.EXCHANGE_RATE, exchange_rate)
                if exchange_rate is not None else None
            ),
            issued_at=int(raw_issued_at) if raw_issued_at is not None else None,
        )
