"""Tests for the QR TLV codec."""

from decimal import Decimal

import pytest

from qrpay.core import tlv
from qrpay.core.errors import MalformedPayload, ValidationError
from qrpay.core.tlv import QRPayload, QRTag

WALLET = "0x049d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7"


def sample_fields():
    return [
        ("01", WALLET),
        ("02", "1000"),
        ("03", "pay_1767355200000_a1b2c3d4"),
    ]


def test_crc16_ccitt_check_value():
    """CRC-16/CCITT-FALSE check value for the standard test string."""
    assert tlv.crc16_ccitt("123456789") == "29B1"
    assert tlv.crc16_ccitt("") == "FFFF"


def test_encode_layout():
    payload = tlv.encode([("01", "abc"), ("02", "1000")])

    assert payload.startswith("0103abc02041000")
    assert payload[-4:] == tlv.crc16_ccitt("0103abc02041000")
    assert len(payload) == len("0103abc02041000") + 4


def test_round_trip_preserves_fields():
    fields = sample_fields()
    assert tlv.decode(tlv.encode(fields)) == dict(fields)


def test_round_trip_empty_and_max_length_values():
    fields = [("01", ""), ("02", "9" * 99), ("99", "x")]
    assert tlv.decode(tlv.encode(fields)) == dict(fields)


def test_encode_rejects_oversized_value():
    with pytest.raises(ValidationError):
        tlv.encode([("01", "a" * 100)])


@pytest.mark.parametrize("tag", ["1", "001", "ab", "", "1a"])
def test_encode_rejects_bad_tags(tag):
    with pytest.raises(ValidationError):
        tlv.encode([(tag, "value")])


def test_encode_rejects_non_ascii_value():
    with pytest.raises(ValidationError):
        tlv.encode([("03", "café")])


def test_encode_rejects_repeated_tag():
    with pytest.raises(ValidationError):
        tlv.encode([("01", "abc"), ("02", "1000"), (QRTag.MERCHANT_ADDRESS, "def")])


def test_encode_accepts_registered_tag_enum():
    payload = tlv.encode([(QRTag.SESSION_ID, "pay_1")])
    assert tlv.decode(payload) == {"03": "pay_1"}


def test_any_single_character_change_is_detected():
    payload = tlv.encode(sample_fields())

    for i, char in enumerate(payload):
        replacement = "7" if char != "7" else "8"
        tampered = payload[:i] + replacement + payload[i + 1:]
        with pytest.raises(MalformedPayload):
            tlv.decode(tampered)


@pytest.mark.parametrize("payload", [
    "",
    "ABC",
    "0103abcZZZZ",  # non-hex checksum
    "0103abcffff",  # lowercase checksum
])
def test_decode_rejects_bad_checksum_field(payload):
    with pytest.raises(MalformedPayload):
        tlv.decode(payload)


def _with_crc(body: str) -> str:
    return body + tlv.crc16_ccitt(body)


@pytest.mark.parametrize("body", [
    "010",  # truncated tag/length
    "0103ab",  # declared length overruns the body
    "0a03abc",  # non-numeric tag
    "01x3abc",  # non-numeric length
    "0101a0101b",  # duplicate tag
])
def test_decode_rejects_structural_errors(body):
    with pytest.raises(MalformedPayload):
        tlv.decode(_with_crc(body))


def test_decode_rejects_non_ascii():
    with pytest.raises(MalformedPayload):
        tlv.decode("0102ñx" + "0000")


def test_decode_never_returns_partial_result_on_crc_mismatch():
    payload = tlv.encode(sample_fields())
    bad = payload[:-4] + ("0000" if payload[-4:] != "0000" else "1111")

    with pytest.raises(MalformedPayload, match="Checksum mismatch"):
        tlv.decode(bad)


def test_qr_payload_with_extension_tags():
    qr = QRPayload(
        merchant_address=WALLET,
        amount=1000,
        session_id="pay_1767355200000_a1b2c3d4",
        target_symbol="USDT",
        target_amount=Decimal("0.769231"),
        exchange_rate=Decimal("1300.000"),
        issued_at=1767355200,
    )

    payload = qr.encode()
    fields = tlv.decode(payload)

    assert fields["04"] == "USDT"
    assert fields["05"] == "0.769231"
    assert fields["06"] == "1300"
    assert fields["07"] == "1767355200"
    assert QRPayload.decode(payload) == QRPayload(
        merchant_address=WALLET,
        amount=1000,
        session_id="pay_1767355200000_a1b2c3d4",
        target_symbol="USDT",
        target_amount=Decimal("0.769231"),
        exchange_rate=Decimal("1300"),
        issued_at=1767355200,
    )


def test_qr_payload_required_tags_only():
    payload = QRPayload(merchant_address=WALLET, amount=5, session_id="pay_x").encode()
    qr = QRPayload.decode(payload)

    assert qr.amount == 5
    assert qr.target_symbol is None
    assert qr.issued_at is None


def test_qr_payload_ignores_unknown_tags():
    payload = tlv.encode(sample_fields() + [("42", "future")])
    assert QRPayload.decode(payload).session_id == "pay_1767355200000_a1b2c3d4"


def test_qr_payload_missing_required_tag():
    payload = tlv.encode([("01", WALLET), ("02", "1000")])
    with pytest.raises(MalformedPayload, match="03"):
        QRPayload.decode(payload)


@pytest.mark.parametrize("amount", ["10.50", "-5", "abc"])
def test_qr_payload_rejects_non_integer_amount(amount):
    payload = tlv.encode([("01", WALLET), ("02", amount), ("03", "pay_x")])
    with pytest.raises(MalformedPayload):
        QRPayload.decode(payload)


def test_qr_payload_rejects_bad_decimal_extension():
    payload = tlv.encode(sample_fields() + [("05", "lots")])
    with pytest.raises(MalformedPayload):
        QRPayload.decode(payload)
