from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
import random
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.afip_client.formatters import (
    afip_date_to_iso,
    cents_to_decimal,
    decimal_to_cents,
    format_amount,
    format_invoice_number,
    from_afip_date,
    parse_invoice_number,
    parse_wsaa_datetime,
    to_afip_date,
    to_wsaa_datetime,
    validate_invoice_number,
)


def test_format_invoice_number_examples():
    assert format_invoice_number(1, 123) == "00001-00000123"
    assert format_invoice_number(99999, 99999999) == "99999-99999999"


def test_format_invoice_number_out_of_range():
    with pytest.raises(ValueError):
        format_invoice_number(0, 1)
    with pytest.raises(ValueError):
        format_invoice_number(1, 100000000)


def test_parse_inverts_format():
    rng = random.Random(7)
    for _ in range(200):
        p = rng.randint(1, 99999)
        n = rng.randint(1, 99999999)
        assert parse_invoice_number(format_invoice_number(p, n)) == (p, n)


def test_parse_rejects_bad_format():
    assert validate_invoice_number("0001-00000123") is False
    with pytest.raises(ValueError, match="PPPPP-NNNNNNNN"):
        parse_invoice_number("1-123")


def test_afip_dates():
    assert to_afip_date(date(2026, 10, 18)) == "20261018"
    assert from_afip_date("20261018") == date(2026, 10, 18)
    assert afip_date_to_iso("20261018") == "2026-10-18"
    with pytest.raises(ValueError):
        from_afip_date("2026-10-18")


def test_to_afip_date_uses_argentina_time():
    # 01:30 UTC del 19 son las 22:30 del 18 en Argentina
    assert to_afip_date(datetime(2026, 10, 19, 1, 30, tzinfo=timezone.utc)) == "20261018"


def test_wsaa_datetime_round_trip():
    value = datetime(2026, 10, 18, 13, 0, 0, tzinfo=timezone.utc)
    text = to_wsaa_datetime(value)
    assert text == "2026-10-18T10:00:00-03:00"
    assert parse_wsaa_datetime(text) == value


def test_parse_wsaa_datetime_with_millis():
    parsed = parse_wsaa_datetime("2026-10-18T22:00:00.000-03:00")
    assert parsed == datetime(2026, 10, 19, 1, 0, 0, tzinfo=timezone.utc)


def test_amount_helpers():
    assert cents_to_decimal(121000) == Decimal("1210.00")
    assert decimal_to_cents("1210.005") == 121001
    assert format_amount(Decimal("210")) == "210.00"
    assert format_amount("0.125") == "0.13"
