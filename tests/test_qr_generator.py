import base64
import json
from decimal import Decimal
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.afip_client.qr_generator import (
    REQUIRED_FIELDS,
    QRGenerator,
    QRGeneratorError,
    parse_qr_url,
    validate_qr_url,
)


def _generate(**overrides):
    data = dict(
        sale_point=1,
        invoice_type=6,
        invoice_number=101,
        invoice_date="20261018",
        total=Decimal("1210.00"),
        cae="12345678901234",
    )
    data.update(overrides)
    return QRGenerator("20-40937847-2").generate(**data)


def test_qr_url_payload():
    url = _generate()
    assert url.startswith("https://www.afip.gob.ar/fe/qr/?p=")

    payload = json.loads(base64.b64decode(url.split("?p=", 1)[1]))
    assert payload == {
        "ver": 1,
        "fecha": "2026-10-18",
        "cuit": 20409378472,
        "ptoVta": 1,
        "tipoCmp": 6,
        "nroCmp": 101,
        "importe": 1210.0,
        "moneda": "PES",
        "ctz": 1.0,
        "tipoDocRec": 99,
        "nroDocRec": 0,
        "tipoCodAut": "E",
        "codAut": 12345678901234,
    }


def test_parse_and_validate():
    url = _generate(doc_type=80, doc_number=20409378472, currency="DOL", exchange_rate="1052.50")
    payload = parse_qr_url(url)
    assert payload["nroDocRec"] == 20409378472
    assert payload["ctz"] == 1052.5
    assert set(REQUIRED_FIELDS) <= set(payload)
    assert validate_qr_url(url)


def test_invalid_urls():
    assert validate_qr_url("") is False
    assert validate_qr_url("https://example.com/?p=e30=") is False
    assert validate_qr_url("https://www.afip.gob.ar/fe/qr/?p=no-es-base64") is False
    # JSON válido pero sin campos obligatorios
    partial = base64.b64encode(b'{"ver":1}').decode()
    assert validate_qr_url(f"https://www.afip.gob.ar/fe/qr/?p={partial}") is False
    assert parse_qr_url("https://www.afip.gob.ar/fe/qr/") is None


def test_generator_rejects_bad_input():
    with pytest.raises(QRGeneratorError):
        QRGenerator("20409378473")
    with pytest.raises(QRGeneratorError, match="CAE"):
        _generate(cae="")
    with pytest.raises(QRGeneratorError):
        _generate(invoice_date="2026-10-18")


def test_non_ascii_cae_rejected():
    with pytest.raises(QRGeneratorError, match="CAE"):
        _generate(cae="1234567890123²")
