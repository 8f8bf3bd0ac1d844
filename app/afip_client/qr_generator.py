"""
Generador de Código QR para comprobantes electrónicos AFIP

Según la especificación de AFIP (RG 4892):
1. Armar el JSON con los datos del comprobante autorizado
2. Codificarlo en base64
3. Construir la URL https://www.afip.gob.ar/fe/qr/?p=<base64>
"""
import base64
import binascii
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Union
from urllib.parse import parse_qs, urlparse

from .cuit_validator import clean_cuit, validate_cuit
from .exceptions import AfipException
from .formatters import afip_date_to_iso, format_amount

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "ver", "fecha", "cuit", "ptoVta", "tipoCmp", "nroCmp", "importe",
    "moneda", "ctz", "tipoDocRec", "nroDocRec", "tipoCodAut", "codAut",
)


class QRGeneratorError(AfipException):
    """Excepción para errores en la generación de QR"""
    pass


class QRGenerator:
    """
    Generador de URL QR para comprobantes autorizados con CAE

    El CUIT del emisor es fijo por instancia; el resto sale del comprobante.
    """

    QR_URL_BASE = "https://www.afip.gob.ar/fe/qr/"
    VERSION = 1

    def __init__(self, cuit: str):
        """
        Args:
            cuit: CUIT del emisor (con o sin guiones)
        """
        cleaned = clean_cuit(cuit)
        if not validate_cuit(cleaned):
            raise QRGeneratorError(f"CUIT del emisor inválido para QR: {cuit!r}")
        self.cuit = cleaned

    def build_payload(
        self,
        sale_point: int,
        invoice_type: int,
        invoice_number: int,
        invoice_date: str,
        total: Union[Decimal, str, float],
        cae: str,
        currency: str = "PES",
        exchange_rate: Union[Decimal, str, float] = 1,
        doc_type: int = 99,
        doc_number: int = 0,
    ) -> Dict[str, Any]:
        if not cae or not (str(cae).isascii() and str(cae).isdigit()):
            raise QRGeneratorError(f"CAE inválido para QR: {cae!r}")
        try:
            fecha = afip_date_to_iso(invoice_date)
        except ValueError as e:
            raise QRGeneratorError(str(e)) from e

        return {
            "ver": self.VERSION,
            "fecha": fecha,
            "cuit": int(self.cuit),
            "ptoVta": int(sale_point),
            "tipoCmp": int(invoice_type),
            "nroCmp": int(invoice_number),
            "importe": float(format_amount(total)),
            "moneda": currency,
            "ctz": float(format_amount(exchange_rate)),
            "tipoDocRec": int(doc_type),
            "nroDocRec": int(doc_number),
            "tipoCodAut": "E",
            "codAut": int(cae),
        }

    def generate(self, **kwargs) -> str:
        """
        Genera la URL QR (ver build_payload para los argumentos)

        Returns:
            URL completa con el JSON en base64 en el parámetro p
        """
        payload = self.build_payload(**kwargs)
        data = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        url = f"{self.QR_URL_BASE}?p={base64.b64encode(data).decode('ascii')}"
        logger.debug(
            f"QR generado para comprobante {payload['tipoCmp']}/{payload['ptoVta']}/{payload['nroCmp']}"
        )
        return url


def parse_qr_url(url: str) -> Optional[Dict[str, Any]]:
    """Decodifica el JSON de una URL QR de AFIP; None si no es válida"""
    try:
        query = parse_qs(urlparse(url).query)
        encoded = query.get("p", [""])[0]
        if not encoded:
            return None
        # parse_qs convierte '+' en espacio
        encoded = encoded.replace(" ", "+")
        return json.loads(base64.b64decode(encoded, validate=True).decode("utf-8"))
    except (ValueError, binascii.Error, UnicodeDecodeError) as e:
        logger.debug(f"URL QR inválida: {e}")
        return None


def validate_qr_url(url: str) -> bool:
    """URL con el prefijo oficial y todos los campos obligatorios"""
    if not url or not url.startswith(QRGenerator.QR_URL_BASE):
        return False
    payload = parse_qr_url(url)
    if not isinstance(payload, dict):
        return False
    return all(key in payload for key in REQUIRED_FIELDS)
