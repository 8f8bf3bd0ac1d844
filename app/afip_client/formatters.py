"""
Formateo de números de comprobante, fechas e importes según AFIP
"""
import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple, Union

# Argentina no aplica horario de verano: UTC-03:00 fijo
ARGENTINA_TZ = timezone(timedelta(hours=-3), name="ART")

MAX_SALE_POINT = 99999
MAX_INVOICE_NUMBER = 99999999

_INVOICE_NUMBER_RE = re.compile(r"^(\d{5})-(\d{8})$")
_CENT = Decimal("0.01")


def format_invoice_number(sale_point: int, invoice_number: int) -> str:
    """
    Formatea el número de comprobante como PPPPP-NNNNNNNN

    Ejemplo: (1, 123) -> "00001-00000123"
    """
    if not 1 <= int(sale_point) <= MAX_SALE_POINT:
        raise ValueError(f"Punto de venta fuera de rango: {sale_point}")
    if not 1 <= int(invoice_number) <= MAX_INVOICE_NUMBER:
        raise ValueError(f"Número de comprobante fuera de rango: {invoice_number}")
    return f"{int(sale_point):05d}-{int(invoice_number):08d}"


def parse_invoice_number(formatted: str) -> Tuple[int, int]:
    """Inversa de format_invoice_number: devuelve (punto_venta, numero)"""
    match = _INVOICE_NUMBER_RE.match((formatted or "").strip())
    if not match:
        raise ValueError(f"Formato de comprobante inválido: {formatted!r}. Esperado: PPPPP-NNNNNNNN")
    return int(match.group(1)), int(match.group(2))


def validate_invoice_number(formatted: str) -> bool:
    return bool(_INVOICE_NUMBER_RE.match(formatted or ""))


def now_argentina() -> datetime:
    return datetime.now(ARGENTINA_TZ)


def to_afip_date(value: Optional[Union[date, datetime]] = None) -> str:
    """Fecha en formato AFIP (YYYYMMDD), por defecto hoy en Argentina"""
    if value is None:
        value = now_argentina()
    elif isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(ARGENTINA_TZ)
    return value.strftime("%Y%m%d")


def from_afip_date(afip_date: str) -> date:
    """Parsea YYYYMMDD a date"""
    try:
        return datetime.strptime((afip_date or "").strip(), "%Y%m%d").date()
    except ValueError as e:
        raise ValueError(f"Fecha AFIP inválida: {afip_date!r}") from e


def afip_date_to_iso(afip_date: str) -> str:
    """YYYYMMDD -> YYYY-MM-DD"""
    return from_afip_date(afip_date).isoformat()


def to_wsaa_datetime(value: datetime) -> str:
    """
    Fecha y hora para el loginTicketRequest (xsd:dateTime con offset)

    Ejemplo: 2026-10-18T10:00:00-03:00
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=ARGENTINA_TZ)
    return value.astimezone(ARGENTINA_TZ).isoformat(timespec="seconds")


def parse_wsaa_datetime(value: str) -> datetime:
    """Parsea el expirationTime de WSAA (ej: 2026-10-18T22:00:00.000-03:00)"""
    text = (value or "").strip()
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ValueError(f"Fecha WSAA inválida: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ARGENTINA_TZ)
    return parsed


def cents_to_decimal(cents: Union[int, Decimal]) -> Decimal:
    """Centavos -> importe con 2 decimales"""
    return (Decimal(cents) / 100).quantize(_CENT, rounding=ROUND_HALF_UP)


def decimal_to_cents(amount: Union[str, Decimal, float]) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_amount(amount: Union[int, Decimal, float, str]) -> str:
    """Importe con dos decimales y punto como separador (formato del WS)"""
    return str(Decimal(str(amount)).quantize(_CENT, rounding=ROUND_HALF_UP))
