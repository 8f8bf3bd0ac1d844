"""
Validador de CUIT/CUIL argentino

El CUIT/CUIL tiene 11 dígitos: PP-DDDDDDDD-C
- PP: tipo (20, 23, 24, 27 personas físicas; 30, 33, 34 personas jurídicas)
- DDDDDDDD: número de documento
- C: dígito verificador (módulo 11 ponderado)
"""
import re
from typing import Optional

WEIGHTS = (5, 4, 3, 2, 7, 6, 5, 4, 3, 2)

NATURAL_PERSON_PREFIXES = ("20", "23", "24", "27")
LEGAL_ENTITY_PREFIXES = ("30", "33", "34")

PERSONA_FISICA = "PERSONA_FISICA"
PERSONA_JURIDICA = "PERSONA_JURIDICA"
UNKNOWN = "UNKNOWN"

# Prefijo según tipo de persona para generate_cuit_from_dni
PERSON_TYPE_PREFIXES = {
    "M": "20",
    "F": "27",
    "EMPRESA": "30",
}

_SEPARATORS_RE = re.compile(r"[-\s./]")
_NON_DIGITS_RE = re.compile(r"\D", re.ASCII)


def _is_ascii_digits(value: str, length: int) -> bool:
    # str.isdigit() acepta dígitos no ASCII como "²" que int() rechaza
    return len(value) == length and value.isascii() and value.isdigit()


def clean_cuit(cuit: str) -> str:
    """Quita guiones, espacios, puntos y barras"""
    return _SEPARATORS_RE.sub("", str(cuit or ""))


def calculate_check_digit(first_ten: str) -> int:
    """
    Calcula el dígito verificador para los primeros 10 dígitos.

    expected = 11 - (suma ponderada mod 11), con 11 -> 0 y 10 -> 9
    """
    if not _is_ascii_digits(first_ten, 10):
        raise ValueError(f"Se esperaban 10 dígitos, recibido: {first_ten!r}")

    total = sum(int(d) * w for d, w in zip(first_ten, WEIGHTS))
    expected = 11 - (total % 11)
    if expected == 11:
        return 0
    if expected == 10:
        return 9
    return expected


def validate_cuit(cuit: str) -> bool:
    """
    Valida formato y dígito verificador de un CUIT/CUIL

    Args:
        cuit: CUIT con o sin separadores

    Returns:
        True si tiene 11 dígitos y el verificador es correcto
    """
    cleaned = clean_cuit(cuit)
    if not _is_ascii_digits(cleaned, 11):
        return False
    return calculate_check_digit(cleaned[:10]) == int(cleaned[10])


def format_cuit(cuit: str) -> str:
    """
    Formatea un CUIT como PP-DDDDDDDD-C

    Si no tiene 11 dígitos se devuelve sin cambios.
    """
    cleaned = clean_cuit(cuit)
    if not _is_ascii_digits(cleaned, 11):
        return cuit
    return f"{cleaned[:2]}-{cleaned[2:10]}-{cleaned[10]}"


def get_cuit_type(cuit: str) -> str:
    """Clasifica el CUIT según su prefijo"""
    prefix = clean_cuit(cuit)[:2]
    if prefix in NATURAL_PERSON_PREFIXES:
        return PERSONA_FISICA
    if prefix in LEGAL_ENTITY_PREFIXES:
        return PERSONA_JURIDICA
    return UNKNOWN


def extract_dni_from_cuit(cuit: str) -> Optional[str]:
    """Devuelve los 8 dígitos centrales si es persona física, si no None"""
    if get_cuit_type(cuit) != PERSONA_FISICA:
        return None
    return clean_cuit(cuit)[2:10]


def generate_cuit_from_dni(dni: str, person_type: str = "M") -> str:
    """
    Genera un CUIT a partir de un DNI y tipo de persona

    Args:
        dni: Número de documento (se rellena a 8 dígitos)
        person_type: 'M', 'F', 'EMPRESA' o un prefijo de 2 dígitos

    Returns:
        CUIT de 11 dígitos sin separadores
    """
    digits = _NON_DIGITS_RE.sub("", str(dni))
    if not digits or len(digits) > 8:
        raise ValueError(f"DNI inválido: {dni!r}")

    prefix = PERSON_TYPE_PREFIXES.get(str(person_type).upper(), str(person_type))
    if prefix not in NATURAL_PERSON_PREFIXES + LEGAL_ENTITY_PREFIXES:
        raise ValueError(f"Tipo de persona inválido: {person_type!r}")

    partial = prefix + digits.zfill(8)
    return partial + str(calculate_check_digit(partial))


def validate_amounts(net, tax, exempt, untaxed, total) -> bool:
    """
    Valida que net + tax + exempt + untaxed == total con tolerancia de 1 unidad

    Los importes se esperan en centavos; la tolerancia cubre el redondeo.
    """
    return abs((net + tax + exempt + untaxed) - total) <= 1
