"""
Interpretación de respuestas SOAP de WSFEv1

Todas las búsquedas son por local-name() para tolerar cualquier prefijo
(soap:, soap12:, sin prefijo). Los códigos desconocidos se devuelven tal cual.
"""
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from lxml import etree

from .constants import (
    AUTH_ERROR_CODES,
    ERROR_CODES,
    NOT_FOUND_ERROR_CODE,
    RESULT_REJECTED,
)
from .exceptions import AfipResponseError
from .models import (
    AfipMessage,
    InvoiceRecord,
    InvoiceResponse,
    SalesPoint,
    ServerStatus,
)

logger = logging.getLogger(__name__)

_CREDENTIAL_RE = re.compile(
    r"(<(?:\w+:)?(?:Token|Sign|token|sign)>)(.*?)(</(?:\w+:)?(?:Token|Sign|token|sign)>)",
    re.DOTALL,
)


def mask_credentials(xml_text: Union[str, bytes]) -> str:
    """Reemplaza el contenido de Token/Sign por *** (para logs y artifacts)"""
    if isinstance(xml_text, bytes):
        xml_text = xml_text.decode("utf-8", errors="replace")
    return _CREDENTIAL_RE.sub(r"\1***\3", xml_text)


def describe_code(code: int) -> str:
    """Etiqueta para códigos conocidos; los desconocidos se devuelven como número"""
    label = ERROR_CODES.get(code)
    return f"{code}: {label}" if label else str(code)


def parse_xml(content: Union[str, bytes]) -> etree._Element:
    """Parsea el XML de respuesta y falla con AfipResponseError si es inválido o es un SOAP Fault"""
    if isinstance(content, str):
        content = content.encode("utf-8")
    if not content or not content.strip():
        raise AfipResponseError("Respuesta vacía de AFIP")
    try:
        root = etree.fromstring(content)
    except etree.XMLSyntaxError as e:
        raise AfipResponseError(f"XML de respuesta inválido: {e}") from e
    _raise_on_fault(root)
    return root


def _raise_on_fault(root: etree._Element) -> None:
    faults = root.xpath('//*[local-name()="Fault"]')
    if not faults:
        return
    fault = faults[0]
    # SOAP 1.1: faultcode/faultstring; SOAP 1.2: Code/Value + Reason/Text
    code = find_text(fault, "faultcode") or find_text(fault, "Value")
    reason = find_text(fault, "faultstring") or find_text(fault, "Text") or "SOAP Fault sin detalle"
    raise AfipResponseError(f"SOAP Fault de AFIP: {reason}", code=code)


def find_first(node: etree._Element, name: str) -> Optional[etree._Element]:
    nodes = node.xpath('.//*[local-name()=$name]', name=name)
    return nodes[0] if len(nodes) else None


def find_text(node: etree._Element, name: str) -> Optional[str]:
    found = find_first(node, name)
    if found is None or found.text is None:
        return None
    return found.text.strip()


def _child_text(node: etree._Element, name: str) -> Optional[str]:
    """Texto de un hijo directo (evita tomar homónimos más profundos)"""
    for child in node:
        if isinstance(child.tag, str) and etree.QName(child).localname == name:
            return child.text.strip() if child.text else None
    return None


def _to_int(value: Optional[str], default: int = 0) -> int:
    try:
        return int(value) if value not in (None, "") else default
    except ValueError:
        return default


def _to_decimal(value: Optional[str]) -> Decimal:
    try:
        return Decimal(value) if value else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def parse_messages(node: etree._Element, container: str, item: str) -> List[AfipMessage]:
    """
    Extrae mensajes (Code, Msg) de un contenedor: Errors/Err, Events/Evt,
    Observaciones/Obs
    """
    box = find_first(node, container)
    if box is None:
        return []
    messages = []
    for entry in box.xpath('./*[local-name()=$item]', item=item):
        messages.append(
            AfipMessage(
                code=_to_int(_child_text(entry, "Code")),
                message=_child_text(entry, "Msg") or "",
            )
        )
    return messages


def parse_errors(root: etree._Element) -> List[AfipMessage]:
    return parse_messages(root, "Errors", "Err")


def has_auth_error(errors: List[AfipMessage]) -> bool:
    return any(e.code in AUTH_ERROR_CODES for e in errors)


def _errors_summary(errors: List[AfipMessage]) -> str:
    return "; ".join(f"[{describe_code(e.code)}] {e.message}" for e in errors)


def parse_dummy_response(content: Union[str, bytes]) -> ServerStatus:
    root = parse_xml(content)
    return ServerStatus(
        app_server=find_text(root, "AppServer") or "ERROR",
        db_server=find_text(root, "DbServer") or "ERROR",
        auth_server=find_text(root, "AuthServer") or "ERROR",
    )


def parse_last_authorized_response(content: Union[str, bytes]) -> int:
    """FECompUltimoAutorizado -> CbteNro (0 si todavía no hay comprobantes)"""
    root = parse_xml(content)
    errors = parse_errors(root)
    if errors:
        raise AfipResponseError(
            f"FECompUltimoAutorizado con errores: {_errors_summary(errors)}",
            code=str(errors[0].code),
        )
    number = find_text(root, "CbteNro")
    if number is None:
        raise AfipResponseError("FECompUltimoAutorizado sin CbteNro en la respuesta")
    return _to_int(number)


def has_invoice_detail(content: Union[str, bytes]) -> bool:
    """True si la respuesta de FECAESolicitar trae FECAEDetResponse"""
    return find_first(parse_xml(content), "FECAEDetResponse") is not None


def parse_cae_response(content: Union[str, bytes]) -> InvoiceResponse:
    """
    FECAESolicitar -> InvoiceResponse

    El rechazo (Resultado = R) es una respuesta normal. Sólo un documento
    sin Resultado ni errores se considera ininterpretable.
    """
    root = parse_xml(content)

    events = parse_messages(root, "Events", "Evt")
    errors = parse_errors(root)

    cab = find_first(root, "FeCabResp")
    det = find_first(root, "FECAEDetResponse")

    result = None
    if det is not None:
        result = _child_text(det, "Resultado")
    if not result and cab is not None:
        result = _child_text(cab, "Resultado")
    if not result:
        if not errors:
            raise AfipResponseError("FECAESolicitar sin Resultado ni errores en la respuesta")
        result = RESULT_REJECTED

    response = InvoiceResponse(result=result, events=events, errors=errors)

    if cab is not None:
        response.invoice_type = _to_int(_child_text(cab, "CbteTipo"))
        response.sale_point = _to_int(_child_text(cab, "PtoVta"))
        response.process_date = _child_text(cab, "FchProceso") or ""

    if det is not None:
        response.invoice_number = _to_int(_child_text(det, "CbteDesde"))
        response.invoice_date = _child_text(det, "CbteFch") or ""
        response.cae = _child_text(det, "CAE") or ""
        response.cae_expiration = _child_text(det, "CAEFchVto") or ""
        response.observations = parse_messages(det, "Observaciones", "Obs")

    return response


def parse_query_response(content: Union[str, bytes]) -> Optional[InvoiceRecord]:
    """FECompConsultar -> InvoiceRecord, o None si AFIP no tiene el comprobante"""
    root = parse_xml(content)
    errors = parse_errors(root)
    if any(e.code == NOT_FOUND_ERROR_CODE for e in errors):
        return None
    if errors:
        raise AfipResponseError(
            f"FECompConsultar con errores: {_errors_summary(errors)}",
            code=str(errors[0].code),
        )

    result_get = find_first(root, "ResultGet")
    if result_get is None:
        return None

    return InvoiceRecord(
        invoice_type=_to_int(_child_text(result_get, "CbteTipo")),
        sale_point=_to_int(_child_text(result_get, "PtoVta")),
        invoice_number=_to_int(_child_text(result_get, "CbteDesde")),
        invoice_date=_child_text(result_get, "CbteFch") or "",
        total_amount=_to_decimal(_child_text(result_get, "ImpTotal")),
        cae=_child_text(result_get, "CodAutorizacion") or "",
        cae_expiration=_child_text(result_get, "FchVto") or "",
        doc_type=_to_int(_child_text(result_get, "DocTipo")),
        doc_number=_to_int(_child_text(result_get, "DocNro")),
        result=_child_text(result_get, "Resultado") or "",
        process_date=_child_text(result_get, "FchProceso") or "",
        emission_type=_child_text(result_get, "EmisionTipo") or "",
        observations=parse_messages(result_get, "Observaciones", "Obs"),
    )


def parse_sales_points_response(content: Union[str, bytes]) -> List[SalesPoint]:
    root = parse_xml(content)
    errors = parse_errors(root)
    if any(e.code == NOT_FOUND_ERROR_CODE for e in errors):
        return []
    if errors:
        raise AfipResponseError(
            f"FEParamGetPtosVenta con errores: {_errors_summary(errors)}",
            code=str(errors[0].code),
        )

    points = []
    for node in root.xpath('//*[local-name()="PtoVenta"]'):
        drop_date = _child_text(node, "FchBaja")
        points.append(
            SalesPoint(
                number=_to_int(_child_text(node, "Nro")),
                emission_type=_child_text(node, "EmisionTipo") or "",
                blocked=(_child_text(node, "Bloqueado") or "N").upper() == "S",
                drop_date=None if drop_date in (None, "", "NULL") else drop_date,
            )
        )
    return points
