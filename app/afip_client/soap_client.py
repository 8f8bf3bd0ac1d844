"""
Cliente SOAP para WSFEv1 (Factura Electrónica, mercado interno)

Notas importantes:
- Un builder lxml y un parser por operación; nunca interpolar XML como texto.
- SOAP 1.1 por defecto (text/xml + SOAPAction), 1.2 seleccionable.
- Sin reintentos: un timeout en FECAESolicitar deja el resultado ambiguo y
  el número pudo haberse consumido del lado de AFIP.
- NO usar elem1 or elem2 con lxml Elements (pueden ser "falsy" si no tienen hijos).
"""
import logging
from decimal import Decimal
from typing import Any, List, Optional

import requests
from lxml import etree
from requests import Session
from requests.adapters import HTTPAdapter
from zeep.transports import Transport

from . import response_parser
from .config import AfipConfig
from .constants import SOAP11_NS, SOAP12_NS, WSFE_NS, WSFE_SERVICE
from .exceptions import AfipAuthenticationError, AfipException, AfipTransportError
from .formatters import format_amount
from .models import (
    AuthTicket,
    InvoiceRecord,
    InvoiceRequest,
    InvoiceResponse,
    SalesPoint,
    ServerStatus,
)
from .wsaa_client import CredentialBroker

logger = logging.getLogger(__name__)


def _sub(parent: Any, name: str, text: Any = None) -> Any:
    elem = etree.SubElement(parent, f"{{{WSFE_NS}}}{name}")
    if text is not None:
        elem.text = str(text)
    return elem


def _amount(value: Any) -> str:
    return format_amount(value)


def _rate(value: Any) -> str:
    # MonCotiz admite hasta 6 decimales
    return format(Decimal(str(value)).quantize(Decimal("0.000001")).normalize(), "f")


class WsfeClient:
    """Cliente SOAP (document/literal) para WSFEv1"""

    def __init__(
        self,
        config: AfipConfig,
        broker: CredentialBroker,
        transport: Optional[Transport] = None,
        service: str = WSFE_SERVICE,
    ):
        self.config = config
        self.broker = broker
        self.service = service
        self.cuit = config.cuit
        self.url = config.wsfe_url
        self.soap_version = config.soap_version

        # Timeouts
        self.connect_timeout = config.wsfe_connect_timeout
        self.read_timeout = config.wsfe_read_timeout

        self.transport = transport or self._create_transport()

    def _create_transport(self) -> Transport:
        session = Session()
        session.verify = True
        session.mount("https://", HTTPAdapter())
        return Transport(
            session=session,
            timeout=(self.connect_timeout, self.read_timeout),
            operation_timeout=self.read_timeout,
        )

    # ---------------------------------------------------------------------
    # SOAP Helpers
    # ---------------------------------------------------------------------
    def _soap_headers(self, version: str, action: str) -> dict:
        """
        Genera headers HTTP según versión SOAP.

        Args:
            version: "1.1" o "1.2"
            action: Operación WSFEv1 (ej: "FECAESolicitar")

        Returns:
            Dict con headers HTTP
        """
        soap_action = f"{WSFE_NS}{action}"
        if version == "1.1":
            return {
                "Content-Type": "text/xml; charset=utf-8",
                "SOAPAction": f'"{soap_action}"',
                "Accept": "text/xml, */*",
            }
        elif version == "1.2":
            return {
                "Content-Type": f'application/soap+xml; charset=utf-8; action="{soap_action}"',
                "Accept": "application/soap+xml, text/xml, */*",
            }
        else:
            raise ValueError(f"Versión SOAP no soportada: {version}")

    def _build_soap_envelope(self, operation: Any, version: str) -> bytes:
        """
        Construye un envelope SOAP 1.1 o 1.2 con la operación en el Body

        Args:
            operation: Elemento de la operación (ej: <FECAESolicitar>)
            version: "1.1" o "1.2"

        Returns:
            Bytes del envelope SOAP completo
        """
        if version == "1.1":
            envelope_ns = SOAP11_NS
            prefix = "soap"
        elif version == "1.2":
            envelope_ns = SOAP12_NS
            prefix = "soap12"
        else:
            raise ValueError(f"Versión SOAP no soportada: {version}")

        envelope = etree.Element(f"{{{envelope_ns}}}Envelope", nsmap={prefix: envelope_ns})
        etree.SubElement(envelope, f"{{{envelope_ns}}}Header")
        body = etree.SubElement(envelope, f"{{{envelope_ns}}}Body")
        body.append(operation)
        return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8")

    def _operation(self, name: str) -> Any:
        return etree.Element(f"{{{WSFE_NS}}}{name}", nsmap={None: WSFE_NS})

    def _auth(self, parent: Any, ticket: AuthTicket) -> None:
        auth = _sub(parent, "Auth")
        _sub(auth, "Token", ticket.token)
        _sub(auth, "Sign", ticket.sign)
        _sub(auth, "Cuit", self.cuit)

    def _post(self, action: str, operation: Any) -> bytes:
        """
        Envía la operación y devuelve el cuerpo de la respuesta

        Un HTTP 500 con SOAP Fault se devuelve igual para que el parser
        lo convierta en AfipResponseError con el detalle de AFIP.
        """
        soap_bytes = self._build_soap_envelope(operation, self.soap_version)
        headers = self._soap_headers(self.soap_version, action)
        logger.debug(f"WSFEv1 {action} -> {self.url}")
        logger.debug(f"Request {action}: {response_parser.mask_credentials(soap_bytes)[:2000]}")

        try:
            resp = self.transport.session.post(
                self.url,
                data=soap_bytes,
                headers=headers,
                timeout=(self.connect_timeout, self.read_timeout),
            )
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout en WSFEv1 {action}: {e}")
            raise AfipTransportError(f"Timeout en {action}: {e}", endpoint=self.url) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Error de conexión en WSFEv1 {action}: {e}")
            raise AfipTransportError(f"Error de conexión en {action}: {e}", endpoint=self.url) from e

        content = resp.content or b""
        if resp.status_code != 200 and b"Fault" not in content:
            logger.error(f"WSFEv1 {action} respondió HTTP {resp.status_code}")
            raise AfipTransportError(
                f"Error HTTP {resp.status_code} en {action}: {content[:500]!r}",
                endpoint=self.url,
                http_status=resp.status_code,
            )
        return content

    def _call(self, action: str, operation: Any) -> bytes:
        content = self._post(action, operation)
        self._check_auth_errors(action, content)
        return content

    def _check_auth_errors(self, action: str, content: bytes) -> None:
        """Errores 600/601: el ticket ya no sirve, se descarta del cache"""
        try:
            root = response_parser.parse_xml(content)
        except AfipException:
            # El parser específico de la operación reporta el error
            return
        errors = response_parser.parse_errors(root)
        if response_parser.has_auth_error(errors):
            logger.warning(f"WSFEv1 {action} rechazó el ticket: {errors[0].code} {errors[0].message}")
            self.broker.invalidate(self.service)

    def _ticket(self) -> AuthTicket:
        return self.broker.get_ticket(self.service)

    # ---------------------------------------------------------------------
    # Request builders
    # ---------------------------------------------------------------------
    def build_dummy_request(self) -> Any:
        return self._operation("FEDummy")

    def build_last_authorized_request(self, ticket: AuthTicket, invoice_type: int, sale_point: int) -> Any:
        op = self._operation("FECompUltimoAutorizado")
        self._auth(op, ticket)
        _sub(op, "PtoVta", int(sale_point))
        _sub(op, "CbteTipo", int(invoice_type))
        return op

    def build_cae_request(self, ticket: AuthTicket, request: InvoiceRequest) -> Any:
        """FECAESolicitar con un único comprobante (CantReg = 1)"""
        op = self._operation("FECAESolicitar")
        self._auth(op, ticket)
        fe_cae_req = _sub(op, "FeCAEReq")

        cab = _sub(fe_cae_req, "FeCabReq")
        _sub(cab, "CantReg", 1)
        _sub(cab, "PtoVta", request.sale_point)
        _sub(cab, "CbteTipo", request.invoice_type)

        det_req = _sub(fe_cae_req, "FeDetReq")
        det = _sub(det_req, "FECAEDetRequest")
        _sub(det, "Concepto", request.concept)
        _sub(det, "DocTipo", request.doc_type)
        _sub(det, "DocNro", request.doc_number)
        _sub(det, "CbteDesde", request.invoice_number)
        _sub(det, "CbteHasta", request.invoice_number)
        _sub(det, "CbteFch", request.invoice_date)
        _sub(det, "ImpTotal", _amount(request.total_amount))
        _sub(det, "ImpTotConc", _amount(request.untaxed_amount))
        _sub(det, "ImpNeto", _amount(request.net_amount))
        _sub(det, "ImpOpEx", _amount(request.exempt_amount))
        _sub(det, "ImpTrib", _amount(request.other_taxes_amount))
        _sub(det, "ImpIVA", _amount(request.tax_amount))

        if request.service_from is not None:
            _sub(det, "FchServDesde", request.service_from)
            _sub(det, "FchServHasta", request.service_to)
            _sub(det, "FchVtoPago", request.payment_due_date)

        _sub(det, "MonId", request.currency)
        _sub(det, "MonCotiz", _rate(request.exchange_rate))
        if request.receiver_vat_condition is not None:
            _sub(det, "CondicionIVAReceptorId", request.receiver_vat_condition)

        if request.associated_invoices:
            cbtes = _sub(det, "CbtesAsoc")
            for ref in request.associated_invoices:
                asoc = _sub(cbtes, "CbteAsoc")
                _sub(asoc, "Tipo", ref.tipo)
                _sub(asoc, "PtoVta", ref.pto_vta)
                _sub(asoc, "Nro", ref.nro)
                if ref.cuit:
                    _sub(asoc, "Cuit", ref.cuit)
                if ref.cbte_fch:
                    _sub(asoc, "CbteFch", ref.cbte_fch)

        if request.tributes:
            tributos = _sub(det, "Tributos")
            for tributo in request.tributes:
                trib = _sub(tributos, "Tributo")
                _sub(trib, "Id", tributo.id)
                _sub(trib, "Desc", tributo.desc)
                _sub(trib, "BaseImp", _amount(tributo.base_imp))
                _sub(trib, "Alic", _amount(tributo.alic))
                _sub(trib, "Importe", _amount(tributo.importe))

        if request.iva:
            iva = _sub(det, "Iva")
            for alicuota in request.iva:
                alic = _sub(iva, "AlicIva")
                _sub(alic, "Id", alicuota.id)
                _sub(alic, "BaseImp", _amount(alicuota.base_imp))
                _sub(alic, "Importe", _amount(alicuota.importe))

        return op

    def build_query_request(self, ticket: AuthTicket, invoice_type: int, sale_point: int, number: int) -> Any:
        op = self._operation("FECompConsultar")
        self._auth(op, ticket)
        req = _sub(op, "FeCompConsReq")
        _sub(req, "CbteTipo", int(invoice_type))
        _sub(req, "CbteNro", int(number))
        _sub(req, "PtoVta", int(sale_point))
        return op

    def build_sales_points_request(self, ticket: AuthTicket) -> Any:
        op = self._operation("FEParamGetPtosVenta")
        self._auth(op, ticket)
        return op

    # ---------------------------------------------------------------------
    # Operaciones
    # ---------------------------------------------------------------------
    def get_server_status(self) -> ServerStatus:
        """FEDummy: nunca lanza; ante cualquier falla devuelve todo en ERROR"""
        try:
            content = self._post("FEDummy", self.build_dummy_request())
            status = response_parser.parse_dummy_response(content)
        except (AfipException, ValueError) as e:
            logger.warning(f"FEDummy falló, servidores marcados como ERROR: {e}")
            return ServerStatus()
        logger.info(
            f"Estado WSFEv1: app={status.app_server} db={status.db_server} auth={status.auth_server}"
        )
        return status

    def get_last_authorized_number(self, invoice_type: int, sale_point: int) -> int:
        """
        FECompUltimoAutorizado: último número autorizado por AFIP para el par

        Raises:
            AfipAuthenticationError, AfipTransportError, AfipResponseError
        """
        op = self.build_last_authorized_request(self._ticket(), invoice_type, sale_point)
        content = self._call("FECompUltimoAutorizado", op)
        number = response_parser.parse_last_authorized_response(content)
        logger.info(f"Último comprobante autorizado tipo {invoice_type} PV {sale_point}: {number}")
        return number

    def authorize(self, request: InvoiceRequest) -> InvoiceResponse:
        """
        FECAESolicitar

        Un rechazo (Resultado = R) se devuelve normalmente; sólo fallas de
        transporte, parseo o credenciales lanzan excepción.

        Raises:
            AfipAuthenticationError: errores 600/601 sin detalle del comprobante
            AfipTransportError, AfipResponseError
        """
        op = self.build_cae_request(self._ticket(), request)
        content = self._call("FECAESolicitar", op)
        response = response_parser.parse_cae_response(content)
        response.raw_xml = response_parser.mask_credentials(content)

        # Ticket rechazado: AFIP no evaluó el comprobante, no es un rechazo de negocio
        if response_parser.has_auth_error(response.errors) and not response_parser.has_invoice_detail(content):
            codes = ", ".join(str(e.code) for e in response.errors)
            raise AfipAuthenticationError(
                f"FECAESolicitar rechazó el ticket de acceso ({codes}): {response.errors[0].message}",
                endpoint=self.url,
                code=str(response.errors[0].code),
            )

        if response.approved:
            logger.info(
                f"Comprobante {request.invoice_type}/{request.sale_point}/{request.invoice_number} "
                f"autorizado: resultado {response.result}, CAE vence {response.cae_expiration}"
            )
        else:
            logger.warning(
                f"Comprobante {request.invoice_type}/{request.sale_point}/{request.invoice_number} "
                f"rechazado: {[e.code for e in response.errors + response.observations]}"
            )
        return response

    def query_invoice(self, invoice_type: int, sale_point: int, number: int) -> Optional[InvoiceRecord]:
        """FECompConsultar: None si AFIP no tiene el comprobante"""
        op = self.build_query_request(self._ticket(), invoice_type, sale_point, number)
        content = self._call("FECompConsultar", op)
        record = response_parser.parse_query_response(content)
        if record is None:
            logger.info(f"Comprobante {invoice_type}/{sale_point}/{number} no encontrado en AFIP")
        return record

    def get_sales_points(self) -> List[SalesPoint]:
        op = self.build_sales_points_request(self._ticket())
        content = self._call("FEParamGetPtosVenta", op)
        return response_parser.parse_sales_points_response(content)

    def get_last_cae(self, invoice_type: int, sale_point: int) -> Optional[InvoiceRecord]:
        """Registro del último comprobante autorizado (None si todavía no hay)"""
        last = self.get_last_authorized_number(invoice_type, sale_point)
        if last == 0:
            return None
        return self.query_invoice(invoice_type, sale_point, last)

    def validate_cae(self, invoice_type: int, sale_point: int, number: int, cae: str) -> bool:
        """Verifica contra AFIP que el CAE corresponde al comprobante"""
        record = self.query_invoice(invoice_type, sale_point, number)
        return record is not None and record.cae == str(cae)
