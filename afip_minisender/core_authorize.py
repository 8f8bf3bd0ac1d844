"""
Orquestación de la autorización de un comprobante

REQUESTED -> AUTHENTICATED -> NUMBERED -> BUILT -> SUBMITTED
          -> APPROVED | PARTIALLY_APPROVED | REJECTED -> PERSISTED

- Venta con CAE (o ya aprobada en este proceso): AfipAlreadyAuthorizedError
  antes de cualquier llamada de red.
- Rechazo de AFIP: se persiste el detalle de errores y se devuelve
  success=False; la venta puede corregirse y reintentarse.
- Falla de transporte: no se persiste nada, se descarta el cache de
  numeración y la excepción se propaga al llamador.
"""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from app.afip_client.config import AfipConfig, get_afip_config
from app.afip_client.constants import RESULT_PARTIAL, WSFE_SERVICE
from app.afip_client.cuit_validator import validate_cuit
from app.afip_client.exceptions import (
    AfipAlreadyAuthorizedError,
    AfipException,
    AfipValidationError,
)
from app.afip_client.formatters import format_invoice_number
from app.afip_client.invoice_mapper import map_sale_to_request, resolve_invoice_type, validate_sale
from app.afip_client.models import (
    AfipMessage,
    AssociatedInvoiceRef,
    AuthorizationResult,
    InvoiceOutcome,
    InvoiceRecord,
    InvoiceRequest,
    InvoiceResponse,
    SaleItem,
    SaleSnapshot,
    ServerStatus,
    Tributo,
)
from app.afip_client.numbering import NumberingCoordinator
from app.afip_client.qr_generator import QRGenerator, QRGeneratorError
from app.afip_client.soap_client import WsfeClient
from app.afip_client.wsaa_client import CredentialBroker, TicketCache

logger = logging.getLogger(__name__)

PersistCallback = Callable[[str, InvoiceOutcome], None]

# Ventas aprobadas recordadas en memoria; el CAE del snapshot es la guarda durable
APPROVED_CACHE_SIZE = 10000


class AuthorizationState(str, Enum):
    REQUESTED = "requested"
    AUTHENTICATED = "authenticated"
    NUMBERED = "numbered"
    BUILT = "built"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    PARTIALLY_APPROVED = "partially_approved"
    REJECTED = "rejected"
    PERSISTED = "persisted"


class InvoiceOrchestrator:
    """Secuencia WSAA -> numeración -> mapeo -> FECAESolicitar -> persistencia"""

    def __init__(
        self,
        config: AfipConfig,
        client: Optional[WsfeClient] = None,
        broker: Optional[CredentialBroker] = None,
        numbering: Optional[NumberingCoordinator] = None,
        ticket_cache: Optional[TicketCache] = None,
        persist: Optional[PersistCallback] = None,
        approved_cache_size: int = APPROVED_CACHE_SIZE,
    ):
        self.config = config
        self.ticket_cache = ticket_cache if ticket_cache is not None else TicketCache()
        self.broker = broker or CredentialBroker(config, cache=self.ticket_cache)
        self.client = client or WsfeClient(config, self.broker)
        self.numbering = numbering or NumberingCoordinator(
            self.client,
            tenant=config.tenant_id,
            cache_ttl=config.numbering_cache_ttl,
        )
        self.persist = persist

        # Estado actual de las ventas en curso; se descarta al terminar
        self.states: Dict[str, AuthorizationState] = {}
        self._approved: "OrderedDict[str, str]" = OrderedDict()
        self.approved_cache_size = max(1, int(approved_cache_size))
        self._in_flight: set = set()
        self._lock = threading.Lock()
        self._qr: Optional[QRGenerator] = None

    @classmethod
    def from_env(cls, env: Optional[str] = None, persist: Optional[PersistCallback] = None) -> "InvoiceOrchestrator":
        config = get_afip_config(env)
        config.validate()
        return cls(config, persist=persist)

    def _transition(self, sale_id: str, state: AuthorizationState) -> None:
        self.states[sale_id] = state
        logger.debug(f"Venta {sale_id}: {state.value}")

    # ---------------------------------------------------------------------
    # Pre-flight
    # ---------------------------------------------------------------------
    def _check_tenant(self, sale: SaleSnapshot) -> None:
        # Credenciales, CUIT y numeración son los del tenant configurado
        if sale.tenant_id and str(sale.tenant_id) != self.config.tenant_id:
            raise AfipValidationError(
                f"La venta {sale.sale_id} pertenece al tenant {sale.tenant_id!r}, "
                f"este orquestador emite para {self.config.tenant_id!r}"
            )

    def _check_not_authorized(self, sale: SaleSnapshot) -> None:
        if sale.cae:
            raise AfipAlreadyAuthorizedError(sale.sale_id, sale.cae)
        with self._lock:
            cae = self._approved.get(sale.sale_id)
            if cae:
                raise AfipAlreadyAuthorizedError(sale.sale_id, cae)
            if sale.sale_id in self._in_flight:
                raise AfipValidationError(f"La venta {sale.sale_id} ya tiene una autorización en curso")
            self._in_flight.add(sale.sale_id)

    # ---------------------------------------------------------------------
    # Autorización
    # ---------------------------------------------------------------------
    def authorize_invoice(self, sale: SaleSnapshot) -> AuthorizationResult:
        """
        Autoriza la venta ante AFIP y persiste el resultado terminal

        Raises:
            AfipAlreadyAuthorizedError: la venta ya tiene CAE
            AfipValidationError: datos inválidos (antes de cualquier llamada de red)
            AfipAuthenticationError, AfipTransportError: fallas reintentables
        """
        self._check_tenant(sale)
        self._check_not_authorized(sale)
        try:
            return self._authorize(sale)
        finally:
            with self._lock:
                self._in_flight.discard(sale.sale_id)
                self.states.pop(sale.sale_id, None)

    def _remember_approved(self, sale_id: str, cae: str) -> None:
        with self._lock:
            self._approved[sale_id] = cae
            self._approved.move_to_end(sale_id)
            while len(self._approved) > self.approved_cache_size:
                self._approved.popitem(last=False)

    def _authorize(self, sale: SaleSnapshot) -> AuthorizationResult:
        validate_sale(sale)
        invoice_type = resolve_invoice_type(sale.invoice_type, sale.document_kind)
        sale_point = int(sale.sale_point or self.config.sale_point)
        self._transition(sale.sale_id, AuthorizationState.REQUESTED)
        logger.info(f"Autorizando venta {sale.sale_id}: tipo {invoice_type}, PV {sale_point}")

        number: Optional[int] = None
        try:
            self.broker.get_ticket(WSFE_SERVICE)
            self._transition(sale.sale_id, AuthorizationState.AUTHENTICATED)

            number = self.numbering.next_number(invoice_type, sale_point)
            self._transition(sale.sale_id, AuthorizationState.NUMBERED)

            request = map_sale_to_request(sale, sale_point, number)
            self._transition(sale.sale_id, AuthorizationState.BUILT)

            response = self.client.authorize(request)
            self._transition(sale.sale_id, AuthorizationState.SUBMITTED)
        except AfipException as e:
            # Un timeout pudo consumir el número del lado de AFIP
            self.numbering.invalidate(invoice_type, sale_point)
            logger.error(f"Venta {sale.sale_id} sin resultado de AFIP (número {number}): {e}")
            raise

        if response.approved:
            return self._on_approved(sale, request, response)
        return self._on_rejected(sale, request, response)

    def _on_approved(
        self, sale: SaleSnapshot, request: InvoiceRequest, response: InvoiceResponse
    ) -> AuthorizationResult:
        state = (
            AuthorizationState.PARTIALLY_APPROVED
            if response.result == RESULT_PARTIAL
            else AuthorizationState.APPROVED
        )
        self._transition(sale.sale_id, state)
        self.numbering.record_outcome(request.invoice_type, request.sale_point, request.invoice_number, True)

        number = response.invoice_number or request.invoice_number
        formatted = format_invoice_number(request.sale_point, number)
        qr_url = self._build_qr(request, response, number)

        self._remember_approved(sale.sale_id, response.cae)

        outcome = InvoiceOutcome(
            sale_id=sale.sale_id,
            approved=True,
            formatted_invoice_number=formatted,
            invoice_type=request.invoice_type,
            sale_point=request.sale_point,
            invoice_number=number,
            cae=response.cae,
            cae_expiration=response.cae_expiration,
            qr_url=qr_url,
            observations=list(response.observations),
        )
        self._persist(outcome)

        if response.observations:
            logger.warning(
                f"Venta {sale.sale_id} aprobada con observaciones: {[o.code for o in response.observations]}"
            )
        logger.info(f"Venta {sale.sale_id} autorizada como {formatted}")

        return AuthorizationResult(
            success=True,
            result=response.result,
            cae=response.cae,
            cae_expiration=response.cae_expiration,
            formatted_invoice_number=formatted,
            invoice_number=number,
            qr_url=qr_url,
            observations=list(response.observations),
            events=list(response.events),
        )

    def _on_rejected(
        self, sale: SaleSnapshot, request: InvoiceRequest, response: InvoiceResponse
    ) -> AuthorizationResult:
        self._transition(sale.sale_id, AuthorizationState.REJECTED)
        self.numbering.record_outcome(request.invoice_type, request.sale_point, request.invoice_number, False)

        # Sin Errors, los motivos del rechazo vienen como Observaciones
        errors: List[AfipMessage] = list(response.errors) or list(response.observations)
        outcome = InvoiceOutcome(
            sale_id=sale.sale_id,
            approved=False,
            invoice_type=request.invoice_type,
            sale_point=request.sale_point,
            invoice_number=request.invoice_number,
            errors=errors,
            observations=list(response.observations),
        )
        self._persist(outcome)
        logger.warning(
            f"Venta {sale.sale_id} rechazada por AFIP: "
            + "; ".join(f"[{e.code}] {e.message}" for e in errors)
        )

        return AuthorizationResult(
            success=False,
            result=response.result,
            invoice_number=request.invoice_number,
            errors=errors,
            observations=list(response.observations),
            events=list(response.events),
        )

    def _persist(self, outcome: InvoiceOutcome) -> None:
        if self.persist is not None:
            try:
                self.persist(outcome.sale_id, outcome)
            except Exception:
                logger.error(
                    f"No se pudo persistir el resultado de la venta {outcome.sale_id} "
                    f"(CAE {outcome.cae}, comprobante {outcome.formatted_invoice_number})"
                )
                raise
        self._transition(outcome.sale_id, AuthorizationState.PERSISTED)

    def _build_qr(self, request: InvoiceRequest, response: InvoiceResponse, number: int) -> Optional[str]:
        try:
            if self._qr is None:
                self._qr = QRGenerator(self.config.cuit or "")
            return self._qr.generate(
                sale_point=request.sale_point,
                invoice_type=request.invoice_type,
                invoice_number=number,
                invoice_date=response.invoice_date or request.invoice_date,
                total=request.total_amount,
                cae=response.cae,
                currency=request.currency,
                exchange_rate=request.exchange_rate,
                doc_type=request.doc_type,
                doc_number=request.doc_number,
            )
        except QRGeneratorError as e:
            logger.warning(f"No se pudo generar el QR del comprobante {number}: {e}")
            return None

    # ---------------------------------------------------------------------
    # Consultas
    # ---------------------------------------------------------------------
    def reconcile_invoice(self, invoice_type: int, sale_point: int, number: int) -> Optional[InvoiceRecord]:
        """Registro canónico de AFIP para un comprobante ya emitido"""
        return self.client.query_invoice(invoice_type, sale_point, number)

    def last_authorized_number(self, invoice_type: int, sale_point: Optional[int] = None) -> int:
        return self.client.get_last_authorized_number(invoice_type, int(sale_point or self.config.sale_point))

    def server_status(self) -> ServerStatus:
        return self.client.get_server_status()

    def clear_credentials(self) -> None:
        self.broker.clear_credentials()
        self.numbering.invalidate()


# -------------------------------------------------------------------------
# Frontera con el resto de la aplicación
# -------------------------------------------------------------------------
def _decimal(value: Any, default: str = "0") -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal(default)


def snapshot_from_dict(data: Dict[str, Any]) -> SaleSnapshot:
    """Construye un SaleSnapshot desde un dict plano (importes en centavos)"""
    try:
        items = [
            SaleItem(
                description=str(item.get("description", "")),
                quantity=_decimal(item.get("quantity"), "1"),
                unit_price=int(item["unit_price"]),
                tax_rate=_decimal(item.get("tax_rate"), "21"),
                total=int(item["total"]),
            )
            for item in data.get("items") or []
        ]
        tributes = [
            Tributo(
                id=int(t["id"]),
                desc=str(t.get("desc", "")),
                base_imp=_decimal(t.get("base_imp")),
                alic=_decimal(t.get("alic")),
                importe=_decimal(t.get("importe")),
            )
            for t in data.get("tributes") or []
        ]
        associated = data.get("associated_invoice")
        return SaleSnapshot(
            sale_id=str(data["sale_id"]),
            invoice_type=str(data["invoice_type"]),
            subtotal=int(data["subtotal"]),
            tax=int(data["tax"]),
            total=int(data["total"]),
            items=items,
            document_kind=data.get("document_kind", "invoice"),
            concept=int(data.get("concept", 1)),
            customer_cuit=data.get("customer_cuit"),
            customer_document_type=data.get("customer_document_type"),
            customer_document_number=data.get("customer_document_number"),
            customer_name=data.get("customer_name"),
            customer_vat_condition=data.get("customer_vat_condition"),
            exempt=int(data.get("exempt", 0)),
            untaxed=int(data.get("untaxed", 0)),
            tributes=tributes,
            currency=data.get("currency", "PES"),
            exchange_rate=_decimal(data.get("exchange_rate"), "1"),
            sale_point=data.get("sale_point"),
            tenant_id=data.get("tenant_id"),
            invoice_date=data.get("invoice_date"),
            service_from=data.get("service_from"),
            service_to=data.get("service_to"),
            payment_due_date=data.get("payment_due_date"),
            associated_invoice=AssociatedInvoiceRef(**associated) if associated else None,
            cae=data.get("cae"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise AfipValidationError(f"Venta inválida: {e}") from e


_default_orchestrator: Optional[InvoiceOrchestrator] = None
_default_lock = threading.Lock()


def get_default_orchestrator() -> InvoiceOrchestrator:
    """Orquestador configurado desde el entorno, compartido por el proceso"""
    global _default_orchestrator
    with _default_lock:
        if _default_orchestrator is None:
            _default_orchestrator = InvoiceOrchestrator.from_env()
        return _default_orchestrator


def authorize_invoice(sale, orchestrator: Optional[InvoiceOrchestrator] = None) -> Dict[str, Any]:
    """
    Autoriza una venta y devuelve un dict plano

    Args:
        sale: SaleSnapshot o dict con los mismos campos
        orchestrator: Instancia a usar (por defecto la configurada desde el entorno)

    Returns:
        {success, result, cae, cae_expiration, formatted_invoice_number,
         invoice_number, qr_url, errors, observations, events}
    """
    if isinstance(sale, dict):
        sale = snapshot_from_dict(sale)
    orchestrator = orchestrator or get_default_orchestrator()
    return orchestrator.authorize_invoice(sale).to_dict()


def validate_tax_id(value: str) -> bool:
    return validate_cuit(value)
