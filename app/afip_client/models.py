"""
Modelos de datos para AFIP (WSAA / WSFEv1)

Los modelos de wire (InvoiceRequest, InvoiceResponse, ...) reflejan los
campos de FECAESolicitar y FECompConsultar; los modelos de dominio
(SaleSnapshot, SaleItem) son lo único que el llamador necesita construir.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, List

from .constants import INVOICE, RESULT_APPROVED, RESULT_PARTIAL


@dataclass(frozen=True)
class AuthTicket:
    """Ticket de acceso (TA) emitido por WSAA"""
    token: str
    sign: str
    expiration_time: datetime
    tenant: str
    service: str
    generation_time: Optional[datetime] = None

    def time_to_live(self, now: Optional[datetime] = None) -> int:
        """Segundos restantes de validez (nunca negativo)"""
        if now is None:
            now = datetime.now(timezone.utc)
        return max(0, int((self.expiration_time - now).total_seconds()))


@dataclass
class AlicuotaIva:
    """Agrupación de IVA por alícuota (AlicIva)"""
    id: int
    base_imp: Decimal
    importe: Decimal


@dataclass
class Tributo:
    """Tributo adicional (percepciones, impuestos internos, etc.)"""
    id: int
    desc: str
    base_imp: Decimal
    alic: Decimal
    importe: Decimal


@dataclass
class ComprobanteAsociado:
    """Comprobante asociado (CbteAsoc) para notas de crédito/débito"""
    tipo: int
    pto_vta: int
    nro: int
    cuit: Optional[str] = None
    cbte_fch: Optional[str] = None


@dataclass
class InvoiceRequest:
    """Request de FECAESolicitar para un único comprobante"""
    concept: int
    invoice_type: int
    sale_point: int
    invoice_number: int
    invoice_date: str  # YYYYMMDD
    doc_type: int
    doc_number: int
    total_amount: Decimal
    net_amount: Decimal
    tax_amount: Decimal
    exempt_amount: Decimal = Decimal("0.00")
    untaxed_amount: Decimal = Decimal("0.00")
    other_taxes_amount: Decimal = Decimal("0.00")
    currency: str = "PES"
    exchange_rate: Decimal = Decimal("1")
    service_from: Optional[str] = None
    service_to: Optional[str] = None
    payment_due_date: Optional[str] = None
    receiver_vat_condition: Optional[int] = None
    iva: List[AlicuotaIva] = field(default_factory=list)
    tributes: List[Tributo] = field(default_factory=list)
    associated_invoices: List[ComprobanteAsociado] = field(default_factory=list)


@dataclass(frozen=True)
class AfipMessage:
    """Evento, observación o error devuelto por AFIP"""
    code: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


@dataclass
class InvoiceResponse:
    """Respuesta interpretada de FECAESolicitar"""
    result: str
    invoice_type: int = 0
    sale_point: int = 0
    invoice_number: int = 0
    invoice_date: str = ""
    cae: str = ""
    cae_expiration: str = ""
    process_date: str = ""
    events: List[AfipMessage] = field(default_factory=list)
    observations: List[AfipMessage] = field(default_factory=list)
    errors: List[AfipMessage] = field(default_factory=list)
    raw_xml: Optional[str] = None

    @property
    def approved(self) -> bool:
        """Aprobado (total o parcial) con CAE asignado"""
        return self.result in (RESULT_APPROVED, RESULT_PARTIAL) and bool(self.cae)


@dataclass
class InvoiceRecord:
    """Comprobante autorizado según FECompConsultar"""
    invoice_type: int
    sale_point: int
    invoice_number: int
    invoice_date: str
    total_amount: Decimal
    cae: str
    cae_expiration: str
    doc_type: int = 0
    doc_number: int = 0
    result: str = ""
    process_date: str = ""
    emission_type: str = ""
    observations: List[AfipMessage] = field(default_factory=list)


@dataclass
class ServerStatus:
    app_server: str = "ERROR"
    db_server: str = "ERROR"
    auth_server: str = "ERROR"

    @property
    def ok(self) -> bool:
        return self.app_server == self.db_server == self.auth_server == "OK"


@dataclass
class SalesPoint:
    number: int
    emission_type: str = ""
    blocked: bool = False
    drop_date: Optional[str] = None


@dataclass
class SaleItem:
    """Línea de venta; importes en centavos"""
    description: str
    quantity: Decimal
    unit_price: int  # neto, en centavos
    tax_rate: Decimal  # porcentaje: 0, 2.5, 5, 10.5, 21, 27
    total: int  # con IVA, en centavos


@dataclass
class AssociatedInvoiceRef:
    """Referencia del llamador al comprobante que ajusta una nota de crédito/débito"""
    invoice_type: int
    sale_point: int
    number: int
    cuit: Optional[str] = None
    invoice_date: Optional[str] = None


@dataclass
class SaleSnapshot:
    """
    Foto de la venta que entrega el llamador

    Los importes van en centavos. `cae` presente indica que la venta ya
    fue autorizada.
    """
    sale_id: str
    invoice_type: str  # 'A', 'B', 'C'
    subtotal: int
    tax: int
    total: int
    items: List[SaleItem] = field(default_factory=list)
    document_kind: str = INVOICE
    concept: int = 1
    customer_cuit: Optional[str] = None
    customer_document_type: Optional[int] = None
    customer_document_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_vat_condition: Optional[int] = None
    exempt: int = 0
    untaxed: int = 0
    tributes: List[Tributo] = field(default_factory=list)
    currency: str = "PES"
    exchange_rate: Decimal = Decimal("1")
    sale_point: Optional[int] = None
    tenant_id: Optional[str] = None
    invoice_date: Optional[str] = None
    service_from: Optional[str] = None
    service_to: Optional[str] = None
    payment_due_date: Optional[str] = None
    associated_invoice: Optional[AssociatedInvoiceRef] = None
    cae: Optional[str] = None


@dataclass
class InvoiceOutcome:
    """Resultado terminal que el llamador persiste en su venta"""
    sale_id: str
    approved: bool
    formatted_invoice_number: Optional[str] = None
    invoice_type: Optional[int] = None
    sale_point: Optional[int] = None
    invoice_number: Optional[int] = None
    cae: Optional[str] = None
    cae_expiration: Optional[str] = None
    qr_url: Optional[str] = None
    errors: List[AfipMessage] = field(default_factory=list)
    observations: List[AfipMessage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AuthorizationResult:
    """Resultado plano que devuelve authorize_invoice()"""
    success: bool
    result: Optional[str] = None
    cae: Optional[str] = None
    cae_expiration: Optional[str] = None
    formatted_invoice_number: Optional[str] = None
    invoice_number: Optional[int] = None
    qr_url: Optional[str] = None
    errors: List[AfipMessage] = field(default_factory=list)
    observations: List[AfipMessage] = field(default_factory=list)
    events: List[AfipMessage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": self.success,
            "result": self.result,
            "cae": self.cae,
            "cae_expiration": self.cae_expiration,
            "formatted_invoice_number": self.formatted_invoice_number,
            "invoice_number": self.invoice_number,
            "qr_url": self.qr_url,
            "errors": [m.to_dict() for m in self.errors],
            "observations": [m.to_dict() for m in self.observations],
            "events": [m.to_dict() for m in self.events],
        }
        return data
