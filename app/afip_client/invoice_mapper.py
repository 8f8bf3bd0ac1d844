"""
Mapeo de una venta (SaleSnapshot) al request de FECAESolicitar

- Documento del receptor según la letra del comprobante
- IVA agrupado por alícuota (AFIP exige AlicIva agregadas, no por línea)
- Fechas de servicio sólo para conceptos 2 y 3
- Comprobante asociado obligatorio para notas de crédito/débito
"""
import logging
from collections import OrderedDict
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple, Union

from .constants import (
    CONCEPT_PRODUCTS,
    CONCEPTS,
    CREDIT_NOTE,
    CURRENCY_ARS,
    DEBIT_NOTE,
    DOC_CONSUMIDOR_FINAL,
    DOC_CUIT,
    EXPORT_LETTER,
    INVOICE_TYPES,
    IVA_CODES,
    VAT_CONDITION_CONSUMIDOR_FINAL,
    VAT_CONDITION_RESPONSABLE_INSCRIPTO,
)
from .cuit_validator import clean_cuit, validate_amounts, validate_cuit
from .exceptions import AfipValidationError
from .formatters import cents_to_decimal, decimal_to_cents, to_afip_date
from .models import (
    AlicuotaIva,
    ComprobanteAsociado,
    InvoiceRequest,
    SaleItem,
    SaleSnapshot,
)

logger = logging.getLogger(__name__)

RateLike = Union[int, float, str, Decimal]


def _rate(value: RateLike) -> Decimal:
    return Decimal(str(value))


def calculate_iva(net_cents: int, rate: RateLike) -> int:
    """IVA en centavos para un neto en centavos"""
    return int((Decimal(net_cents) * _rate(rate) / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_net_from_gross(gross_cents: int, rate: RateLike) -> int:
    """Neto en centavos a partir de un importe con IVA incluido"""
    divisor = 1 + _rate(rate) / 100
    return int((Decimal(gross_cents) / divisor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def resolve_invoice_type(letter: str, document_kind: str) -> int:
    """(letra, clase) -> código de comprobante AFIP"""
    if (letter or "").upper() == EXPORT_LETTER:
        raise AfipValidationError(
            "Comprobantes E (exportación) no soportados: se autorizan por WSFEX, no por WSFEv1"
        )
    code = INVOICE_TYPES.get(((letter or "").upper(), document_kind))
    if code is None:
        raise AfipValidationError(
            f"Tipo de comprobante no soportado: letra={letter!r}, clase={document_kind!r}"
        )
    return code


def iva_code_for_rate(rate: RateLike) -> int:
    code = IVA_CODES.get(_rate(rate))
    if code is None:
        raise AfipValidationError(
            f"Alícuota de IVA no soportada: {rate}%. Válidas: 0, 2.5, 5, 10.5, 21, 27"
        )
    return code


def resolve_document(sale: SaleSnapshot) -> Tuple[int, int]:
    """
    Tipo y número de documento del receptor

    - A: exige CUIT válido
    - B/C: CUIT (validado), documento genérico o consumidor final (99, 0)
    """
    letter = (sale.invoice_type or "").upper()
    cuit = clean_cuit(sale.customer_cuit) if sale.customer_cuit else ""

    if letter == "A":
        if not cuit or not validate_cuit(cuit):
            raise AfipValidationError(
                f"Factura A requiere CUIT válido del receptor (recibido: {sale.customer_cuit!r})"
            )
        return DOC_CUIT, int(cuit)

    if cuit:
        if not validate_cuit(cuit):
            raise AfipValidationError(f"CUIT del receptor inválido: {sale.customer_cuit!r}")
        return DOC_CUIT, int(cuit)

    if sale.customer_document_type and sale.customer_document_number:
        number = "".join(ch for ch in str(sale.customer_document_number) if ch.isascii() and ch.isdigit())
        if not number:
            raise AfipValidationError(
                f"Número de documento inválido: {sale.customer_document_number!r}"
            )
        return int(sale.customer_document_type), int(number)

    return DOC_CONSUMIDOR_FINAL, 0


def resolve_vat_condition(sale: SaleSnapshot, doc_type: int) -> Optional[int]:
    """Condición IVA del receptor: explícita, o deducible para A y consumidor final"""
    if sale.customer_vat_condition is not None:
        return int(sale.customer_vat_condition)
    if (sale.invoice_type or "").upper() == "A":
        return VAT_CONDITION_RESPONSABLE_INSCRIPTO
    if doc_type == DOC_CONSUMIDOR_FINAL:
        return VAT_CONDITION_CONSUMIDOR_FINAL
    return None


def _item_base(item: SaleItem) -> int:
    quantity = Decimal(str(item.quantity))
    return int((quantity * Decimal(item.unit_price)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _group_items(items: List[SaleItem]) -> "OrderedDict[Decimal, List[int]]":
    groups: "OrderedDict[Decimal, List[int]]" = OrderedDict()
    for item in items:
        rate = _rate(item.tax_rate)
        iva_code_for_rate(rate)
        base = _item_base(item)
        tax = int(item.total) - base
        if tax < 0:
            raise AfipValidationError(
                f"Ítem {item.description!r}: total {item.total} menor que el neto {base}"
            )
        expected = calculate_iva(base, rate)
        if abs(tax - expected) > 1:
            raise AfipValidationError(
                f"Ítem {item.description!r}: IVA {tax} no corresponde a la alícuota {rate}% sobre el neto {base} "
                f"(esperado {expected}, centavos)"
            )
        acc = groups.setdefault(rate, [0, 0])
        acc[0] += base
        acc[1] += tax
    return groups


def _infer_rate(subtotal: int, tax: int) -> Decimal:
    """Alícuota única que explica tax/subtotal (tolerancia de 1 centavo)"""
    best = min(IVA_CODES, key=lambda r: abs(calculate_iva(subtotal, r) - tax))
    if abs(calculate_iva(subtotal, best) - tax) <= 1:
        return best
    raise AfipValidationError(
        f"El IVA {tax} no corresponde a ninguna alícuota sobre el neto {subtotal} (centavos)"
    )


def group_iva(sale: SaleSnapshot) -> List[AlicuotaIva]:
    """
    Agrupa el IVA por alícuota (importes en pesos, 2 decimales)

    Sin ítems se deriva un único grupo a partir de subtotal/tax.
    """
    if sale.items:
        groups = _group_items(sale.items)
    elif sale.subtotal == 0 and sale.tax == 0:
        return []
    else:
        rate = _infer_rate(sale.subtotal, sale.tax)
        groups = OrderedDict([(rate, [sale.subtotal, sale.tax])])

    return [
        AlicuotaIva(
            id=IVA_CODES[rate],
            base_imp=cents_to_decimal(base),
            importe=cents_to_decimal(tax),
        )
        for rate, (base, tax) in groups.items()
    ]


def _tributes_cents(sale: SaleSnapshot) -> int:
    return sum(decimal_to_cents(t.importe) for t in sale.tributes)


def validate_sale(sale: SaleSnapshot) -> None:
    """
    Validaciones previas a cualquier llamada de red

    Raises:
        AfipValidationError
    """
    if not sale.sale_id:
        raise AfipValidationError("La venta no tiene identificador")
    resolve_invoice_type(sale.invoice_type, sale.document_kind)
    if sale.concept not in CONCEPTS:
        raise AfipValidationError(f"Concepto inválido: {sale.concept}. Válidos: 1, 2, 3")
    if sale.total <= 0:
        raise AfipValidationError(f"El total de la venta debe ser positivo: {sale.total}")
    if min(sale.subtotal, sale.tax, sale.exempt, sale.untaxed) < 0:
        raise AfipValidationError("Los importes de la venta no pueden ser negativos")

    if not validate_amounts(
        sale.subtotal,
        sale.tax,
        sale.exempt,
        sale.untaxed + _tributes_cents(sale),
        sale.total,
    ):
        raise AfipValidationError(
            f"Importes inconsistentes: neto {sale.subtotal} + IVA {sale.tax} + exento {sale.exempt} "
            f"+ no gravado {sale.untaxed} + tributos {_tributes_cents(sale)} != total {sale.total}"
        )

    if sale.document_kind in (CREDIT_NOTE, DEBIT_NOTE) and sale.associated_invoice is None:
        raise AfipValidationError("Las notas de crédito/débito requieren el comprobante asociado")

    resolve_document(sale)


def map_sale_to_request(
    sale: SaleSnapshot,
    sale_point: int,
    invoice_number: int,
    invoice_date: Optional[str] = None,
) -> InvoiceRequest:
    """
    Construye el InvoiceRequest de FECAESolicitar para una venta

    Args:
        sale: Foto de la venta (importes en centavos)
        sale_point: Punto de venta
        invoice_number: Número a autorizar (último autorizado + 1)
        invoice_date: YYYYMMDD; por defecto la fecha de la venta u hoy

    Returns:
        InvoiceRequest listo para serializar
    """
    validate_sale(sale)

    invoice_type = resolve_invoice_type(sale.invoice_type, sale.document_kind)
    doc_type, doc_number = resolve_document(sale)
    date = invoice_date or sale.invoice_date or to_afip_date()
    tributes = list(sale.tributes)
    other_taxes = sum((t.importe for t in tributes), Decimal("0.00"))

    if (sale.invoice_type or "").upper() == "C":
        # Emisor no inscripto en IVA: todo va como neto, sin discriminar
        iva: List[AlicuotaIva] = []
        net = cents_to_decimal(sale.subtotal + sale.tax + sale.exempt + sale.untaxed)
        tax = Decimal("0.00")
        exempt = Decimal("0.00")
        untaxed = Decimal("0.00")
    else:
        iva = group_iva(sale)
        if sale.items:
            net = sum((g.base_imp for g in iva), Decimal("0.00"))
            tax = sum((g.importe for g in iva), Decimal("0.00"))
        else:
            net = cents_to_decimal(sale.subtotal)
            tax = cents_to_decimal(sale.tax)
        exempt = cents_to_decimal(sale.exempt)
        untaxed = cents_to_decimal(sale.untaxed)

    # AFIP exige ImpTotal == suma exacta de componentes
    total = net + tax + exempt + untaxed + other_taxes
    if abs(decimal_to_cents(total) - sale.total) > max(1, len(sale.items)):
        raise AfipValidationError(
            f"Los ítems no cuadran con el total de la venta: {total} vs {cents_to_decimal(sale.total)}"
        )

    request = InvoiceRequest(
        concept=sale.concept,
        invoice_type=invoice_type,
        sale_point=int(sale_point),
        invoice_number=int(invoice_number),
        invoice_date=date,
        doc_type=doc_type,
        doc_number=doc_number,
        total_amount=total,
        net_amount=net,
        tax_amount=tax,
        exempt_amount=exempt,
        untaxed_amount=untaxed,
        other_taxes_amount=other_taxes,
        currency=sale.currency or CURRENCY_ARS,
        exchange_rate=Decimal("1") if (sale.currency or CURRENCY_ARS) == CURRENCY_ARS else Decimal(str(sale.exchange_rate)),
        receiver_vat_condition=resolve_vat_condition(sale, doc_type),
        iva=iva,
        tributes=tributes,
    )

    if sale.concept != CONCEPT_PRODUCTS:
        request.service_from = sale.service_from or date
        request.service_to = sale.service_to or date
        request.payment_due_date = sale.payment_due_date or date

    if sale.associated_invoice is not None:
        ref = sale.associated_invoice
        request.associated_invoices.append(
            ComprobanteAsociado(
                tipo=int(ref.invoice_type),
                pto_vta=int(ref.sale_point),
                nro=int(ref.number),
                cuit=clean_cuit(ref.cuit) if ref.cuit else None,
                cbte_fch=ref.invoice_date,
            )
        )

    logger.debug(
        f"Venta {sale.sale_id} mapeada: tipo {invoice_type}, doc {doc_type}/{doc_number}, "
        f"total {total}, {len(iva)} alícuota(s)"
    )
    return request
