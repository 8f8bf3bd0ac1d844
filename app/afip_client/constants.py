"""
Constantes de AFIP/ARCA para WSAA y WSFEv1

Fuente: tablas de parámetros de WSFEv1 (FEParamGetTiposCbte, FEParamGetTiposDoc,
FEParamGetTiposIva, FEParamGetTiposConcepto).
"""
from decimal import Decimal

# Namespaces
WSAA_NS = "http://wsaa.view.sua.dvadac.desein.afip.gov"
WSFE_NS = "http://ar.gov.afip.dif.FEV1/"
SOAP11_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP12_NS = "http://www.w3.org/2003/05/soap-envelope"

# Servicio de negocio por defecto para WSAA
WSFE_SERVICE = "wsfe"

# TTL pedido en el loginTicketRequest (segundos)
TOKEN_TTL = 12 * 60 * 60
# Un ticket con menos de este margen se considera vencido
TOKEN_REFRESH_MARGIN = 5 * 60

# Tipos de comprobante: (letra, clase de documento) -> código AFIP
INVOICE = "invoice"
DEBIT_NOTE = "debit_note"
CREDIT_NOTE = "credit_note"

INVOICE_TYPES = {
    ("A", INVOICE): 1,
    ("A", DEBIT_NOTE): 2,
    ("A", CREDIT_NOTE): 3,
    ("B", INVOICE): 6,
    ("B", DEBIT_NOTE): 7,
    ("B", CREDIT_NOTE): 8,
    ("C", INVOICE): 11,
    ("C", DEBIT_NOTE): 12,
    ("C", CREDIT_NOTE): 13,
}

# Los comprobantes E (exportación) van por WSFEX, no por WSFEv1
EXPORT_LETTER = "E"

INVOICE_TYPE_NAMES = {
    1: "FACTURA A",
    2: "NOTA DE DEBITO A",
    3: "NOTA DE CREDITO A",
    6: "FACTURA B",
    7: "NOTA DE DEBITO B",
    8: "NOTA DE CREDITO B",
    11: "FACTURA C",
    12: "NOTA DE DEBITO C",
    13: "NOTA DE CREDITO C",
}

# Tipos de documento del receptor
DOC_CUIT = 80
DOC_CUIL = 86
DOC_CDI = 87
DOC_LE = 89
DOC_LC = 90
DOC_CI_EXTRANJERA = 91
DOC_PASAPORTE = 94
DOC_DNI = 96
DOC_CONSUMIDOR_FINAL = 99

# Conceptos
CONCEPT_PRODUCTS = 1
CONCEPT_SERVICES = 2
CONCEPT_PRODUCTS_AND_SERVICES = 3
CONCEPTS = (CONCEPT_PRODUCTS, CONCEPT_SERVICES, CONCEPT_PRODUCTS_AND_SERVICES)

# Alícuotas de IVA: tasa (%) -> código AFIP
IVA_CODES = {
    Decimal("0"): 3,
    Decimal("2.5"): 9,
    Decimal("5"): 8,
    Decimal("10.5"): 4,
    Decimal("21"): 5,
    Decimal("27"): 6,
}
IVA_RATES = {code: rate for rate, code in IVA_CODES.items()}

# Monedas
CURRENCY_ARS = "PES"
CURRENCY_USD = "DOL"
CURRENCY_EUR = "060"

# Resultados de FECAESolicitar
RESULT_APPROVED = "A"
RESULT_REJECTED = "R"
RESULT_PARTIAL = "P"

# Errores de autenticación de WSFEv1 (token/sign vencido o inválido)
AUTH_ERROR_CODES = frozenset({600, 601})
# FECompConsultar: no existen datos para los parámetros enviados
NOT_FOUND_ERROR_CODE = 602

# Etiquetas para códigos frecuentes (los desconocidos se devuelven tal cual)
ERROR_CODES = {
    600: "ValidacionDeToken: no validaron las credenciales de token/sign",
    601: "CUIT representada no incluida en token",
    602: "Sin resultados / no existen datos para los parámetros enviados",
    10016: "Número de comprobante no correlativo con el último autorizado",
    10048: "Importe total no coincide con la suma de importes",
}

# Condición frente al IVA del receptor (CondicionIVAReceptorId, RG 5616)
VAT_CONDITION_RESPONSABLE_INSCRIPTO = 1
VAT_CONDITION_CONSUMIDOR_FINAL = 5
