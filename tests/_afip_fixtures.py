from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID
from lxml import etree

from app.afip_client.config import AfipConfig
from app.afip_client.models import AuthTicket

ISSUER_CUIT = "20409378472"
SOAP11 = "http://schemas.xmlsoap.org/soap/envelope/"
WSFE = "http://ar.gov.afip.dif.FEV1/"
WSAA = "http://wsaa.view.sua.dvadac.desein.afip.gov"


def make_config(**overrides) -> AfipConfig:
    cfg = AfipConfig("test")
    cfg.cuit = ISSUER_CUIT
    cfg.sale_point = 1
    cfg.tenant_id = "tenant-1"
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


def make_ticket(token: str = "TOKEN", sign: str = "SIGN", hours: int = 12) -> AuthTicket:
    return AuthTicket(
        token=token,
        sign=sign,
        expiration_time=datetime.now(timezone.utc) + timedelta(hours=hours),
        tenant="tenant-1",
        service="wsfe",
    )


def write_self_signed(tmp_path: Path, password: str = "secret") -> Dict[str, str]:
    """Certificado autofirmado descartable en PEM y PKCS#12"""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, "facturacion-test"),
        x509.NameAttribute(NameOID.SERIAL_NUMBER, f"CUIT {ISSUER_CUIT}"),
    ])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )

    cert_path = tmp_path / "cert.pem"
    key_path = tmp_path / "key.pem"
    p12_path = tmp_path / "cert.p12"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    p12_path.write_bytes(
        pkcs12.serialize_key_and_certificates(
            b"afip", key, cert, None, serialization.BestAvailableEncryption(password.encode())
        )
    )
    return {
        "cert_path": str(cert_path),
        "key_path": str(key_path),
        "p12_path": str(p12_path),
        "p12_password": password,
    }


def soap11(inner: str) -> bytes:
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<soap:Envelope xmlns:soap="{SOAP11}"><soap:Body>{inner}</soap:Body></soap:Envelope>'
    ).encode("utf-8")


def _messages(container: str, item: str, messages: List[Tuple[int, str]]) -> str:
    if not messages:
        return ""
    body = "".join(f"<{item}><Code>{c}</Code><Msg>{m}</Msg></{item}>" for c, m in messages)
    return f"<{container}>{body}</{container}>"


def login_response(token: str = "TOKEN-1", sign: str = "SIGN-1", expiration: Optional[datetime] = None) -> bytes:
    """loginCmsResponse con el loginTicketResponse escapado, como lo devuelve WSAA"""
    if expiration is None:
        expiration = datetime.now(timezone.utc) + timedelta(hours=12)
    ticket = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        '<loginTicketResponse version="1.0"><header>'
        "<source>CN=wsaahomo, O=AFIP, C=AR</source>"
        f"<destination>SERIALNUMBER=CUIT {ISSUER_CUIT}, CN=facturacion-test</destination>"
        "<uniqueId>123456</uniqueId>"
        f"<generationTime>{(expiration - timedelta(hours=12)).isoformat(timespec='milliseconds')}</generationTime>"
        f"<expirationTime>{expiration.isoformat(timespec='milliseconds')}</expirationTime>"
        "</header><credentials>"
        f"<token>{token}</token><sign>{sign}</sign>"
        "</credentials></loginTicketResponse>"
    )
    envelope = etree.Element(f"{{{SOAP11}}}Envelope", nsmap={"soapenv": SOAP11})
    body = etree.SubElement(envelope, f"{{{SOAP11}}}Body")
    resp = etree.SubElement(body, f"{{{WSAA}}}loginCmsResponse", nsmap={None: WSAA})
    etree.SubElement(resp, f"{{{WSAA}}}loginCmsReturn").text = ticket
    return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8")


def fault_response(faultstring: str, faultcode: str = "ns1:coe.alreadyAuthenticated") -> bytes:
    return soap11(
        f"<soap:Fault><faultcode>{faultcode}</faultcode>"
        f"<faultstring>{faultstring}</faultstring></soap:Fault>"
    )


def dummy_response(app: str = "OK", db: str = "OK", auth: str = "OK") -> bytes:
    return soap11(
        f'<FEDummyResponse xmlns="{WSFE}"><FEDummyResult>'
        f"<AppServer>{app}</AppServer><DbServer>{db}</DbServer><AuthServer>{auth}</AuthServer>"
        "</FEDummyResult></FEDummyResponse>"
    )


def last_authorized_response(
    number: int, invoice_type: int = 6, sale_point: int = 1, errors: Optional[List[Tuple[int, str]]] = None
) -> bytes:
    return soap11(
        f'<FECompUltimoAutorizadoResponse xmlns="{WSFE}"><FECompUltimoAutorizadoResult>'
        f"<PtoVta>{sale_point}</PtoVta><CbteTipo>{invoice_type}</CbteTipo><CbteNro>{number}</CbteNro>"
        f"{_messages('Errors', 'Err', errors or [])}"
        "</FECompUltimoAutorizadoResult></FECompUltimoAutorizadoResponse>"
    )


def cae_response(
    result: str = "A",
    cae: str = "12345678901234",
    number: int = 101,
    invoice_type: int = 6,
    sale_point: int = 1,
    invoice_date: str = "20261018",
    cae_expiration: str = "20261028",
    observations: Optional[List[Tuple[int, str]]] = None,
    errors: Optional[List[Tuple[int, str]]] = None,
    events: Optional[List[Tuple[int, str]]] = None,
    with_detail: bool = True,
) -> bytes:
    detail = ""
    if with_detail:
        detail = (
            "<FeDetResp><FECAEDetResponse>"
            "<Concepto>1</Concepto><DocTipo>99</DocTipo><DocNro>0</DocNro>"
            f"<CbteDesde>{number}</CbteDesde><CbteHasta>{number}</CbteHasta>"
            f"<CbteFch>{invoice_date}</CbteFch><Resultado>{result}</Resultado>"
            f"{_messages('Observaciones', 'Obs', observations or [])}"
            f"<CAE>{cae}</CAE><CAEFchVto>{cae_expiration}</CAEFchVto>"
            "</FECAEDetResponse></FeDetResp>"
        )
    return soap11(
        f'<FECAESolicitarResponse xmlns="{WSFE}"><FECAESolicitarResult>'
        f"<FeCabResp><Cuit>{ISSUER_CUIT}</Cuit><PtoVta>{sale_point}</PtoVta><CbteTipo>{invoice_type}</CbteTipo>"
        f"<FchProceso>20261018103000</FchProceso><CantReg>1</CantReg><Resultado>{result}</Resultado>"
        "<Reproceso>N</Reproceso></FeCabResp>"
        f"{detail}"
        f"{_messages('Events', 'Evt', events or [])}"
        f"{_messages('Errors', 'Err', errors or [])}"
        "</FECAESolicitarResult></FECAESolicitarResponse>"
    )


def query_response(
    number: int = 101,
    cae: str = "12345678901234",
    total: str = "1210.00",
    errors: Optional[List[Tuple[int, str]]] = None,
) -> bytes:
    result_get = ""
    if not errors:
        result_get = (
            "<ResultGet><Concepto>1</Concepto><DocTipo>99</DocTipo><DocNro>0</DocNro>"
            f"<CbteDesde>{number}</CbteDesde><CbteHasta>{number}</CbteHasta><CbteFch>20261018</CbteFch>"
            f"<ImpTotal>{total}</ImpTotal><ImpTotConc>0</ImpTotConc><ImpNeto>1000.00</ImpNeto>"
            "<ImpOpEx>0</ImpOpEx><ImpTrib>0</ImpTrib><ImpIVA>210.00</ImpIVA>"
            "<MonId>PES</MonId><MonCotiz>1</MonCotiz><Resultado>A</Resultado>"
            f"<CodAutorizacion>{cae}</CodAutorizacion><EmisionTipo>CAE</EmisionTipo>"
            "<FchVto>20261028</FchVto><FchProceso>20261018103000</FchProceso>"
            "<PtoVta>1</PtoVta><CbteTipo>6</CbteTipo></ResultGet>"
        )
    return soap11(
        f'<FECompConsultarResponse xmlns="{WSFE}"><FECompConsultarResult>'
        f"{result_get}{_messages('Errors', 'Err', errors or [])}"
        "</FECompConsultarResult></FECompConsultarResponse>"
    )


class _MockResponse:
    def __init__(self, *, status_code: int = 200, content: bytes = b"", headers: Optional[dict] = None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {"Content-Type": "text/xml; charset=utf-8"}


class _MockSession:
    """
    Sesión falsa: responde según la operación SOAP del request

    responses: {"FECAESolicitar": bytes | Exception | [bytes, ...], "loginCms": ...}
    """

    def __init__(self, responses: Optional[dict] = None, status_code: int = 200):
        self.responses = dict(responses or {})
        self.status_code = status_code
        self.posts: List[dict] = []

    @staticmethod
    def operation_of(headers: dict) -> str:
        action = headers.get("SOAPAction")
        if action is None:
            match = re.search(r'action="([^"]*)"', headers.get("Content-Type", ""))
            action = match.group(1) if match else ""
        action = action.strip('"')
        return action.rsplit("/", 1)[-1] if action else "loginCms"

    def calls(self, operation: str) -> List[dict]:
        return [p for p in self.posts if p["operation"] == operation]

    def post(self, url, data=None, headers=None, timeout=None, **kwargs):
        headers = headers or {}
        operation = self.operation_of(headers)
        self.posts.append(
            {"url": url, "data": data, "headers": headers, "timeout": timeout, "operation": operation}
        )
        answer = self.responses.get(operation)
        if isinstance(answer, list):
            answer = answer.pop(0)
        if isinstance(answer, Exception):
            raise answer
        if answer is None:
            raise AssertionError(f"Operación no esperada en el test: {operation}")
        return _MockResponse(status_code=self.status_code, content=answer)


class _FakeBroker:
    def __init__(self, ticket: Optional[AuthTicket] = None):
        self.ticket = ticket or make_ticket()
        self.get_calls = 0
        self.invalidated: List[str] = []
        self.cleared = 0

    def get_ticket(self, service: str = "wsfe") -> AuthTicket:
        self.get_calls += 1
        return self.ticket

    def invalidate(self, service: str = "wsfe") -> None:
        self.invalidated.append(service)

    def clear_credentials(self, service=None) -> None:
        self.cleared += 1
