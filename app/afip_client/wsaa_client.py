"""
Cliente WSAA (Web Service de Autenticación y Autorización)

Flujo:
1. Armar el loginTicketRequest (TRA) para el servicio de negocio
2. Firmarlo como CMS (PKCS#7 SignedData con contenido adjunto)
3. Enviar loginCms (SOAP 1.1) y leer token/sign/expirationTime del
   loginTicketResponse

Los tickets se cachean por (tenant, servicio) y se renuevan cuando les
quedan menos de TOKEN_REFRESH_MARGIN segundos.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

import requests
from lxml import etree
from requests import Session
from requests.adapters import HTTPAdapter
from zeep.transports import Transport

from .cms_signer import CmsSigner
from .config import AfipConfig
from .constants import SOAP11_NS, TOKEN_REFRESH_MARGIN, TOKEN_TTL, WSAA_NS, WSFE_SERVICE
from .exceptions import AfipAuthenticationError
from .formatters import parse_wsaa_datetime, to_wsaa_datetime
from .models import AuthTicket

logger = logging.getLogger(__name__)

TicketKey = Tuple[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketCache:
    """
    Cache en memoria de tickets de acceso, por (tenant, servicio)

    Cada clave tiene su propio lock para que un solo llamador renueve el
    ticket mientras los demás esperan el resultado.
    """

    def __init__(self):
        self._tickets: Dict[TicketKey, AuthTicket] = {}
        self._locks: Dict[TicketKey, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: TicketKey) -> Optional[AuthTicket]:
        return self._tickets.get(key)

    def put(self, key: TicketKey, ticket: AuthTicket) -> None:
        self._tickets[key] = ticket

    def invalidate(self, key: TicketKey) -> None:
        self._tickets.pop(key, None)

    def clear(self, tenant: Optional[str] = None) -> None:
        with self._guard:
            if tenant is None:
                self._tickets.clear()
                return
            for key in [k for k in self._tickets if k[0] == tenant]:
                del self._tickets[key]

    def lock_for(self, key: TicketKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._tickets)


class CredentialBroker:
    """Obtiene y cachea tickets de acceso WSAA para un tenant"""

    def __init__(
        self,
        config: AfipConfig,
        signer: Optional[CmsSigner] = None,
        cache: Optional[TicketCache] = None,
        transport: Optional[Transport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.tenant = config.tenant_id or "default"
        self.url = config.wsaa_url
        self.timeout = config.wsaa_timeout
        self.cache = cache if cache is not None else TicketCache()
        self.clock = clock or _utcnow
        self._signer = signer
        self.transport = transport or self._create_transport()

    def _create_transport(self) -> Transport:
        session = Session()
        session.verify = True
        session.mount("https://", HTTPAdapter())
        return Transport(session=session, timeout=self.timeout, operation_timeout=self.timeout)

    @property
    def signer(self) -> CmsSigner:
        # Se carga recién al primer login: el cache puede servir sin material de firma
        if self._signer is None:
            self._signer = CmsSigner.from_config(self.config)
        return self._signer

    # ---------------------------------------------------------------------
    # Cache
    # ---------------------------------------------------------------------
    def _key(self, service: str) -> TicketKey:
        return (self.tenant, service)

    def _is_fresh(self, ticket: Optional[AuthTicket]) -> bool:
        return ticket is not None and ticket.time_to_live(self.clock()) > TOKEN_REFRESH_MARGIN

    def get_ticket(self, service: str = WSFE_SERVICE) -> AuthTicket:
        """
        Devuelve un ticket válido, autenticando contra WSAA si hace falta

        Raises:
            AfipConfigurationError: material de firma ausente o ilegible
            AfipAuthenticationError: fallo de transporte, parseo o SOAP Fault
        """
        key = self._key(service)
        ticket = self.cache.get(key)
        if self._is_fresh(ticket):
            logger.debug(f"Ticket WSAA en cache para {key} (ttl={ticket.time_to_live(self.clock())}s)")
            return ticket

        with self.cache.lock_for(key):
            # Otro hilo pudo haberlo renovado mientras esperábamos
            ticket = self.cache.get(key)
            if self._is_fresh(ticket):
                return ticket

            ticket = self._authenticate(service)
            self.cache.put(key, ticket)
            return ticket

    def invalidate(self, service: str = WSFE_SERVICE) -> None:
        logger.info(f"Invalidando ticket WSAA de {self.tenant}/{service}")
        self.cache.invalidate(self._key(service))

    def clear_credentials(self, service: Optional[str] = None) -> None:
        """Fuerza re-autenticación (de un servicio o de todo el tenant)"""
        if service is None:
            self.cache.clear(self.tenant)
        else:
            self.cache.invalidate(self._key(service))

    def has_valid_credentials(self, service: str = WSFE_SERVICE) -> bool:
        return self._is_fresh(self.cache.get(self._key(service)))

    def time_to_live(self, service: str = WSFE_SERVICE) -> int:
        ticket = self.cache.get(self._key(service))
        if ticket is None:
            return 0
        return ticket.time_to_live(self.clock())

    # ---------------------------------------------------------------------
    # Login
    # ---------------------------------------------------------------------
    def create_tra(self, service: str = WSFE_SERVICE) -> bytes:
        """Arma el loginTicketRequest (TRA) para el servicio"""
        now = self.clock()
        root = etree.Element("loginTicketRequest", version="1.0")
        header = etree.SubElement(root, "header")
        etree.SubElement(header, "uniqueId").text = str(int(now.timestamp()))
        etree.SubElement(header, "generationTime").text = to_wsaa_datetime(now)
        etree.SubElement(header, "expirationTime").text = to_wsaa_datetime(now + timedelta(seconds=TOKEN_TTL))
        etree.SubElement(root, "service").text = service
        return etree.tostring(root, xml_declaration=True, encoding="UTF-8")

    def sign_tra(self, tra: bytes) -> str:
        """Firma el TRA y lo devuelve como CMS base64"""
        return self.signer.sign_base64(tra)

    def _build_login_envelope(self, cms_b64: str) -> bytes:
        envelope = etree.Element(f"{{{SOAP11_NS}}}Envelope", nsmap={"soapenv": SOAP11_NS, "wsaa": WSAA_NS})
        etree.SubElement(envelope, f"{{{SOAP11_NS}}}Header")
        body = etree.SubElement(envelope, f"{{{SOAP11_NS}}}Body")
        login = etree.SubElement(body, f"{{{WSAA_NS}}}loginCms")
        etree.SubElement(login, f"{{{WSAA_NS}}}in0").text = cms_b64
        return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8")

    def _authenticate(self, service: str) -> AuthTicket:
        logger.info(f"Autenticando contra WSAA ({self.config.env}) para {self.tenant}/{service}")
        tra = self.create_tra(service)
        cms_b64 = self.sign_tra(tra)
        envelope = self._build_login_envelope(cms_b64)

        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": '""',
        }
        try:
            resp = self.transport.session.post(
                self.url,
                data=envelope,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Error de conexión con WSAA: {e}")
            raise AfipAuthenticationError(f"Error de conexión con WSAA: {e}", endpoint=self.url) from e

        ticket = self.parse_login_response(resp.content, service, http_status=resp.status_code)
        logger.info(f"Ticket WSAA obtenido para {self.tenant}/{service}, vence {ticket.expiration_time.isoformat()}")
        return ticket

    def parse_login_response(self, content: bytes, service: str, http_status: int = 200) -> AuthTicket:
        """
        Extrae token, sign y expirationTime de la respuesta de loginCms

        loginCmsReturn trae el loginTicketResponse como XML escapado; se
        acepta también la variante con los elementos anidados.
        """
        try:
            root = etree.fromstring(content)
        except (etree.XMLSyntaxError, ValueError) as e:
            detail = f"HTTP {http_status}" if http_status != 200 else "XML inválido"
            raise AfipAuthenticationError(f"Respuesta WSAA ilegible ({detail}): {e}", endpoint=self.url) from e

        faults = root.xpath('//*[local-name()="Fault"]')
        if len(faults):
            code = faults[0].xpath('string(.//*[local-name()="faultcode"])').strip()
            reason = faults[0].xpath('string(.//*[local-name()="faultstring"])').strip()
            raise AfipAuthenticationError(
                f"WSAA rechazó el login: {reason or 'SOAP Fault'}", endpoint=self.url, code=code or None
            )
        if http_status != 200:
            raise AfipAuthenticationError(f"WSAA respondió HTTP {http_status}", endpoint=self.url)

        returns = root.xpath('//*[local-name()="loginCmsReturn"]')
        if not len(returns):
            raise AfipAuthenticationError("Respuesta WSAA sin loginCmsReturn", endpoint=self.url)

        ticket_root = returns[0]
        if not len(ticket_root):
            try:
                ticket_root = etree.fromstring((ticket_root.text or "").strip().encode("utf-8"))
            except etree.XMLSyntaxError as e:
                raise AfipAuthenticationError(f"loginTicketResponse inválido: {e}", endpoint=self.url) from e

        def find_text(name: str) -> Optional[str]:
            nodes = ticket_root.xpath('.//*[local-name()=$name]', name=name)
            if len(nodes) and nodes[0].text:
                return nodes[0].text.strip()
            return None

        token = find_text("token")
        sign = find_text("sign")
        expiration = find_text("expirationTime")
        if not token or not sign or not expiration:
            raise AfipAuthenticationError(
                "loginTicketResponse incompleto: faltan token, sign o expirationTime", endpoint=self.url
            )

        generation = find_text("generationTime")
        try:
            return AuthTicket(
                token=token,
                sign=sign,
                expiration_time=parse_wsaa_datetime(expiration),
                generation_time=parse_wsaa_datetime(generation) if generation else None,
                tenant=self.tenant,
                service=service,
            )
        except ValueError as e:
            raise AfipAuthenticationError(f"Fecha inválida en loginTicketResponse: {e}", endpoint=self.url) from e
