"""
Configuración para cliente AFIP (WSAA + WSFEv1)
"""
import os
from typing import Optional

from dotenv import load_dotenv

from .cuit_validator import clean_cuit, validate_cuit
from .exceptions import AfipConfigurationError
from .formatters import MAX_SALE_POINT

load_dotenv()


class AfipConfig:
    """Configuración del cliente AFIP por ambiente"""

    ENV_TEST = "test"
    ENV_PROD = "prod"

    # Homologación / producción según manuales de WSAA y WSFEv1
    WSAA_URLS = {
        "test": "https://wsaahomo.afip.gov.ar/ws/services/LoginCms",
        "prod": "https://wsaa.afip.gov.ar/ws/services/LoginCms",
    }
    WSFE_URLS = {
        "test": "https://wswhomo.afip.gov.ar/wsfev1/service.asmx",
        "prod": "https://servicios1.afip.gov.ar/wsfev1/service.asmx",
    }

    SOAP_VERSIONS = ("1.1", "1.2")

    def __init__(self, env: str = ENV_TEST):
        """
        Inicializa la configuración AFIP

        Args:
            env: Ambiente ('test' o 'prod')
        """
        if env not in [self.ENV_TEST, self.ENV_PROD]:
            raise AfipConfigurationError(f"Ambiente inválido: {env}. Debe ser 'test' o 'prod'")

        self.env = env
        self.wsaa_url = self.WSAA_URLS[env]
        self.wsfe_url = self.WSFE_URLS[env]

        self.cuit: Optional[str] = None
        self.sale_point: int = 1
        self.tenant_id: str = "default"

        # Material de firma: PEM (cert + key) o PKCS#12
        self.cert_path: Optional[str] = None
        self.key_path: Optional[str] = None
        self.p12_path: Optional[str] = None
        self.p12_password: Optional[str] = None

        # Timeouts (segundos)
        self.wsaa_timeout = 30
        self.wsfe_read_timeout = 60
        self.wsfe_connect_timeout = 15

        self.soap_version = "1.1"
        self.numbering_cache_ttl = 0

    @property
    def is_production(self) -> bool:
        return self.env == self.ENV_PROD

    @property
    def uses_p12(self) -> bool:
        return bool(self.p12_path) and not (self.cert_path and self.key_path)

    def validate(self) -> None:
        """
        Verifica que la configuración alcance para operar contra AFIP

        Raises:
            AfipConfigurationError: con el detalle de qué corregir
        """
        if not self.cuit or not validate_cuit(self.cuit):
            raise AfipConfigurationError(
                f"AFIP_CUIT inválido o ausente: {self.cuit!r}. "
                "Configure el CUIT del emisor (11 dígitos con verificador correcto)"
            )
        if not 1 <= int(self.sale_point) <= MAX_SALE_POINT:
            raise AfipConfigurationError(
                f"AFIP_PUNTO_VENTA fuera de rango: {self.sale_point}. Debe estar entre 1 y {MAX_SALE_POINT}"
            )
        if self.soap_version not in self.SOAP_VERSIONS:
            raise AfipConfigurationError(
                f"AFIP_SOAP_VERSION no soportada: {self.soap_version}. Use '1.1' o '1.2'"
            )

        if self.cert_path and self.key_path:
            paths = [self.cert_path, self.key_path]
        elif self.p12_path:
            paths = [self.p12_path]
        else:
            raise AfipConfigurationError(
                "Falta material de firma: configure AFIP_CERT_PATH + AFIP_KEY_PATH "
                "o AFIP_P12_PATH + AFIP_P12_PASSWORD"
            )
        for path in paths:
            if not os.path.exists(path):
                raise AfipConfigurationError(f"Archivo de certificado no encontrado: {path}")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise AfipConfigurationError(f"{name} debe ser un entero, recibido: {raw!r}") from e


def get_afip_config(env: Optional[str] = None) -> AfipConfig:
    """
    Obtiene la configuración AFIP desde variables de entorno

    Args:
        env: Ambiente ('test' o 'prod'). Si None, usa AFIP_ENV

    Returns:
        Configuración AFIP (sin validar; llamar a validate() antes de usar la red)
    """
    if env is None:
        env = os.getenv("AFIP_ENV", AfipConfig.ENV_TEST)

    cfg = AfipConfig(env)

    cuit = os.getenv("AFIP_CUIT")
    cfg.cuit = clean_cuit(cuit) if cuit else None
    cfg.sale_point = _int_env("AFIP_PUNTO_VENTA", 1)
    cfg.tenant_id = os.getenv("AFIP_TENANT_ID") or "default"

    cfg.cert_path = os.getenv("AFIP_CERT_PATH")
    cfg.key_path = os.getenv("AFIP_KEY_PATH")
    cfg.p12_path = os.getenv("AFIP_P12_PATH")
    cfg.p12_password = os.getenv("AFIP_P12_PASSWORD")

    cfg.wsaa_timeout = _int_env("AFIP_WSAA_TIMEOUT", cfg.wsaa_timeout)
    cfg.wsfe_read_timeout = _int_env("AFIP_WSFE_TIMEOUT_READ", cfg.wsfe_read_timeout)
    cfg.wsfe_connect_timeout = _int_env("AFIP_WSFE_TIMEOUT_CONNECT", cfg.wsfe_connect_timeout)

    # Overrides de endpoint (proxies, mocks locales)
    cfg.wsaa_url = os.getenv("AFIP_WSAA_URL") or cfg.wsaa_url
    cfg.wsfe_url = os.getenv("AFIP_WSFE_URL") or cfg.wsfe_url

    cfg.soap_version = os.getenv("AFIP_SOAP_VERSION", cfg.soap_version)
    cfg.numbering_cache_ttl = _int_env("AFIP_NUMBERING_CACHE_TTL", 0)

    return cfg
