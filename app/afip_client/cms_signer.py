"""
Firma CMS/PKCS#7 del loginTicketRequest para WSAA

WSAA espera un SignedData con el contenido adjunto (no detached), firmado
con el certificado X.509 asociado al CUIT emisor, en DER y codificado base64.
"""
import base64
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs7, pkcs12

from .exceptions import AfipConfigurationError

logger = logging.getLogger(__name__)


class CmsSigner:
    """
    Firma documentos como CMS SignedData (SHA-256)

    Material de firma aceptado:
    - cert_path + key_path: certificado y clave privada PEM
    - p12_path + p12_password: bundle PKCS#12
    """

    def __init__(
        self,
        cert_path: Optional[str] = None,
        key_path: Optional[str] = None,
        p12_path: Optional[str] = None,
        p12_password: Optional[str] = None,
        key_password: Optional[str] = None,
    ):
        self.cert_path = cert_path
        self.key_path = key_path
        self.p12_path = p12_path
        self.p12_password = p12_password
        self.key_password = key_password
        self.additional_certificates = []

        if cert_path and key_path:
            self._load_pem()
        elif p12_path:
            self._load_p12()
        else:
            raise AfipConfigurationError(
                "Certificado no especificado. Configure AFIP_CERT_PATH + AFIP_KEY_PATH o AFIP_P12_PATH"
            )

        self._check_validity()

    @classmethod
    def from_config(cls, config) -> "CmsSigner":
        if config.cert_path and config.key_path:
            return cls(cert_path=config.cert_path, key_path=config.key_path)
        return cls(p12_path=config.p12_path, p12_password=config.p12_password)

    def _read(self, path: str) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise AfipConfigurationError(f"No se pudo leer el archivo de firma {path}: {e}") from e

    def _load_pem(self) -> None:
        """Carga certificado y clave privada desde archivos PEM separados"""
        cert_data = self._read(self.cert_path)
        key_data = self._read(self.key_path)
        try:
            self.certificate = x509.load_pem_x509_certificate(cert_data)
        except ValueError as e:
            raise AfipConfigurationError(f"Certificado PEM inválido ({self.cert_path}): {e}") from e
        try:
            password = self.key_password.encode() if self.key_password else None
            self.private_key = serialization.load_pem_private_key(key_data, password=password)
        except (ValueError, TypeError) as e:
            raise AfipConfigurationError(f"Clave privada PEM inválida ({self.key_path}): {e}") from e

    def _load_p12(self) -> None:
        """Carga certificado y clave privada desde un PKCS#12"""
        data = self._read(self.p12_path)
        try:
            private_key, certificate, additional = pkcs12.load_key_and_certificates(
                data,
                self.p12_password.encode() if self.p12_password else None,
            )
        except ValueError as e:
            raise AfipConfigurationError(f"Error al cargar PKCS#12 ({self.p12_path}): {e}") from e

        if private_key is None:
            raise AfipConfigurationError("No se pudo extraer la clave privada del PKCS#12")
        if certificate is None:
            raise AfipConfigurationError("No se pudo extraer el certificado del PKCS#12")

        self.private_key = private_key
        self.certificate = certificate
        self.additional_certificates = list(additional or [])

    def _check_validity(self) -> None:
        now = datetime.now(timezone.utc)
        not_after = self.certificate.not_valid_after_utc
        if not_after < now:
            logger.warning(f"El certificado de firma venció el {not_after.isoformat()}; WSAA lo rechazará")

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()

    def sign(self, content: Union[str, bytes]) -> bytes:
        """Devuelve el CMS SignedData en DER con el contenido adjunto"""
        if isinstance(content, str):
            content = content.encode("utf-8")

        builder = pkcs7.PKCS7SignatureBuilder().set_data(content).add_signer(
            self.certificate, self.private_key, hashes.SHA256()
        )
        for extra in self.additional_certificates:
            builder = builder.add_certificate(extra)
        return builder.sign(serialization.Encoding.DER, [])

    def sign_base64(self, content: Union[str, bytes]) -> str:
        """CMS en DER codificado base64, tal como lo recibe loginCms"""
        return base64.b64encode(self.sign(content)).decode("ascii")
