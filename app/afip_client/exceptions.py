"""
Excepciones personalizadas para el cliente AFIP

Los rechazos de negocio (Resultado = "R") NO son excepciones: se devuelven
como resultado normal con la lista de errores de AFIP.
"""
from typing import Optional


class AfipException(Exception):
    """Excepción base para errores AFIP"""
    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class AfipConfigurationError(AfipException):
    """Configuración inválida o material de firma ilegible (fatal, no reintentable)"""
    pass


class AfipValidationError(AfipException):
    """Datos de entrada inválidos (CUIT, importes, campos requeridos)"""
    pass


class AfipAuthenticationError(AfipException):
    """Fallo de transporte o de parseo contra WSAA (reintentable por el llamador)"""
    def __init__(self, message: str, endpoint: Optional[str] = None, code: Optional[str] = None):
        self.endpoint = endpoint
        if endpoint:
            message = f"{message} (endpoint: {endpoint})"
        super().__init__(message, code)


class AfipTransportError(AfipException):
    """Error de red, timeout o HTTP contra WSFEv1"""
    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        http_status: Optional[int] = None,
        code: Optional[str] = None,
    ):
        self.endpoint = endpoint
        self.http_status = http_status
        if endpoint:
            message = f"{message} (endpoint: {endpoint})"
        super().__init__(message, code)


class AfipResponseError(AfipTransportError):
    """Respuesta de AFIP que no se pudo interpretar (XML inválido, SOAP Fault)"""
    pass


class AfipAlreadyAuthorizedError(AfipException):
    """La venta ya tiene CAE; no se vuelve a autorizar"""
    def __init__(self, sale_id: str, cae: Optional[str] = None):
        self.sale_id = sale_id
        self.cae = cae
        message = f"La venta {sale_id} ya fue autorizada"
        if cae:
            message += f" (CAE {cae})"
        super().__init__(message, "ALREADY_AUTHORIZED")
