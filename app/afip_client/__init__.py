"""
Módulo cliente para integración con AFIP/ARCA (Factura Electrónica)
Argentina - WSAA + WSFEv1
"""
from .config import AfipConfig, get_afip_config
from .cms_signer import CmsSigner
from .wsaa_client import CredentialBroker, TicketCache
from .soap_client import WsfeClient
from .numbering import NumberingCoordinator
from .qr_generator import QRGenerator, QRGeneratorError
from .cuit_validator import validate_cuit, format_cuit, clean_cuit
from .formatters import format_invoice_number, parse_invoice_number
from .exceptions import (
    AfipException,
    AfipConfigurationError,
    AfipValidationError,
    AfipAuthenticationError,
    AfipTransportError,
    AfipResponseError,
    AfipAlreadyAuthorizedError,
)

__all__ = [
    'AfipConfig',
    'get_afip_config',
    'CmsSigner',
    'CredentialBroker',
    'TicketCache',
    'WsfeClient',
    'NumberingCoordinator',
    'QRGenerator',
    'QRGeneratorError',
    'validate_cuit',
    'format_cuit',
    'clean_cuit',
    'format_invoice_number',
    'parse_invoice_number',
    'AfipException',
    'AfipConfigurationError',
    'AfipValidationError',
    'AfipAuthenticationError',
    'AfipTransportError',
    'AfipResponseError',
    'AfipAlreadyAuthorizedError',
]
