"""
Numeración de comprobantes

AFIP es la fuente de verdad: antes de cada envío se consulta
FECompUltimoAutorizado y se usa último + 1. Con cache_ttl > 0 se reutiliza
la última consulta durante unos segundos, entregando números consecutivos
bajo lock; cualquier envío que no termine en aprobación descarta la entrada
para que el próximo intento vuelva a consultar.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

NumberKey = Tuple[str, int, int]


@dataclass
class _Reservation:
    last_issued: int
    fetched_at: float


class NumberingCoordinator:
    """Decide el próximo número de comprobante por (tenant, tipo, punto de venta)"""

    def __init__(
        self,
        client,
        tenant: str = "default",
        cache_ttl: int = 0,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            client: Objeto con get_last_authorized_number(tipo, punto_venta)
            tenant: Tenant dueño de la numeración
            cache_ttl: Segundos de validez de la última consulta (0 = siempre consultar)
            clock: Reloj monotónico (inyectable para tests)
        """
        self.client = client
        self.tenant = tenant
        self.cache_ttl = max(0, int(cache_ttl or 0))
        self.clock = clock or time.monotonic
        self._reservations: Dict[NumberKey, _Reservation] = {}
        self._locks: Dict[NumberKey, threading.Lock] = {}
        self._guard = threading.Lock()

    def _key(self, invoice_type: int, sale_point: int) -> NumberKey:
        return (self.tenant, int(invoice_type), int(sale_point))

    def _lock_for(self, key: NumberKey) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def next_number(self, invoice_type: int, sale_point: int) -> int:
        """
        Próximo número a autorizar

        Raises:
            Las excepciones del cliente (AfipTransportError, AfipAuthenticationError, ...)
        """
        if self.cache_ttl == 0:
            return self.client.get_last_authorized_number(invoice_type, sale_point) + 1

        key = self._key(invoice_type, sale_point)
        with self._lock_for(key):
            reservation = self._reservations.get(key)
            now = self.clock()
            if reservation is not None and now - reservation.fetched_at < self.cache_ttl:
                reservation.last_issued += 1
                logger.debug(f"Número {reservation.last_issued} tomado del cache para {key}")
                return reservation.last_issued

            last = self.client.get_last_authorized_number(invoice_type, sale_point)
            self._reservations[key] = _Reservation(last_issued=last + 1, fetched_at=now)
            return last + 1

    def record_outcome(self, invoice_type: int, sale_point: int, number: int, confirmed: bool) -> None:
        """Registra el resultado de un envío; sin aprobación confirmada se descarta el cache"""
        if confirmed:
            return
        logger.info(
            f"Envío del número {number} (tipo {invoice_type}, PV {sale_point}) sin aprobación: "
            "se vuelve a consultar a AFIP en el próximo intento"
        )
        self.invalidate(invoice_type, sale_point)

    def invalidate(self, invoice_type: Optional[int] = None, sale_point: Optional[int] = None) -> None:
        with self._guard:
            if invoice_type is None or sale_point is None:
                self._reservations.clear()
                return
            self._reservations.pop(self._key(invoice_type, sale_point), None)
