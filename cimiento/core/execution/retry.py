"""
Llamadas a adapters con timeout por acción y reintentos acotados.

Solo se reintenta AdapterError(transient=True) (incluye ActionTimeout), con
backoff exponencial. Los fallos permanentes se propagan de inmediato.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from cimiento.core.errors import ActionTimeout, AdapterError, CimientoError
from cimiento.core.runtime.settings import ExecutionSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """Señal de cancelación compartida entre la CLI y el executor."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Duerme hasta `seconds`; devuelve True si se canceló mientras tanto."""
        return self._event.wait(seconds)


def call_with_timeout(fn: Callable[[], T], timeout: Optional[float], resource_id: str) -> T:
    """
    Ejecuta fn en un hilo auxiliar y espera como máximo `timeout` segundos.
    El hilo de una llamada vencida queda en segundo plano (daemon): el estado
    físico de ese recurso pasa a ser desconocido.
    """
    if not timeout:
        return fn()

    box: Dict[str, Any] = {}

    def target() -> None:
        try:
            box["value"] = fn()
        except BaseException as e:  # se relanza en el hilo llamador
            box["error"] = e

    worker = threading.Thread(target=target, name=f"cimiento-{resource_id}", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise ActionTimeout(f"La llamada al adapter superó el timeout de {timeout:g}s", resource_id=resource_id)
    if "error" in box:
        raise box["error"]
    return box["value"]


def call_with_retry(
    fn: Callable[[], T],
    settings: ExecutionSettings,
    resource_id: str,
    cancel: Optional[CancelToken] = None,
    operation: str = "apply",
) -> Tuple[T, int]:
    """
    Llama a fn con la política de reintentos. Devuelve (resultado, intentos).
    Cualquier excepción que no sea CimientoError se trata como fallo permanente.
    """
    attempt = 1
    while True:
        try:
            return call_with_timeout(fn, settings.action_timeout, resource_id), attempt
        except AdapterError as e:
            if e.resource_id is None:
                e.resource_id = resource_id
            err = e
        except CimientoError as e:
            raise AdapterError(e.message, resource_id=resource_id) from e
        except Exception as e:
            raise AdapterError(f"Error inesperado del adapter: {e!r}", resource_id=resource_id) from e

        err.attempts = attempt
        if not err.transient or attempt >= settings.max_attempts:
            raise err
        delay = settings.backoff_delay(attempt)
        logger.warning(
            "%s de '%s' falló (intento %d/%d, transitorio): %s; reintento en %.2fs",
            operation, resource_id, attempt, settings.max_attempts, err.message, delay,
        )
        if cancel is not None:
            if cancel.wait(delay):
                raise err
        elif delay > 0:
            time.sleep(delay)
        attempt += 1
