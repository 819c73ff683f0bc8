"""
Lock exclusivo por deployment: un solo apply/destroy a la vez por stack.

Usa flock sobre <state_root>/<deployment>.lock. En plataformas sin fcntl
el lock queda deshabilitado (se avisa por log).
"""

import logging
import time
from pathlib import Path
from typing import IO, Optional

from cimiento.core.errors import LockError
from cimiento.core.runtime.resolver import lock_file

try:
    import fcntl as _fcntl
    _HAS_FCNTL = True
except ImportError:  # pragma: no cover - no POSIX
    _fcntl = None  # type: ignore
    _HAS_FCNTL = False

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class DeploymentLock:
    """
    Lock de deployment usable como context manager.

        with DeploymentLock(root, "corpweb", timeout=5):
            ...
    """

    def __init__(self, root: Path, deployment: str, timeout: float = 0.0):
        self.path = lock_file(Path(root), deployment)
        self.deployment = deployment
        self.timeout = timeout
        self._fh: Optional[IO[str]] = None

    @property
    def locked(self) -> bool:
        return self._fh is not None

    def acquire(self) -> None:
        if self._fh is not None:
            raise LockError(f"El lock de '{self.deployment}' ya está tomado por esta instancia")
        if not _HAS_FCNTL:
            logger.warning("fcntl no disponible: '%s' se ejecuta sin lock", self.deployment)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fh = open(self.path, "a+", encoding="utf-8")
        deadline = time.monotonic() + max(0.0, self.timeout)
        while True:
            try:
                _fcntl.flock(fh, _fcntl.LOCK_EX | _fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    fh.close()
                    raise LockError(
                        f"Otro apply está en curso para '{self.deployment}' (lock: {self.path})"
                    )
                time.sleep(_POLL_INTERVAL)
        self._fh = fh
        logger.debug("Lock tomado: %s", self.path)

    def release(self) -> None:
        if self._fh is None:
            return
        try:
            _fcntl.flock(self._fh, _fcntl.LOCK_UN)
        finally:
            self._fh.close()
            self._fh = None
        logger.debug("Lock liberado: %s", self.path)

    def __enter__(self) -> "DeploymentLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
