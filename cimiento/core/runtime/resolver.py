"""
Resolución de rutas de estado.

- state_root(): directorio de estado (snapshots, locks, nube simulada).
- state_file()/lock_file(): rutas por deployment dentro de state_root.

El core NO crea directorios aquí; solo expone rutas. Quién escribe
(State Store, lock) crea lo que necesite.
"""

import os
from pathlib import Path
from typing import Optional

STATE_ROOT_ENV = "CIMIENTO_STATE_ROOT"
DEFAULT_STATE_DIRNAME = ".cimiento"


def state_root(explicit: Optional[Path] = None) -> Path:
    """
    Directorio raíz del estado.
    Resolución: argumento explícito → CIMIENTO_STATE_ROOT → ./.cimiento
    """
    if explicit is not None:
        return Path(explicit).expanduser().resolve()
    env = os.environ.get(STATE_ROOT_ENV, "").strip()
    if env:
        return Path(env).expanduser().resolve()
    return (Path.cwd() / DEFAULT_STATE_DIRNAME).resolve()


def state_file(root: Path, deployment: str) -> Path:
    return root / f"{deployment}.state.yaml"


def lock_file(root: Path, deployment: str) -> Path:
    return root / f"{deployment}.lock"
