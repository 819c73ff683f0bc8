"""
Fingerprint: hash estable de tipo + atributos enviados al provider.
"""

import hashlib
import json
from typing import Any, Dict, Optional

from cimiento.core.model.resources import contains_unknown


def fingerprint(resource_type: str, attributes: Dict[str, Any]) -> Optional[str]:
    """SHA-256 sobre JSON canónico; None si algún valor aún es UNKNOWN."""
    if contains_unknown(attributes):
        return None
    payload = {"type": resource_type, "attributes": attributes}
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
