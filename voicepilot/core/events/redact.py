from __future__ import annotations

import re
from typing import Any

MASK = "***REDACTED***"

# Compared after lowercasing and mapping "-" to "_", so HTTP header names
# such as "X-Client-ID" are caught as well as config field names.
SECRET_NAMES = frozenset({"password", "secret", "token", "key", "authorization", "client_id", "x_client_id"})
SECRET_SUFFIXES = ("_key", "_token", "_secret", "_password")

_BEARER_RE = re.compile(r"\bBearer\s+\S+", re.IGNORECASE)


def is_secret_name(name: Any) -> bool:
    n = str(name).strip().lower().replace("-", "_")
    return n in SECRET_NAMES or n.endswith(SECRET_SUFFIXES)


def redact(obj: Any) -> Any:
    """Copy of `obj` with secret-named values masked and bearer credentials scrubbed from strings."""
    if isinstance(obj, dict):
        return {k: (MASK if is_secret_name(k) else redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    if isinstance(obj, str) and "bearer" in obj.lower():
        return _BEARER_RE.sub("Bearer " + MASK, obj)
    return obj
