from __future__ import annotations

import threading
import time

from ..app import db
from ..models import Certificate
from .storage import random_suffix

IDENTIFIER_PREFIX = "CERT"
_MAX_ATTEMPTS = 8

_lock = threading.Lock()
_in_flight: set[str] = set()


class IdentifierExhausted(RuntimeError):
    pass


def _candidate() -> str:
    return f"{IDENTIFIER_PREFIX}-{int(time.time() * 1000)}-{random_suffix()}"


def _taken(identifiers: set[str]) -> set[str]:
    if not identifiers:
        return set()
    rows = (
        db.session.query(Certificate.unique_identifier)
        .filter(Certificate.unique_identifier.in_(identifiers))
        .all()
    )
    return {row[0] for row in rows}


def allocate_identifiers(count: int) -> list[str]:
    """Reserve ``count`` distinct certificate identifiers.

    Candidates are unique within the process (lock + in-flight set) and
    checked against stored certificates; the unique index on
    ``certificates.unique_identifier`` covers other processes.
    """
    if count <= 0:
        return []
    allocated: list[str] = []
    with _lock:
        for _ in range(_MAX_ATTEMPTS):
            wanted = count - len(allocated)
            if wanted <= 0:
                break
            fresh: set[str] = set()
            while len(fresh) < wanted:
                candidate = _candidate()
                if candidate not in _in_flight:
                    fresh.add(candidate)
            usable = sorted(fresh - _taken(fresh))
            allocated.extend(usable)
            _in_flight.update(usable)
        if len(allocated) < count:
            _in_flight.difference_update(allocated)
            raise IdentifierExhausted("could not allocate unique certificate identifiers")
    return allocated


def allocate_identifier() -> str:
    return allocate_identifiers(1)[0]


def release_identifiers(identifiers) -> None:
    """Forget in-flight reservations once their certificates are stored or abandoned."""
    with _lock:
        _in_flight.difference_update(identifiers)
