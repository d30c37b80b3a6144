"""Single-slot holder for the current :class:`~loopauth.models.Credential`.

A background worker (exchange or refresh) and a foreground reader share the
credential. :class:`Credential` values are frozen, and the holder only ever
swaps the whole reference under a lock, so a reader sees either the previous
or the new value and never a mix of the two.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Optional

from loopauth.models import Credential


class CredentialHolder:
    """Thread-safe owner of the latest credential.

    Args:
        initial: Starting value; defaults to the empty credential.
    """

    def __init__(self, initial: Optional[Credential] = None) -> None:
        self._lock = threading.Lock()
        self._current = initial if initial is not None else Credential()

    def get(self) -> Credential:
        """Return the current credential."""
        with self._lock:
            return self._current

    def publish(self, credential: Credential) -> Credential:
        """Replace the held credential with *credential*.

        Returns:
            The value that was replaced.
        """
        with self._lock:
            previous, self._current = self._current, credential
        return previous

    def can_refresh(self, now: Optional[datetime] = None) -> bool:
        """Whether the held refresh token is present and not yet expired."""
        return self.get().can_refresh(now)
