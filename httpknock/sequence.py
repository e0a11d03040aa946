"""
Machine à états des sessions de knock, une par peer.

observe(peer, port) :
- peer déjà autorisé      -> ALREADY_ALLOWED, aucune session touchée
- sinon on ajoute `port` à sa session (créée au besoin) et on compare au préfixe
  de la séquence de même longueur :
    * préfixe complet      -> grant() dans l'allowlist, session supprimée, COMPLETE
    * préfixe partiel      -> PARTIAL
    * divergence           -> session repartie de ce knock (ou supprimée s'il n'est
                              même pas un début valide), PARTIAL

Une session ne dépasse jamais la longueur de la séquence.
"""

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .allowlist import Allowlist

log = logging.getLogger(__name__)


class Outcome(enum.Enum):
    ALREADY_ALLOWED = "already_allowed"
    PARTIAL = "partial"
    COMPLETE = "complete"


@dataclass
class KnockSession:
    ip: str
    knocks: List[int] = field(default_factory=list)
    last: float = 0.0


class SequenceValidator:
    def __init__(self, sequence: Sequence[int], allowlist: Allowlist,
                 knock_timeout: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic) -> None:
        if not sequence:
            raise ValueError("knock sequence must not be empty")
        self.sequence: Tuple[int, ...] = tuple(sequence)
        self.allowlist = allowlist
        self.knock_timeout = knock_timeout
        self.clock = clock
        self._sessions: Dict[str, KnockSession] = {}
        # ordre des verrous : validator puis allowlist, jamais l'inverse
        self._lock = threading.Lock()

    def _is_prefix(self, knocks: List[int]) -> bool:
        return list(self.sequence[:len(knocks)]) == knocks

    def observe(self, peer: str, port: int) -> Outcome:
        now = self.clock()
        with self._lock:
            if self.allowlist.is_allowed(peer):
                log.info("Peer %s is already allowed", peer)
                self.allowlist.log_peers()
                return Outcome.ALREADY_ALLOWED

            s = self._sessions.get(peer)
            if s is not None and self.knock_timeout is not None and now - s.last > self.knock_timeout:
                log.info("Knock session for peer %s timed out: %s", peer, s.knocks)
                del self._sessions[peer]
                s = None

            if s is None:
                s = KnockSession(peer)
                self._sessions[peer] = s
                log.info("Created knock session for peer %s", peer)
            s.knocks.append(port)
            s.last = now

            if not self._is_prefix(s.knocks):
                log.info("Peer %s knocked out of order: %s, resetting", peer, s.knocks)
                s.knocks = [port]
                if not self._is_prefix(s.knocks):
                    del self._sessions[peer]
                    return Outcome.PARTIAL

            if len(s.knocks) < len(self.sequence):
                log.info("Peer %s has an incomplete knock session: %s", peer, s.knocks)
                return Outcome.PARTIAL

            log.info("Peer %s has a complete knock session: %s", peer, s.knocks)
            del self._sessions[peer]
            self.allowlist.grant(peer)
        self.allowlist.log_peers()
        return Outcome.COMPLETE

    def session(self, peer: str) -> Optional[List[int]]:
        """Copie des knocks observés pour `peer`, ou None."""
        with self._lock:
            s = self._sessions.get(peer)
            return list(s.knocks) if s is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
