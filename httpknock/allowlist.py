"""
Allowlist à durée de vie : qui a le droit de passer sur le port de base, et jusqu'à quand.

- Une seule entrée par peer.
- Expiration paresseuse à la lecture ET élagage périodique (ExpirySweeper) : les deux
  appliquent la même règle, une entrée avec end <= now n'est jamais autorisée.
- Un seul verrou pour toute la structure.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllowedPeer:
    ip: str
    start: float
    end: float

    def remaining(self, now: float) -> float:
        return max(0.0, self.end - now)


class Allowlist:
    def __init__(self, duration: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.duration = float(duration)
        self.clock = clock
        self._peers: Dict[str, AllowedPeer] = {}
        self._lock = threading.Lock()

    def is_allowed(self, peer: str) -> bool:
        now = self.clock()
        with self._lock:
            entry = self._peers.get(peer)
            return entry is not None and now < entry.end

    def grant(self, peer: str, duration: Optional[float] = None) -> bool:
        """Ajoute `peer` pour `duration` secondes. Renvoie False si une entrée vivante existe déjà."""
        ttl = self.duration if duration is None else float(duration)
        now = self.clock()
        with self._lock:
            entry = self._peers.get(peer)
            if entry is not None and now < entry.end:
                return False
            # une entrée expirée pas encore élaguée est remplacée, et repasse en fin d'ordre
            self._peers.pop(peer, None)
            self._peers[peer] = AllowedPeer(peer, now, now + ttl)
        log.info("Allowing peer %s for %ss", peer, round(ttl))
        return True

    def prune(self, now: Optional[float] = None) -> None:
        if now is None:
            now = self.clock()
        with self._lock:
            expired = [ip for ip, entry in self._peers.items() if entry.end <= now]
            for ip in expired:
                del self._peers[ip]
        for ip in expired:
            log.info("Removing expired peer %s", ip)

    def list(self) -> List[AllowedPeer]:
        with self._lock:
            return list(self._peers.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def log_peers(self) -> None:
        now = self.clock()
        peers = self.list()
        log.info("Allowed peers:")
        if not peers:
            log.info(" - None")
            return
        for p in peers:
            log.info(" - %s (Expiration in %ss)", p.ip, round(p.remaining(now)))
