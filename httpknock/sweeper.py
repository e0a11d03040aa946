"""Thread de fond qui élague l'allowlist à intervalle fixe."""

import logging
import threading
from typing import Optional

from .allowlist import Allowlist

log = logging.getLogger(__name__)


class ExpirySweeper:
    def __init__(self, allowlist: Allowlist, interval: float = 1.0) -> None:
        if interval <= 0:
            raise ValueError("sweep interval must be positive")
        self.allowlist = allowlist
        self.interval = interval
        self.stop_evt = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("sweeper already started")
        self._thread = threading.Thread(target=self._run, name="expiry-sweeper", daemon=True)
        self._thread.start()
        log.info("Started peer manager (every %ss)", self.interval)

    def _run(self) -> None:
        # wait() rend la main dès que stop() est appelé, sans attendre la fin de l'intervalle
        while not self.stop_evt.wait(self.interval):
            self.allowlist.prune()

    def stop(self, timeout: Optional[float] = None) -> None:
        log.info("Shutting down peer manager...")
        self.stop_evt.set()
        if self._thread is not None:
            self._thread.join(timeout)
        log.info("Peer manager shut down.")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
