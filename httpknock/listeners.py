"""
Multiplexeur de listeners HTTP : un ThreadingHTTPServer sur le port de base (gated)
et un par position de la séquence (base+1 .. base+N).

- port de base  : 200 "Access granted!" si le peer est dans l'allowlist, 403 sinon
- port de knock : observe(peer, port) puis 200, quel que soit l'avancement
- IP illisible  : 500, jamais confondu avec un refus

Chaque requête est traitée dans son propre thread ; l'état partagé est protégé par
les verrous de Allowlist et SequenceValidator.
"""

import logging
import threading
import time
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import List, Optional, Tuple

from .allowlist import Allowlist
from .errors import PeerError
from .sequence import Outcome, SequenceValidator
from .utils import peer_from_address

log = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5.0
MAX_BODY = 64 * 1024

ACK = {
    Outcome.ALREADY_ALLOWED: "You are already allowed access!",
    Outcome.PARTIAL: "Knock, knock!",
    Outcome.COMPLETE: "Access granted!",
}


class _Listener(ThreadingHTTPServer):
    # threads de requête joints à server_close() : pas de réponse coupée à l'arrêt
    daemon_threads = False
    block_on_close = True
    # un second serveur sur les mêmes ports doit échouer au bind
    allow_reuse_port = False

    def __init__(self, addr: Tuple[str, int], handler, app: "KnockServer",
                 knock_port: Optional[int] = None, request_timeout: float = REQUEST_TIMEOUT) -> None:
        self.app = app
        self.knock_port = knock_port
        self.request_timeout = request_timeout
        super().__init__(addr, handler)


class _BaseHandler(BaseHTTPRequestHandler):
    server_version = "httpknock/0.1"
    protocol_version = "HTTP/1.0"
    # un client muet ne doit pas bloquer server_close() indéfiniment
    timeout = REQUEST_TIMEOUT

    def setup(self):
        self.timeout = getattr(self.server, "request_timeout", REQUEST_TIMEOUT)
        super().setup()

    def log_message(self, fmt, *args):
        log.debug("%s - %s", self.address_string(), fmt % args)

    def _reply(self, code: int, text: str) -> None:
        raw = text.encode()
        self.send_response(code)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(raw)

    def _drain(self) -> None:
        # seul le port frappé compte : le corps est lu au plus MAX_BODY octets puis ignoré
        try:
            ln = int(self.headers.get("Content-Length", "0") or "0")
        except ValueError:
            ln = 0
        if ln > 0:
            self.rfile.read(min(ln, MAX_BODY))

    def _dispatch(self) -> None:
        port = self.server.server_address[1]
        log.info("%s :%s %s %s", self.command, port, self.path, self.client_address)
        start = time.monotonic()
        try:
            self._drain()
            try:
                peer = peer_from_address(self.client_address)
            except PeerError as e:
                log.error("Error getting peer: %s", e)
                self._reply(HTTPStatus.INTERNAL_SERVER_ERROR, "Error getting peer")
                return
            self._reply(*self.handle_peer(peer))
        except Exception:
            log.exception("Unhandled error on :%s %s", port, self.path)
            self.send_error(HTTPStatus.INTERNAL_SERVER_ERROR)
        finally:
            log.info("%s :%s %s %s %.3fms", self.command, port, self.path,
                     self.client_address, (time.monotonic() - start) * 1000)

    def handle_peer(self, peer: str) -> Tuple[int, str]:
        raise NotImplementedError

    do_GET = do_HEAD = do_POST = do_PUT = do_PATCH = do_DELETE = do_OPTIONS = _dispatch


class GateHandler(_BaseHandler):
    def handle_peer(self, peer):
        allowlist = self.server.app.allowlist
        if allowlist.is_allowed(peer):
            return HTTPStatus.OK, "Access granted!"
        log.info("Peer %s is not allowed", peer)
        allowlist.log_peers()
        return HTTPStatus.FORBIDDEN, "Access denied!"


class KnockHandler(_BaseHandler):
    def handle_peer(self, peer):
        outcome = self.server.app.validator.observe(peer, self.server.knock_port)
        return HTTPStatus.OK, ACK[outcome]


class KnockServer:
    """Les N+1 listeners, construits depuis (bind, base_port, longueur de la séquence)."""

    def __init__(self, allowlist: Allowlist, validator: SequenceValidator,
                 base_port: int, bind: str = "0.0.0.0", request_timeout: float = REQUEST_TIMEOUT) -> None:
        self.allowlist = allowlist
        self.validator = validator
        self.bind = bind
        self.base_port = base_port
        self.request_timeout = request_timeout
        self.knock_ports = [base_port + i for i in range(1, len(validator.sequence) + 1)]
        self._servers: List[_Listener] = []
        self._threads: List[threading.Thread] = []

    @property
    def ports(self) -> List[int]:
        return [self.base_port] + self.knock_ports

    def start(self) -> None:
        if self._servers:
            raise RuntimeError("listeners already started")
        # on bind tout avant de servir quoi que ce soit : un port pris = rien n'écoute
        try:
            self._servers.append(_Listener((self.bind, self.base_port), GateHandler, self,
                                           request_timeout=self.request_timeout))
            for port in self.knock_ports:
                self._servers.append(_Listener((self.bind, port), KnockHandler, self, knock_port=port,
                                               request_timeout=self.request_timeout))
        except OSError:
            for httpd in self._servers:
                httpd.server_close()
            self._servers = []
            raise
        for httpd in self._servers:
            t = threading.Thread(target=httpd.serve_forever, kwargs={"poll_interval": 0.2},
                                 name=f"http-{httpd.server_address[1]}", daemon=True)
            t.start()
            self._threads.append(t)
            log.info("HTTP server listening on %s:%s", *httpd.server_address[:2])

    def shutdown(self) -> None:
        for httpd in self._servers:
            port = httpd.server_address[1]
            log.info("Shutting down HTTP server on %s...", port)
            httpd.shutdown()
            httpd.server_close()
            log.info("HTTP server on %s shut down.", port)
        for t in self._threads:
            t.join()
        self._servers = []
        self._threads = []

    def __enter__(self) -> "KnockServer":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
