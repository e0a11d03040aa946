#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Client de démonstration :
- vérifie que le port de base refuse l'accès (403)
- frappe chaque port de la séquence, dans l'ordre
- rappelle le port de base et affiche la réponse

Usage :  httpknock-client --host 127.0.0.1 --base-port 8080 --knock-sequence 8081,8082,8083
"""

import argparse
import http.client
import logging
import sys
import time
from typing import List, Optional, Sequence, Tuple

from .config import DEFAULT_BASE_PORT, DEFAULT_SEQUENCE, parse_knock_sequence
from .errors import ConfigError
from .utils import setup_logger

log = logging.getLogger(__name__)


def http_get(host: str, port: int, path: str = "/", timeout: float = 4.0) -> Tuple[int, str]:
    conn = http.client.HTTPConnection(host, port, timeout=timeout)
    try:
        conn.request("GET", path)
        resp = conn.getresponse()
        return resp.status, resp.read().decode(errors="replace")
    finally:
        conn.close()


def knock(host: str, ports: Sequence[int], delay: float = 0.0, timeout: float = 4.0) -> None:
    for port in ports:
        log.info("Knocking %s:%s", host, port)
        http_get(host, port, timeout=timeout)
        if delay:
            time.sleep(delay)


def run(host: str, base_port: int, sequence: Sequence[int], delay: float = 0.0,
        timeout: float = 4.0) -> bool:
    log.info("Calling server without knocking")
    status, _ = http_get(host, base_port, timeout=timeout)
    if status == 200:
        log.error("Received unexpected success")
        return False
    log.info("Received expected %s", status)

    log.info("Knocking server")
    knock(host, sequence, delay, timeout)

    log.info("Calling server again")
    status, body = http_get(host, base_port, timeout=timeout)
    log.info("Received response: %s %s", status, body)
    return status == 200


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Knock then test the gated port")
    ap.add_argument("--host", default="localhost")
    ap.add_argument("--base-port", type=int, default=DEFAULT_BASE_PORT)
    ap.add_argument("--knock-sequence", default=",".join(map(str, DEFAULT_SEQUENCE)))
    ap.add_argument("--delay", type=float, default=0.0, help="Pause entre deux knocks (s)")
    ap.add_argument("--timeout", type=float, default=4.0)
    args = ap.parse_args(argv)
    setup_logger()

    try:
        seq = parse_knock_sequence(args.knock_sequence)
    except ConfigError as e:
        log.error("%s", e)
        return 2
    try:
        ok = run(args.host, args.base_port, seq, args.delay, args.timeout)
    except (OSError, http.client.HTTPException) as e:
        log.error("Connection error: %s", e)
        return 1
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
