#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Serveur port-knocking HTTP.

- Port de base (8080 par défaut) : "Access denied!" tant que la séquence n'a pas été frappée
- Ports de knock base+1 .. base+N : un GET par port, dans l'ordre de --knock-sequence
- Accès accordé pendant --access-duration, élagage de l'allowlist toutes les secondes

Usage :
  python3 -m httpknock.server --config config/httpknock.yaml
  httpknock-server --base-port 8080 --knock-sequence 8082,8081,8083 --access-duration 5m
"""

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from .allowlist import Allowlist
from .config import Config, load_config
from .errors import ConfigError
from .listeners import KnockServer
from .sequence import SequenceValidator
from .sweeper import ExpirySweeper
from .utils import setup_logger

log = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Port-knocking HTTP server")
    ap.add_argument("--config", default=None, help="Chemin vers un fichier YAML (optionnel)")
    ap.add_argument("--bind", default=None, help="Adresse d'écoute (0.0.0.0)")
    ap.add_argument("--base-port", type=int, default=None, help="Port protégé (8080)")
    ap.add_argument("--knock-sequence", default=None, help="Ports séparés par des virgules (8081,8082,8083)")
    ap.add_argument("--knock-length", type=int, default=None,
                    help="Nombre de ports de knock ; doit valoir la longueur de la séquence")
    ap.add_argument("--access-duration", default=None, help="Durée d'accès après un knock réussi (5m)")
    ap.add_argument("--sweep-interval", default=None, help="Intervalle d'élagage de l'allowlist (1s)")
    ap.add_argument("--knock-timeout", default=None, help="Délai max entre deux knocks (désactivé)")
    ap.add_argument("--log-file", default=None)
    ap.add_argument("--log-level", default=None)
    return ap.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    cfg = load_config(
        args.config,
        bind=args.bind,
        base_port=args.base_port,
        knock_sequence=args.knock_sequence,
        access_duration=args.access_duration,
        sweep_interval=args.sweep_interval,
        knock_timeout=args.knock_timeout,
        log_file=args.log_file,
        log_level=args.log_level,
    )
    if args.knock_length is not None and args.knock_length != len(cfg.knock_sequence):
        raise ConfigError(f"--knock-length {args.knock_length} does not match knock sequence "
                          f"{list(cfg.knock_sequence)}")
    return cfg


class PortKnockServer:
    """Assemble allowlist, validateur, sweeper et listeners à partir d'une Config."""

    def __init__(self, cfg: Config) -> None:
        self.cfg = cfg
        self.allowlist = Allowlist(cfg.access_duration)
        self.validator = SequenceValidator(cfg.knock_sequence, self.allowlist,
                                           knock_timeout=cfg.knock_timeout)
        self.sweeper = ExpirySweeper(self.allowlist, cfg.sweep_interval)
        self.listeners = KnockServer(self.allowlist, self.validator, cfg.base_port, cfg.bind)
        self.stop_evt = threading.Event()

    def start(self) -> None:
        log.info("Starting port knock server...")
        log.info("Knock sequence: %s", list(self.cfg.knock_sequence))
        self.allowlist.log_peers()
        self.sweeper.start()
        try:
            self.listeners.start()
        except OSError:
            self.sweeper.stop()
            raise

    def stop(self) -> None:
        log.info("Shutting down port knock server...")
        self.listeners.shutdown()
        self.sweeper.stop()
        log.info("Port knock server shut down.")

    def serve_forever(self) -> None:
        self.start()
        try:
            while not self.stop_evt.wait(0.5):
                pass
        finally:
            self.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = build_config(args)
    except ConfigError as e:
        setup_logger(args.log_file, args.log_level or "INFO")
        log.error("Invalid configuration: %s", e)
        return 2
    setup_logger(cfg.log_file, cfg.log_level)

    srv = PortKnockServer(cfg)

    def _sig(signum, frame):
        log.info("Signal %s received", signum)
        srv.stop_evt.set()
    signal.signal(signal.SIGINT, _sig)
    signal.signal(signal.SIGTERM, _sig)

    try:
        srv.serve_forever()
    except OSError as e:
        log.error("Cannot start listeners: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
