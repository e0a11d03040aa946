"""
Fonctions utilitaires : journalisation et identité des peers.
"""

import ipaddress
import logging
import os
from typing import Any, Optional

from .errors import PeerError


def setup_logger(path: Optional[str] = None, level: str = "INFO") -> None:
    """Console toujours, fichier en plus si `path` est donné."""
    kwargs = {}
    if path:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        kwargs["filename"] = path
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        **kwargs,
    )
    if path:
        logging.getLogger().addHandler(logging.StreamHandler())  # aussi console


def peer_from_address(address: Any) -> str:
    """
    client_address du socket -> IP normalisée, sans le port source.
    Deux connexions du même hôte sur deux ports clients sont le même peer.
    """
    try:
        host = address[0] if isinstance(address, (tuple, list)) else address
        ip = ipaddress.ip_address(str(host).strip("[]"))
    except (IndexError, TypeError, ValueError) as e:
        raise PeerError(f"cannot parse peer address {address!r}") from e
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return str(ip)
