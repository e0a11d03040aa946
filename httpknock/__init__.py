"""
httpknock : port-knocking devant un endpoint HTTP.

Un peer doit frapper (GET) les ports base+1 .. base+N dans l'ordre configuré
avant que le port de base ne lui réponde "Access granted!".
"""

from .allowlist import AllowedPeer, Allowlist
from .config import Config, load_config, parse_duration, parse_knock_sequence
from .errors import ConfigError, KnockError, PeerError
from .listeners import KnockServer
from .sequence import Outcome, SequenceValidator
from .sweeper import ExpirySweeper

__version__ = "0.1.0"

__all__ = [
    "AllowedPeer", "Allowlist", "Config", "ConfigError", "ExpirySweeper",
    "KnockError", "KnockServer", "Outcome", "PeerError", "SequenceValidator",
    "load_config", "parse_duration", "parse_knock_sequence",
]
