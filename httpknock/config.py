"""
Configuration du serveur : fichier YAML optionnel (--config), surchargé par la ligne de commande.

Exemple (config/httpknock.yaml) :

    bind: 0.0.0.0
    base_port: 8080
    knock_sequence: [8081, 8082, 8083]
    access_duration: 5m
    sweep_interval: 1
    knock_timeout: null
    log_file: null
    log_level: INFO

Toute erreur ici est fatale : ConfigError est levée avant qu'un seul port ne soit ouvert.
"""

import math
import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .errors import ConfigError

DEFAULT_BASE_PORT = 8080
DEFAULT_SEQUENCE = (8081, 8082, 8083)
DEFAULT_ACCESS_DURATION = 5 * 60.0
DEFAULT_SWEEP_INTERVAL = 1.0
MAX_DURATION = 366 * 24 * 3600.0

_UNITS = {"ns": 1e-9, "us": 1e-6, "µs": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Union[str, int, float]) -> float:
    """'5m', '1h30m', '45s', '250ms' ou un nombre de secondes -> secondes (float)."""
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        secs = float(value)
    else:
        text = str(value).strip()
        if not text:
            raise ConfigError("Invalid duration: empty")
        try:
            secs = float(text)
        except ValueError:
            pos, secs = 0, 0.0
            for m in _DURATION_PART.finditer(text):
                if m.start() != pos:
                    break
                secs += float(m.group(1)) * _UNITS[m.group(2)]
                pos = m.end()
            if pos != len(text):
                raise ConfigError(f"Invalid duration: {text!r}")
    if not math.isfinite(secs) or secs <= 0:
        raise ConfigError(f"Duration must be positive and finite: {value!r}")
    # au-delà, threading.Event.wait() déborde
    if secs > MAX_DURATION:
        raise ConfigError(f"Duration too long (max 366 days): {value!r}")
    return secs


def _port(value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Invalid port: {value!r}")
    try:
        port = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"Invalid port in knock sequence: {value!r}") from None
    if not 0 < port < 65536:
        raise ConfigError(f"Port out of range: {port}")
    return port


def parse_knock_sequence(value: Union[str, List[Any], Tuple[Any, ...]]) -> Tuple[int, ...]:
    """'8081,8082,8083' (ou une liste YAML) -> (8081, 8082, 8083)."""
    if isinstance(value, str):
        items = value.split(",") if value.strip() else []
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ConfigError(f"Invalid knock sequence: {value!r}")
    if not items:
        raise ConfigError("Knock sequence must not be empty")
    seq = tuple(_port(s) for s in items)
    dupes = sorted({p for p in seq if seq.count(p) > 1})
    if dupes:
        raise ConfigError(f"Duplicate ports in knock sequence: {dupes}")
    return seq


@dataclass
class Config:
    bind: str = "0.0.0.0"
    base_port: int = DEFAULT_BASE_PORT
    knock_sequence: Tuple[int, ...] = field(default=DEFAULT_SEQUENCE)
    access_duration: float = DEFAULT_ACCESS_DURATION
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
    knock_timeout: Optional[float] = None
    log_file: Optional[str] = None
    log_level: str = "INFO"

    @property
    def knock_ports(self) -> List[int]:
        return [self.base_port + i for i in range(1, len(self.knock_sequence) + 1)]

    def validate(self) -> "Config":
        if isinstance(self.base_port, bool) or not isinstance(self.base_port, int):
            raise ConfigError(f"Invalid base port: {self.base_port!r}")
        self.knock_sequence = parse_knock_sequence(self.knock_sequence)
        if self.base_port <= 0 or self.base_port + len(self.knock_sequence) > 65535:
            raise ConfigError(f"Base port {self.base_port} leaves no room for "
                              f"{len(self.knock_sequence)} knock ports")
        # chaque knock arrive sur un des ports base+1..base+N : un autre port ne serait jamais frappé
        unreachable = [p for p in self.knock_sequence if p not in self.knock_ports]
        if unreachable:
            raise ConfigError(f"Knock sequence ports {unreachable} are not served "
                              f"(knock ports are {self.knock_ports})")
        self.access_duration = parse_duration(self.access_duration)
        self.sweep_interval = parse_duration(self.sweep_interval)
        if self.knock_timeout is not None:
            self.knock_timeout = parse_duration(self.knock_timeout)
        if str(self.log_level).upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Invalid log level: {self.log_level!r}")
        self.log_level = str(self.log_level).upper()
        return self

    def merged(self, overrides: Dict[str, Any]) -> "Config":
        """Copie avec les valeurs non-None de `overrides` (arguments CLI)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def load_yaml(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a mapping")
    return data


def load_config(path: Optional[str] = None, **overrides: Any) -> Config:
    conf = load_yaml(path) if path else {}
    known = {f.name for f in fields(Config)}
    unknown = sorted(set(conf) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys: {unknown}")
    return Config(**conf).merged(overrides).validate()
