import random
import socket

import pytest


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


def find_base_port(count: int, host: str = "127.0.0.1") -> int:
    """Premier port d'une plage de `count` ports libres consécutifs."""
    for _ in range(100):
        base = random.randint(20000, 60000)
        socks = []
        try:
            for port in range(base, base + count):
                s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                socks.append(s)
                s.bind((host, port))
            return base
        except OSError:
            continue
        finally:
            for s in socks:
                s.close()
    raise RuntimeError("no free port range found")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def base_port():
    # port de base + 3 ports de knock
    return find_base_port(4)
