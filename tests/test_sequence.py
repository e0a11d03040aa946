import threading

import pytest

from httpknock.allowlist import Allowlist
from httpknock.sequence import Outcome, SequenceValidator

SEQ = (8081, 8082, 8083)


@pytest.fixture
def allowlist(clock):
    return Allowlist(300, clock=clock)


@pytest.fixture
def validator(allowlist, clock):
    return SequenceValidator(SEQ, allowlist, clock=clock)


def knock_all(v, peer, ports):
    return [v.observe(peer, p) for p in ports]


def test_in_order_sequence_grants(validator, allowlist):
    out = knock_all(validator, "10.0.0.1", SEQ)
    assert out == [Outcome.PARTIAL, Outcome.PARTIAL, Outcome.COMPLETE]
    assert allowlist.is_allowed("10.0.0.1")
    assert validator.session("10.0.0.1") is None
    assert len(validator) == 0


def test_not_granted_before_completion(validator, allowlist):
    knock_all(validator, "10.0.0.1", SEQ[:2])
    assert not allowlist.is_allowed("10.0.0.1")
    assert validator.session("10.0.0.1") == [8081, 8082]


@pytest.mark.parametrize("ports", [
    (8082, 8081, 8083),
    (8081, 8083),
    (8083, 8082, 8081),
    (8081, 8082, 8082, 8083),
])
def test_wrong_order_never_grants(validator, allowlist, ports):
    out = knock_all(validator, "10.0.0.2", ports)
    assert Outcome.COMPLETE not in out
    assert not allowlist.is_allowed("10.0.0.2")


def test_mismatch_restarts_from_triggering_knock(validator, allowlist):
    knock_all(validator, "10.0.0.1", (8081, 8082))
    # 8081 diverge mais peut commencer une nouvelle session
    assert validator.observe("10.0.0.1", 8081) == Outcome.PARTIAL
    assert validator.session("10.0.0.1") == [8081]
    assert knock_all(validator, "10.0.0.1", (8082, 8083))[-1] == Outcome.COMPLETE
    assert allowlist.is_allowed("10.0.0.1")


def test_mismatch_on_non_start_port_drops_session(validator):
    validator.observe("10.0.0.1", 8081)
    validator.observe("10.0.0.1", 8083)
    assert validator.session("10.0.0.1") is None
    validator.observe("10.0.0.1", 8082)
    assert validator.session("10.0.0.1") is None


def test_session_stays_bounded(validator):
    for _ in range(100):
        for p in (8082, 8081, 8083, 8081):
            validator.observe("10.0.0.9", p)
        s = validator.session("10.0.0.9")
        assert s is None or len(s) <= len(SEQ)


def test_already_allowed_is_a_no_op(validator, allowlist, clock):
    knock_all(validator, "10.0.0.1", SEQ)
    end = allowlist.list()[0].end
    clock.advance(60)
    assert knock_all(validator, "10.0.0.1", SEQ) == [Outcome.ALREADY_ALLOWED] * 3
    assert validator.session("10.0.0.1") is None
    assert allowlist.list()[0].end == end


def test_can_knock_again_after_expiry(validator, allowlist, clock):
    knock_all(validator, "10.0.0.1", SEQ)
    clock.advance(300)
    assert not allowlist.is_allowed("10.0.0.1")
    assert knock_all(validator, "10.0.0.1", SEQ)[-1] == Outcome.COMPLETE
    assert allowlist.list()[0].end == clock.now + 300


def test_interleaved_peers_are_independent(validator, allowlist):
    a, b = "10.0.0.1", "10.0.0.2"
    validator.observe(a, 8081)
    validator.observe(b, 8082)
    validator.observe(a, 8082)
    validator.observe(b, 8081)
    validator.observe(b, 8083)
    assert validator.observe(a, 8083) == Outcome.COMPLETE
    assert allowlist.is_allowed(a)
    assert not allowlist.is_allowed(b)


def test_single_port_sequence(allowlist, clock):
    v = SequenceValidator([9000], allowlist, clock=clock)
    assert v.observe("10.0.0.1", 9001) == Outcome.PARTIAL
    assert v.observe("10.0.0.1", 9000) == Outcome.COMPLETE
    assert allowlist.is_allowed("10.0.0.1")


def test_empty_sequence_rejected(allowlist):
    with pytest.raises(ValueError):
        SequenceValidator([], allowlist)


def test_knock_timeout_discards_stale_session(allowlist, clock):
    v = SequenceValidator(SEQ, allowlist, knock_timeout=10, clock=clock)
    knock_all(v, "10.0.0.1", SEQ[:2])
    clock.advance(11)
    assert v.observe("10.0.0.1", 8083) == Outcome.PARTIAL
    assert v.session("10.0.0.1") is None
    assert not allowlist.is_allowed("10.0.0.1")

    knock_all(v, "10.0.0.1", SEQ[:2])
    clock.advance(10)
    assert v.observe("10.0.0.1", 8083) == Outcome.COMPLETE


def test_concurrent_peers(validator, allowlist):
    peers = [f"10.1.0.{i}" for i in range(1, 41)]

    def worker(peer):
        knock_all(validator, peer, SEQ)

    threads = [threading.Thread(target=worker, args=(p,)) for p in peers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert all(allowlist.is_allowed(p) for p in peers)
    assert len(validator) == 0


def test_concurrent_knocks_from_same_peer_grant_once(validator, allowlist):
    # 8081 puis 8082 posés, puis une rafale de 8083 concurrents
    knock_all(validator, "10.0.0.1", SEQ[:2])
    results = []

    def worker():
        results.append(validator.observe("10.0.0.1", 8083))

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert results.count(Outcome.COMPLETE) == 1
    assert results.count(Outcome.ALREADY_ALLOWED) == 15
    assert len(allowlist) == 1


def test_already_allowed_logs_allowlist(validator, caplog):
    knock_all(validator, "10.0.0.1", SEQ)
    caplog.clear()
    with caplog.at_level("INFO", logger="httpknock"):
        assert validator.observe("10.0.0.1", 8081) == Outcome.ALREADY_ALLOWED
    assert "Peer 10.0.0.1 is already allowed" in caplog.messages
    assert "Allowed peers:" in caplog.messages
    assert " - 10.0.0.1 (Expiration in 300s)" in caplog.messages
