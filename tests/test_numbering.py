from pathlib import Path
import sys
import threading

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.afip_client.numbering import NumberingCoordinator


class _LastNumberClient:
    def __init__(self, last: int = 100):
        self.last = last
        self.calls = 0

    def get_last_authorized_number(self, invoice_type, sale_point):
        self.calls += 1
        return self.last


def test_without_cache_always_asks_afip():
    client = _LastNumberClient(100)
    numbering = NumberingCoordinator(client, "tenant-1")

    assert numbering.next_number(6, 1) == 101
    assert numbering.next_number(6, 1) == 101
    assert client.calls == 2


def test_warm_cache_hands_out_consecutive_numbers():
    client = _LastNumberClient(100)
    numbering = NumberingCoordinator(client, "tenant-1", cache_ttl=30, clock=lambda: 0.0)

    numbers = []
    lock = threading.Lock()

    def take():
        n = numbering.next_number(6, 1)
        with lock:
            numbers.append(n)

    threads = [threading.Thread(target=take) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(numbers) == list(range(101, 111))
    assert client.calls == 1


def test_cache_expires():
    now = {"t": 0.0}
    client = _LastNumberClient(100)
    numbering = NumberingCoordinator(client, cache_ttl=5, clock=lambda: now["t"])

    assert numbering.next_number(6, 1) == 101
    client.last = 101
    now["t"] = 10.0
    assert numbering.next_number(6, 1) == 102
    assert client.calls == 2


def test_failed_outcome_invalidates_only_that_pair():
    client = _LastNumberClient(100)
    numbering = NumberingCoordinator(client, cache_ttl=30, clock=lambda: 0.0)

    assert numbering.next_number(6, 1) == 101
    assert numbering.next_number(1, 1) == 101
    numbering.record_outcome(6, 1, 101, confirmed=False)

    assert numbering.next_number(6, 1) == 101
    assert numbering.next_number(1, 1) == 102
    assert client.calls == 3


def test_confirmed_outcome_keeps_cache():
    client = _LastNumberClient(100)
    numbering = NumberingCoordinator(client, cache_ttl=30, clock=lambda: 0.0)
    numbering.next_number(6, 1)
    numbering.record_outcome(6, 1, 101, confirmed=True)
    assert numbering.next_number(6, 1) == 102
    assert client.calls == 1

    numbering.invalidate()
    assert numbering.next_number(6, 1) == 101
