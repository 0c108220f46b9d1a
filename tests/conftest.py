import sys, os

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Environnement de test : pas de fichiers de log, pas d'exporteur Prometheus
os.environ.setdefault('IFM_LOG', 'WARNING')
os.environ.pop('IFM_LOG_DIR', None)
os.environ.pop('IFM_METRICS_PORT', None)

import pytest

from inframon.snapshot import Snapshot, encode_snapshot


class FakeClock:
    """Horloge manuelle injectée dans le registre."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualScheduler:
    """call_later qui n'exécute rien tant que le test ne le décide pas."""

    def __init__(self):
        self.pending = []
        self.cancelled = False

    def call_later(self, delay, fn):
        self.pending.append((delay, fn))

    def cancel_all(self):
        self.cancelled = True
        self.pending.clear()

    def run_pending(self):
        due, self.pending = self.pending, []
        for _delay, fn in due:
            fn()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def blob():
    return encode_snapshot(Snapshot(cpu_usage=12.5, system_name="bench"))


@pytest.fixture
def payload(blob):
    def make(**over):
        body = {"id": "node-a", "name": "alpha", "os": "Linux", "ip": "10.0.0.2",
                "port": 3800, "isMaster": False, "compressedData": blob}
        body.update(over)
        return body
    return make
