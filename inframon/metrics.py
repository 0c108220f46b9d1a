"""Métriques Prometheus pour Inframon.

Usage :
    from inframon.metrics import metrics_server_start, REGISTRATIONS
    metrics_server_start(9108)
    REGISTRATIONS.labels("inserted").inc()
"""
from __future__ import annotations
from prometheus_client import Counter, Gauge, Histogram, start_http_server
import threading

REGISTRY_NODES    = Gauge("inframon_registry_nodes", "Nœuds présents dans le registre", ["status"])
REGISTRATIONS     = Counter("inframon_registrations_total", "Enregistrements reçus par le registre", ["result"])  # inserted|updated|rejected
REGISTRY_EVICTIONS = Counter("inframon_registry_evictions_total", "Nœuds retirés du registre", ["reason"])  # removed|reaped
DISCOVERY_SWEEPS  = Counter("inframon_discovery_sweeps_total", "Balayages du sous-réseau", ["result"])  # found|empty
DISCOVERY_PROBES  = Counter("inframon_discovery_probes_total", "Sondes de découverte envoyées")
DISCOVERY_ANSWERS = Counter("inframon_discovery_answers_total", "Annonces master envoyées par l'écouteur")
PUBLISH_FAILURES  = Counter("inframon_publish_failures_total", "Échecs d'envoi du snapshot au master")
SAMPLE_LATENCY    = Histogram("inframon_sample_latency_seconds", "Durée d'un tick d'échantillonnage (s)")
API_LATENCY       = Histogram("inframon_api_latency_seconds", "Latence endpoints API", ["path","method","status"])

_started = False
_lock = threading.Lock()

def metrics_server_start(port: int | None = None) -> bool:
    """Démarre l'exporteur HTTP (idempotent). Retourne False si désactivé."""
    global _started
    if not port:
        return False
    with _lock:
        if _started:
            return True
        # Démarrage non bloquant
        t = threading.Thread(target=start_http_server, args=(int(port),), daemon=True)
        t.start()
        _started = True
    return True


def publish_registry_summary(summary: dict) -> None:
    for status, count in summary.items():
        REGISTRY_NODES.labels(status).set(count)


def counter_value(counter, **labels) -> float:
    """Valeur courante d'un Counter (labels optionnels) via l'API collect()."""
    for metric in counter.collect():
        for s in metric.samples:
            if s.name.endswith('_total') and s.labels == labels:
                return float(s.value)
    return 0.0

__all__ = [
    "REGISTRY_NODES",
    "REGISTRATIONS",
    "REGISTRY_EVICTIONS",
    "DISCOVERY_SWEEPS",
    "DISCOVERY_PROBES",
    "DISCOVERY_ANSWERS",
    "PUBLISH_FAILURES",
    "SAMPLE_LATENCY",
    "API_LATENCY",
    "metrics_server_start",
    "publish_registry_summary",
    "counter_value",
]
