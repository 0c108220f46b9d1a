"""Slave -> master publish path.

Every sampling tick a node pushes ``identity + compressed snapshot`` to the
master's ``/api/nodes/register``. A failed push is logged and left to the
next tick, except before the first success: then one explicit retry is
scheduled after the ``RetryPolicy`` delay so a node does not sit
unregistered after a master restart.

Usage::

    client = MasterClient("http://10.0.0.1:3899")
    pub = HeartbeatPublisher(build_payload, client.register, interval=1.0)
    pub.start()
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

import requests

from inframon.errors import RemoteRenameFailure, TransportError
from inframon.logger import LoggerAdapter
from inframon.metrics import PUBLISH_FAILURES

log = LoggerAdapter("registration")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed backoff: ``delay`` seconds between retries, ``max_attempts`` retries (None = unbounded)."""
    delay: float = 5.0
    max_attempts: Optional[int] = None

    def next_delay(self, attempt: int) -> Optional[float]:
        """Delay before retry number ``attempt`` (1-based), None once exhausted."""
        if self.max_attempts is not None and attempt > self.max_attempts:
            return None
        return self.delay


class ThreadScheduler:
    """``call_later`` on top of ``threading.Timer``."""

    def __init__(self):
        self._timers: List[threading.Timer] = []
        self._lock = threading.Lock()

    def call_later(self, delay: float, fn: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        with self._lock:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()
        return timer

    def cancel_all(self) -> None:
        with self._lock:
            for t in self._timers:
                t.cancel()
            self._timers.clear()


class MasterClient:
    """HTTP client for the master's registry API."""

    def __init__(self, master_url: str, session: Optional[requests.Session] = None, timeout: float = 5.0):
        self.master_url = master_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _post(self, path: str, payload: Optional[dict] = None) -> dict:
        url = f"{self.master_url}{path}"
        try:
            resp = self.session.post(url, json=payload or {}, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"POST {url} failed: {e}") from e
        if not resp.ok:
            raise TransportError(f"POST {url} returned {resp.status_code}")
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("success") is False:
            raise TransportError(f"POST {url} rejected: {body.get('message')}")
        return body

    def register(self, payload: dict) -> dict:
        return self._post("/api/nodes/register", payload)


def forward_hostname(ip: str, port: int, hostname: str,
                     session: Optional[requests.Session] = None, timeout: float = 5.0) -> None:
    """Ask the node at ``ip:port`` to change its own hostname."""
    url = f"http://{ip}:{port}/api/hostname"
    http = session or requests
    log.info("Transfert du changement de hostname vers %s:%s", ip, port)
    try:
        resp = http.post(url, json={"hostname": hostname}, timeout=timeout)
    except requests.RequestException as e:
        raise RemoteRenameFailure(f"Failed to reach node at {ip}:{port}: {e}") from e
    if not resp.ok:
        raise RemoteRenameFailure(f"Failed to change hostname on node: {resp.status_code}")


class HeartbeatPublisher:
    """Periodic publish loop with an explicit retry before the first success.

    Parameters
    ----------
    build_payload : callable
        Returns the registration body for this tick (fresh snapshot).
    publish : callable
        Sends a body; raises ``TransportError`` (or ``requests`` errors) on failure.
    interval : float
        Seconds between ticks.
    retry_policy : RetryPolicy
        Backoff used while the node has never been registered.
    scheduler : object with ``call_later(delay, fn)`` / ``cancel_all()``
    """

    def __init__(self, build_payload: Callable[[], dict], publish: Callable[[dict], object],
                 interval: float = 1.0, retry_policy: Optional[RetryPolicy] = None,
                 scheduler=None):
        self.build_payload = build_payload
        self.publish = publish
        self.interval = interval
        self.retry_policy = retry_policy or RetryPolicy()
        self.scheduler = scheduler or ThreadScheduler()
        self.registered = False
        self.failures = 0
        self._retry_attempt = 0
        self._retry_pending = False
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._tick_lock = threading.Lock()
        self._loop_running = False
        self._thread: Optional[threading.Thread] = None

    def tick(self) -> bool:
        """Publish once. Returns True on success; never raises on transport errors.

        Ticks are serialized: one sample and one publish at a time.
        """
        with self._tick_lock:
            try:
                payload = self.build_payload()
                self.publish(payload)
            except (TransportError, requests.RequestException) as e:
                self.failures += 1
                PUBLISH_FAILURES.inc()
                log.error("Échec de l'enregistrement auprès du master : %s", e)
                self._schedule_retry()
                return False
            with self._lock:
                if not self.registered:
                    log.info("Enregistré auprès du master")
                self.registered = True
                self._retry_attempt = 0
            return True

    def _schedule_retry(self) -> None:
        with self._lock:
            if self.registered or self._retry_pending or self._stop.is_set():
                return
            self._retry_attempt += 1
            delay = self.retry_policy.next_delay(self._retry_attempt)
            if delay is None:
                if self._retry_attempt == (self.retry_policy.max_attempts or 0) + 1:
                    log.warning("Abandon des relances d'enregistrement après %d tentatives", self._retry_attempt - 1)
                return
            self._retry_pending = True
        log.info("Nouvel essai d'enregistrement dans %.1fs", delay)
        self.scheduler.call_later(delay, self._retry)

    def _retry(self) -> None:
        with self._lock:
            self._retry_pending = False
            via_loop = self._loop_running
        if self._stop.is_set():
            return
        if via_loop:
            # le tick de relance est fait par la boucle, pas par le timer
            self._wake.set()
        else:
            self._guarded_tick()

    def _guarded_tick(self) -> None:
        try:
            self.tick()
        except Exception:  # pragma: no cover - la boucle ne doit jamais mourir
            log.exception("Erreur inattendue pendant le tick de publication")

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        stop = stop_event or self._stop
        with self._lock:
            self._loop_running = True
        try:
            while not stop.is_set():
                self._guarded_tick()
                self._wake.wait(self.interval)
                self._wake.clear()
        finally:
            with self._lock:
                self._loop_running = False

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="inframon-publisher", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()
        self.scheduler.cancel_all()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 5)
            self._thread = None


__all__ = [
    "RetryPolicy",
    "ThreadScheduler",
    "MasterClient",
    "forward_hostname",
    "HeartbeatPublisher",
]
