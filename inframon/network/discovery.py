"""Master discovery on the local /24.

Protocol (plain TCP, distinct port from the registry HTTP API):

    slave  -> master : b"INFRAMON_DISCOVERY"
    master -> slave  : {"type": "MASTER_ANNOUNCE", "url": "http://<ip>:<registry_port>"}
    master closes the connection

The master runs a ``DiscoveryListener`` for its whole lifetime. A slave
runs ``MasterDiscovery.discover()``: up to ``attempts`` sweeps of every
host of its subnet, at most ``concurrency`` connection attempts in flight,
first valid announce wins and every other attempt is cancelled.
"""
from __future__ import annotations

import asyncio
import ipaddress
import json
import threading
from typing import Awaitable, Callable, List, Optional, Union

from inframon import system_info
from inframon.errors import MasterNotFound
from inframon.logger import LoggerAdapter
from inframon.metrics import DISCOVERY_ANSWERS, DISCOVERY_PROBES, DISCOVERY_SWEEPS

log = LoggerAdapter("discovery")

DISCOVERY_PORT = 3898
PROBE_TOKEN = b"INFRAMON_DISCOVERY"
ANNOUNCE_TYPE = "MASTER_ANNOUNCE"
MAX_ANNOUNCE_BYTES = 4096
FALLBACK_SUBNET = ipaddress.ip_network("192.168.1.0/24")


def master_url(ip: str, registry_port: int) -> str:
    return f"http://{ip}:{registry_port}"


def encode_announce(url: str) -> bytes:
    return json.dumps({"type": ANNOUNCE_TYPE, "url": url}).encode()


def parse_announce(data: bytes) -> Optional[str]:
    """URL carried by a MASTER_ANNOUNCE message, or None for anything else."""
    try:
        msg = json.loads(data.decode())
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(msg, dict) or msg.get("type") != ANNOUNCE_TYPE:
        return None
    url = msg.get("url")
    if not isinstance(url, str) or not url.startswith(("http://", "https://")):
        return None
    return url


def local_subnet() -> ipaddress.IPv4Network:
    """/24 of the address ``system_info.get_local_ip`` reports (and the master announces)."""
    addresses = system_info.lan_ipv4_addresses()
    if addresses:
        return ipaddress.ip_network(f"{addresses[0]}/24", strict=False)
    log.warning("Aucune interface IPv4 non-loopback, repli sur %s", FALLBACK_SUBNET)
    return FALLBACK_SUBNET


async def read_announce(reader: asyncio.StreamReader) -> bytes:
    """Bytes up to EOF (the master closes after answering), capped at MAX_ANNOUNCE_BYTES."""
    data = bytearray()
    while len(data) < MAX_ANNOUNCE_BYTES:
        chunk = await reader.read(MAX_ANNOUNCE_BYTES - len(data))
        if not chunk:
            break
        data += chunk
    return bytes(data)


# ----------------------------------------------------------------------
# Master side
# ----------------------------------------------------------------------

class DiscoveryListener:
    """Answers discovery probes with the registry URL.

    ``announce_url`` is either the URL string or a callable returning it
    (evaluated per probe, so an address change is picked up).
    """

    def __init__(self, port: int = DISCOVERY_PORT,
                 announce_url: Union[str, Callable[[], str]] = "",
                 host: str = "0.0.0.0", read_timeout: float = 5.0):
        self.host = host
        self.port = port
        self.announce_url = announce_url
        self.read_timeout = read_timeout
        self._server: Optional[asyncio.AbstractServer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    def _url(self) -> str:
        return self.announce_url() if callable(self.announce_url) else self.announce_url

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        try:
            data = await asyncio.wait_for(reader.readexactly(len(PROBE_TOKEN)), self.read_timeout)
            if data != PROBE_TOKEN:
                log.debug("Sonde invalide de %s ignorée", peer)
                return
            log.info("Requête de découverte reçue de %s", peer[0] if peer else "?")
            writer.write(encode_announce(self._url()))
            await writer.drain()
            DISCOVERY_ANSWERS.inc()
        except (asyncio.IncompleteReadError, asyncio.TimeoutError, ConnectionError):
            pass
        finally:
            writer.close()

    async def open(self) -> None:
        self._server = await asyncio.start_server(self._handle, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        log.info("Service de découverte master démarré sur le port %d", self.port)

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def serve(self) -> None:
        await self.open()
        try:
            await self._server.serve_forever()
        finally:
            await self.close()

    def start(self, timeout: float = 5.0) -> None:
        """Run the listener on its own event loop in a daemon thread."""
        if self._thread is not None:
            return
        loop = asyncio.new_event_loop()
        ready = threading.Event()
        failure: List[BaseException] = []

        def runner():
            asyncio.set_event_loop(loop)
            try:
                loop.run_until_complete(self.open())
            except OSError as e:
                failure.append(e)
                ready.set()
                loop.close()
                return
            ready.set()
            try:
                loop.run_forever()
            finally:
                loop.run_until_complete(self.close())
                loop.close()

        self._loop = loop
        self._thread = threading.Thread(target=runner, name="inframon-discovery", daemon=True)
        self._thread.start()
        ready.wait(timeout)
        if failure:
            self._thread = None
            self._loop = None
            raise failure[0]

    def stop(self) -> None:
        if self._thread is None or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
        self._thread = None
        self._loop = None
        log.info("Service de découverte arrêté")


# ----------------------------------------------------------------------
# Slave side
# ----------------------------------------------------------------------

class MasterDiscovery:
    """Bounded, concurrency-limited scan of the subnet for a master."""

    def __init__(
        self,
        port: int = DISCOVERY_PORT,
        subnet: Union[str, ipaddress.IPv4Network, None] = None,
        attempts: int = 5,
        concurrency: int = 50,
        timeout: float = 1.0,
        retry_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.port = port
        self.subnet = ipaddress.ip_network(subnet, strict=False) if subnet else None
        self.attempts = attempts
        self.concurrency = concurrency
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.sleep = sleep

    def hosts(self) -> List[str]:
        network = self.subnet or local_subnet()
        return [str(h) for h in network.hosts()]

    async def probe(self, host: str) -> Optional[str]:
        """Send one probe; the announced URL or None. Never raises on I/O errors."""
        DISCOVERY_PROBES.inc()
        writer = None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, self.port), self.timeout)
            log.debug("Connexion à un master potentiel : %s", host)
            writer.write(PROBE_TOKEN)
            await writer.drain()
            data = await asyncio.wait_for(read_announce(reader), self.timeout)
        except (OSError, asyncio.TimeoutError):
            return None
        finally:
            if writer is not None:
                writer.close()
        return parse_announce(data)

    async def sweep(self, hosts: List[str]) -> Optional[str]:
        """One pass over ``hosts``; the first announce processed wins."""
        gate = asyncio.Semaphore(self.concurrency)

        async def bounded(host: str) -> Optional[str]:
            async with gate:
                return await self.probe(host)

        tasks = [asyncio.ensure_future(bounded(h)) for h in hosts]
        try:
            for fut in asyncio.as_completed(tasks):
                url = await fut
                if url:
                    return url
            return None
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def discover(self) -> str:
        for attempt in range(1, self.attempts + 1):
            hosts = self.hosts()
            log.info("Scan réseau tentative %d/%d (%d hôtes)...", attempt, self.attempts, len(hosts))
            url = await self.sweep(hosts)
            if url:
                DISCOVERY_SWEEPS.labels("found").inc()
                log.info("Master trouvé à %s", url)
                return url
            DISCOVERY_SWEEPS.labels("empty").inc()
            if attempt < self.attempts:
                await self.sleep(self.retry_delay)
        raise MasterNotFound(f"No master node found after {self.attempts} attempts")


def discover_master(**kwargs) -> str:
    """Blocking wrapper around ``MasterDiscovery(**kwargs).discover()``."""
    return asyncio.run(MasterDiscovery(**kwargs).discover())


__all__ = [
    "DISCOVERY_PORT",
    "PROBE_TOKEN",
    "ANNOUNCE_TYPE",
    "DiscoveryListener",
    "MasterDiscovery",
    "discover_master",
    "local_subnet",
    "master_url",
    "encode_announce",
    "parse_announce",
    "read_announce",
]
