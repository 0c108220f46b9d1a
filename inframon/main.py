#!/usr/bin/env python3
"""
Inframon – point d'entrée : démarre un nœud master ou esclave.

    inframon --master
    inframon --slave --master-url http://10.0.0.1:3899
    inframon            # rôle lu dans la config (IS_MASTER / IFM_IS_MASTER)
"""
from __future__ import annotations

import argparse
import signal
import sys
import threading
from typing import List, Optional

from flask import Flask
from werkzeug.serving import make_server

from inframon import __version__, system_info
from inframon.api import create_frontend_app, create_node_app, create_registry_app
from inframon.config import get_config
from inframon.errors import MasterNotFound
from inframon.logger import attach_file_handlers, get_logger, set_level
from inframon.metrics import metrics_server_start
from inframon.monitor import SystemMonitor
from inframon.network.discovery import DiscoveryListener, discover_master, master_url
from inframon.network.registration import HeartbeatPublisher, MasterClient, RetryPolicy
from inframon.network.registry import NodeIdentity, NodeRecord, NodeRegistry, Reaper
from inframon.node import LocalNode

log = get_logger("main")


class ServerThread:
    """Serveur werkzeug threadé dans un thread démon."""

    def __init__(self, app: Flask, port: int, name: str, host: str = "0.0.0.0"):
        self.name = name
        self._server = make_server(host, port, app, threaded=True)
        self.port = self._server.server_port
        self._thread = threading.Thread(target=self._server.serve_forever, name=f"inframon-{name}", daemon=True)

    def start(self) -> None:
        self._thread.start()
        log.info("Serveur %s à l'écoute sur le port %d", self.name, self.port)

    def stop(self) -> None:
        self._server.shutdown()
        self._thread.join(timeout=5)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="inframon", description="Inframon — tableau de bord multi-nœuds")
    role = parser.add_mutually_exclusive_group()
    role.add_argument("--master", dest="is_master", action="store_true", default=None, help="Lancer ce nœud comme master")
    role.add_argument("--slave", dest="is_master", action="store_false", help="Lancer ce nœud comme esclave")
    parser.add_argument("--master-url", type=str, default=None, help="URL du registre master (sinon découverte réseau)")
    parser.add_argument("--node-port", type=int, default=None, help="Port de l'API du nœud")
    parser.add_argument("--registry-port", type=int, default=None, help="Port de l'API registre (master)")
    parser.add_argument("--discovery-port", type=int, default=None, help="Port TCP de découverte")
    parser.add_argument("--frontend-port", type=int, default=None, help="Port du tableau de bord web")
    parser.add_argument("--history-length", type=int, default=None, help="Nombre d'échantillons conservés")
    parser.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, WARNING, ERROR")
    parser.add_argument("--version", action="version", version=f"inframon {__version__}")
    return parser


def resolve_settings(args: argparse.Namespace, config: Optional[dict] = None) -> dict:
    """Config fusionnée : la ligne de commande l'emporte sur env / config.yaml."""
    settings = dict(config if config is not None else get_config())
    for key, value in vars(args).items():
        if value is not None and key in settings:
            settings[key] = value
    return settings


def start_master(settings: dict, node: LocalNode, stoppers: List) -> NodeRegistry:
    registry = NodeRegistry(
        active_window=settings["active_window"],
        heartbeat_timeout=settings["heartbeat_timeout"],
        reap_after=settings["reap_after"],
    )
    stoppers.append(registry.clear)

    server = ServerThread(create_registry_app(registry), settings["registry_port"], "registre")
    server.start()
    stoppers.append(server.stop)

    listener = DiscoveryListener(
        port=settings["discovery_port"],
        announce_url=lambda: master_url(system_info.get_local_ip(), settings["registry_port"]),
    )
    listener.start()
    stoppers.append(listener.stop)

    reaper = Reaper(registry)
    reaper.start()
    stoppers.append(reaper.stop)

    publisher = HeartbeatPublisher(
        node.build_payload,
        lambda payload: registry.register(NodeRecord.from_payload(payload)),
        interval=settings["sample_interval"],
    )
    publisher.start()
    stoppers.append(publisher.stop)
    log.info("Master prêt (registre %s)", master_url(system_info.get_local_ip(), settings["registry_port"]))
    return registry


def start_slave(settings: dict, node: LocalNode, stoppers: List) -> str:
    url = settings["master_url"]
    if not url:
        log.info("Aucune URL master configurée, lancement de la découverte réseau")
        url = discover_master(
            port=settings["discovery_port"],
            attempts=settings["discovery_attempts"],
            concurrency=settings["discovery_concurrency"],
            timeout=settings["discovery_timeout"],
            retry_delay=settings["discovery_retry_delay"],
        )
    client = MasterClient(url)
    publisher = HeartbeatPublisher(
        node.build_payload,
        client.register,
        interval=settings["sample_interval"],
        retry_policy=RetryPolicy(delay=settings["register_retry_delay"]),
    )
    publisher.start()
    stoppers.append(publisher.stop)
    log.info("Esclave connecté au master %s", url)
    return url


def shutdown(stoppers: List) -> None:
    for stop in reversed(stoppers):
        try:
            stop()
        except Exception:
            log.exception("Erreur pendant l'arrêt")
    stoppers.clear()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = resolve_settings(args)
    set_level(settings["log_level"])
    if settings["log_dir"]:
        attach_file_handlers(settings["log_dir"])

    is_master = bool(settings["is_master"])
    log.info("Démarrage Inframon %s (%s)", __version__, "master" if is_master else "esclave")
    metrics_server_start(settings["metrics_port"])

    monitor = SystemMonitor(history_length=settings["history_length"])
    node = LocalNode(NodeIdentity.local(settings["node_port"], is_master=is_master), monitor)

    stoppers: List = []
    done = threading.Event()

    def _on_signal(signum, _frame):
        log.info("Signal %s reçu, arrêt en cours", signal.Signals(signum).name)
        done.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    try:
        if is_master:
            start_master(settings, node, stoppers)
        else:
            start_slave(settings, node, stoppers)
    except MasterNotFound as e:
        log.error("%s", e.message)
        shutdown(stoppers)
        return 1
    except OSError as e:
        log.error("Impossible de démarrer le nœud : %s", e)
        shutdown(stoppers)
        return 1

    for app, port, name in (
        (create_node_app(node), settings["node_port"], "nœud"),
        (create_frontend_app(settings["frontend_dir"]), settings["frontend_port"], "dashboard"),
    ):
        try:
            server = ServerThread(app, port, name)
        except OSError as e:
            log.error("Port %d indisponible pour le serveur %s : %s", port, name, e)
            shutdown(stoppers)
            return 1
        server.start()
        stoppers.append(server.stop)

    done.wait()
    shutdown(stoppers)
    log.info("Inframon arrêté")
    return 0


if __name__ == "__main__":
    sys.exit(main())
