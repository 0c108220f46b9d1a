"""Healthcheck Inframon : outils de mesure disponibles sur cet hôte.

Exécution :
    inframon-health
    python -m inframon.health
"""
from __future__ import annotations
import json
import platform
import sys

import psutil

from inframon import __version__, system_info
from inframon.network.discovery import local_subnet


def report() -> dict:
    return {
        "inframon": __version__,
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "psutil": psutil.__version__,
        "tools": system_info.available_tools(),
        "local_ip": system_info.get_local_ip(),
        "subnet": str(local_subnet()),
    }


def main():
    print(json.dumps(report(), indent=2, ensure_ascii=False))

if __name__ == "__main__":
    main()
