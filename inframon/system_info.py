"""Metric source: point-in-time host values.

psutil covers what it can portably; GPU, power and hostname changes go
through the vendor command-line tools (nvidia-smi, rocm-smi, powermetrics,
hostnamectl, scutil). Every probe degrades to a neutral value when its
tool is missing so one absent binary never stops the sampling loop.
"""
from __future__ import annotations

import ipaddress
import platform
import re
import shutil
import socket
import subprocess
import time
from functools import lru_cache
from typing import Dict, List, Optional, Union

import psutil

from inframon.logger import get_logger
from inframon.snapshot import empty_capabilities

log = get_logger("system_info")

IS_MACOS = platform.system() == "Darwin"
IS_LINUX = platform.system() == "Linux"

HOSTNAME_RE = re.compile(
    r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*"
)

MB = 1024 * 1024
TFLOPS = 1.00

# FLOPS par puce (TFLOPS), source: tableau exo-explore
CHIP_FLOPS: Dict[str, Dict[str, float]] = {
    "Apple M1": {"fp32": 2.29*TFLOPS, "fp16": 4.58*TFLOPS, "int8": 9.16*TFLOPS},
    "Apple M1 Pro": {"fp32": 5.30*TFLOPS, "fp16": 10.60*TFLOPS, "int8": 21.20*TFLOPS},
    "Apple M1 Max": {"fp32": 10.60*TFLOPS, "fp16": 21.20*TFLOPS, "int8": 42.40*TFLOPS},
    "Apple M2": {"fp32": 3.55*TFLOPS, "fp16": 7.10*TFLOPS, "int8": 14.20*TFLOPS},
    "Apple M2 Pro": {"fp32": 5.68*TFLOPS, "fp16": 11.36*TFLOPS, "int8": 22.72*TFLOPS},
    "Apple M2 Max": {"fp32": 13.49*TFLOPS, "fp16": 26.98*TFLOPS, "int8": 53.96*TFLOPS},
    "Apple M3": {"fp32": 3.55*TFLOPS, "fp16": 7.10*TFLOPS, "int8": 14.20*TFLOPS},
    "Apple M3 Max": {"fp32": 14.20*TFLOPS, "fp16": 28.40*TFLOPS, "int8": 56.80*TFLOPS},
    "Apple M4": {"fp32": 4.26*TFLOPS, "fp16": 8.52*TFLOPS, "int8": 17.04*TFLOPS},
    "Apple M4 Pro": {"fp32": 5.72*TFLOPS, "fp16": 11.44*TFLOPS, "int8": 22.88*TFLOPS},
    "Apple M4 Max": {"fp32": 18.03*TFLOPS, "fp16": 36.07*TFLOPS, "int8": 72.14*TFLOPS},
    "NVIDIA GEFORCE RTX 4090": {"fp32": 82.58*TFLOPS, "fp16": 165.16*TFLOPS, "int8": 330.32*TFLOPS},
    "NVIDIA GEFORCE RTX 4080": {"fp32": 48.74*TFLOPS, "fp16": 97.48*TFLOPS, "int8": 194.96*TFLOPS},
    "NVIDIA GEFORCE RTX 4070": {"fp32": 29.0*TFLOPS, "fp16": 58.0*TFLOPS, "int8": 116.0*TFLOPS},
    "NVIDIA GEFORCE RTX 3090": {"fp32": 35.6*TFLOPS, "fp16": 71.2*TFLOPS, "int8": 142.4*TFLOPS},
    "NVIDIA GEFORCE RTX 3080 TI": {"fp32": 34.1*TFLOPS, "fp16": 68.2*TFLOPS, "int8": 136.4*TFLOPS},
    "NVIDIA GEFORCE RTX 3070": {"fp32": 20.3*TFLOPS, "fp16": 40.6*TFLOPS, "int8": 81.2*TFLOPS},
    "NVIDIA GEFORCE RTX 3060": {"fp32": 13.0*TFLOPS, "fp16": 26.0*TFLOPS, "int8": 52.0*TFLOPS},
    "NVIDIA RTX A6000": {"fp32": 38.71*TFLOPS, "fp16": 38.71*TFLOPS, "int8": 154.84*TFLOPS},
    "NVIDIA A100 80GB PCIE": {"fp32": 19.5*TFLOPS, "fp16": 312.0*TFLOPS, "int8": 624.0*TFLOPS},
    "AMD Radeon RX 7900 XTX": {"fp32": 61.4*TFLOPS, "fp16": 122.8*TFLOPS, "int8": 245.6*TFLOPS},
    "AMD Radeon RX 6900 XT": {"fp32": 23.04*TFLOPS, "fp16": 46.08*TFLOPS, "int8": 92.16*TFLOPS},
}


def lookup_flops(chip: str) -> Dict[str, float]:
    """FLOPS for a chip name, tolerant to case and laptop suffixes."""
    key = chip.upper().replace("LAPTOP GPU", "").strip()
    for name, flops in CHIP_FLOPS.items():
        if name.upper() == key:
            return dict(flops)
    return {"fp32": 0.0, "fp16": 0.0, "int8": 0.0}


def run_command(cmd: Union[str, List[str]], timeout: float = 5.0) -> str:
    """Run a command and return stripped stdout; raise RuntimeError on failure.

    A string goes through the shell (fixed probe pipelines only), an argv
    list is executed directly and is the only form for caller-supplied values.
    """
    try:
        proc = subprocess.run(cmd, shell=isinstance(cmd, str), capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise RuntimeError(f"{cmd!r}: {e}") from e
    if proc.returncode != 0:
        raise RuntimeError(f"{cmd!r} exited {proc.returncode}: {proc.stderr.strip()}")
    return proc.stdout.strip()


def _tool(name: str) -> bool:
    return shutil.which(name) is not None


# ----------------------------------------------------------------------
# CPU / mémoire
# ----------------------------------------------------------------------

def get_cpu_usage() -> float:
    return float(psutil.cpu_percent(interval=None))


def get_memory_usage() -> float:
    return float(psutil.virtual_memory().percent)


def get_total_memory() -> float:
    return round(psutil.virtual_memory().total / MB, 2)


def get_used_memory() -> float:
    vm = psutil.virtual_memory()
    return round((vm.total - vm.available) / MB, 2)


def get_cpu_core_count() -> int:
    return psutil.cpu_count(logical=True) or 0


@lru_cache(maxsize=1)
def get_cpu_model() -> str:
    try:
        if IS_LINUX:
            with open("/proc/cpuinfo", "r") as f:
                for line in f:
                    if line.lower().startswith("model name"):
                        return line.split(":", 1)[1].strip()
        elif IS_MACOS:
            return run_command("sysctl -n machdep.cpu.brand_string")
    except (OSError, RuntimeError) as e:
        log.debug("cpu model indisponible: %s", e)
    return platform.processor() or "Unknown"


# ----------------------------------------------------------------------
# GPU / puissance
# ----------------------------------------------------------------------

@lru_cache(maxsize=1)
def gpu_vendor() -> Optional[str]:
    """'nvidia', 'amd', 'apple' or None, detected once per process."""
    if _tool("nvidia-smi"):
        try:
            if "NVIDIA" in run_command("nvidia-smi --query-gpu=name --format=csv,noheader,nounits").upper():
                return "nvidia"
        except RuntimeError:
            pass
    if _tool("rocm-smi"):
        try:
            out = run_command("rocm-smi --showproductname")
            if "AMD" in out or "Radeon" in out:
                return "amd"
        except RuntimeError:
            pass
    if IS_MACOS and platform.machine() == "arm64":
        return "apple"
    return None


def _first_float(text: str) -> float:
    for token in text.replace(",", " ").split():
        try:
            return float(token.rstrip("%W"))
        except ValueError:
            continue
    return 0.0


def get_gpu_usage() -> float:
    vendor = gpu_vendor()
    try:
        if vendor == "nvidia":
            return _first_float(run_command("nvidia-smi --query-gpu=utilization.gpu --format=csv,noheader,nounits"))
        if vendor == "amd":
            return _first_float(run_command("rocm-smi --showuse | grep -i 'GPU use' | awk '{print $NF}'"))
        if vendor == "apple":
            out = run_command("sudo -n powermetrics -n 1 -i 1000 --samplers gpu_power | grep -i 'active residency'")
            return _first_float(out.split(":", 1)[-1])
    except RuntimeError as e:
        log.debug("usage GPU indisponible: %s", e)
    return 0.0


def get_gpu_core_count() -> int:
    vendor = gpu_vendor()
    try:
        if vendor == "apple":
            out = run_command("system_profiler SPDisplaysDataType | grep -i 'Total Number of Cores'")
            return int(_first_float(out.split(":", 1)[-1]))
        if vendor == "nvidia":
            return len(run_command("nvidia-smi --query-gpu=name --format=csv,noheader").splitlines())
    except (RuntimeError, ValueError) as e:
        log.debug("cœurs GPU indisponibles: %s", e)
    return 0


def get_power_usage() -> float:
    vendor = gpu_vendor()
    try:
        if vendor == "nvidia":
            out = run_command("nvidia-smi --query-gpu=power.draw --format=csv,noheader,nounits")
            return round(sum(_first_float(line) for line in out.splitlines()), 2)
        if IS_MACOS:
            out = run_command("sudo -n powermetrics -n 1 -i 1000 --samplers cpu_power | grep -i 'Combined Power'")
            return round(_first_float(out.split(":", 1)[-1]) / 1000.0, 2)  # mW -> W
    except RuntimeError as e:
        log.debug("puissance indisponible: %s", e)
    return 0.0


# ----------------------------------------------------------------------
# Réseau / stockage / système
# ----------------------------------------------------------------------

def get_network_traffic() -> Dict[str, float]:
    """Cumulative rx/tx of non-loopback interfaces, in MB."""
    rx = tx = 0
    for name, counters in psutil.net_io_counters(pernic=True).items():
        if name == "lo" or name.startswith("lo0"):
            continue
        rx += counters.bytes_recv
        tx += counters.bytes_sent
    return {"rx": round(rx / MB, 2), "tx": round(tx / MB, 2)}


def get_storage_info(path: str = "/") -> Dict[str, int]:
    try:
        usage = psutil.disk_usage(path)
    except OSError as e:
        log.debug("stockage indisponible: %s", e)
        return {"total": 0, "used": 0, "available": 0}
    return {"total": usage.total, "used": usage.used, "available": usage.free}


def get_uptime() -> str:
    seconds = int(time.time() - psutil.boot_time())
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes = rem // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    return f"{hours}h {minutes}m"


def get_os() -> str:
    if IS_LINUX:
        return "Linux"
    if IS_MACOS:
        return "macOS"
    return platform.system() or "Unknown"


def get_system_name() -> str:
    return socket.gethostname() or "Unknown"


def is_lan_ipv4(address: str) -> bool:
    """IPv4 address usable on the LAN: neither loopback nor link-local (169.254/16)."""
    try:
        ip = ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return not (ip.is_loopback or ip.is_link_local or ip.is_unspecified)


def lan_ipv4_addresses() -> List[str]:
    """LAN IPv4 addresses of this host, in interface order."""
    return [addr.address
            for addrs in psutil.net_if_addrs().values()
            for addr in addrs
            if addr.family == socket.AF_INET and is_lan_ipv4(addr.address)]


def get_local_ip() -> str:
    """First LAN IPv4 address of this host."""
    addresses = lan_ipv4_addresses()
    return addresses[0] if addresses else "Unknown"


def is_cloudflared_running() -> bool:
    for proc in psutil.process_iter(["name"]):
        try:
            if proc.info.get("name") == "cloudflared":
                return True
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return False


@lru_cache(maxsize=1)
def get_device_capabilities() -> Dict:
    caps = empty_capabilities()
    vendor = gpu_vendor()
    try:
        if vendor == "nvidia":
            line = run_command("nvidia-smi --query-gpu=name,memory.total --format=csv,noheader,nounits").splitlines()[0]
            name, mem = [p.strip() for p in line.split(",", 1)]
            caps.update(model=get_system_name(), chip=name, memory=int(_first_float(mem)))
        elif IS_MACOS:
            chip = run_command("sysctl -n machdep.cpu.brand_string")
            caps.update(model=run_command("sysctl -n hw.model"), chip=chip,
                        memory=int(psutil.virtual_memory().total / MB))
        else:
            caps.update(model=get_system_name(), chip=get_cpu_model(),
                        memory=int(psutil.virtual_memory().total / MB))
    except (RuntimeError, IndexError, ValueError) as e:
        log.debug("capacités indisponibles: %s", e)
    caps["flops"] = lookup_flops(caps["chip"])
    return caps


def is_valid_hostname(name: str) -> bool:
    """RFC 1123 hostname: dot-separated labels of letters, digits and inner hyphens."""
    return isinstance(name, str) and len(name) <= 253 and HOSTNAME_RE.fullmatch(name) is not None


def change_hostname(new_hostname: str) -> None:
    """Rename this host; raises RuntimeError when the platform command fails."""
    if not is_valid_hostname(new_hostname):
        raise ValueError(f"invalid hostname: {new_hostname!r}")
    if IS_LINUX:
        run_command(["sudo", "-n", "hostnamectl", "set-hostname", new_hostname])
    elif IS_MACOS:
        run_command(["sudo", "-n", "scutil", "--set", "HostName", new_hostname])
    else:
        raise RuntimeError(f"hostname change unsupported on {platform.system()}")
    log.info("Hostname changé en %s", new_hostname)


def available_tools() -> Dict[str, bool]:
    return {t: _tool(t) for t in ("nvidia-smi", "rocm-smi", "powermetrics", "hostnamectl", "scutil", "cloudflared")}

__all__ = [
    "get_cpu_usage", "get_memory_usage", "get_total_memory", "get_used_memory",
    "get_cpu_core_count", "get_cpu_model", "get_gpu_usage", "get_gpu_core_count",
    "get_power_usage", "get_network_traffic", "get_storage_info", "get_uptime",
    "get_os", "get_system_name", "get_local_ip", "is_lan_ipv4", "lan_ipv4_addresses", "is_cloudflared_running",
    "get_device_capabilities", "is_valid_hostname", "change_hostname", "available_tools", "lookup_flops",
    "run_command",
]
