import socket
from types import SimpleNamespace

import pytest

from inframon import system_info
from inframon.network import discovery


@pytest.fixture
def commands(monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append((cmd, kwargs))
        return SimpleNamespace(returncode=0, stdout="", stderr="")

    monkeypatch.setattr(system_info.subprocess, "run", fake_run)
    return calls


@pytest.mark.parametrize("name", ["gamma", "node-01", "rack3.lab.local", "a" * 63])
def test_valid_hostnames(name):
    assert system_info.is_valid_hostname(name)


@pytest.mark.parametrize("name", [
    "",
    "-leading",
    "trailing-",
    "two words",
    "a|touch${IFS}/tmp/x",
    "$(reboot)",
    "`id`",
    "a;b",
    "a&&b",
    "under_score",
    "a" * 64,
    "dots..twice",
])
def test_invalid_hostnames(name):
    assert not system_info.is_valid_hostname(name)


def test_change_hostname_runs_argv_without_shell(monkeypatch, commands):
    monkeypatch.setattr(system_info, "IS_LINUX", True)
    monkeypatch.setattr(system_info, "IS_MACOS", False)
    system_info.change_hostname("gamma")
    cmd, kwargs = commands[0]
    assert cmd == ["sudo", "-n", "hostnamectl", "set-hostname", "gamma"]
    assert kwargs["shell"] is False


def test_change_hostname_rejects_shell_metacharacters(monkeypatch, commands):
    monkeypatch.setattr(system_info, "IS_LINUX", True)
    with pytest.raises(ValueError):
        system_info.change_hostname("a|touch${IFS}/tmp/x")
    assert commands == []


def test_run_command_failure_raises(monkeypatch):
    monkeypatch.setattr(system_info.subprocess, "run",
                        lambda cmd, **kw: SimpleNamespace(returncode=1, stdout="", stderr="denied"))
    with pytest.raises(RuntimeError, match="denied"):
        system_info.run_command(["false"])


def test_local_ip_and_subnet_skip_link_local(monkeypatch):
    addrs = {
        "lo": [SimpleNamespace(family=socket.AF_INET, address="127.0.0.1")],
        "zeroconf": [SimpleNamespace(family=socket.AF_INET, address="169.254.10.20")],
        "eth0": [SimpleNamespace(family=socket.AF_INET, address="192.168.5.12")],
    }
    monkeypatch.setattr(system_info.psutil, "net_if_addrs", lambda: addrs)
    assert system_info.get_local_ip() == "192.168.5.12"
    assert str(discovery.local_subnet()) == "192.168.5.0/24"


def test_local_ip_unknown_without_lan_address(monkeypatch):
    addrs = {"zeroconf": [SimpleNamespace(family=socket.AF_INET, address="169.254.10.20")]}
    monkeypatch.setattr(system_info.psutil, "net_if_addrs", lambda: addrs)
    assert system_info.get_local_ip() == "Unknown"
