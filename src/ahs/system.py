"""
Local host primitives: apply a hostname to the running system and
optionally persist it across reboots.
"""

from __future__ import annotations

import os
import socket
from pathlib import Path
from typing import Callable, List

import structlog

from .errors import HostnameError, PrivilegeError

log = structlog.get_logger(__name__)

LOOPBACK = "127.0.0.1"


def ensure_root(geteuid: Callable[[], int] = os.geteuid) -> None:
    if geteuid() != 0:
        raise PrivilegeError("You have to run this function as root")


class LocalHost:
    def __init__(
        self,
        hostname_path: Path = Path("/etc/hostname"),
        hosts_path: Path = Path("/etc/hosts"),
        sethostname: Callable[[str], None] = socket.sethostname,
    ):
        self.hostname_path = Path(hostname_path)
        self.hosts_path = Path(hosts_path)
        self._sethostname = sethostname

    def set_hostname(self, hostname: str) -> None:
        try:
            self._sethostname(hostname)
        except OSError as e:
            raise HostnameError(f"Unable to set hostname to '{hostname}': {e}") from e

    def persist_hostname(self, hostname: str) -> None:
        log.info(f"Writing hostname to '{self.hostname_path}'")
        try:
            self.hostname_path.write_text(hostname + "\n", encoding="utf-8")
        except OSError as e:
            raise HostnameError(f"Unable to write '{self.hostname_path}': {e}") from e

    def persist_hosts(self, hostname: str) -> None:
        log.info(f"Assigning '{hostname}' to {LOOPBACK} in '{self.hosts_path}'")
        try:
            existing = self.hosts_path.read_text(encoding="utf-8") if self.hosts_path.exists() else ""
            self.hosts_path.write_text(assign_host(existing, LOOPBACK, hostname), encoding="utf-8")
        except OSError as e:
            raise HostnameError(f"Unable to update '{self.hosts_path}': {e}") from e


def assign_host(hosts: str, address: str, hostname: str) -> str:
    """
    Map hostname to address in /etc/hosts content.

    The name is dropped from any other address first; it is appended to the
    first line already serving address, or a new line is added.
    """
    out: List[str] = []
    placed = False
    for line in hosts.splitlines():
        content, sep, comment = line.partition("#")
        fields = content.split()
        if len(fields) < 2:
            out.append(line)
            continue

        ip, names = fields[0], [n for n in fields[1:] if n != hostname]
        if ip == address and not placed:
            names.append(hostname)
            placed = True
        if names == fields[1:]:
            out.append(line)
            continue
        if not names:
            continue

        rebuilt = " ".join([ip] + names)
        if sep:
            rebuilt += " " + sep + comment
        out.append(rebuilt)

    if not placed:
        out.append(f"{address} {hostname}")
    return "\n".join(out) + "\n"
