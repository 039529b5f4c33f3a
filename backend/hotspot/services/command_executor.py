"""
Command Executor

The only place that knows iptables/tc/ip syntax. The enforcement layer, the
rule sweeper and the topology manager talk to this interface, so tests swap
in an in-memory executor instead of touching the kernel.
"""
import ipaddress
import json
import logging
import re
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple

from ..exceptions import EnforcementFailure
from ..utils.shell import CommandResult, run_command
from ..utils.validators import normalize_mac

logger = logging.getLogger(__name__)

ALLOW_COMMENT = "hotspot-allow"
ROOT_HANDLE = "1:"
INGRESS_HANDLE = "ffff:"
DEFAULT_CLASS = "1:10"
FILTER_PRIO = "1"
MISSING_TOOL = 127

_U32_MATCH = re.compile(r"match ([0-9a-f]{8})/ffffffff at (12|16)")
_QDISC_DEV = re.compile(r"^qdisc (\S+) ([0-9a-f]+:)\s+dev (\S+)")


class CommandExecutor:
    """Capability boundary for OS-level network state"""

    async def run(self, args: Sequence[str], input_text: Optional[str] = None) -> CommandResult:
        raise NotImplementedError

    async def initialize_firewall(self, wan_interface: str, portal_port: int, hotspot_interfaces: Iterable[str]):
        raise NotImplementedError

    async def apply_allow(self, hardware_id: str, address: str):
        raise NotImplementedError

    async def revoke_allow(self, hardware_id: str, address: str):
        raise NotImplementedError

    async def list_allow_rules(self) -> Set[Tuple[str, str]]:
        raise NotImplementedError

    async def interface_for(self, address: str) -> Optional[str]:
        raise NotImplementedError

    async def apply_shaping(self, interface: str, address: str, download_limit: int, upload_limit: int):
        raise NotImplementedError

    async def revoke_shaping(self, interface: str, address: str):
        raise NotImplementedError

    async def list_shaping_targets(self, interface: str) -> Set[str]:
        raise NotImplementedError

    async def shaping_interfaces(self) -> List[str]:
        raise NotImplementedError

    async def apply_qos(self, interface: str, discipline: str):
        raise NotImplementedError


def shaping_slot(address: str) -> int:
    """
    Per-address slot used for both the HTB class minor and the u32 handle.

    Derived from the low 11 bits of the address, so addresses inside one /21
    never collide on the same interface.
    """
    try:
        octets = ipaddress.IPv4Address(address).packed
    except ValueError:
        raise EnforcementFailure(f"Cannot shape non-IPv4 address {address!r}")
    return (((octets[2] & 0x07) << 8) | octets[3]) + 1


def class_id(address: str) -> str:
    return f"1:{0x1000 + shaping_slot(address):x}"


def filter_handle(address: str) -> str:
    return f"800::{shaping_slot(address):x}"


def _hex_to_ip(value: str) -> str:
    return str(ipaddress.IPv4Address(int(value, 16)))


class ShellCommandExecutor(CommandExecutor):
    """Implements the executor by invoking iptables, tc and ip"""

    def __init__(
        self,
        lan_interface: str = "br0",
        timeout: float = 5.0,
        runner: Callable = run_command,
        dry_run: bool = False
    ):
        self.lan_interface = lan_interface
        self.timeout = timeout
        self.runner = runner
        self.dry_run = dry_run

    async def run(self, args: Sequence[str], input_text: Optional[str] = None) -> CommandResult:
        if self.dry_run:
            logger.debug(f"[dry-run] {' '.join(str(a) for a in args)}")
            return CommandResult(list(args), 0, "", "")
        return await self.runner(list(args), timeout=self.timeout, input_text=input_text)

    async def _must(self, args: Sequence[str]) -> CommandResult:
        result = await self.run(args)
        if not result.ok:
            raise EnforcementFailure(f"{result.command}: {result.stderr.strip() or result.returncode}")
        return result

    async def _best_effort(self, args: Sequence[str]) -> CommandResult:
        """Run a removal; absence is fine, a missing tool or timeout is not"""
        result = await self.run(args)
        if result.returncode in (MISSING_TOOL, -1):
            raise EnforcementFailure(f"{result.command}: {result.stderr.strip()}")
        return result

    # ========== FIREWALL ==========

    async def initialize_firewall(self, wan_interface: str, portal_port: int, hotspot_interfaces: Iterable[str]):
        await self._best_effort(["sysctl", "-w", "net.ipv4.ip_forward=1"])

        await self._must(["iptables", "-F"])
        await self._must(["iptables", "-t", "nat", "-F"])
        await self._must(["iptables", "-P", "FORWARD", "DROP"])
        await self._must(["iptables", "-A", "FORWARD", "-m", "conntrack",
                          "--ctstate", "RELATED,ESTABLISHED", "-j", "ACCEPT"])
        await self._must(["iptables", "-t", "nat", "-A", "POSTROUTING",
                          "-o", wan_interface, "-j", "MASQUERADE"])

        # DNS and DHCP always reach the gateway itself
        for proto, port in (("udp", "53"), ("tcp", "53"), ("udp", "67:68")):
            await self._must(["iptables", "-A", "INPUT", "-p", proto, "--dport", port, "-j", "ACCEPT"])

        # Unadmitted HTTP lands on the portal; allow rules are inserted above this
        for interface in hotspot_interfaces:
            await self._must(["iptables", "-t", "nat", "-A", "PREROUTING", "-i", interface,
                              "-p", "tcp", "--dport", "80", "-j", "REDIRECT",
                              "--to-ports", str(portal_port)])

    def _allow_rule(self, hardware_id: str, address: str) -> List[str]:
        return [
            "-s", address, "-m", "mac", "--mac-source", hardware_id,
            "-m", "comment", "--comment", ALLOW_COMMENT, "-j", "ACCEPT"
        ]

    async def apply_allow(self, hardware_id: str, address: str):
        rule = self._allow_rule(hardware_id, address)
        for table, chain in (("filter", "FORWARD"), ("nat", "PREROUTING")):
            check = await self.run(["iptables", "-t", table, "-C", chain] + rule)
            if check.ok:
                continue
            if check.returncode in (MISSING_TOOL, -1):
                raise EnforcementFailure(f"{check.command}: {check.stderr.strip()}")
            await self._must(["iptables", "-t", table, "-I", chain, "1"] + rule)

    async def revoke_allow(self, hardware_id: str, address: str):
        rule = self._allow_rule(hardware_id, address)
        for table, chain in (("filter", "FORWARD"), ("nat", "PREROUTING")):
            # Delete every copy; an older process may have inserted duplicates
            for _ in range(10):
                result = await self._best_effort(["iptables", "-t", table, "-D", chain] + rule)
                if not result.ok:
                    break

    async def list_allow_rules(self) -> Set[Tuple[str, str]]:
        result = await self._must(["iptables", "-S", "FORWARD"])
        return parse_allow_rules(result.stdout)

    # ========== TRAFFIC SHAPING ==========

    async def interface_for(self, address: str) -> Optional[str]:
        result = await self.run(["ip", "-j", "route", "get", address])
        if result.ok:
            try:
                routes = json.loads(result.stdout or "[]")
            except ValueError:
                routes = []
            for route in routes:
                if route.get("dev"):
                    return route["dev"]
        return self.lan_interface

    async def _has_root(self, interface: str) -> bool:
        result = await self.run(["tc", "qdisc", "show", "dev", interface])
        if result.returncode in (MISSING_TOOL, -1):
            raise EnforcementFailure(f"{result.command}: {result.stderr.strip()}")
        return f"htb {ROOT_HANDLE} root" in result.stdout and "ingress" in result.stdout

    async def _ensure_root(self, interface: str, discipline: str = "fq_codel"):
        await self._must(["tc", "qdisc", "replace", "dev", interface, "root",
                          "handle", ROOT_HANDLE, "htb", "default", "10"])
        await self._must(["tc", "class", "replace", "dev", interface, "parent", ROOT_HANDLE,
                          "classid", DEFAULT_CLASS, "htb", "rate", "1000mbit"])
        await self._must(["tc", "qdisc", "replace", "dev", interface, "parent", DEFAULT_CLASS,
                          "handle", "10:", discipline])
        await self._must(["tc", "qdisc", "replace", "dev", interface, "ingress"])

    async def apply_qos(self, interface: str, discipline: str):
        await self._ensure_root(interface, discipline or "fq_codel")

    async def apply_shaping(self, interface: str, address: str, download_limit: int, upload_limit: int):
        download_limit = int(download_limit or 0)
        upload_limit = int(upload_limit or 0)
        if download_limit <= 0 and upload_limit <= 0:
            await self.revoke_shaping(interface, address)
            return

        if not await self._has_root(interface):
            await self._ensure_root(interface)

        classid = class_id(address)
        handle = filter_handle(address)

        if download_limit > 0:
            rate = f"{download_limit}mbit"
            await self._must(["tc", "class", "replace", "dev", interface, "parent", ROOT_HANDLE,
                              "classid", classid, "htb", "rate", rate, "ceil", rate])
            await self._must(["tc", "filter", "replace", "dev", interface, "parent", ROOT_HANDLE,
                              "protocol", "ip", "prio", FILTER_PRIO, "handle", handle, "u32",
                              "match", "ip", "dst", f"{address}/32", "flowid", classid])
        else:
            await self._best_effort(["tc", "filter", "del", "dev", interface, "parent", ROOT_HANDLE,
                                     "protocol", "ip", "prio", FILTER_PRIO, "handle", handle, "u32"])
            await self._best_effort(["tc", "class", "del", "dev", interface, "classid", classid])

        if upload_limit > 0:
            await self._must(["tc", "filter", "replace", "dev", interface, "parent", INGRESS_HANDLE,
                              "protocol", "ip", "prio", FILTER_PRIO, "handle", handle, "u32",
                              "match", "ip", "src", f"{address}/32",
                              "police", "rate", f"{upload_limit}mbit", "burst", "64k",
                              "drop", "flowid", ":1"])
        else:
            await self._best_effort(["tc", "filter", "del", "dev", interface, "parent", INGRESS_HANDLE,
                                     "protocol", "ip", "prio", FILTER_PRIO, "handle", handle, "u32"])

    async def revoke_shaping(self, interface: str, address: str):
        handle = filter_handle(address)
        await self._best_effort(["tc", "filter", "del", "dev", interface, "parent", ROOT_HANDLE,
                                 "protocol", "ip", "prio", FILTER_PRIO, "handle", handle, "u32"])
        await self._best_effort(["tc", "class", "del", "dev", interface, "classid", class_id(address)])
        await self._best_effort(["tc", "filter", "del", "dev", interface, "parent", INGRESS_HANDLE,
                                 "protocol", "ip", "prio", FILTER_PRIO, "handle", handle, "u32"])

    async def list_shaping_targets(self, interface: str) -> Set[str]:
        targets = set()
        for parent in (ROOT_HANDLE, INGRESS_HANDLE):
            result = await self._must(["tc", "filter", "show", "dev", interface, "parent", parent])
            targets |= parse_shaping_targets(result.stdout)
        return targets

    async def shaping_interfaces(self) -> List[str]:
        result = await self._must(["tc", "qdisc", "show"])
        return parse_shaping_interfaces(result.stdout)


def parse_allow_rules(output: str) -> Set[Tuple[str, str]]:
    """Extract (mac, ip) pairs from ``iptables -S`` lines tagged as ours"""
    rules = set()
    for line in output.splitlines():
        if ALLOW_COMMENT not in line:
            continue
        parts = line.split()
        try:
            address = parts[parts.index("-s") + 1].split("/")[0]
            mac = normalize_mac(parts[parts.index("--mac-source") + 1])
        except (ValueError, IndexError):
            continue
        if mac:
            rules.add((mac, address))
    return rules


def parse_shaping_targets(output: str) -> Set[str]:
    """Addresses matched by u32 filters (dst at offset 16, src at 12)"""
    return {_hex_to_ip(m.group(1)) for m in _U32_MATCH.finditer(output)}


def parse_shaping_interfaces(output: str) -> List[str]:
    interfaces = []
    for line in output.splitlines():
        m = _QDISC_DEV.match(line.strip())
        if not m:
            continue
        kind, handle, dev = m.groups()
        if (kind == "htb" and handle == ROOT_HANDLE) or kind == "ingress":
            if dev not in interfaces:
                interfaces.append(dev)
    return interfaces
