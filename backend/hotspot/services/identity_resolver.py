"""
Identity Resolver

Maps a client IP to its hardware (MAC) address. Runs on the hot path of every
request, so each strategy bounds its own latency and never raises.
"""
import logging
import os
from typing import Callable, Iterable, Optional

from ..utils.shell import run_command
from ..utils.validators import normalize_mac, is_client_address

logger = logging.getLogger(__name__)

_UNUSABLE_NEIGHBOR_STATES = {"FAILED", "INCOMPLETE"}


class IdentityResolver:
    """
    Resolution order, first success wins:

    1. single-packet ping to force the address into the neighbor table
    2. live neighbor table (``ip neigh show <ip>``)
    3. kernel ARP state file (``/proc/net/arp``)
    4. DHCP lease files (dnsmasq format)
    """

    def __init__(
        self,
        arp_file: str = "/proc/net/arp",
        lease_files: Iterable[str] = (),
        probe_timeout: int = 1,
        runner: Callable = run_command
    ):
        self.arp_file = arp_file
        self.lease_files = list(lease_files)
        self.probe_timeout = probe_timeout
        self.runner = runner

    async def resolve(self, address: str) -> Optional[str]:
        """Return the normalized MAC for ``address`` or None if unresolved"""
        if not is_client_address(address):
            return None
        address = address.strip()

        await self._probe(address)

        mac = await self._from_neighbor_table(address)
        if mac:
            return mac

        mac = self._from_arp_file(address)
        if mac:
            return mac

        mac = self._from_lease_files(address)
        if mac:
            return mac

        logger.debug(f"Identity unresolved for {address}")
        return None

    async def _probe(self, address: str):
        try:
            await self.runner(
                ["ping", "-c", "1", "-W", str(self.probe_timeout), address],
                timeout=self.probe_timeout + 0.5
            )
        except Exception as e:
            logger.debug(f"Reachability probe failed for {address}: {e}")

    async def _from_neighbor_table(self, address: str) -> Optional[str]:
        try:
            result = await self.runner(["ip", "neigh", "show", address], timeout=2.0)
        except Exception as e:
            logger.debug(f"Neighbor lookup failed for {address}: {e}")
            return None
        if not result.ok:
            return None
        return parse_neighbor_output(result.stdout, address)

    def _from_arp_file(self, address: str) -> Optional[str]:
        try:
            with open(self.arp_file, "r") as f:
                return parse_arp_table(f.read(), address)
        except OSError as e:
            logger.debug(f"ARP file unreadable ({self.arp_file}): {e}")
            return None

    def _from_lease_files(self, address: str) -> Optional[str]:
        for path in self.lease_files:
            if not os.path.exists(path):
                continue
            try:
                with open(path, "r") as f:
                    mac = parse_lease_file(f.read(), address)
            except OSError as e:
                logger.debug(f"Lease file unreadable ({path}): {e}")
                continue
            if mac:
                return mac
        return None


def parse_neighbor_output(output: str, address: str) -> Optional[str]:
    """Parse ``ip neigh`` lines: ``10.0.0.5 dev br0 lladdr aa:bb:.. REACHABLE``"""
    for line in output.splitlines():
        parts = line.split()
        if not parts or parts[0] != address:
            continue
        if parts[-1].upper() in _UNUSABLE_NEIGHBOR_STATES:
            continue
        if "lladdr" in parts:
            idx = parts.index("lladdr")
            if idx + 1 < len(parts):
                mac = normalize_mac(parts[idx + 1])
                if mac:
                    return mac
    return None


def parse_arp_table(content: str, address: str) -> Optional[str]:
    """Parse /proc/net/arp; rows with flags 0x0 are incomplete entries"""
    for line in content.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 4 or parts[0] != address:
            continue
        if parts[2] == "0x0":
            continue
        mac = normalize_mac(parts[3])
        if mac:
            return mac
    return None


def parse_lease_file(content: str, address: str) -> Optional[str]:
    """Parse dnsmasq leases: ``<expiry> <mac> <ip> <hostname> <client-id>``"""
    for line in content.splitlines():
        parts = line.split()
        if len(parts) < 3 or parts[2] != address:
            continue
        mac = normalize_mac(parts[1])
        if mac:
            return mac
    return None
