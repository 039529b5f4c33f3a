"""
Enforcement Service

Projects admission decisions onto kernel rules through a CommandExecutor.
Every OS mutation is best-effort: failures are logged and reported as False,
and the caller's session-store mutation stands regardless. The periodic
reconciliation sweep and probe-triggered re-applies converge the rest.
"""
import logging
from typing import Callable, Dict, Iterable, Optional, Set, Tuple

from ..exceptions import EnforcementFailure
from .command_executor import CommandExecutor

logger = logging.getLogger(__name__)


class EnforcementService:

    def __init__(self, executor: CommandExecutor):
        self.executor = executor

    async def _interface_for(self, address: str) -> Optional[str]:
        try:
            return await self.executor.interface_for(address)
        except EnforcementFailure as e:
            logger.warning(f"⚠️ Could not determine interface for {address}: {e}")
            return None

    async def admit(self, hardware_id: str, address: str, download_limit: int = 0, upload_limit: int = 0) -> bool:
        """Ensure the allow rule and shaping class exist for (hardware_id, address)"""
        if not hardware_id or not address:
            return False

        ok = True
        try:
            await self.executor.apply_allow(hardware_id, address)
        except EnforcementFailure as e:
            logger.error(f"❌ Allow rule for {hardware_id} @ {address} failed: {e}")
            ok = False

        interface = await self._interface_for(address)
        if interface:
            try:
                await self.executor.apply_shaping(interface, address, download_limit or 0, upload_limit or 0)
            except EnforcementFailure as e:
                logger.error(f"❌ Shaping for {address} on {interface} failed: {e}")
                ok = False

        if ok:
            logger.info(f"✅ Admitted {hardware_id} @ {address} ({download_limit or 0}/{upload_limit or 0} Mbit/s)")
        return ok

    async def revoke(self, hardware_id: str, address: str) -> bool:
        """Remove the allow rule and shaping class; absent rules are fine"""
        if not hardware_id or not address:
            return False

        ok = True
        try:
            await self.executor.revoke_allow(hardware_id, address)
        except EnforcementFailure as e:
            logger.error(f"❌ Revoking allow rule for {hardware_id} @ {address} failed: {e}")
            ok = False

        interface = await self._interface_for(address)
        if interface:
            try:
                await self.executor.revoke_shaping(interface, address)
            except EnforcementFailure as e:
                logger.error(f"❌ Removing shaping for {address} on {interface} failed: {e}")
                ok = False

        if ok:
            logger.info(f"🚫 Revoked {hardware_id} @ {address}")
        return ok

    async def reconcile(self, load_active: Callable[[], Iterable[Tuple[str, str]]]) -> Dict[str, int]:
        """
        Delete rules with no backing active session.

        Kernel state is listed before ``load_active`` is called, so a session
        admitted while the listing runs is never mistaken for an orphan.

        Args:
            load_active: returns (hardware_id, address) pairs of unpaused
                sessions with time left

        Returns:
            dict: counts of removed shaping targets and allow rules
        """
        removed = {"shaping": 0, "allow": 0}

        try:
            interfaces = await self.executor.shaping_interfaces()
        except EnforcementFailure as e:
            logger.error(f"❌ Listing shaping interfaces failed: {e}")
            interfaces = []

        shaping: Dict[str, Set[str]] = {}
        for interface in interfaces:
            try:
                shaping[interface] = await self.executor.list_shaping_targets(interface)
            except EnforcementFailure as e:
                logger.error(f"❌ Listing shaping targets on {interface} failed: {e}")

        try:
            rules = await self.executor.list_allow_rules()
        except EnforcementFailure as e:
            logger.error(f"❌ Listing allow rules failed: {e}")
            rules = set()

        active_pairs: Set[Tuple[str, str]] = {(h, a) for h, a in load_active() if h and a}
        active_addresses = {a for _, a in active_pairs}

        for interface, targets in shaping.items():
            for address in sorted(targets - active_addresses):
                try:
                    await self.executor.revoke_shaping(interface, address)
                    removed["shaping"] += 1
                except EnforcementFailure as e:
                    logger.error(f"❌ Removing orphan shaping {address} on {interface} failed: {e}")

        for hardware_id, address in sorted(rules - active_pairs):
            try:
                await self.executor.revoke_allow(hardware_id, address)
                removed["allow"] += 1
            except EnforcementFailure as e:
                logger.error(f"❌ Removing orphan allow rule {hardware_id} @ {address} failed: {e}")

        if removed["shaping"] or removed["allow"]:
            logger.info(
                f"🧹 Reconciled: removed {removed['shaping']} shaping target(s), "
                f"{removed['allow']} allow rule(s)"
            )
        return removed

    async def initialize_baseline(self, wan_interface: str, portal_port: int, hotspot_interfaces: Iterable[str]) -> bool:
        try:
            await self.executor.initialize_firewall(wan_interface, portal_port, list(hotspot_interfaces))
        except EnforcementFailure as e:
            logger.error(f"❌ Baseline firewall initialization failed: {e}")
            return False
        logger.info(f"🔥 Baseline firewall ready (WAN {wan_interface})")
        return True
