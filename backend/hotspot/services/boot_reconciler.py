"""
Boot Reconciler

Kernel rules do not survive a restart, so on startup the topology is rebuilt
and every paying device is re-admitted at its last known address.

Order: bridges, VLANs, hotspot scopes, access points, global QoS, baseline
firewall, per-session admits. Each topology item is log-and-continue.
"""
import logging
from typing import Awaitable, Callable, Dict, List

from sqlalchemy.orm import Session

from ..models.network import Bridge, HotspotScope, Vlan, WirelessSettings
from ..models.system_config import SystemConfig
from ..utils.helpers import decrypt_secret
from .enforcement import EnforcementService
from .session_store import SessionStore
from .topology_manager import TopologyManager

logger = logging.getLogger(__name__)

DEFAULT_QOS_DISCIPLINE = "cake"


class BootReconciler:

    def __init__(
        self,
        session_factory: Callable,
        topology: TopologyManager,
        enforcement: EnforcementService,
        lan_interface: str = "br0",
        wan_interface: str = "eth0",
        portal_port: int = 80
    ):
        self.session_factory = session_factory
        self.topology = topology
        self.enforcement = enforcement
        self.lan_interface = lan_interface
        self.wan_interface = wan_interface
        self.portal_port = portal_port

    async def _step(self, report: Dict, label: str, action: Callable[[], Awaitable]):
        try:
            await action()
            report["applied"].append(label)
        except Exception as e:
            logger.error(f"❌ Boot step {label} failed: {e}")
            report["failed"].append(label)

    async def run(self) -> Dict[str, List]:
        """Returns which steps applied, which failed and who was re-admitted"""
        report = {"applied": [], "failed": [], "admitted": []}
        db: Session = self.session_factory()
        try:
            for bridge in db.query(Bridge).order_by(Bridge.name).all():
                await self._step(report, f"bridge:{bridge.name}", lambda b=bridge: self.topology.setup_bridge(b))

            for vlan in db.query(Vlan).order_by(Vlan.name).all():
                await self._step(report, f"vlan:{vlan.name}", lambda v=vlan: self.topology.setup_vlan(v))

            scopes = db.query(HotspotScope).filter(HotspotScope.enabled == True).order_by(HotspotScope.interface).all()  # noqa: E712
            for scope in scopes:
                await self._step(report, f"hotspot:{scope.interface}", lambda s=scope: self.topology.setup_hotspot(s))
            if scopes:
                await self._step(report, "dhcp:restart", self.topology.restart_dhcp)

            aps = db.query(WirelessSettings).filter(WirelessSettings.enabled == True).all()  # noqa: E712
            for ap in aps:
                await self._step(report, f"wireless:{ap.interface}", lambda w=ap: self._setup_wireless(w))

            lan_interface = SystemConfig.get_value(db, "lan_interface", self.lan_interface)
            discipline = SystemConfig.get_value(db, "qos_discipline", DEFAULT_QOS_DISCIPLINE)
            await self._step(report, f"qos:{lan_interface}", lambda: self.topology.apply_qos(lan_interface, discipline))

            hotspot_interfaces = [scope.interface for scope in scopes] or [lan_interface]
            await self.enforcement.initialize_baseline(self.wan_interface, self.portal_port, hotspot_interfaces)

            for row in SessionStore(db).list_active():
                if not row.network_address:
                    continue
                await self.enforcement.admit(
                    row.hardware_id, row.network_address,
                    row.download_limit or 0, row.upload_limit or 0
                )
                report["admitted"].append(row.hardware_id)
        finally:
            db.close()

        logger.info(
            f"🚀 Boot reconcile: {len(report['applied'])} step(s) applied, "
            f"{len(report['failed'])} failed, {len(report['admitted'])} session(s) restored"
        )
        return report

    async def _setup_wireless(self, settings: WirelessSettings):
        passphrase = decrypt_secret(settings.password_encrypted) if settings.password_encrypted else None
        await self.topology.setup_wireless(settings, passphrase)
