"""
Topology Manager

Brings up the admin-authored network topology: bridges, VLAN interfaces,
hotspot DHCP/DNS scopes and wireless access points. Every command goes
through the CommandExecutor seam.
"""
import logging
import os
from typing import Optional, Sequence

from ..exceptions import EnforcementFailure
from ..models.network import Bridge, HotspotScope, Vlan, WirelessSettings
from ..utils.shell import CommandResult
from .command_executor import CommandExecutor

logger = logging.getLogger(__name__)


def render_dnsmasq_conf(scope: HotspotScope) -> str:
    """
    DHCP scope for one hotspot interface. The gateway hands out itself as
    router and resolver; unadmitted HTTP is caught by the firewall redirect.
    """
    lines = [
        f"interface={scope.interface}",
        f"dhcp-range={scope.dhcp_range},{scope.lease_time or '12h'}",
        f"dhcp-option=3,{scope.ip_address}",
        f"dhcp-option=6,{scope.ip_address}",
    ]
    return "\n".join(lines) + "\n"


def render_hostapd_conf(settings: WirelessSettings, passphrase: Optional[str]) -> str:
    lines = [f"interface={settings.interface}"]
    if settings.bridge:
        lines.append(f"bridge={settings.bridge}")
    lines += [
        "driver=nl80211",
        f"ssid={settings.ssid}",
        f"hw_mode={settings.hw_mode or 'g'}",
        f"channel={settings.channel or 1}",
        "wmm_enabled=0",
        "macaddr_acl=0",
        "auth_algs=1",
        "ignore_broadcast_ssid=0",
    ]
    if passphrase:
        lines += [
            "wpa=2",
            f"wpa_passphrase={passphrase}",
            "wpa_key_mgmt=WPA-PSK",
            "rsn_pairwise=CCMP",
        ]
    return "\n".join(lines) + "\n"


class TopologyManager:

    def __init__(
        self,
        executor: CommandExecutor,
        dnsmasq_conf_dir: str = "/etc/dnsmasq.d",
        hostapd_conf_dir: str = "/etc/hostapd"
    ):
        self.executor = executor
        self.dnsmasq_conf_dir = dnsmasq_conf_dir
        self.hostapd_conf_dir = hostapd_conf_dir

    async def _run(self, args: Sequence[str]) -> CommandResult:
        result = await self.executor.run(args)
        if not result.ok:
            raise EnforcementFailure(f"{result.command}: {result.stderr.strip() or result.returncode}")
        return result

    async def _link_exists(self, name: str) -> bool:
        result = await self.executor.run(["ip", "link", "show", name])
        return result.ok

    def _write(self, directory: str, filename: str, content: str) -> str:
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, filename)
        with open(path, "w") as f:
            f.write(content)
        return path

    # ========== BRIDGES / VLANS ==========

    async def setup_bridge(self, bridge: Bridge):
        if not await self._link_exists(bridge.name):
            await self._run(["ip", "link", "add", "name", bridge.name, "type", "bridge"])
        await self._run(["ip", "link", "set", bridge.name, "type", "bridge",
                         "stp_state", "1" if bridge.stp else "0"])
        for member in bridge.member_list:
            await self._run(["ip", "link", "set", member, "master", bridge.name])
            await self._run(["ip", "link", "set", member, "up"])
        await self._run(["ip", "link", "set", bridge.name, "up"])
        logger.info(f"🌉 Bridge {bridge.name} up ({', '.join(bridge.member_list) or 'no members'})")

    async def setup_vlan(self, vlan: Vlan):
        if not await self._link_exists(vlan.name):
            await self._run(["ip", "link", "add", "link", vlan.parent, "name", vlan.name,
                             "type", "vlan", "id", str(vlan.vlan_id)])
        await self._run(["ip", "link", "set", vlan.name, "up"])
        logger.info(f"🏷️ VLAN {vlan.name} ({vlan.parent}.{vlan.vlan_id}) up")

    # ========== HOTSPOTS ==========

    async def setup_hotspot(self, scope: HotspotScope) -> str:
        """Address the interface and write its DHCP scope; returns the conf path"""
        await self._run(["ip", "link", "set", scope.interface, "up"])
        await self._run(["ip", "addr", "flush", "dev", scope.interface])
        await self._run(["ip", "addr", "add", f"{scope.ip_address}/{scope.prefix_length or 24}",
                         "dev", scope.interface])
        path = self._write(self.dnsmasq_conf_dir, f"hotspot_{scope.interface}.conf", render_dnsmasq_conf(scope))
        logger.info(f"📶 Hotspot scope on {scope.interface} ({scope.dhcp_range})")
        return path

    async def restart_dhcp(self):
        await self._run(["systemctl", "restart", "dnsmasq"])

    # ========== WIRELESS ==========

    async def setup_wireless(self, settings: WirelessSettings, passphrase: Optional[str]) -> str:
        path = self._write(
            self.hostapd_conf_dir,
            f"hostapd_{settings.interface}.conf",
            render_hostapd_conf(settings, passphrase)
        )
        await self._run(["ip", "link", "set", settings.interface, "up"])
        await self._run(["hostapd", "-B", path])
        logger.info(f"📡 Access point '{settings.ssid}' on {settings.interface}")
        return path

    # ========== QOS ==========

    async def apply_qos(self, interface: str, discipline: str):
        await self.executor.apply_qos(interface, discipline)
        logger.info(f"🚦 QoS discipline {discipline} on {interface}")
