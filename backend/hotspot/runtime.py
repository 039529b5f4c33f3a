"""
Gateway runtime container.

Wires the services together once per process and lives on
``app.state.runtime``. Request handlers reach it through ``get_runtime``.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from .config import settings
from .database import SessionLocal
from .services.admission import AdmissionService
from .services.boot_reconciler import BootReconciler
from .services.command_executor import CommandExecutor, ShellCommandExecutor
from .services.credit_events import CreditEventChannel
from .services.enforcement import EnforcementService
from .services.hardware_locks import HardwareLockArena
from .services.identity_resolver import IdentityResolver
from .services.migration import MigrationService
from .services.rule_sweeper import RuleSweeper
from .services.session_ticker import SessionTicker
from .services.topology_manager import TopologyManager

logger = logging.getLogger(__name__)


@dataclass
class GatewayRuntime:
    session_factory: Callable
    executor: CommandExecutor
    resolver: IdentityResolver
    locks: HardwareLockArena
    enforcement: EnforcementService
    admission: AdmissionService
    migration: MigrationService
    credit_channel: CreditEventChannel
    ticker: SessionTicker
    sweeper: RuleSweeper
    boot: BootReconciler

    async def start(self):
        await self.boot.run()
        await self.ticker.start()
        await self.sweeper.start()
        await self.credit_channel.start()

    async def stop(self):
        await self.credit_channel.stop()
        await self.sweeper.stop()
        await self.ticker.stop()


def build_runtime(
    session_factory: Callable = SessionLocal,
    executor: Optional[CommandExecutor] = None,
    resolver: Optional[IdentityResolver] = None,
    settle_delay: Optional[float] = None
) -> GatewayRuntime:
    if executor is None:
        executor = ShellCommandExecutor(
            lan_interface=settings.LAN_INTERFACE,
            timeout=settings.COMMAND_TIMEOUT,
            dry_run=not settings.ENFORCEMENT_ENABLED
        )
        if not settings.ENFORCEMENT_ENABLED:
            logger.warning("⚠️ Enforcement disabled: OS commands are logged, not executed")
    if resolver is None:
        resolver = IdentityResolver(
            arp_file=settings.ARP_FILE,
            lease_files=settings.lease_files_list,
            probe_timeout=settings.PROBE_TIMEOUT
        )

    locks = HardwareLockArena()
    enforcement = EnforcementService(executor)
    admission = AdmissionService(enforcement, locks)
    migration = MigrationService(
        enforcement, locks,
        settle_delay=settings.MIGRATION_SETTLE_DELAY if settle_delay is None else settle_delay
    )
    topology = TopologyManager(
        executor,
        dnsmasq_conf_dir=settings.DNSMASQ_CONF_DIR,
        hostapd_conf_dir=settings.HOSTAPD_CONF_DIR
    )

    return GatewayRuntime(
        session_factory=session_factory,
        executor=executor,
        resolver=resolver,
        locks=locks,
        enforcement=enforcement,
        admission=admission,
        migration=migration,
        credit_channel=CreditEventChannel(session_factory, admission, claim_timeout=settings.COIN_CLAIM_TIMEOUT),
        ticker=SessionTicker(session_factory, admission, interval=settings.TICK_INTERVAL),
        sweeper=RuleSweeper(session_factory, enforcement, interval=settings.RECONCILE_INTERVAL),
        boot=BootReconciler(
            session_factory, topology, enforcement,
            lan_interface=settings.LAN_INTERFACE,
            wan_interface=settings.WAN_INTERFACE,
            portal_port=settings.PORT
        )
    )


def get_runtime(request: Request) -> GatewayRuntime:
    return request.app.state.runtime
