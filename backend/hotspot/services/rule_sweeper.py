"""
Rule Sweeper
Periodic reconciliation of kernel rules against the active session set
"""

import asyncio
import logging
from typing import Callable, Dict, List, Tuple

from .enforcement import EnforcementService
from .session_store import SessionStore

logger = logging.getLogger(__name__)


class RuleSweeper:
    """
    Bounds rule growth from address churn (DHCP reassignment, roaming),
    whether or not every earlier revoke succeeded.
    """

    def __init__(self, session_factory: Callable, enforcement: EnforcementService, interval: int = 30):
        self.session_factory = session_factory
        self.enforcement = enforcement
        self.interval = interval
        self.running = False
        self._task = None

    async def start(self):
        """Start the sweep loop"""
        self.running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"🧹 Rule sweeper started (every {self.interval}s)")

    async def stop(self):
        """Stop the sweep loop"""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("🧹 Rule sweeper stopped")

    async def _sweep_loop(self):
        while self.running:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"❌ Rule sweep error: {e}", exc_info=True)

    def _active_pairs(self) -> List[Tuple[str, str]]:
        db = self.session_factory()
        try:
            return [
                (row.hardware_id, row.network_address)
                for row in SessionStore(db).list_active()
                if row.network_address
            ]
        finally:
            db.close()

    async def sweep(self) -> Dict[str, int]:
        return await self.enforcement.reconcile(self._active_pairs)
