"""
Session Ticker
Counts down every active session and expires the ones that reach zero
"""

import asyncio
import logging
from typing import Callable, List

from .admission import AdmissionService
from .session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionTicker:
    """
    One global tick. The decrement is a single UPDATE; expiry of each row
    that reached zero then runs under that device's lock, so a grant or
    migration landing in between is never lost.
    """

    def __init__(self, session_factory: Callable, admission: AdmissionService, interval: int = 1):
        self.session_factory = session_factory
        self.admission = admission
        self.interval = interval
        self.running = False
        self._task = None

    async def start(self):
        """Start the tick loop"""
        self.running = True
        self._task = asyncio.create_task(self._tick_loop())
        logger.info(f"⏱️ Session ticker started (every {self.interval}s)")

    async def stop(self):
        """Stop the tick loop"""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("⏱️ Session ticker stopped")

    async def _tick_loop(self):
        while self.running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"❌ Session tick error: {e}", exc_info=True)

            await asyncio.sleep(self.interval)

    async def tick(self, seconds: int = None) -> List[str]:
        """Run one tick; returns the hardware ids that expired"""
        db = self.session_factory()
        try:
            candidates = SessionStore(db).decrement_all_active(seconds or self.interval)
            expired = []
            for hardware_id in candidates:
                if await self.admission.expire(db, hardware_id):
                    expired.append(hardware_id)
            return expired
        finally:
            db.close()
