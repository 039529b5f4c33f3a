"""
Credit Events

The coin acceptor bridge publishes one event per accepted coin. Exactly one
portal device holds the coin slot at a time; its claim lapses after a quiet
period and is extended by every credit.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from ..exceptions import CoinSlotBusy, NoCoinClaim, ValidationError
from .admission import AdmissionService
from .session_store import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class CreditEvent:
    amount: int
    minutes: Optional[int] = None


@dataclass
class CoinClaim:
    hardware_id: str
    address: Optional[str]
    expires_at: float


class CreditEventChannel:

    def __init__(
        self,
        session_factory: Callable,
        admission: AdmissionService,
        claim_timeout: int = 60,
        clock: Callable[[], float] = time.monotonic
    ):
        self.session_factory = session_factory
        self.admission = admission
        self.claim_timeout = claim_timeout
        self.clock = clock
        self.queue: "asyncio.Queue[Tuple[CoinClaim, CreditEvent]]" = asyncio.Queue()
        self.running = False
        self._task = None
        self._claim: Optional[CoinClaim] = None

    # ========== CLAIMS ==========

    def claimant(self) -> Optional[CoinClaim]:
        if self._claim and self._claim.expires_at <= self.clock():
            logger.info(f"🪙 Coin slot claim by {self._claim.hardware_id} lapsed")
            self._claim = None
        return self._claim

    def claim(self, hardware_id: str, address: Optional[str]) -> CoinClaim:
        current = self.claimant()
        if current and current.hardware_id != hardware_id:
            raise CoinSlotBusy()
        self._claim = CoinClaim(hardware_id, address, self.clock() + self.claim_timeout)
        logger.info(f"🪙 Coin slot claimed by {hardware_id} @ {address}")
        return self._claim

    def release(self, hardware_id: str) -> bool:
        current = self.claimant()
        if current and current.hardware_id == hardware_id:
            self._claim = None
            logger.info(f"🪙 Coin slot released by {hardware_id}")
            return True
        return False

    # ========== EVENTS ==========

    def publish(self, event: CreditEvent) -> CoinClaim:
        """Queue a credit for whoever holds the slot right now"""
        if event.amount is None or event.amount <= 0:
            raise ValidationError("Credit amount must be positive")
        current = self.claimant()
        if current is None:
            raise NoCoinClaim()
        current.expires_at = self.clock() + self.claim_timeout
        self.queue.put_nowait((current, event))
        logger.info(f"🪙 Credit of {event.amount} queued for {current.hardware_id}")
        return current

    async def handle(self, claim: CoinClaim, event: CreditEvent):
        db = self.session_factory()
        try:
            minutes = event.minutes or SessionStore(db).derive_minutes(event.amount)
            await self.admission.grant_coins(db, claim.hardware_id, claim.address, event.amount, minutes)
        finally:
            db.close()

    async def start(self):
        """Start consuming credit events"""
        self.running = True
        self._task = asyncio.create_task(self._consume_loop())
        logger.info("🪙 Credit event consumer started")

    async def stop(self):
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("🪙 Credit event consumer stopped")

    async def _consume_loop(self):
        while self.running:
            claim, event = await self.queue.get()
            try:
                await self.handle(claim, event)
            except Exception as e:
                logger.error(f"❌ Credit of {event.amount} for {claim.hardware_id} failed: {e}", exc_info=True)
            finally:
                self.queue.task_done()
