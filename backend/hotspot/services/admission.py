"""
Admission Service
Every mutation of a device's admission state, serialized per hardware id
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..exceptions import SessionNotFound, ValidationError
from ..models.session import Session as WiFiSession
from ..utils.helpers import log_system_event
from .enforcement import EnforcementService
from .hardware_locks import HardwareLockArena
from .session_store import SessionStore

logger = logging.getLogger(__name__)


class AdmissionService:
    """
    Store first, then enforcement. A failed OS mutation never undoes the
    committed row; the sweep and the next probe converge the rules.
    """

    def __init__(self, enforcement: EnforcementService, locks: HardwareLockArena):
        self.enforcement = enforcement
        self.locks = locks

    async def _admit_row(self, row: WiFiSession):
        if row.is_active and row.network_address:
            await self.enforcement.admit(
                row.hardware_id,
                row.network_address,
                row.download_limit or 0,
                row.upload_limit or 0
            )

    async def grant(
        self,
        db: Session,
        hardware_id: str,
        address: Optional[str],
        seconds: int,
        paid: int = 0,
        download_limit: Optional[int] = None,
        upload_limit: Optional[int] = None,
        session_type: str = "coin",
        voucher_code: Optional[str] = None
    ) -> WiFiSession:
        """Additive grant of time (coin credit, voucher, admin)"""
        async with self.locks.hold(hardware_id):
            db.expire_all()
            store = SessionStore(db)
            existing = store.get(hardware_id)
            previous_address = existing.network_address if existing else None

            try:
                row = store.upsert_grant(
                    hardware_id, address, seconds, paid,
                    download_limit=download_limit,
                    upload_limit=upload_limit,
                    session_type=session_type,
                    voucher_code=voucher_code
                )
                store.commit()
            except Exception:
                store.rollback()
                raise

            logger.info(
                f"💰 Granted {seconds}s to {hardware_id} ({session_type}, paid {paid}); "
                f"remaining {row.remaining_seconds}s"
            )

            if previous_address and previous_address != row.network_address:
                await self.enforcement.revoke(hardware_id, previous_address)
            await self._admit_row(row)
            return row

    async def grant_coins(self, db: Session, hardware_id: str, address: Optional[str], pesos: int, minutes: int) -> WiFiSession:
        """Coin purchase: limits come from the rate table"""
        if minutes is None or minutes <= 0:
            raise ValidationError("Minutes must be positive")
        download_limit, upload_limit = SessionStore(db).lookup_limits(pesos, minutes)
        return await self.grant(
            db, hardware_id, address,
            seconds=minutes * 60,
            paid=pesos,
            download_limit=download_limit,
            upload_limit=upload_limit,
            session_type="coin"
        )

    async def add_time(self, db: Session, hardware_id: str, seconds: int, admin_id: int = None) -> WiFiSession:
        async with self.locks.hold(hardware_id):
            db.expire_all()
            store = SessionStore(db)
            try:
                row = store.add_time(hardware_id, seconds)
                if row is None:
                    raise SessionNotFound(f"No session for {hardware_id}")
                log_system_event(
                    db, "INFO", "admin", "time_added",
                    f"Added {seconds}s to {hardware_id}",
                    details={"seconds": seconds},
                    user_id=admin_id,
                    hardware_id=hardware_id
                )
                store.commit()
            except Exception:
                store.rollback()
                raise

            await self._admit_row(row)
            return row

    async def disconnect(self, db: Session, hardware_id: str, admin_id: int = None) -> bool:
        """Delete the row, then retract its rules"""
        async with self.locks.hold(hardware_id):
            db.expire_all()
            store = SessionStore(db)
            row = store.get(hardware_id)
            if row is None:
                raise SessionNotFound(f"No session for {hardware_id}")
            address = row.network_address

            try:
                store.delete(hardware_id)
                log_system_event(
                    db, "INFO", "admin", "session_disconnected",
                    f"Disconnected {hardware_id}",
                    details={"address": address},
                    user_id=admin_id,
                    hardware_id=hardware_id
                )
                store.commit()
            except Exception:
                store.rollback()
                raise

            logger.info(f"🔌 Disconnected {hardware_id} @ {address}")
            if address:
                await self.enforcement.revoke(hardware_id, address)
            return True

    async def expire(self, db: Session, hardware_id: str) -> bool:
        """
        Delete a row the ticker saw reach zero.

        Re-checked under the lock: a grant or migration may have landed since
        the decrement, in which case the row is left alone.
        """
        async with self.locks.hold(hardware_id):
            db.expire_all()
            store = SessionStore(db)
            row = store.get(hardware_id)
            if row is None or (row.remaining_seconds or 0) > 0:
                return False
            address = row.network_address

            try:
                store.delete(hardware_id)
                store.commit()
            except Exception:
                store.rollback()
                raise

            logger.info(f"⏰ Session expired for {hardware_id} @ {address}")
            if address:
                await self.enforcement.revoke(hardware_id, address)
            return True

    async def reapply_if_moved(self, db: Session, hardware_id: str, address: str) -> bool:
        """Follow a device whose address changed while its hardware id did not"""
        if not hardware_id or not address:
            return False

        store = SessionStore(db)
        row = store.get(hardware_id)
        if row is None or not row.is_active or row.network_address == address:
            return False

        async with self.locks.hold(hardware_id):
            db.expire_all()
            row = store.get(hardware_id)
            if row is None or not row.is_active or row.network_address == address:
                return False

            try:
                previous = store.update_address(hardware_id, address)
                store.commit()
            except Exception:
                store.rollback()
                raise

            logger.info(f"📍 {hardware_id} moved {previous} -> {address}, re-applying rules")
            if previous:
                await self.enforcement.revoke(hardware_id, previous)
            await self._admit_row(row)
            return True

    async def pause(self, db: Session, hardware_id: str) -> WiFiSession:
        async with self.locks.hold(hardware_id):
            db.expire_all()
            store = SessionStore(db)
            row = store.get(hardware_id)
            if row is None:
                raise SessionNotFound(f"No session for {hardware_id}")
            if row.is_paused:
                return row

            try:
                store.set_paused(hardware_id, True)
                store.commit()
            except Exception:
                store.rollback()
                raise

            logger.info(f"⏸️ Paused {hardware_id} with {row.remaining_seconds}s left")
            if row.network_address:
                await self.enforcement.revoke(hardware_id, row.network_address)
            return row

    async def resume(self, db: Session, hardware_id: str, address: Optional[str] = None) -> WiFiSession:
        async with self.locks.hold(hardware_id):
            db.expire_all()
            store = SessionStore(db)
            row = store.get(hardware_id)
            if row is None:
                raise SessionNotFound(f"No session for {hardware_id}")

            previous = row.network_address
            try:
                store.set_paused(hardware_id, False)
                if address:
                    store.update_address(hardware_id, address)
                store.commit()
            except Exception:
                store.rollback()
                raise

            logger.info(f"▶️ Resumed {hardware_id} @ {row.network_address}")
            if previous and previous != row.network_address:
                await self.enforcement.revoke(hardware_id, previous)
            await self._admit_row(row)
            return row
