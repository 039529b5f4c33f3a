"""
Migration Service

Moves a session to the device presenting its token. Covers phones that
randomize their MAC between networks: the browser keeps the token, the
hardware id changes underneath it.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..exceptions import IdentityUnresolved, SessionNotFound, TokenExpired, TransferDenied
from ..models.session import Session as WiFiSession
from ..utils.helpers import log_system_event, utcnow
from .enforcement import EnforcementService
from .hardware_locks import HardwareLockArena
from .session_store import SessionStore, combine_session_types

logger = logging.getLogger(__name__)


@dataclass
class RestoreResult:
    hardware_id: str
    migrated: bool
    remaining_seconds: int
    token: str


class MigrationService:

    def __init__(self, enforcement: EnforcementService, locks: HardwareLockArena, settle_delay: float = 1.0):
        self.enforcement = enforcement
        self.locks = locks
        self.settle_delay = settle_delay

    async def restore(self, db: Session, token: str, observed_hardware_id: str, observed_address: Optional[str]) -> RestoreResult:
        """
        Redeem ``token`` from (observed_hardware_id, observed_address).

        Raises:
            SessionNotFound: no row holds the token
            TokenExpired: the token's window has closed (nothing is changed)
            TransferDenied: a voucher session presented from another device
        """
        if not observed_hardware_id:
            raise IdentityUnresolved()

        store = SessionStore(db)
        # A concurrent restore can move the row between lookup and lock
        for _ in range(3):
            row = store.get_by_token(token)
            if row is None:
                raise SessionNotFound()
            source_hardware_id = row.hardware_id

            async with self.locks.hold(source_hardware_id, observed_hardware_id):
                db.expire_all()
                row = store.get_by_token(token)
                if row is None:
                    raise SessionNotFound()
                if row.hardware_id != source_hardware_id:
                    continue
                return await self._restore_locked(db, store, row, observed_hardware_id, observed_address)

        raise SessionNotFound()

    async def _restore_locked(
        self,
        db: Session,
        store: SessionStore,
        row: WiFiSession,
        observed_hardware_id: str,
        observed_address: Optional[str]
    ) -> RestoreResult:
        if row.token_expires_at is None or utcnow() >= row.token_expires_at:
            raise TokenExpired()

        if row.hardware_id == observed_hardware_id:
            return await self._restore_same_device(store, row, observed_address)

        if row.session_type == "voucher":
            logger.warning(f"🚫 Voucher session of {row.hardware_id} presented by {observed_hardware_id}")
            raise TransferDenied()

        source_hardware_id = row.hardware_id
        source_address = row.network_address
        new_address = observed_address or source_address

        remaining = row.remaining_seconds
        total_paid = row.total_paid
        session_type = row.session_type
        voucher_code = row.voucher_code
        token = row.token
        token_expires_at = row.token_expires_at
        download_limit = row.download_limit or 0
        upload_limit = row.upload_limit or 0
        is_paused = bool(row.is_paused)
        connected_at = row.connected_at

        target = store.get(observed_hardware_id)
        target_address = None
        if target is not None:
            remaining += target.remaining_seconds or 0
            total_paid += target.total_paid or 0
            session_type = combine_session_types(session_type, target.session_type)
            voucher_code = voucher_code or target.voucher_code
            target_address = target.network_address

        try:
            if target is not None:
                db.delete(target)
            db.delete(row)
            # token is UNIQUE; the old row must be gone before the new insert
            db.flush()

            moved = WiFiSession(
                hardware_id=observed_hardware_id,
                network_address=new_address,
                remaining_seconds=remaining,
                total_paid=total_paid,
                download_limit=download_limit,
                upload_limit=upload_limit,
                token=token,
                token_expires_at=token_expires_at,
                session_type=session_type,
                voucher_code=voucher_code,
                is_paused=is_paused,
                connected_at=connected_at
            )
            db.add(moved)
            log_system_event(
                db, "INFO", "migration", "session_migrated",
                f"Session moved {source_hardware_id} -> {observed_hardware_id}",
                details={
                    "from_address": source_address,
                    "to_address": new_address,
                    "merged": target is not None,
                    "remaining_seconds": remaining
                },
                hardware_id=observed_hardware_id
            )
            store.commit()
        except Exception:
            store.rollback()
            raise

        logger.info(
            f"🔀 Migrated {source_hardware_id} @ {source_address} -> {observed_hardware_id} @ {new_address}"
            f"{' (merged)' if target is not None else ''}; remaining {remaining}s"
        )

        if source_address:
            await self.enforcement.revoke(source_hardware_id, source_address)
        if target_address and target_address != new_address:
            await self.enforcement.revoke(observed_hardware_id, target_address)

        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)

        if not is_paused and remaining > 0 and new_address:
            await self.enforcement.admit(observed_hardware_id, new_address, download_limit, upload_limit)

        return RestoreResult(
            hardware_id=observed_hardware_id,
            migrated=True,
            remaining_seconds=remaining,
            token=token
        )

    async def _restore_same_device(self, store: SessionStore, row: WiFiSession, observed_address: Optional[str]) -> RestoreResult:
        previous = None
        if observed_address and row.network_address != observed_address:
            try:
                previous = store.update_address(row.hardware_id, observed_address)
                store.commit()
            except Exception:
                store.rollback()
                raise

        if previous:
            await self.enforcement.revoke(row.hardware_id, previous)
        if row.is_active and row.network_address:
            await self.enforcement.admit(
                row.hardware_id, row.network_address,
                row.download_limit or 0, row.upload_limit or 0
            )

        return RestoreResult(
            hardware_id=row.hardware_id,
            migrated=False,
            remaining_seconds=row.remaining_seconds,
            token=row.token
        )
