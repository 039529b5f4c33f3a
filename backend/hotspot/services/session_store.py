"""
Session Store
Persistence of admission state, one row per hardware id
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import ValidationError
from ..models.rate import Rate
from ..models.session import SESSION_TYPES, Session as WiFiSession
from ..utils.helpers import generate_session_token, utcnow

logger = logging.getLogger(__name__)

# Minutes per currency unit when no rate covers a coin amount
FALLBACK_MINUTES_PER_PESO = 10


def combine_session_types(current: Optional[str], incoming: str) -> str:
    """coin + voucher (in either order) is mixed; mixed stays mixed"""
    if not current or current == incoming:
        return incoming
    return "mixed"


class SessionStore:
    """
    Row-level operations on ``sessions``.

    Methods flush but never commit; the caller owns the transaction so a
    multi-step transition (migration) lands atomically. The one exception is
    ``decrement_all_active``, which commits its bulk UPDATE itself.
    """

    def __init__(self, db: Session, token_ttl_days: int = None):
        self.db = db
        self.token_ttl = timedelta(days=token_ttl_days or settings.TOKEN_TTL_DAYS)

    # ========== READS ==========

    def get(self, hardware_id: str) -> Optional[WiFiSession]:
        if not hardware_id:
            return None
        return self.db.query(WiFiSession).filter(WiFiSession.hardware_id == hardware_id).first()

    def get_by_token(self, token: str) -> Optional[WiFiSession]:
        if not token:
            return None
        return self.db.query(WiFiSession).filter(WiFiSession.token == token).first()

    def list_active(self) -> List[WiFiSession]:
        """Unpaused rows with time left, the set enforcement must mirror"""
        return self.db.query(WiFiSession).filter(
            WiFiSession.remaining_seconds > 0,
            WiFiSession.is_paused == False  # noqa: E712
        ).order_by(WiFiSession.hardware_id).all()

    def list_all(self) -> List[WiFiSession]:
        return self.db.query(WiFiSession).order_by(WiFiSession.hardware_id).all()

    # ========== RATES ==========

    def lookup_limits(self, pesos: int, minutes: int = None) -> Tuple[int, int]:
        """
        Bandwidth for a grant: exact (pesos, minutes) rate, else a rate with
        the same pesos, else unlimited (0, 0).
        """
        rate = None
        if minutes is not None:
            rate = self.db.query(Rate).filter(Rate.pesos == pesos, Rate.minutes == minutes).first()
        if rate is None:
            rate = self.db.query(Rate).filter(Rate.pesos == pesos).order_by(Rate.id).first()
        if rate is None:
            return 0, 0
        return rate.download_limit or 0, rate.upload_limit or 0

    def derive_minutes(self, pesos: int) -> int:
        """
        Minutes bought by a coin amount.

        An exact denomination wins; otherwise the amount is split greedily over
        the rate table, largest denomination first, and any remainder earns
        the fallback rate.
        """
        if pesos <= 0:
            return 0

        exact = self.db.query(Rate).filter(Rate.pesos == pesos).order_by(Rate.id).first()
        if exact:
            return exact.minutes

        minutes = 0
        remaining = pesos
        for rate in self.db.query(Rate).filter(Rate.pesos > 0).order_by(Rate.pesos.desc()).all():
            count, remaining = divmod(remaining, rate.pesos)
            minutes += count * rate.minutes
        return minutes + remaining * FALLBACK_MINUTES_PER_PESO

    # ========== WRITES ==========

    def ensure_token(self, row: WiFiSession, now: datetime = None) -> str:
        """Issue a token when absent or expired; a live token keeps its window"""
        now = now or utcnow()
        if not row.token or row.token_expires_at is None or now >= row.token_expires_at:
            row.token = generate_session_token()
            row.token_expires_at = now + self.token_ttl
        return row.token

    def upsert_grant(
        self,
        hardware_id: str,
        address: Optional[str],
        extra_seconds: int,
        extra_paid: int = 0,
        download_limit: Optional[int] = None,
        upload_limit: Optional[int] = None,
        session_type: str = "coin",
        voucher_code: Optional[str] = None
    ) -> WiFiSession:
        """Add time and payment to the device's row, creating it if needed"""
        if not hardware_id:
            raise ValidationError("Hardware id is required")
        if extra_seconds is None or extra_seconds <= 0:
            raise ValidationError("A grant must add time")
        if extra_paid is None or extra_paid < 0:
            raise ValidationError("Amount paid cannot be negative")
        if session_type not in SESSION_TYPES:
            raise ValidationError(f"Unknown session type: {session_type}")

        row = self.get(hardware_id)
        if row is None:
            row = WiFiSession(
                hardware_id=hardware_id,
                network_address=address,
                remaining_seconds=0,
                total_paid=0,
                download_limit=0,
                upload_limit=0,
                session_type=session_type,
                is_paused=False
            )
            self.db.add(row)
        else:
            row.session_type = combine_session_types(row.session_type, session_type)
            if address:
                row.network_address = address

        row.remaining_seconds = (row.remaining_seconds or 0) + int(extra_seconds)
        row.total_paid = (row.total_paid or 0) + int(extra_paid)
        if download_limit is not None:
            row.download_limit = download_limit
        if upload_limit is not None:
            row.upload_limit = upload_limit
        if voucher_code:
            row.voucher_code = voucher_code

        self.ensure_token(row)
        self.db.flush()
        return row

    def update_address(self, hardware_id: str, address: str) -> Optional[str]:
        """Store a new address; returns the previous one, or None if unchanged"""
        row = self.get(hardware_id)
        if row is None or not address or row.network_address == address:
            return None
        previous = row.network_address
        row.network_address = address
        self.db.flush()
        return previous

    def add_time(self, hardware_id: str, seconds: int) -> Optional[WiFiSession]:
        """Admin adjustment on an existing row"""
        row = self.get(hardware_id)
        if row is None:
            return None
        if seconds <= 0:
            raise ValidationError("Added time must be positive")
        row.remaining_seconds = (row.remaining_seconds or 0) + seconds
        self.db.flush()
        return row

    def set_paused(self, hardware_id: str, paused: bool) -> Optional[WiFiSession]:
        row = self.get(hardware_id)
        if row is None:
            return None
        row.is_paused = paused
        self.db.flush()
        return row

    def delete(self, hardware_id: str) -> bool:
        deleted = self.db.query(WiFiSession).filter(
            WiFiSession.hardware_id == hardware_id
        ).delete(synchronize_session="fetch")
        self.db.flush()
        return deleted > 0

    def decrement_all_active(self, seconds: int = 1) -> List[str]:
        """
        Subtract ``seconds`` from every unpaused row with time left, in one
        UPDATE, and commit. Returns the hardware ids now at zero.
        """
        self.db.execute(
            update(WiFiSession)
            .where(WiFiSession.remaining_seconds > 0, WiFiSession.is_paused == False)  # noqa: E712
            .values(remaining_seconds=case(
                (WiFiSession.remaining_seconds > seconds, WiFiSession.remaining_seconds - seconds),
                else_=0
            ))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.expire_all()

        rows = self.db.query(WiFiSession.hardware_id).filter(WiFiSession.remaining_seconds <= 0).all()
        return [hardware_id for (hardware_id,) in rows]

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
