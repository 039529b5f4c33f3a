from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint
from sqlalchemy.sql import func
from hotspot.database import Base

SESSION_TYPES = ("coin", "voucher", "mixed")


class Session(Base):
    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint(
            "session_type IN (%s)" % ", ".join(f"'{t}'" for t in SESSION_TYPES), name="ck_sessions_type"
        ),
        CheckConstraint("remaining_seconds >= 0", name="ck_sessions_remaining"),
    )

    hardware_id = Column(String(17), primary_key=True)  # normalized MAC
    network_address = Column(String(45), nullable=True)

    remaining_seconds = Column(Integer, nullable=False, default=0)
    total_paid = Column(Integer, nullable=False, default=0)

    download_limit = Column(Integer, default=0)  # Mbit/s, 0 = unlimited
    upload_limit = Column(Integer, default=0)

    token = Column(String(64), unique=True, nullable=True, index=True)
    token_expires_at = Column(DateTime, nullable=True)  # naive UTC

    session_type = Column(String(10), nullable=False, default="coin", index=True)
    voucher_code = Column(String(32), nullable=True, index=True)
    is_paused = Column(Boolean, nullable=False, default=False)

    connected_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def is_active(self) -> bool:
        return self.remaining_seconds > 0 and not self.is_paused

    def __repr__(self):
        return f"<Session {self.hardware_id} @ {self.network_address} {self.remaining_seconds}s {self.session_type}>"
