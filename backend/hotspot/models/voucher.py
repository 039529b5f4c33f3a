from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from hotspot.database import Base


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), unique=True, nullable=False, index=True)
    minutes = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False, default=0)

    download_limit = Column(Integer, default=0)
    upload_limit = Column(Integer, default=0)

    status = Column(String(20), default='active', index=True)  # active, used, expired
    expires_at = Column(DateTime, nullable=True)

    used_at = Column(DateTime, nullable=True)
    used_by_mac = Column(String(17), nullable=True)
    used_by_ip = Column(String(45), nullable=True)
    session_token = Column(String(64), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
