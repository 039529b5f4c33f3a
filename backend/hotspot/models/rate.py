from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.sql import func
from hotspot.database import Base


class Rate(Base):
    __tablename__ = "rates"

    id = Column(Integer, primary_key=True, index=True)
    pesos = Column(Integer, nullable=False)
    minutes = Column(Integer, nullable=False)

    # Bandwidth in Mbit/s (0 = unlimited)
    download_limit = Column(Integer, default=0)
    upload_limit = Column(Integer, default=0)

    created_at = Column(DateTime, server_default=func.now())
