from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from hotspot.database import Base

class SystemConfig(Base):
    __tablename__ = "system_config"

    id = Column(Integer, primary_key=True, index=True)
    setting_key = Column(String(100), unique=True, nullable=False)
    setting_value = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @classmethod
    def get_value(cls, db, key: str, default: str = None) -> str:
        row = db.query(cls).filter(cls.setting_key == key).first()
        if row is None or row.setting_value in (None, ""):
            return default
        return row.setting_value
