from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..database import Base

class SystemLog(Base):
    __tablename__ = "system_logs"

    id = Column(Integer, primary_key=True, index=True)
    log_level = Column(String(20), nullable=False)  # INFO, WARNING, ERROR
    module = Column(String(100))  # session, enforcement, admin
    action = Column(String(100))
    message = Column(Text, nullable=False)
    details = Column(JSON)
    hardware_id = Column(String(17), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("admins.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    # Relationship
    user = relationship("Admin", back_populates="logs")
