from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..database import Base

# Dashboard capabilities per role
ROLE_PERMISSIONS = {
    "superadmin": ["view_sessions", "add_time", "disconnect", "run_reconcile"],
    "operator": ["view_sessions", "add_time"],
}


class Admin(Base):
    """Dashboard account; devices on the hotspot never have one"""
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default="operator")
    full_name = Column(String(255))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    last_login = Column(DateTime, nullable=True)  # naive UTC

    # Lockout after repeated failed logins
    login_attempts = Column(Integer, default=0)
    locked_until = Column(DateTime, nullable=True)

    logs = relationship("SystemLog", back_populates="user")

    __table_args__ = (
        CheckConstraint(
            "role IN ('superadmin', 'operator')",
            name='check_admin_role'
        ),
    )

    @property
    def permissions(self):
        return list(ROLE_PERMISSIONS.get(self.role, []))
