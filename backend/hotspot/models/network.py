"""
Network topology models.

Authored by the admin dashboard and replayed by the boot reconciler before
any per-session rule is applied.
"""
import json

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text
from sqlalchemy.sql import func
from hotspot.database import Base


class Bridge(Base):
    __tablename__ = "bridges"

    name = Column(String(15), primary_key=True)
    members = Column(Text, nullable=False, default="[]")  # JSON array of interface names
    stp = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())

    @property
    def member_list(self):
        try:
            members = json.loads(self.members or "[]")
        except ValueError:
            return []
        return [m for m in members if isinstance(m, str) and m]


class Vlan(Base):
    __tablename__ = "vlans"

    name = Column(String(15), primary_key=True)
    parent = Column(String(15), nullable=False)
    vlan_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class HotspotScope(Base):
    __tablename__ = "hotspots"

    interface = Column(String(15), primary_key=True)
    ip_address = Column(String(45), nullable=False)
    prefix_length = Column(Integer, default=24)
    dhcp_range = Column(String(100), nullable=False)  # "10.0.0.50,10.0.0.250"
    lease_time = Column(String(10), default="12h")
    enabled = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())


class WirelessSettings(Base):
    __tablename__ = "wireless_settings"

    interface = Column(String(15), primary_key=True)
    ssid = Column(String(32), nullable=False)
    password_encrypted = Column(Text, nullable=True)  # Fernet, NULL for open networks
    channel = Column(Integer, default=1)
    hw_mode = Column(String(2), default="g")
    bridge = Column(String(15), nullable=True)
    enabled = Column(Boolean, default=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
