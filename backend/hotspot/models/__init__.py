"""
Models package - Import all SQLAlchemy models here
"""

from .admin import Admin
from .session import Session
from .rate import Rate
from .voucher import Voucher
from .network import Bridge, Vlan, HotspotScope, WirelessSettings
from .system_config import SystemConfig
from .system_log import SystemLog

__all__ = [
    "Admin",
    "Session",
    "Rate",
    "Voucher",
    "Bridge",
    "Vlan",
    "HotspotScope",
    "WirelessSettings",
    "SystemConfig",
    "SystemLog"
]
