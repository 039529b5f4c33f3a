from pydantic_settings import BaseSettings
from typing import List
import os

class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Hotspot Gateway"
    APP_ENV: str = "development"
    DEBUG: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 80
    ENABLE_API_DOCS: bool = False

    # Database (SQLite on the kiosk board, any SQLAlchemy URL works)
    DATABASE_URL: str = "sqlite:///./hotspot.sqlite"

    # Security
    SECRET_KEY: str
    ENCRYPTION_KEY: str  # Fernet key for wireless passphrases
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480  # 8 hours

    # CORS - admin dashboard origins
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @property
    def origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Rate limiting
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # Captive portal
    PORTAL_HOST: str = "10.0.0.1"
    PORTAL_HOSTS: str = "localhost,127.0.0.1"  # extra names served as the portal itself
    PORTAL_DIR: str = "portal"

    @property
    def portal_hosts_list(self) -> List[str]:
        hosts = [self.PORTAL_HOST] + self.PORTAL_HOSTS.split(",")
        return [host.strip().lower() for host in hosts if host.strip()]

    # Network
    LAN_INTERFACE: str = "br0"
    WAN_INTERFACE: str = "eth0"
    ENFORCEMENT_ENABLED: bool = True
    COMMAND_TIMEOUT: float = 5.0

    # Identity resolution
    PROBE_TIMEOUT: int = 1  # seconds, single ping
    ARP_FILE: str = "/proc/net/arp"
    LEASE_FILES: str = "/var/lib/misc/dnsmasq.leases,/tmp/dhcp.leases"

    @property
    def lease_files_list(self) -> List[str]:
        return [path.strip() for path in self.LEASE_FILES.split(",") if path.strip()]

    # Session lifecycle
    TOKEN_TTL_DAYS: int = 3
    TICK_INTERVAL: int = 1  # seconds
    RECONCILE_INTERVAL: int = 30  # seconds
    MIGRATION_SETTLE_DELAY: float = 1.0  # seconds between retract and apply

    # Topology files written at boot
    DNSMASQ_CONF_DIR: str = "/etc/dnsmasq.d"
    HOSTAPD_CONF_DIR: str = "/etc/hostapd"

    # Coin acceptor bridge
    COIN_BRIDGE_KEY: str = ""
    COIN_CLAIM_TIMEOUT: int = 60  # seconds a device holds the coin slot

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/hotspot.log"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"

# Create settings instance
settings = Settings()

# Ensure directories exist
os.makedirs(os.path.dirname(settings.LOG_FILE) or ".", exist_ok=True)
