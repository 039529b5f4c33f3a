"""
Test configuration for the hotspot gateway backend.

Settings are read once at import time, so the environment is prepared here
before anything under ``hotspot`` is imported. Each test gets its own SQLite
file, an in-memory command executor and a table-driven identity resolver.
"""
import os
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

_backend_dir = Path(__file__).parent.parent        # .../backend/
if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

_scratch = Path(tempfile.mkdtemp(prefix="hotspot-tests-"))
os.environ["SECRET_KEY"] = "test-secret-key-for-jwt-signing"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["DATABASE_URL"] = f"sqlite:///{_scratch / 'default.sqlite'}"
os.environ["LOG_FILE"] = str(_scratch / "logs" / "hotspot.log")
os.environ["PORTAL_DIR"] = str(_scratch / "portal")
os.environ["PORTAL_HOST"] = "test"
os.environ["MIGRATION_SETTLE_DELAY"] = "0"
os.environ["COIN_BRIDGE_KEY"] = "bridge-secret"
os.environ["DNSMASQ_CONF_DIR"] = str(_scratch / "dnsmasq.d")
os.environ["HOSTAPD_CONF_DIR"] = str(_scratch / "hostapd")

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import hotspot.models  # noqa: E402,F401
from hotspot.database import Base, get_db, make_engine  # noqa: E402
from hotspot.exceptions import EnforcementFailure  # noqa: E402
from hotspot.limiter import limiter  # noqa: E402
from hotspot.main import app  # noqa: E402
from hotspot.runtime import build_runtime  # noqa: E402
from hotspot.services.command_executor import CommandExecutor  # noqa: E402
from hotspot.utils.shell import CommandResult  # noqa: E402

MAC_A1 = "AA:BB:CC:00:00:A1"
MAC_B2 = "AA:BB:CC:00:00:B2"
MAC_C3 = "AA:BB:CC:00:00:C3"
IP_A1 = "10.0.0.23"
IP_B2 = "10.0.0.42"
IP_C3 = "10.0.0.77"


class FakeExecutor(CommandExecutor):
    """In-memory kernel: allow rules and shaping entries as plain sets/dicts"""

    def __init__(self, default_interface: str = "br0"):
        self.default_interface = default_interface
        self.interfaces: Dict[str, str] = {}
        self.allow: Set[Tuple[str, str]] = set()
        self.shaping: Dict[str, Dict[str, Tuple[int, int]]] = {}
        self.qos: Dict[str, str] = {}
        self.firewall: List[dict] = []
        self.commands: List[List[str]] = []
        self.calls: List[tuple] = []
        self.fail: Set[str] = set()

    def _maybe_fail(self, operation: str):
        if operation in self.fail:
            raise EnforcementFailure(f"{operation} failed")

    async def run(self, args, input_text=None):
        self.commands.append(list(args))
        self._maybe_fail("run")
        return CommandResult(list(args), 0, "", "")

    async def initialize_firewall(self, wan_interface, portal_port, hotspot_interfaces):
        self._maybe_fail("initialize_firewall")
        self.firewall.append({
            "wan": wan_interface,
            "port": portal_port,
            "hotspots": list(hotspot_interfaces)
        })

    async def apply_allow(self, hardware_id, address):
        self.calls.append(("apply_allow", hardware_id, address))
        self._maybe_fail("apply_allow")
        self.allow.add((hardware_id, address))

    async def revoke_allow(self, hardware_id, address):
        self.calls.append(("revoke_allow", hardware_id, address))
        self._maybe_fail("revoke_allow")
        self.allow.discard((hardware_id, address))

    async def list_allow_rules(self):
        return set(self.allow)

    async def interface_for(self, address):
        return self.interfaces.get(address, self.default_interface)

    async def apply_shaping(self, interface, address, download_limit, upload_limit):
        self.calls.append(("apply_shaping", interface, address, download_limit, upload_limit))
        self._maybe_fail("apply_shaping")
        table = self.shaping.setdefault(interface, {})
        if download_limit <= 0 and upload_limit <= 0:
            table.pop(address, None)
        else:
            table[address] = (download_limit, upload_limit)

    async def revoke_shaping(self, interface, address):
        self.calls.append(("revoke_shaping", interface, address))
        self._maybe_fail("revoke_shaping")
        self.shaping.setdefault(interface, {}).pop(address, None)

    async def list_shaping_targets(self, interface):
        return set(self.shaping.get(interface, {}))

    async def shaping_interfaces(self):
        return sorted(self.shaping)

    async def apply_qos(self, interface, discipline):
        self._maybe_fail("apply_qos")
        self.qos[interface] = discipline

    def snapshot(self):
        """Enumerable rule state, for idempotency comparisons"""
        return (
            sorted(self.allow),
            {iface: dict(table) for iface, table in self.shaping.items() if table}
        )


class FakeResolver:
    """Address to hardware id table; unknown addresses stay unresolved"""

    def __init__(self, table: Optional[Dict[str, str]] = None):
        self.table = dict(table or {})
        self.lookups: List[str] = []

    async def resolve(self, address):
        self.lookups.append(address)
        return self.table.get(address)


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'gateway.sqlite'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def resolver():
    return FakeResolver({IP_A1: MAC_A1, IP_B2: MAC_B2, IP_C3: MAC_C3})


@pytest.fixture
def runtime(session_factory, executor, resolver):
    return build_runtime(
        session_factory=session_factory,
        executor=executor,
        resolver=resolver,
        settle_delay=0
    )


@pytest.fixture
def gateway_app(runtime, session_factory):
    """The FastAPI app bound to this test's database and runtime"""
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.runtime = runtime
    limiter.reset()
    yield app
    app.dependency_overrides.clear()
    app.state.runtime = None


@pytest.fixture
def client_for(gateway_app):
    """Build a client whose requests come from ``address``"""
    def _make(address: str, host: str = "test") -> AsyncClient:
        return AsyncClient(
            transport=ASGITransport(app=gateway_app, client=(address, 5000)),
            base_url=f"http://{host}",
        )
    return _make


@pytest_asyncio.fixture
async def client(client_for):
    """Client on the portal host, coming from device A1"""
    async with client_for(IP_A1) as ac:
        yield ac
