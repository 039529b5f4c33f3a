"""
Captive portal protocol: probe answers by admission state, redirects for
foreign hosts, and roaming re-apply on any request.
"""
import pytest

from conftest import IP_A1, IP_C3, MAC_A1
from hotspot.services.captive_portal import (
    DEFAULT_PORTAL_PAGE, classify_probe, host_of, is_canonical_host
)
from hotspot.services.session_store import SessionStore

PROBES = [
    ("test", "/generate_204", 204, ""),
    ("test", "/gen_204", 204, ""),
    ("test", "/hotspot-detect.html", 200, "Success"),
    ("test", "/library/test/success.html", 200, "Success"),
    ("test", "/ncsi.txt", 200, "Microsoft NCSI"),
    ("test", "/connecttest.txt", 200, "Microsoft Connect Test"),
    ("test", "/success.txt", 200, "Success"),
    ("connectivitycheck.gstatic.com", "/", 204, ""),
    ("captive.apple.com", "/", 200, "Success"),
    ("www.msftconnecttest.com", "/redirect", 200, "Microsoft Connect Test"),
]


def test_host_of_strips_port_and_case():
    assert host_of("Captive.Apple.com:80") == "captive.apple.com"
    assert host_of("[fe80::1]:8000") == "[fe80::1]"
    assert host_of(None) == ""


def test_classify_probe():
    assert classify_probe("test", "/generate_204/") == (204, None)
    assert classify_probe("test", "/HOTSPOT-DETECT.HTML") == (200, "Success")
    assert classify_probe("example.com", "/index.html") is None


def test_is_canonical_host():
    assert is_canonical_host("test", ["test", "localhost"]) is True
    assert is_canonical_host("", ["test"]) is True
    assert is_canonical_host("example.com", ["test"]) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("host, path, _status, _body", PROBES)
async def test_unadmitted_probe_gets_portal_page(client_for, host, path, _status, _body):
    async with client_for(IP_A1, host=host) as ac:
        response = await ac.get(path)

    assert response.status_code == 200
    assert response.text == DEFAULT_PORTAL_PAGE


@pytest.mark.asyncio
@pytest.mark.parametrize("host, path, status, body", PROBES)
async def test_admitted_probe_gets_success_answer(client_for, runtime, db, host, path, status, body):
    await runtime.admission.grant(db, MAC_A1, IP_A1, 600, 5)

    async with client_for(IP_A1, host=host) as ac:
        response = await ac.get(path)

    assert response.status_code == status
    assert response.text == body


@pytest.mark.asyncio
async def test_paused_session_is_not_admitted_on_probe(client_for, runtime, db):
    await runtime.admission.grant(db, MAC_A1, IP_A1, 600, 5)
    await runtime.admission.pause(db, MAC_A1)

    async with client_for(IP_A1) as ac:
        response = await ac.get("/generate_204")

    assert response.status_code == 200
    assert response.text == DEFAULT_PORTAL_PAGE


@pytest.mark.asyncio
async def test_expired_session_is_back_on_the_portal(client_for, runtime, db, executor):
    await runtime.admission.grant(db, MAC_A1, IP_A1, 1, 5)

    assert await runtime.ticker.tick(1) == [MAC_A1]

    async with client_for(IP_A1) as ac:
        response = await ac.get("/generate_204")

    assert response.status_code == 200
    assert response.text == DEFAULT_PORTAL_PAGE
    assert executor.allow == set()


@pytest.mark.asyncio
async def test_foreign_host_redirects_to_portal(client_for):
    async with client_for(IP_C3, host="example.com") as ac:
        response = await ac.get("/some/page")

    assert response.status_code == 302
    assert response.headers["location"] == "http://test/"


@pytest.mark.asyncio
async def test_api_paths_are_not_redirected(client_for):
    async with client_for(IP_C3, host="example.com") as ac:
        response = await ac.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_portal_page_and_spa_routes(client):
    index = await client.get("/")
    assert index.status_code == 200
    assert "Insert a coin" in index.text

    spa = await client.get("/vouchers")
    assert spa.status_code == 200

    missing_api = await client.get("/api/does-not-exist")
    assert missing_api.status_code == 404
    assert missing_api.json() == {"detail": "Not Found"}


@pytest.mark.asyncio
async def test_responses_are_never_cached(client):
    response = await client.get("/generate_204")

    assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
    assert response.headers["pragma"] == "no-cache"
    assert response.headers["expires"] == "0"
    assert response.headers["x-content-type-options"] == "nosniff"


@pytest.mark.asyncio
async def test_any_request_follows_a_roaming_device(client_for, runtime, resolver, db, executor):
    await runtime.admission.grant(db, MAC_A1, IP_A1, 600, 5, download_limit=5, upload_limit=2)
    resolver.table["10.0.0.99"] = MAC_A1

    async with client_for("10.0.0.99") as ac:
        response = await ac.get("/generate_204")

    assert response.status_code == 204
    assert executor.allow == {(MAC_A1, "10.0.0.99")}
    assert executor.shaping["br0"] == {"10.0.0.99": (5, 2)}
    db.expire_all()
    assert SessionStore(db).get(MAC_A1).network_address == "10.0.0.99"


@pytest.mark.asyncio
async def test_unresolved_device_is_not_admitted(client_for, resolver):
    async with client_for("10.0.0.200") as ac:
        response = await ac.get("/hotspot-detect.html")

    assert response.status_code == 200
    assert response.text == DEFAULT_PORTAL_PAGE
    assert "10.0.0.200" in resolver.lookups
