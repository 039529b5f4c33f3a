"""
Captive Portal Protocol

Connectivity-check probes issued by client operating systems, and the exact
answer each one expects. An unadmitted device must get the portal page itself
with HTTP 200 on these probes: OS portal browsers give up on a redirect.
"""
import logging
import os
from typing import Iterable, Optional, Tuple

logger = logging.getLogger(__name__)

# (status, body); a None body means an empty 204
ProbeAnswer = Tuple[int, Optional[str]]

NO_CONTENT: ProbeAnswer = (204, None)
APPLE_SUCCESS: ProbeAnswer = (200, "Success")

PROBE_PATHS = {
    # Android / ChromeOS
    "/generate_204": NO_CONTENT,
    "/gen_204": NO_CONTENT,
    # Windows
    "/ncsi.txt": (200, "Microsoft NCSI"),
    "/connecttest.txt": (200, "Microsoft Connect Test"),
    # Generic / Firefox
    "/success.txt": (200, "Success"),
    "/canonical.html": (200, "Success"),
    # Apple
    "/hotspot-detect.html": APPLE_SUCCESS,
    "/library/test/success.html": APPLE_SUCCESS,
}

# Hostnames reserved by mobile OSes; any path on them is a probe
PROBE_HOSTS = {
    "connectivitycheck.gstatic.com": NO_CONTENT,
    "connectivitycheck.android.com": NO_CONTENT,
    "clients3.google.com": NO_CONTENT,
    "captive.apple.com": APPLE_SUCCESS,
    "www.apple.com": APPLE_SUCCESS,
    "www.appleiphonecell.com": APPLE_SUCCESS,
    "www.msftncsi.com": (200, "Microsoft NCSI"),
    "www.msftconnecttest.com": (200, "Microsoft Connect Test"),
    "detectportal.firefox.com": (200, "success"),
    "nmcheck.gnome.org": NO_CONTENT,
    "connectivity-check.ubuntu.com": NO_CONTENT,
}

DEFAULT_PORTAL_PAGE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>WiFi Hotspot</title>
</head>
<body>
<h1>Welcome</h1>
<p>Insert a coin or enter a voucher code to get online.</p>
<div id="root"></div>
</body>
</html>
"""


def host_of(host_header: Optional[str]) -> str:
    """Lower-cased host without port; bracketed IPv6 literals kept intact"""
    host = (host_header or "").strip().lower()
    if host.startswith("["):
        return host.split("]")[0] + "]"
    return host.split(":")[0]


def classify_probe(host: str, path: str) -> Optional[ProbeAnswer]:
    """Admitted answer for a connectivity probe, or None if not a probe"""
    answer = PROBE_HOSTS.get(host)
    if answer is not None:
        return answer
    normalized = (path or "/").lower()
    if len(normalized) > 1:
        normalized = normalized.rstrip("/")
    return PROBE_PATHS.get(normalized)


def is_canonical_host(host: str, portal_hosts: Iterable[str]) -> bool:
    return not host or host in set(portal_hosts)


def load_portal_page(portal_dir: str) -> str:
    """The portal SPA entry point, or a minimal built-in page"""
    path = os.path.join(portal_dir, "index.html")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError:
        logger.debug(f"Portal page not found at {path}, using built-in page")
        return DEFAULT_PORTAL_PAGE
