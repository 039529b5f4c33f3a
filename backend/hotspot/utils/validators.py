import re
import ipaddress
from typing import Optional

_ZERO_MAC = "00:00:00:00:00:00"


def normalize_mac(mac_address: str) -> Optional[str]:
    """
    Normalize MAC address format for comparison and storage.

    Converts the usual notations to uppercase with colons:
    - aa:bb:cc:dd:ee:ff
    - AA-BB-CC-DD-EE-FF
    - aabb.ccdd.eeff

    Returns None for anything that is not a usable hardware address.
    """
    if not mac_address:
        return None

    mac_clean = re.sub(r'[^0-9A-Fa-f]', '', mac_address).upper()
    if len(mac_clean) != 12:
        return None

    normalized = ':'.join(mac_clean[i:i+2] for i in range(0, 12, 2))
    if normalized == _ZERO_MAC or normalized == "FF:FF:FF:FF:FF:FF":
        return None
    return normalized


def is_client_address(address: str) -> bool:
    """
    True for addresses worth resolving to a hardware id.

    Only IPv4 is enforced; loopback, unspecified and malformed addresses are
    never LAN clients.
    """
    if not address:
        return False
    try:
        ip = ipaddress.IPv4Address(address.strip())
    except ValueError:
        return False
    return not (ip.is_loopback or ip.is_unspecified or ip.is_multicast)
