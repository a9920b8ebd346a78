"""
Default-gateway lookup for the unicast fallback.

Some networks (container bridges, Wi-Fi access points) drop multicast. The
emitter can then duplicate every datagram to a unicast host; the special
target ``"gateway"`` means "the host's default IPv4 gateway", which is where
a receiver on a container host typically lives.
"""

import logging
import re
from typing import Optional

from beatcast.subprocess_utils import run_checked

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

GATEWAY_COMMAND = ("ip", "route", "show", "default")
_DEFAULT_VIA = re.compile(r"^default\s+via\s+(\d{1,3}(?:\.\d{1,3}){3})\b", re.MULTILINE)


def parse_default_gateway(route_output: str) -> Optional[str]:
    """Extract the first ``default via <addr>`` address from ``ip route`` output.

    >>> parse_default_gateway("default via 172.17.0.1 dev eth0\\n")
    '172.17.0.1'
    >>> parse_default_gateway("10.0.0.0/8 dev eth0") is None
    True
    """
    match = _DEFAULT_VIA.search(route_output)
    return match.group(1) if match else None


def resolve_default_gateway(timeout_s: float = 2.0) -> str:
    """Return the default IPv4 gateway address.

    Raises:
        RuntimeError: If the route tool is unavailable, fails, or reports no
            default route.
    """
    result = run_checked(GATEWAY_COMMAND, timeout_s=timeout_s, tool_name="ip route")
    address = parse_default_gateway(result.stdout)
    if address is None:
        raise RuntimeError("no default route found")
    logger.debug("Default gateway is %s", address)
    return address
