"""
Datagram transport.

``MulticastTransport`` sends every serialized event to the configured IPv4
multicast group and, optionally, duplicates it to one unicast destination
for networks that do not relay multicast. Delivery is best effort: a failed
send is logged and the caller carries on with the next event.

Unicast targets:
    - ``"gateway"``: the host's default IPv4 gateway (see :mod:`beatcast.gateway`)
    - ``"host"``: resolved via DNS, sent to the configured port
    - ``"host:port"``: resolved via DNS, sent to the given port

A target that cannot be resolved disables the fallback for the whole run
after a single warning; the multicast path is unaffected.
"""

import logging
import socket
from typing import Callable, List, Optional, Tuple

from beatcast.config import EmitterConfig
from beatcast.gateway import resolve_default_gateway

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

Address = Tuple[str, int]


def _split_target(target: str, default_port: int) -> Tuple[str, int]:
    host, sep, port = target.rpartition(":")
    if not sep:
        return target, default_port
    if not port.isdigit() or not 1 <= int(port) <= 65535:
        raise ValueError(f"invalid port in unicast target '{target}'")
    return host, int(port)


class MulticastTransport:
    """Best-effort UDP sender to a multicast group plus optional unicast.

    Attributes:
        multicast_address: (group, port) every datagram is sent to.
        unicast_address: Resolved fallback destination, or None when
            disabled or unresolvable.
    """

    def __init__(
        self,
        cfg: EmitterConfig,
        socket_factory: Callable[..., socket.socket] = socket.socket,
        gateway_resolver: Callable[[], str] = resolve_default_gateway,
        host_resolver: Callable[[str], str] = socket.gethostbyname,
    ):
        self.multicast_address: Address = (cfg.multicast_group, cfg.port)
        self.unicast_address: Optional[Address] = None

        self._sock = socket_factory(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        self._sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, cfg.ttl)
        self._sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1 if cfg.loopback else 0)
        if cfg.interface != "0.0.0.0":
            self._sock.setsockopt(
                socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(cfg.interface)
            )

        if cfg.unicast_target:
            self.unicast_address = self._resolve_unicast(
                cfg.unicast_target, cfg.port, gateway_resolver, host_resolver
            )

        logger.info(
            "Sending to multicast %s:%d (ttl=%d, loopback=%s)%s",
            cfg.multicast_group,
            cfg.port,
            cfg.ttl,
            cfg.loopback,
            f", unicast {self.unicast_address[0]}:{self.unicast_address[1]}"
            if self.unicast_address else "",
        )

    @staticmethod
    def _resolve_unicast(
        target: str,
        default_port: int,
        gateway_resolver: Callable[[], str],
        host_resolver: Callable[[str], str],
    ) -> Optional[Address]:
        try:
            if target.strip().lower() == "gateway":
                return gateway_resolver(), default_port
            host, port = _split_target(target.strip(), default_port)
            return host_resolver(host), port
        except (OSError, RuntimeError, ValueError) as e:
            logger.warning(
                "Unicast fallback disabled: cannot resolve target '%s' (%s)", target, e
            )
            return None

    @property
    def destinations(self) -> List[Address]:
        dests = [self.multicast_address]
        if self.unicast_address is not None:
            dests.append(self.unicast_address)
        return dests

    def send(self, data: bytes) -> int:
        """Send one datagram to every destination.

        Returns:
            Number of destinations the datagram was handed to.
        """
        delivered = 0
        for address in self.destinations:
            try:
                self._sock.sendto(data, address)
                delivered += 1
            except OSError as e:
                logger.warning("Send to %s:%d failed: %s", address[0], address[1], e)
        return delivered

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> "MulticastTransport":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
