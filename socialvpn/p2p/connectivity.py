"""
Connectivity layer interface.

The engine never opens tunnels itself. It tells the connectivity layer
which overlay addresses to keep connections to and which aliases map to
which addresses; the layer hands back the virtual IP it assigned.

AddressMapper is an in-process implementation that only does the
bookkeeping (address set, alias table, IP allocation).
"""

import ipaddress
from abc import ABC, abstractmethod
from typing import Dict, Optional, Set
import logging

logger = logging.getLogger(__name__)


DEFAULT_NETWORK = "172.31.0.0/16"  # Virtual IPv4 network for friends


class ConnectivityManager(ABC):
    """Tunnel / address-mapping capability."""

    @abstractmethod
    def register_address(self, address: str) -> None:
        """Start maintaining connectivity to an overlay address."""
        pass

    @abstractmethod
    def unregister_address(self, address: str) -> None:
        """Stop maintaining connectivity to an overlay address."""
        pass

    @abstractmethod
    def map_alias(self, alias: str, address: str) -> str:
        """
        Bind an alias to an overlay address.

        Returns:
            Virtual IP assigned to the address
        """
        pass

    @abstractmethod
    def unmap_alias(self, alias: str) -> None:
        pass

    @abstractmethod
    def acknowledge(self, address: str) -> None:
        """Signal the friend at address that we accepted it."""
        pass


class AddressMapper(ConnectivityManager):
    """In-memory connectivity bookkeeping with virtual IP allocation."""

    def __init__(self, network: str = DEFAULT_NETWORK):
        """
        Initialize address mapper.

        Args:
            network: IPv4 network to allocate virtual IPs from
        """
        self.network = ipaddress.IPv4Network(network)
        self._hosts = self.network.hosts()

        self.registered: Set[str] = set()
        self.aliases: Dict[str, str] = {}  # alias -> address
        self.ips: Dict[str, str] = {}  # address -> virtual IP
        self.acknowledged: Set[str] = set()

        self.stats = {
            "registrations": 0,
            "unregistrations": 0,
            "acknowledgements": 0
        }

    def register_address(self, address: str) -> None:
        self.registered.add(address)
        self.stats["registrations"] += 1
        logger.debug(f"Registered address {address[:28]}...")

    def unregister_address(self, address: str) -> None:
        self.registered.discard(address)
        self.stats["unregistrations"] += 1
        logger.debug(f"Unregistered address {address[:28]}...")

    def _allocate(self, address: str) -> str:
        ip = self.ips.get(address)
        if ip is None:
            try:
                ip = str(next(self._hosts))
            except StopIteration:
                raise RuntimeError(f"Virtual network {self.network} exhausted")
            self.ips[address] = ip
        return ip

    def map_alias(self, alias: str, address: str) -> str:
        self.aliases[alias] = address
        return self._allocate(address)

    def unmap_alias(self, alias: str) -> None:
        self.aliases.pop(alias, None)

    def acknowledge(self, address: str) -> None:
        self.acknowledged.add(address)
        self.stats["acknowledgements"] += 1

    def ip_for_alias(self, alias: str) -> Optional[str]:
        address = self.aliases.get(alias)
        return self.ips.get(address) if address else None

    def is_registered(self, address: str) -> bool:
        return address in self.registered
