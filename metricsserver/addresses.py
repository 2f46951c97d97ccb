"""Choosing the address used to connect to a node."""

from __future__ import annotations

from typing import Iterable

from metricsserver.types import Node, NodeAddressType

# Overrides first, internal before external, DNS before IPs.
DEFAULT_ADDRESS_TYPE_PRIORITY: tuple[NodeAddressType, ...] = (
    NodeAddressType.HOSTNAME,
    NodeAddressType.INTERNAL_DNS,
    NodeAddressType.INTERNAL_IP,
    NodeAddressType.EXTERNAL_DNS,
    NodeAddressType.EXTERNAL_IP,
)


class PriorityNodeAddressResolver:
    """Resolves node addresses by a priority list of address types.

    Within one type, addresses are taken in the order the node reports them.
    """

    def __init__(
        self, type_priority: Iterable[NodeAddressType] = DEFAULT_ADDRESS_TYPE_PRIORITY
    ) -> None:
        self.type_priority = tuple(type_priority)

    def node_address(self, node: Node) -> str:
        for address_type in self.type_priority:
            match = next((a for a in node.addresses if a.type == address_type), None)
            if match is not None:
                return match.address
        names = " ".join(t.value for t in self.type_priority)
        raise LookupError(f"no address matched types [{names}]")