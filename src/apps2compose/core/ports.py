"""Public port allocation with priority-based conflict resolution.

The claim table maps public (host) port numbers to the claim occupying them.
It is loaded from the previous run's ports.cache.yml and written back at the
end, which keeps ports stable across runs: a claim that already owns a port
is recognized and left in place.
"""

from apps2compose.core.constants import SHARED_CAPABILITY_CONTAINER
from apps2compose.pacts.types import PortCacheEntry, PortMapElement, PortPriority


def _same_claim(entry: PortCacheEntry, claim: PortCacheEntry) -> bool:
    """Same owner and container port, or the owner's single dynamic port."""
    if not entry.owned_by(claim.app, claim.container):
        return False
    return entry.internal_port == claim.internal_port or (entry.dynamic and claim.dynamic)


class PortAllocator:
    """Owns the public port → claim table for one run."""

    def __init__(self, reserved_ports=frozenset(), cache: dict[int, PortCacheEntry] | None = None):
        self.reserved_ports = frozenset(reserved_ports)
        self.claims: dict[int, PortCacheEntry] = dict(cache or {})

    def _is_taken(self, port: int) -> bool:
        return port in self.reserved_ports or port in self.claims

    def next_free_port(self, port: int, claim: PortCacheEntry | None = None) -> int:
        """Search upwards from *port* for a port that is neither reserved nor claimed.

        Stops early on a port already holding *claim* (see ``_same_claim``), so
        a claim moved in a previous run is found again at the same place while
        the owner's other claims are skipped like anybody else's.
        """
        while self._is_taken(port):
            entry = self.claims.get(port)
            if entry is not None and claim is not None and _same_claim(entry, claim):
                return port
            port += 1
        return port

    def reserve(self, app: str, container: str, suggested_port: int,
                priority: PortPriority = PortPriority.OPTIONAL,
                dynamic: bool = False, implements: str | None = None) -> bool:
        """Claim *suggested_port* (or a replacement) for (app, container).

        Returns False only when the port is held by a REQUIRED claim and the
        requester is REQUIRED too; every other request ends up with a port.
        """
        claim = PortCacheEntry(
            app=app, internal_port=suggested_port, container=container,
            dynamic=dynamic, implements=implements, priority=priority)
        incumbent = self.claims.get(suggested_port)

        if incumbent is None:
            public_port = suggested_port
            if suggested_port in self.reserved_ports:
                public_port = self.next_free_port(suggested_port, claim)
            self.claims[public_port] = claim
            return True

        if incumbent.owned_by(app, container):
            return True
        if (implements is not None and incumbent.implements == implements
                and container == SHARED_CAPABILITY_CONTAINER):
            # Another package implementing the same capability: share the slot
            return True

        if incumbent.priority < priority:
            # The incumbent moves away; search past the port it is leaving
            new_port = self.next_free_port(suggested_port + 1, incumbent)
            if incumbent.dynamic:
                incumbent.internal_port = new_port
            self.claims[new_port] = incumbent
            self.claims[suggested_port] = claim
            return True

        if incumbent.priority == PortPriority.REQUIRED and priority == PortPriority.REQUIRED:
            return False

        new_port = self.next_free_port(suggested_port, claim)
        if dynamic:
            claim.internal_port = new_port
        self.claims[new_port] = claim
        return True

    def port_map(self) -> dict[str, dict[str, list[PortMapElement]]]:
        """Group claims by capability-or-app → container → published ports.

        Claims on the shared capability container are keyed by the capability
        name so consumers can look up "the" implementation of it.
        """
        port_map: dict[str, dict[str, list[PortMapElement]]] = {}
        for public_port, entry in sorted(self.claims.items()):
            key = entry.app
            if entry.implements and entry.container == SHARED_CAPABILITY_CONTAINER:
                key = entry.implements
            port_map.setdefault(key, {}).setdefault(entry.container, []).append(
                PortMapElement(internal_port=entry.internal_port,
                               public_port=public_port, dynamic=entry.dynamic))
        return port_map
