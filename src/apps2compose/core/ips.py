"""Stable private IP assignment for (app, service) pairs."""

from apps2compose.core.errors import IpSpaceExhausted


class IpAllocator:
    """Hand out addresses of a /24 subnet in first-seen order.

    Addresses already in *cache* (the previous run's ips.yml) are returned
    unchanged. New names get the next unused host suffix, starting at
    *first_suffix* and never going past *last_suffix*.
    """

    def __init__(self, subnet: str = "10.21.21", first_suffix: int = 20,
                 last_suffix: int = 255, cache: dict[str, str] | None = None):
        self.subnet = subnet
        self.last_suffix = last_suffix
        self.ip_map: dict[str, str] = dict(cache or {})
        self._used = set(self.ip_map.values())
        self.cursor = first_suffix + len(self.ip_map)

    def assign(self, name: str) -> str:
        """Return the address for env var *name*, allocating one if needed."""
        if name in self.ip_map:
            return self.ip_map[name]
        while f"{self.subnet}.{self.cursor}" in self._used:
            self.cursor += 1
        if self.cursor > self.last_suffix:
            raise IpSpaceExhausted(
                f"no address left in {self.subnet}.0/24 for {name} "
                f"({len(self.ip_map)} addresses assigned)")
        address = f"{self.subnet}.{self.cursor}"
        self.ip_map[name] = address
        self._used.add(address)
        self.cursor += 1
        return address
