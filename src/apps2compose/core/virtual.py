"""Virtual apps: capability name → packages implementing it (virtual-apps.json)."""


class VirtualAppIndex:
    """Order-preserving capability index, rebuilt from scratch every run."""

    def __init__(self):
        self.apps: dict[str, list[str]] = {}

    def add(self, capability: str | None, app_id: str) -> None:
        """Record that *app_id* implements *capability* (no-op for None)."""
        if not capability:
            return
        self.apps.setdefault(capability, []).append(app_id)

    def implementations(self, capability: str) -> list[str]:
        return list(self.apps.get(capability, []))

    def to_dict(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self.apps.items()}
