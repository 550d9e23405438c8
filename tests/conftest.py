"""Shared fixtures: a throwaway platform root with an apps/ catalog."""

import json
from pathlib import Path

import pytest
import yaml

CADDY_TEMPLATE = """\
{% for app, entries in caddy_entries.items() %}{% for e in entries %}
http://{{ app }}.local {
reverse_proxy {{ e.upstream }}
}
{% endfor %}{% endfor %}
"""


class Platform:
    """Helper around a temporary platform root."""

    def __init__(self, root: Path):
        self.root = root
        self.apps = root / "apps"
        self.apps.mkdir()
        (root / "templates").mkdir()
        (root / "templates" / "Caddyfile.jinja").write_text(CADDY_TEMPLATE)

    def add_app(self, app_id: str, manifest: dict | str | None) -> Path:
        app_dir = self.apps / app_id
        app_dir.mkdir()
        if isinstance(manifest, dict):
            (app_dir / "app.yml").write_text(yaml.safe_dump(manifest))
        elif isinstance(manifest, str):
            (app_dir / "app.yml").write_text(manifest)
        return app_dir

    def set_user(self, installed: list[str], https=None) -> None:
        db = self.root / "db"
        db.mkdir(exist_ok=True)
        data = {"installedApps": installed}
        if https is not None:
            data["https"] = https
        (db / "user.json").write_text(json.dumps(data))

    def set_seed(self, seed: str) -> None:
        seed_dir = self.root / "db" / "citadel-seed"
        seed_dir.mkdir(parents=True, exist_ok=True)
        (seed_dir / "seed").write_text(seed)

    def read_yaml(self, *parts):
        return yaml.safe_load(self.root.joinpath(*parts).read_text())

    def read_json(self, *parts):
        return json.loads(self.root.joinpath(*parts).read_text())


def simple_app(port: int | None = None, **metadata) -> dict:
    """Manifest with a single container."""
    svc = {"image": "example/app:1.0"}
    if port is not None:
        svc["port"] = port
    return {"metadata": {"name": "App", **metadata}, "services": {"main": svc}}


@pytest.fixture
def platform(tmp_path):
    return Platform(tmp_path)
