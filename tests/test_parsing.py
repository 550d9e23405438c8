"""Tests for app.yml parsing."""

import pytest

from apps2compose.core.errors import ManifestError
from apps2compose.io.parsing import load_manifest
from apps2compose.pacts.types import PortPriority

FULL = """
metadata:
  name: Lightning
  implements: lnd
services:
  service:
    image: lightninglabs/lnd:v0.17
    port: 10009
    port_priority: required
    required_ports:
      tcp:
        9735: 9735
      udp:
        "9736": 9736
    mounts:
      shared_data:
        lnd: /data/.lnd
  main:
    image: example/lnd-ui
"""


def test_full_manifest():
    manifest = load_manifest(FULL)
    assert manifest.implements == "lnd"
    assert manifest.main_container == "main"
    assert manifest.primary_container == "service"
    svc = manifest.services["service"]
    assert svc.port == 10009
    assert svc.port_priority is PortPriority.REQUIRED
    assert svc.required_ports == {"tcp": {9735: 9735}, "udp": {9736: 9736}}
    assert svc.mounts["shared_data"] == {"lnd": "/data/.lnd"}
    ui = manifest.services["main"]
    assert ui.port is None
    assert ui.port_priority is None
    assert ui.required_ports == {}


def test_single_service_is_main():
    manifest = load_manifest("services:\n  web:\n    image: x\n")
    assert manifest.main_container == "web"
    assert manifest.primary_container == "web"
    assert manifest.implements is None


@pytest.mark.parametrize("text, message", [
    ("- a list", "mapping"),
    ("metadata: {}\n", "services"),
    ("services: {}\n", "services"),
    ("services:\n  a: {image: x}\n  b: {image: y}\n", "main container"),
    ("services:\n  main: {port: abc}\n", "port number"),
    ("services:\n  main: {port: 70000}\n", "out of range"),
    ("services:\n  main: {port_priority: urgent}\n", "priority"),
    ("services:\n  main: {required_ports: [80]}\n", "required_ports"),
    ("services: [\n", "invalid YAML"),
    ("metadata: {implements: [a, b]}\nservices: {service: {image: x}}\n", "implements"),
])
def test_invalid_manifests(text, message):
    with pytest.raises(ManifestError, match=message):
        load_manifest(text)
