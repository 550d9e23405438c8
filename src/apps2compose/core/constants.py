"""Constants, file names, and regexes used throughout the converter."""

import re

# Container name that stands for "the" service of an app implementing a capability.
# Claims on this container are shared between packages implementing the same capability.
SHARED_CAPABILITY_CONTAINER = "service"

# Main container name when an app declares more than one service
MAIN_CONTAINER = "main"

# Mount key for the directory shared with other apps
SHARED_DATA_MOUNT = "shared_data"

# Placeholder in metadata.default_password, replaced by a per-app derived secret
APP_SEED_SENTINEL = "$APP_SEED"
SEED_UNAVAILABLE_MESSAGE = (
    "Please reboot your node, default password does not seem to be available yet."
)

# Number of Tor config files onion-service entries are spread over
TOR_FILE_COUNT = 3

# Paths relative to the platform root
APPS_DIR = "apps"
MANIFEST_FILE = "app.yml"
SPEC_FILE = "docker-compose.yml"
PORT_MAP_FILE = "ports.yml"
PORT_CACHE_FILE = "ports.cache.yml"
IP_MAP_FILE = "ips.yml"
REGISTRY_FILE = "registry.json"
VIRTUAL_APPS_FILE = "virtual-apps.json"
CONFIG_FILE = "apps2compose.yaml"
USER_FILE = ("db", "user.json")
SEED_FILE = ("db", "citadel-seed", "seed")
ENV_FILE = ".env"
TOR_FILES = (("tor", "torrc-apps"), ("tor", "torrc-apps-2"), ("tor", "torrc-apps-3"))
I2P_FILE = ("i2p", "tunnels.d", "apps.conf")
CADDY_TEMPLATE = ("templates", "Caddyfile.jinja")
CADDY_FILE = ("caddy", "Caddyfile")

# Characters not allowed in env var names (app ids and service names use '-')
_ENV_NAME_RE = re.compile(r'[^A-Z0-9_]')
