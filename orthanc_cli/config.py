"""
Centralised configuration for the orthanc_cli package.

Config file locations, environment variable names, HTTP defaults and logging
setup used across all modules.
"""

import logging
from pathlib import Path

# ---------------------------------------------------------------------------
# Config file location
# ---------------------------------------------------------------------------
CONFIG_FILENAME = ".orthanc-cli.yaml"


def default_config_path() -> Path:
    """Return the path written to when no config file exists yet."""
    return Path.home() / CONFIG_FILENAME


def config_search_paths() -> list[Path]:
    """Locations checked, in order, when no ``--config`` path is given."""
    return [Path.home() / CONFIG_FILENAME, Path.cwd() / CONFIG_FILENAME]


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------
# Name given to the context synthesised from a legacy single-server file.
DEFAULT_CONTEXT_NAME = "default"

# Environment variables overriding the current context (highest priority).
ENV_URL = "ORTHANC_URL"
ENV_USERNAME = "ORTHANC_USERNAME"
ENV_PASSWORD = "ORTHANC_PASSWORD"
ENV_INSECURE = "ORTHANC_INSECURE"

# Keys accepted by ``config get`` / ``config set``.
ORTHANC_KEYS = ("orthanc.url", "orthanc.username", "orthanc.password", "orthanc.insecure")
OUTPUT_KEYS = ("output.json",)
VALID_CONFIG_KEYS = ORTHANC_KEYS + OUTPUT_KEYS
BOOLEAN_CONFIG_KEYS = ("orthanc.insecure", "output.json")

PASSWORD_MASK = "********"

# Written by ``config init``.
DEFAULT_CONFIG_TEMPLATE = """\
# Orthanc CLI Configuration
# Contexts allow you to manage multiple Orthanc server configurations
contexts:
  local:
    orthanc:
      url: "http://localhost:8042"
      username: "orthanc"
      password: "orthanc"
      insecure: false

# The currently active context
current-context: local

# Output configuration
output:
  json: false  # Set to true to output all results in JSON format by default
"""

# ---------------------------------------------------------------------------
# HTTP / streaming
# ---------------------------------------------------------------------------
DEFAULT_TIMEOUT = 30  # seconds, connect and per-read
STREAM_CHUNK_SIZE = 64 * 1024

# Orthanc resource levels, as spelled by /tools/find and /modalities/.../query.
RESOURCE_LEVELS = ("Patient", "Study", "Series", "Instance")

# ---------------------------------------------------------------------------
# Logging helper
# ---------------------------------------------------------------------------
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.WARNING) -> None:
    """Configure root logging for the orthanc command."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
