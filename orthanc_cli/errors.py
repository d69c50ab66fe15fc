"""Exception hierarchy for orthanc_cli.

Every error a command can report derives from :class:`OrthancCliError`;
``cli.main`` prints the message and exits with status 1.
"""

from typing import Optional


class OrthancCliError(Exception):
    """Base class for errors reported to the user."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(OrthancCliError):
    """Problem with the config file or its contexts."""


class ConfigIOError(ConfigError):
    """The config file could not be read or written."""


class ConfigParseError(ConfigError):
    """The config file is not valid YAML or has the wrong shape."""


class NoContextSelectedError(ConfigError):
    def __init__(self) -> None:
        super().__init__(
            "no context selected (use 'orthanc config use-context <name>' "
            "or 'orthanc config set-context <name> --url <url>')"
        )


class ContextNotFoundError(ConfigError):
    def __init__(self, name: str) -> None:
        super().__init__(f"context {name!r} not found")
        self.name = name


class ContextExistsError(ConfigError):
    def __init__(self, name: str) -> None:
        super().__init__(f"context {name!r} already exists")
        self.name = name


class CannotDeleteCurrentContextError(ConfigError):
    def __init__(self, name: str) -> None:
        super().__init__(
            f"cannot delete current context {name!r} (switch to another context first)"
        )
        self.name = name


class InvalidConfigKeyError(ConfigError):
    def __init__(self, key: str, valid_keys) -> None:
        super().__init__(
            f"invalid configuration key: {key}\nValid keys: {', '.join(valid_keys)}"
        )
        self.key = key


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class OrthancRequestError(OrthancCliError):
    """An HTTP request to the Orthanc server failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

class MalformedContentTypeError(OrthancCliError):
    """Content-Type is not multipart or carries no boundary parameter."""


class MultipartStreamError(OrthancCliError):
    """The multipart body is truncated or structurally invalid."""


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------

class UsageError(OrthancCliError):
    """Invalid combination of command-line arguments or input files."""
