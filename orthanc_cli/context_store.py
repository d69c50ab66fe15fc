"""Multi-context configuration store for the orthanc command.

The YAML file holds any number of named server contexts plus global output
preferences::

    contexts:
      local:
        orthanc: {url: ..., username: ..., password: ..., insecure: false}
    current-context: local
    output: {json: false}

Files written by older releases carry a single flat ``orthanc:`` block
instead.  :meth:`ConfigStore.load` translates that shape into a ``default``
context in memory and flags the store as ``migrated``; writing the result
back is a separate, explicit step (:func:`load_config` does both).
"""

import dataclasses
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from orthanc_cli.config import (
    DEFAULT_CONTEXT_NAME,
    ENV_INSECURE,
    ENV_PASSWORD,
    ENV_URL,
    ENV_USERNAME,
    config_search_paths,
    default_config_path,
)
from orthanc_cli.errors import (
    CannotDeleteCurrentContextError,
    ConfigError,
    ConfigIOError,
    ConfigParseError,
    ContextExistsError,
    ContextNotFoundError,
    NoContextSelectedError,
)
from orthanc_cli.utils import parse_bool

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Context dataclass
# ---------------------------------------------------------------------------

@dataclass
class OrthancContext:
    """Connection settings for one Orthanc server."""

    name: str
    url: str = ""
    username: str = ""
    password: str = ""
    insecure: bool = False

    def to_dict(self) -> dict:
        return {
            "orthanc": {
                "url": self.url,
                "username": self.username,
                "password": self.password,
                "insecure": self.insecure,
            }
        }


def _as_bool(value, where: str) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    try:
        return parse_bool(str(value))
    except ValueError as exc:
        raise ConfigParseError(f"{where}: {exc}") from exc


def _as_str(value) -> str:
    return "" if value is None else str(value)


def _context_from_block(name: str, block, where: str) -> OrthancContext:
    """Build a context from an ``{url, username, password, insecure}`` mapping."""
    if block is None:
        block = {}
    if not isinstance(block, dict):
        raise ConfigParseError(f"{where}: expected a mapping, got {type(block).__name__}")
    return OrthancContext(
        name=name,
        url=_as_str(block.get("url")),
        username=_as_str(block.get("username")),
        password=_as_str(block.get("password")),
        insecure=_as_bool(block.get("insecure"), f"{where}.insecure"),
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

@dataclass
class ConfigStore:
    """All contexts plus global output settings, bound to one file path."""

    path: Path
    contexts: dict[str, OrthancContext] = field(default_factory=dict)
    current_context: str = ""
    output_json: bool = False
    migrated: bool = False

    # ----- loading -----

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "ConfigStore":
        """Read the store from *path*, or from the default search locations.

        A missing file yields an empty store bound to that path.  Unreadable
        files raise :class:`ConfigIOError`; invalid YAML or an unexpected
        document shape raises :class:`ConfigParseError`.
        """
        path = cls._resolve_path(path)
        if not path.exists():
            logger.debug("No config file at %s, using defaults", path)
            return cls(path=path)

        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigIOError(f"error reading config file {path}: {exc}") from exc

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigParseError(f"error parsing config file {path}: {exc}") from exc

        store = cls.from_dict(data or {}, path)
        logger.debug(
            "Loaded %d context(s) from %s (current: %s)",
            len(store.contexts), path, store.current_context or "<none>",
        )
        return store

    @staticmethod
    def _resolve_path(path: Optional[Path]) -> Path:
        if path:
            return Path(path).expanduser()
        for candidate in config_search_paths():
            if candidate.is_file():
                return candidate
        return default_config_path()

    @classmethod
    def from_dict(cls, data, path: Path) -> "ConfigStore":
        """Build a store from a parsed YAML document, migrating the legacy shape."""
        if not isinstance(data, dict):
            raise ConfigParseError(
                f"config file {path} must contain a mapping, got {type(data).__name__}"
            )

        output = data.get("output") or {}
        if not isinstance(output, dict):
            raise ConfigParseError(f"{path}: 'output' must be a mapping")

        raw_contexts = data.get("contexts") or {}
        if not isinstance(raw_contexts, dict):
            raise ConfigParseError(f"{path}: 'contexts' must be a mapping")

        store = cls(
            path=path,
            current_context=_as_str(data.get("current-context")),
            output_json=_as_bool(output.get("json"), "output.json"),
        )

        for name, entry in raw_contexts.items():
            name = str(name)
            if entry is not None and not isinstance(entry, dict):
                raise ConfigParseError(f"{path}: context {name!r} must be a mapping")
            block = (entry or {}).get("orthanc")
            store.contexts[name] = _context_from_block(name, block, f"contexts.{name}.orthanc")

        legacy = data.get("orthanc")
        if legacy is not None and not store.contexts:
            store.contexts[DEFAULT_CONTEXT_NAME] = _context_from_block(
                DEFAULT_CONTEXT_NAME, legacy, "orthanc"
            )
            store.current_context = DEFAULT_CONTEXT_NAME
            store.migrated = True
            logger.info("Translated legacy config in %s into context %r", path, DEFAULT_CONTEXT_NAME)

        if not store.current_context and store.contexts:
            store.current_context = sorted(store.contexts)[0]

        return store

    # ----- saving -----

    def to_dict(self) -> dict:
        return {
            "contexts": {name: ctx.to_dict() for name, ctx in self.contexts.items()},
            "current-context": self.current_context,
            "output": {"json": self.output_json},
        }

    def save(self) -> None:
        """Write the whole store back to :attr:`path` (never the legacy block)."""
        text = yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise ConfigIOError(f"failed to write config file {self.path}: {exc}") from exc
        self.migrated = False
        logger.debug("Saved config to %s", self.path)

    # ----- contexts -----

    def get_context(self, name: str) -> OrthancContext:
        try:
            return self.contexts[name]
        except KeyError:
            raise ContextNotFoundError(name) from None

    def get_current_context(self) -> OrthancContext:
        """Return a copy of the current context with environment overrides applied."""
        if not self.current_context:
            raise NoContextSelectedError()
        ctx = dataclasses.replace(self.get_context(self.current_context))

        url = os.environ.get(ENV_URL)
        if url:
            ctx.url = url
        username = os.environ.get(ENV_USERNAME)
        if username:
            ctx.username = username
        password = os.environ.get(ENV_PASSWORD)
        if password:
            ctx.password = password
        insecure = os.environ.get(ENV_INSECURE)
        if insecure:
            try:
                ctx.insecure = parse_bool(insecure)
            except ValueError as exc:
                raise ConfigError(f"{ENV_INSECURE}: {exc}") from exc
        return ctx

    def set_context(
        self,
        name: str,
        url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        insecure: Optional[bool] = None,
        make_current: bool = False,
    ) -> bool:
        """Create or update *name*; fields left as None keep their value.

        The context becomes current when *make_current* is set or when it is
        the only context in the store.  Returns True if it was created.
        """
        created = name not in self.contexts
        ctx = self.contexts.setdefault(name, OrthancContext(name=name))
        if url is not None:
            ctx.url = url
        if username is not None:
            ctx.username = username
        if password is not None:
            ctx.password = password
        if insecure is not None:
            ctx.insecure = insecure

        if make_current or len(self.contexts) == 1:
            self.current_context = name
        return created

    def use_context(self, name: str) -> None:
        self.get_context(name)
        self.current_context = name

    def rename_context(self, old: str, new: str) -> None:
        ctx = self.get_context(old)
        if new in self.contexts:
            raise ContextExistsError(new)
        # Rebuild so the renamed context keeps its position in the saved file.
        self.contexts = {
            (new if name == old else name): value for name, value in self.contexts.items()
        }
        ctx.name = new
        if self.current_context == old:
            self.current_context = new

    def delete_context(self, name: str) -> None:
        self.get_context(name)
        if name == self.current_context:
            raise CannotDeleteCurrentContextError(name)
        del self.contexts[name]

    def context_names(self) -> list[str]:
        return sorted(self.contexts)


def load_config(path: Optional[Path] = None) -> ConfigStore:
    """Load the store and persist a pending legacy migration."""
    store = ConfigStore.load(path)
    if store.migrated:
        store.save()
        print(
            f"✓ Migrated config to multi-context format "
            f"(created {DEFAULT_CONTEXT_NAME!r} context) in {store.path}",
            file=sys.stderr,
        )
    return store
