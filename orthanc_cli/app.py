"""Per-invocation state handed to every command handler.

Handlers receive an :class:`App` instead of reaching for module globals: it
loads the config store on first use and builds clients through an injectable
factory, so tests can swap in a fake server.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from orthanc_cli.client import OrthancClient, client_from_context
from orthanc_cli.context_store import ConfigStore, OrthancContext, load_config

logger = logging.getLogger(__name__)

ClientFactory = Callable[[OrthancContext], OrthancClient]


@dataclass
class App:
    config_path: Optional[Path] = None
    client_factory: ClientFactory = client_from_context
    _store: Optional[ConfigStore] = field(default=None, repr=False)

    @property
    def store(self) -> ConfigStore:
        if self._store is None:
            self._store = load_config(self.config_path)
        return self._store

    def client(self) -> OrthancClient:
        """Client for the current context (environment overrides applied)."""
        ctx = self.store.get_current_context()
        logger.debug("Using context %r at %s", ctx.name, ctx.url)
        return self.client_factory(ctx)

    def use_json(self, args) -> bool:
        """``--json`` on the command line, or ``output.json`` in the config file."""
        return bool(getattr(args, "json", False)) or self.store.output_json
