"""Tests for orthanc_cli.context_store: contexts, legacy migration, env overrides."""

import textwrap

import pytest
import yaml

from orthanc_cli.context_store import ConfigStore, OrthancContext, load_config
from orthanc_cli.errors import (
    CannotDeleteCurrentContextError,
    ConfigError,
    ConfigParseError,
    ContextExistsError,
    ContextNotFoundError,
    NoContextSelectedError,
)


LEGACY_CONFIG = textwrap.dedent("""\
    orthanc:
      url: "http://pacs.example:8042"
      username: "admin"
      password: "secret"
      insecure: true
    output:
      json: true
""")

MULTI_CONFIG = textwrap.dedent("""\
    contexts:
      prod:
        orthanc:
          url: "https://prod.example"
          username: "p"
          password: "pp"
          insecure: false
      dev:
        orthanc:
          url: "http://localhost:8042"
    current-context: dev
    output:
      json: false
""")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("ORTHANC_URL", "ORTHANC_USERNAME", "ORTHANC_PASSWORD", "ORTHANC_INSECURE"):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class TestLoad:
    def test_missing_file_gives_empty_store(self, tmp_path):
        store = ConfigStore.load(tmp_path / "nope.yaml")
        assert store.contexts == {}
        assert store.current_context == ""
        assert store.output_json is False
        assert not (tmp_path / "nope.yaml").exists()

    def test_multi_context_file(self, tmp_path):
        store = ConfigStore.load(_write(tmp_path, MULTI_CONFIG))
        assert store.context_names() == ["dev", "prod"]
        assert store.current_context == "dev"
        assert store.contexts["prod"].url == "https://prod.example"
        assert store.contexts["dev"].username == ""
        assert store.migrated is False

    def test_first_context_selected_when_current_unset(self, tmp_path):
        text = MULTI_CONFIG.replace("current-context: dev\n", "")
        store = ConfigStore.load(_write(tmp_path, text))
        assert store.current_context == "dev"

    def test_malformed_yaml(self, tmp_path):
        path = _write(tmp_path, "contexts: [unclosed\n")
        with pytest.raises(ConfigParseError):
            ConfigStore.load(path)

    def test_wrong_shape(self, tmp_path):
        with pytest.raises(ConfigParseError):
            ConfigStore.load(_write(tmp_path, "- just\n- a list\n"))

    def test_empty_file(self, tmp_path):
        store = ConfigStore.load(_write(tmp_path, ""))
        assert store.contexts == {}


# ---------------------------------------------------------------------------
# Legacy migration
# ---------------------------------------------------------------------------

class TestMigration:
    def test_legacy_block_becomes_default_context(self, tmp_path):
        store = ConfigStore.load(_write(tmp_path, LEGACY_CONFIG))
        assert store.migrated is True
        assert store.current_context == "default"
        ctx = store.contexts["default"]
        assert ctx.url == "http://pacs.example:8042"
        assert ctx.username == "admin"
        assert ctx.password == "secret"
        assert ctx.insecure is True
        assert store.output_json is True

    def test_load_does_not_write(self, tmp_path):
        path = _write(tmp_path, LEGACY_CONFIG)
        ConfigStore.load(path)
        assert path.read_text() == LEGACY_CONFIG

    def test_load_config_persists_migration(self, tmp_path, capsys):
        path = _write(tmp_path, LEGACY_CONFIG)
        store = load_config(path)

        assert store.migrated is False
        data = yaml.safe_load(path.read_text())
        assert "orthanc" not in data
        assert data["current-context"] == "default"
        assert data["contexts"]["default"]["orthanc"]["url"] == "http://pacs.example:8042"
        assert data["output"]["json"] is True
        assert "Migrated config" in capsys.readouterr().err

    def test_migration_is_idempotent(self, tmp_path, capsys):
        path = _write(tmp_path, LEGACY_CONFIG)
        load_config(path)
        first = path.read_text()
        capsys.readouterr()

        store = load_config(path)
        assert path.read_text() == first
        assert store.migrated is False
        assert capsys.readouterr().err == ""

    def test_legacy_block_ignored_when_contexts_exist(self, tmp_path):
        text = MULTI_CONFIG + "orthanc:\n  url: http://old\n"
        store = ConfigStore.load(_write(tmp_path, text))
        assert store.migrated is False
        assert "default" not in store.contexts


# ---------------------------------------------------------------------------
# Context operations
# ---------------------------------------------------------------------------

class TestContexts:
    def test_first_context_becomes_current(self, tmp_path):
        store = ConfigStore(path=tmp_path / "c.yaml")
        created = store.set_context("a", url="http://a")
        assert created is True
        assert store.current_context == "a"

        assert store.set_context("b", url="http://b") is True
        assert store.current_context == "a"

    def test_make_current(self, tmp_path):
        store = ConfigStore(path=tmp_path / "c.yaml")
        store.set_context("a", url="http://a")
        store.set_context("b", url="http://b", make_current=True)
        assert store.current_context == "b"

    def test_update_keeps_unset_fields(self, tmp_path):
        store = ConfigStore(path=tmp_path / "c.yaml")
        store.set_context("a", url="http://a", username="u", password="p", insecure=True)
        created = store.set_context("a", url="http://a2")
        assert created is False
        ctx = store.contexts["a"]
        assert (ctx.url, ctx.username, ctx.password, ctx.insecure) == ("http://a2", "u", "p", True)

    def test_use_unknown_context(self, tmp_path):
        store = ConfigStore(path=tmp_path / "c.yaml")
        with pytest.raises(ContextNotFoundError):
            store.use_context("ghost")

    def test_delete_current_context_refused(self, tmp_path):
        store = ConfigStore.load(_write(tmp_path, MULTI_CONFIG))
        with pytest.raises(CannotDeleteCurrentContextError):
            store.delete_context("dev")
        assert "dev" in store.contexts

    def test_delete_unknown_context(self, tmp_path):
        store = ConfigStore.load(_write(tmp_path, MULTI_CONFIG))
        with pytest.raises(ContextNotFoundError):
            store.delete_context("ghost")

    def test_delete_other_context(self, tmp_path):
        store = ConfigStore.load(_write(tmp_path, MULTI_CONFIG))
        store.delete_context("prod")
        assert store.context_names() == ["dev"]

    def test_rename_current_context(self, tmp_path):
        store = ConfigStore.load(_write(tmp_path, MULTI_CONFIG))
        store.rename_context("dev", "local")
        assert store.current_context == "local"
        assert store.contexts["local"].name == "local"
        assert "dev" not in store.contexts

    def test_rename_onto_existing(self, tmp_path):
        store = ConfigStore.load(_write(tmp_path, MULTI_CONFIG))
        with pytest.raises(ContextExistsError):
            store.rename_context("dev", "prod")

    def test_save_round_trip(self, tmp_path):
        path = tmp_path / "sub" / "c.yaml"
        store = ConfigStore(path=path)
        store.set_context("a", url="http://a", password="pw")
        store.output_json = True
        store.save()

        reloaded = ConfigStore.load(path)
        assert reloaded.contexts["a"] == OrthancContext("a", url="http://a", password="pw")
        assert reloaded.current_context == "a"
        assert reloaded.output_json is True


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------

class TestCurrentContext:
    def test_no_context_selected(self, tmp_path):
        with pytest.raises(NoContextSelectedError):
            ConfigStore(path=tmp_path / "c.yaml").get_current_context()

    def test_current_names_missing_context(self, tmp_path):
        text = 'contexts:\n  real:\n    orthanc:\n      url: "http://r"\ncurrent-context: ghost\n'
        store = ConfigStore.load(_write(tmp_path, text))
        assert store.current_context == "ghost"
        with pytest.raises(ContextNotFoundError):
            store.get_current_context()

    def test_env_overrides_win(self, tmp_path, monkeypatch):
        store = ConfigStore.load(_write(tmp_path, MULTI_CONFIG))
        monkeypatch.setenv("ORTHANC_URL", "http://env:8042")
        monkeypatch.setenv("ORTHANC_PASSWORD", "envpw")
        monkeypatch.setenv("ORTHANC_INSECURE", "true")

        ctx = store.get_current_context()
        assert ctx.url == "http://env:8042"
        assert ctx.password == "envpw"
        assert ctx.insecure is True
        # stored context is untouched
        assert store.contexts["dev"].url == "http://localhost:8042"

    def test_bad_insecure_env(self, tmp_path, monkeypatch):
        store = ConfigStore.load(_write(tmp_path, MULTI_CONFIG))
        monkeypatch.setenv("ORTHANC_INSECURE", "maybe")
        with pytest.raises(ConfigError):
            store.get_current_context()
