"""Tests for the nippo-feed command line."""

import pytest
from click.testing import CliRunner

import nippo_feed.config
import nippo_feed.store.firestore
from nippo_feed.main import cli
from nippo_feed.store.local import FORCE_REFRESH_KEY, LocalStore, last_viewed_key
from nippo_feed.store.remote import GROUPS

from conftest import BASE_MS, InMemoryDocumentStore


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    path = tmp_path / "feed.yaml"
    monkeypatch.setattr(nippo_feed.config, "DEFAULT_CONFIG_PATH", path)
    for name in ("NIPPO_FEED_PROJECT", "NIPPO_FEED_API_URL", "NIPPO_FEED_TIMEZONE", "NIPPO_FEED_IDENTITY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("NIPPO_FEED_ID_TOKEN", "tok")
    return path


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def configured(runner, config_path, tmp_path):
    runner.invoke(cli, ["config", "set", "project_id", "demo"])
    runner.invoke(cli, ["config", "set", "local_db_path", str(tmp_path / "feed.db")])
    return tmp_path / "feed.db"


@pytest.fixture
def remote(monkeypatch):
    class FakeRestStore(InMemoryDocumentStore):
        def __init__(self, *args, **kwargs):
            super().__init__()
            self.__dict__.update(shared.__dict__)

        async def get_profile(self, identity):
            return None

    shared = InMemoryDocumentStore()
    shared.add(GROUPS, "g1", name="Site A", memberIds=["u-me"])
    shared.add_post("p1", "g1", BASE_MS, author="u-alice", message="pump inspected")
    monkeypatch.setattr(nippo_feed.store.firestore, "FirestoreRestStore", FakeRestStore)
    return shared


class TestConfigCommands:
    def test_set_then_show(self, runner, config_path):
        result = runner.invoke(cli, ["config", "set", "page_size", "7"])
        assert result.exit_code == 0, result.output
        assert "page_size: 7" in config_path.read_text()

        result = runner.invoke(cli, ["config", "show"])
        assert result.exit_code == 0
        assert "page_size" in result.output

    def test_unknown_key(self, runner, config_path):
        result = runner.invoke(cli, ["config", "set", "colour", "blue"])
        assert result.exit_code != 0
        assert not config_path.exists()

    def test_bad_value(self, runner, config_path):
        result = runner.invoke(cli, ["config", "set", "page_size", "many"])
        assert result.exit_code != 0


class TestFeedCommands:
    def test_page_requires_project(self, runner, config_path):
        result = runner.invoke(cli, ["feed", "page", "-u", "u-me", "-p", "g1"])
        assert result.exit_code != 0
        assert "No project configured" in result.output

    def test_page_prints_items(self, runner, configured, remote):
        result = runner.invoke(cli, ["feed", "page", "-u", "u-me", "-p", "g1", "--mark-seen"])

        assert result.exit_code == 0, result.output
        assert "Feed for u-me" in result.output
        assert "pump" in result.output
        local = LocalStore(configured)
        assert local.get(last_viewed_key("u-me")) == BASE_MS
        local.close()

    def test_search(self, runner, configured, remote):
        result = runner.invoke(cli, ["feed", "search", "nothing-like-this", "-u", "u-me", "-p", "g1"])
        assert result.exit_code == 0, result.output
        assert "No matching items" in result.output

    def test_poll_sets_baseline(self, runner, configured, remote):
        result = runner.invoke(cli, ["feed", "poll", "-u", "u-me", "-p", "g1"])
        assert result.exit_code == 0, result.output
        assert "baseline" in result.output

    def test_refresh_sets_flag(self, runner, configured):
        result = runner.invoke(cli, ["feed", "refresh"])
        assert result.exit_code == 0
        local = LocalStore(configured)
        assert local.has(FORCE_REFRESH_KEY)
        local.close()

    def test_watermark_reset(self, runner, configured):
        local = LocalStore(configured)
        local.set(last_viewed_key("u-me"), BASE_MS)
        local.close()

        assert "2024-05-01 08:00" in runner.invoke(cli, ["feed", "watermark", "-u", "u-me"]).output
        runner.invoke(cli, ["feed", "watermark", "-u", "u-me", "--reset"])

        local = LocalStore(configured)
        assert local.get(last_viewed_key("u-me")) is None
        local.close()
