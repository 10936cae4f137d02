"""CLI tests driven through click's CliRunner."""

import pytest
from click.testing import CliRunner

import main
from steamcmd import TransferResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setattr(main, "setup_logging", lambda config: None)
    monkeypatch.setattr(main, "init_telemetry", lambda: False)
    return {
        "WM_APP_ID": "4000",
        "STEAM_APP_ID": None,
        "WM_OUTPUT_DIR": str(tmp_path / "cache"),
        "WM_METADATA_FILE": str(tmp_path / "metadata.json"),
        "WM_STEAMCMD_PATH": str(tmp_path / "steamcmd" / "steamcmd.sh"),
        "WM_MAPS_FILE": None,
        "WM_WHITELIST": "*.bsp",
    }


@pytest.fixture
def fake_engine(make_engine, monkeypatch):
    engine = make_engine()
    monkeypatch.setattr(main, "build_engine", lambda config: engine)
    return engine


class TestCommands:
    def test_list_with_empty_store(self, runner, cli_env):
        result = runner.invoke(main.cli, ["list"], env=cli_env)

        assert result.exit_code == 0, result.output
        assert "No subscribed items" in result.output

    def test_missing_app_id_fails(self, runner, cli_env):
        cli_env["WM_APP_ID"] = ""

        result = runner.invoke(main.cli, ["list"], env=cli_env)

        assert result.exit_code == 1
        assert "WM_APP_ID" in result.output

    def test_download_then_list(self, runner, cli_env, fake_engine, resolver, agent):
        resolver.add_item("100", "v1", title="Test Map")
        agent.payloads["100"] = {"maps/de_test.bsp": b"map"}

        result = runner.invoke(main.cli, ["download", "100"], env=cli_env)
        assert result.exit_code == 0, result.output
        assert "100: transferred" in result.output

        result = runner.invoke(main.cli, ["list"], env=cli_env)
        assert "100" in result.output
        assert "de_test" in result.output

        result = runner.invoke(main.cli, ["list", "-v"], env=cli_env)
        assert "Title: Test Map" in result.output
        assert "  - maps/de_test.bsp" in result.output

    def test_download_failure_exits_non_zero(self, runner, cli_env, fake_engine, resolver, agent):
        resolver.add_item("100", "v1")
        agent.results["100"] = [TransferResult(False, "steamcmd exit code 8")]

        result = runner.invoke(main.cli, ["download", "100"], env=cli_env)

        assert result.exit_code == 1
        assert "steamcmd exit code 8" in result.output

    def test_collection_with_failed_member(self, runner, cli_env, fake_engine, resolver, agent):
        resolver.add_collection("900", ["1", "2"])
        resolver.add_item("1", "a")
        resolver.failing.add("2")
        agent.payloads["1"] = {"maps/one.bsp": b"1"}

        result = runner.invoke(main.cli, ["download", "900"], env=cli_env)

        assert result.exit_code == 1
        assert "1 downloaded, 0 up to date, 1 failed" in result.output

    def test_update(self, runner, cli_env, fake_engine, resolver, agent):
        resolver.add_item("1", "a")
        agent.payloads["1"] = {"maps/one.bsp": b"1"}
        fake_engine.download("1")

        result = runner.invoke(main.cli, ["update"], env=cli_env)

        assert result.exit_code == 0, result.output
        assert "0 updated, 1 up to date, 0 failed" in result.output

    def test_update_with_failure_exits_non_zero(self, runner, cli_env, fake_engine, resolver, agent):
        resolver.add_item("1", "a")
        agent.payloads["1"] = {"maps/one.bsp": b"1"}
        fake_engine.download("1")
        resolver.failing.add("1")

        result = runner.invoke(main.cli, ["update"], env=cli_env)

        assert result.exit_code == 1
        assert "0 updated, 0 up to date, 1 failed" in result.output

    def test_remove(self, runner, cli_env, fake_engine, resolver, agent):
        resolver.add_item("1", "a")
        agent.payloads["1"] = {"maps/one.bsp": b"1"}
        fake_engine.download("1")

        result = runner.invoke(main.cli, ["remove", "1"], env=cli_env)

        assert result.exit_code == 0, result.output
        assert "Removed 1 items, 1 files" in result.output
        assert "1" not in fake_engine.store

    def test_remove_unknown(self, runner, cli_env, fake_engine):
        result = runner.invoke(main.cli, ["remove", "42"], env=cli_env)

        assert result.exit_code == 0
        assert "Nothing tracked for 42" in result.output

    def test_info(self, runner, cli_env, fake_engine):
        result = runner.invoke(main.cli, ["info"], env=cli_env)

        assert result.exit_code == 0, result.output
        for section in ("CONFIGURATION", "PATHS", "SUBSCRIPTIONS", "STORAGE"):
            assert section in result.output
        assert "Total Subscriptions" in result.output
        assert "0.00 B" in result.output
