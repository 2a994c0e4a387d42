"""Unit tests for CLI interface."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import typer
from typer.testing import CliRunner

from src.nsxsync.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def nsx_env(monkeypatch, mocker):
    """NSX credentials in the environment, logging setup stubbed."""
    monkeypatch.setenv("NSX_URL", "https://nsx.example.com")
    monkeypatch.setenv("NSX_USERNAME", "admin")
    monkeypatch.setenv("NSX_PASSWORD", "secret")
    monkeypatch.setenv("NSX_CLUSTER", "c1")
    monkeypatch.delenv("NSX_VPC_ENABLED", raising=False)
    monkeypatch.delenv("LOG_FORMAT", raising=False)
    return mocker.patch("src.nsxsync.cli.configure_logging")


@pytest.fixture
def service_cls(mocker) -> MagicMock:
    mocker.patch("src.nsxsync.cli.NSXClient")
    cls = mocker.patch("src.nsxsync.cli.ChildSubnetService")
    service = cls.return_value
    service.initialize = AsyncMock()
    service.store_sizes.return_value = {"IPBlockStore": 1, "ChildSegmentStore": 3}
    service.vlan_usage.return_value = ({1, 2, 5}, 3)
    return cls


class TestCLI:
    """Test CLI commands."""

    def test_cli_app_structure(self):
        """Test the app is a Typer instance."""
        assert isinstance(app, typer.Typer)

    def test_inventory(self, service_cls):
        """Test store counts are printed."""
        result = runner.invoke(app, ["inventory"])

        assert result.exit_code == 0
        assert "IPBlockStore" in result.stdout
        assert "ChildSegmentStore" in result.stdout
        service_cls.return_value.initialize.assert_awaited_once()
        assert service_cls.call_args.args[1] == "c1"

    def test_inventory_with_vpc_includes_bindings(self, service_cls, mocker, monkeypatch):
        """Test the binding store is listed when VPC is enabled."""
        monkeypatch.setenv("NSX_VPC_ENABLED", "true")
        bindings_cls = mocker.patch("src.nsxsync.cli.BindingService")
        bindings = bindings_cls.return_value
        bindings.initialize = AsyncMock()
        bindings.store.name = "SubnetBindingStore"
        bindings.store.__len__.return_value = 4

        result = runner.invoke(app, ["inventory"])

        assert result.exit_code == 0
        assert "SubnetBindingStore" in result.stdout
        bindings.initialize.assert_awaited_once()

    def test_inventory_failure(self, service_cls):
        """Test an initialization error exits with 1."""
        service_cls.return_value.initialize.side_effect = RuntimeError("NSX unreachable")

        result = runner.invoke(app, ["inventory"])

        assert result.exit_code == 1
        assert "Initialization failed" in result.stdout
        assert "NSX unreachable" in result.stdout

    def test_inventory_without_nsx(self, monkeypatch):
        """Test a missing NSX section exits with 1."""
        monkeypatch.delenv("NSX_URL")

        result = runner.invoke(app, ["inventory"])

        assert result.exit_code == 1
        assert "NSX configuration required" in result.stdout

    def test_missing_config_file(self, tmp_path):
        """Test an explicit config file that does not exist."""
        result = runner.invoke(app, ["inventory", "--config", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1
        assert "Configuration file not found" in result.stdout

    def test_vlan_usage(self, service_cls):
        """Test used and next free VLANs are printed."""
        result = runner.invoke(app, ["vlan-usage", "/infra/segments/p1", "/infra/segments/p2"])

        assert result.exit_code == 0
        assert "Used VLANs: 1, 2, 5" in result.stdout
        assert "Next free VLAN: 3" in result.stdout
        service_cls.return_value.vlan_usage.assert_called_once_with(["/infra/segments/p1", "/infra/segments/p2"])

    def test_vlan_usage_exhausted(self, service_cls):
        """Test a full VLAN range is reported."""
        service_cls.return_value.vlan_usage.return_value = (set(range(1, 4095)), None)

        result = runner.invoke(app, ["vlan-usage", "/infra/segments/p1"])

        assert result.exit_code == 0
        assert "No free VLAN left" in result.stdout

    def test_gc_sweeps(self, service_cls, tmp_path):
        """Test each sweep passes the live ChildSubnet UIDs and counts cleanups."""
        live = tmp_path / "live.yaml"
        live.write_text("childSubnets: [u1, u2]\n")
        service_cls.return_value.collect_garbage = AsyncMock(return_value=2)

        result = runner.invoke(app, ["gc", str(live), "--sweeps", "2", "--interval", "0"])

        assert result.exit_code == 0
        collect = service_cls.return_value.collect_garbage
        assert collect.await_count == 2
        collect.assert_awaited_with({"u1", "u2"})
        assert "ChildSubnet" in result.stdout
        assert "4" in result.stdout

    def test_gc_with_vpc_sweeps_bindings(self, service_cls, mocker, monkeypatch, tmp_path):
        """Test the binding loop runs with its own live UIDs when VPC is enabled."""
        monkeypatch.setenv("NSX_VPC_ENABLED", "true")
        live = tmp_path / "live.yaml"
        live.write_text("subnetBindings: [sb1]\n")
        service_cls.return_value.collect_garbage = AsyncMock(return_value=0)
        bindings = mocker.patch("src.nsxsync.cli.BindingService").return_value
        bindings.initialize = AsyncMock()
        bindings.collect_garbage = AsyncMock(return_value=1)

        result = runner.invoke(app, ["gc", str(live), "--sweeps", "1", "--interval", "0"])

        assert result.exit_code == 0
        service_cls.return_value.collect_garbage.assert_awaited_once_with(set())
        bindings.collect_garbage.assert_awaited_once_with({"sb1"})

    def test_gc_uses_configured_interval(self, service_cls, mocker, tmp_path):
        """Test the sweep interval defaults to sync.gc_interval."""
        live = tmp_path / "live.yaml"
        live.write_text("childSubnets: []\n")
        loop = mocker.patch("src.nsxsync.cli.run_garbage_collector", new=AsyncMock(return_value=0))

        result = runner.invoke(app, ["gc", str(live)])

        assert result.exit_code == 0
        assert loop.await_args.args[0] == 600.0

    def test_gc_missing_live_file(self, service_cls, tmp_path):
        """Test a missing live UID file is rejected before connecting."""
        result = runner.invoke(app, ["gc", str(tmp_path / "missing.yaml")])

        assert result.exit_code != 0
        service_cls.return_value.initialize.assert_not_awaited()

    @pytest.mark.parametrize("log_format,json_logs", [(None, True), ("console", False)])
    def test_log_format(self, service_cls, nsx_env, monkeypatch, log_format, json_logs):
        """Test LOG_FORMAT selects JSON or console rendering."""
        if log_format:
            monkeypatch.setenv("LOG_FORMAT", log_format)

        result = runner.invoke(app, ["inventory"])

        assert result.exit_code == 0
        assert nsx_env.call_args.kwargs["json_logs"] is json_logs

    def test_show_config_masks_password(self):
        """Test the password is never printed."""
        result = runner.invoke(app, ["show-config"])

        assert result.exit_code == 0
        assert "********" in result.stdout
        assert "secret" not in result.stdout
        assert "https://nsx.example.com" in result.stdout

    def test_show_config_without_nsx(self, monkeypatch):
        """Test the NSX section is reported as not configured."""
        monkeypatch.delenv("NSX_URL")

        result = runner.invoke(app, ["show-config"])

        assert result.exit_code == 0
        assert "not configured" in result.stdout

    def test_version(self):
        """Test version command."""
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.stdout
