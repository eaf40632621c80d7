# tests/test_cli.py
import json
from unittest.mock import patch

import pytest

from mcast_config.cli import RouteHolder, _print_summary, main
from mcast_config.interfaces import StaticInventory


@pytest.fixture
def inventory():
    """Patches the netlink inventory with a fixed set of satellite NICs."""
    with patch("mcast_config.cli.NetlinkInventory") as MockInventory:
        static = StaticInventory.from_names(["lo", "satNic0", "satNic1", "satNic2"])
        MockInventory.return_value.__enter__.return_value = static
        yield static


@pytest.fixture
def config_path(tmp_path):
    return str(tmp_path / "missing.conf")


def test_cli_install_dry_run_json(inventory, config_path, capsys):
    argv = [
        "--config",
        config_path,
        "install",
        "--group",
        "239.1.1.1",
        "--iif",
        "satNic0",
        "--oifs",
        "satNic1 satNic2",
        "--dry-run",
        "--json",
    ]

    assert main(argv) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["installed"] is True
    assert output["route"]["iif"] == "satNic0"
    assert output["route"]["oifs"] == ["satNic1", "satNic2"]


def test_cli_install_uses_config_file(inventory, tmp_path, capsys):
    config_path = tmp_path / "mcast.conf"
    config_path.write_text(
        """
[multicast]
group_address = 239.1.1.1
in_interface = satNic0

[configurator]
routing_table = memory
"""
    )

    assert main(["--config", str(config_path), "install", "--json"]) == 0

    output = json.loads(capsys.readouterr().out)
    assert output["auto_discovered"] is True
    assert output["route"]["oifs"] == ["satNic1", "satNic2"]


def test_cli_install_missing_interface_fails(inventory, config_path, capsys):
    argv = [
        "--config",
        config_path,
        "install",
        "--group",
        "239.1.1.1",
        "--iif",
        "satNic7",
        "--dry-run",
    ]

    assert main(argv) == 1
    assert "Input interface 'satNic7' not found." in capsys.readouterr().err


def test_cli_install_invalid_config(inventory, tmp_path, capsys):
    config_path = tmp_path / "bad.conf"
    config_path.write_text("[multicast]\ngroup_address = 239.1.1.1\ndiscovery_prefix =\n")

    assert main(["--config", str(config_path), "install", "--dry-run"]) == 1
    assert "Invalid route specification" in capsys.readouterr().err


def test_cli_install_kernel_requires_root(inventory, config_path, capsys):
    with patch("mcast_config.cli.os.geteuid", return_value=1000):
        assert main(["--config", config_path, "install", "--group", "239.1.1.1"]) == 1
    assert "requires root privileges" in capsys.readouterr().err


@patch("mcast_config.cli.RouteHolder")
@patch("mcast_config.cli.KernelRoutingTable")
def test_cli_install_kernel_holds_routes(MockKernelTable, MockHolder, inventory, config_path):
    mock_table = MockKernelTable.return_value
    mock_table.multicast_route_count.return_value = 1
    argv = [
        "--config",
        config_path,
        "install",
        "--group",
        "239.1.1.1",
        "--iif",
        "satNic0",
        "--oifs",
        "satNic1",
    ]

    with patch("mcast_config.cli.os.geteuid", return_value=0):
        assert main(argv) == 0

    mock_table.mrt_init.assert_called_once()
    mock_table.submit_multicast_route.assert_called_once()
    route = mock_table.submit_multicast_route.call_args.args[0]
    assert route.input_interface.name == "satNic0"
    MockHolder.return_value.run.assert_called_once()
    mock_table.mrt_done.assert_called_once()


@patch("mcast_config.cli.RouteHolder")
@patch("mcast_config.cli.KernelRoutingTable")
def test_cli_install_kernel_releases_on_error(
    MockKernelTable, MockHolder, inventory, config_path
):
    mock_table = MockKernelTable.return_value
    argv = ["--config", config_path, "install", "--group", "bogus", "--iif", "satNic0"]

    with patch("mcast_config.cli.os.geteuid", return_value=0):
        assert main(argv) == 1

    mock_table.submit_multicast_route.assert_not_called()
    MockHolder.return_value.run.assert_not_called()
    mock_table.mrt_done.assert_called_once()


def test_cli_interfaces(inventory, config_path, capsys):
    assert main(["--config", config_path, "interfaces"]) == 0
    output = capsys.readouterr().out
    assert "satNic0" in output
    assert "UP" in output


def test_cli_interfaces_json(inventory, config_path, capsys):
    assert main(["--config", config_path, "interfaces", "--json"]) == 0
    output = json.loads(capsys.readouterr().out)
    assert output[1] == {"name": "satNic0", "id": 2, "is_up": True}


def test_print_summary_not_installed(capsys):
    _print_summary(
        {
            "installed": False,
            "auto_discovered": False,
            "route": None,
            "warnings": ["Group address is empty - not installing any multicast route."],
        }
    )
    output = capsys.readouterr().out
    assert "No multicast route installed." in output
    assert "WARNING: Group address is empty" in output


def test_print_summary_empty_discovery(capsys):
    _print_summary(
        {
            "installed": True,
            "auto_discovered": True,
            "route": {
                "origin": "0.0.0.0",
                "origin_mask": "0.0.0.0",
                "group": "239.1.1.1",
                "iif": None,
                "oifs": [],
            },
            "warnings": ["Discovery found no 'satNic*' interfaces"],
        }
    )
    output = capsys.readouterr().out
    assert "0.0.0.0/0.0.0.0" in output
    assert "(none)" in output
    assert "discovered automatically" in output


def test_route_holder_stops_on_signal():
    holder = RouteHolder()
    with patch("mcast_config.cli.signal.signal"), patch(
        "mcast_config.cli.time.sleep", side_effect=lambda _: holder._signal_handler(15, None)
    ) as mock_sleep:
        holder.run(poll_interval=0.01)
    mock_sleep.assert_called_once_with(0.01)


@patch("mcast_config.cli.RouteHolder")
@patch("mcast_config.cli.KernelRoutingTable")
def test_cli_install_kernel_rejects_wildcard_input(
    MockKernelTable, MockHolder, inventory, config_path, caplog, capsys
):
    argv = ["--config", config_path, "install", "--group", "239.1.1.1", "--oifs", "satNic1"]

    with patch("mcast_config.cli.os.geteuid", return_value=0):
        assert main(argv) == 1

    MockKernelTable.assert_not_called()
    MockHolder.return_value.run.assert_not_called()
    errors = [record for record in caplog.records if record.levelname == "ERROR"]
    assert len(errors) == 1
    assert "input interface" in errors[0].getMessage()
    assert "input interface is required" in capsys.readouterr().err


def test_cli_install_kernel_submit_value_error(inventory, config_path):
    """A ValueError from the kernel table ends in exit status 1."""
    argv = ["--config", config_path, "install", "--group", "239.1.1.1", "--iif", "satNic0"]

    with patch("mcast_config.cli.os.geteuid", return_value=0), patch(
        "mcast_config.cli.KernelRoutingTable"
    ) as MockKernelTable:
        mock_table = MockKernelTable.return_value
        mock_table.submit_multicast_route.side_effect = ValueError("no wildcard")
        assert main(argv) == 1

    mock_table.mrt_done.assert_called_once()


@patch("mcast_config.cli.RouteHolder")
@patch("mcast_config.cli.KernelRoutingTable")
def test_cli_install_kernel_mrt_init_failure(
    MockKernelTable, MockHolder, inventory, config_path, capsys
):
    mock_table = MockKernelTable.return_value
    mock_table.mrt_init.side_effect = OSError(98, "[MRT_INIT] Address already in use")
    argv = ["--config", config_path, "install", "--group", "239.1.1.1", "--iif", "satNic0"]

    with patch("mcast_config.cli.os.geteuid", return_value=0):
        assert main(argv) == 1

    mock_table.submit_multicast_route.assert_not_called()
    MockHolder.return_value.run.assert_not_called()
    mock_table.mrt_done.assert_called_once()
    assert "Address already in use" in capsys.readouterr().err


@patch("mcast_config.cli.RouteHolder")
@patch("mcast_config.cli.KernelRoutingTable")
def test_cli_install_kernel_add_failure(MockKernelTable, MockHolder, inventory, config_path):
    mock_table = MockKernelTable.return_value
    mock_table.submit_multicast_route.side_effect = OSError(22, "[MRT_ADD_MFC] Invalid argument")
    argv = ["--config", config_path, "install", "--group", "239.1.1.1", "--iif", "satNic0"]

    with patch("mcast_config.cli.os.geteuid", return_value=0):
        assert main(argv) == 1

    MockHolder.return_value.run.assert_not_called()
    mock_table.mrt_done.assert_called_once()


def test_cli_unknown_log_level_falls_back(inventory, config_path, capsys):
    argv = ["--config", config_path, "--log-level", "foo", "interfaces", "--json"]

    with patch("mcast_config.cli.logging.basicConfig") as mock_basic_config:
        assert main(argv) == 0

    assert mock_basic_config.call_args.kwargs["level"] == "INFO"
    json.loads(capsys.readouterr().out)


def test_cli_unknown_log_level_in_config(inventory, tmp_path):
    config_path = tmp_path / "mcast.conf"
    config_path.write_text("[configurator]\nlog_level = chatty\n")

    with patch("mcast_config.cli.logging.basicConfig") as mock_basic_config:
        assert main(["--config", str(config_path), "interfaces"]) == 0

    assert mock_basic_config.call_args.kwargs["level"] == "INFO"
