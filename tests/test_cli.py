"""Tests for pingsweep/cli.py"""

import ipaddress
import json
import logging

import pytest

from pingsweep import cli
from pingsweep.ports import PortsStatus
from pingsweep.prober import NoSupportedAddressFamily


class StubScanner:
    """Stands in for PortScanner and returns canned results"""

    instances = []
    results = {}
    error = None

    def __init__(self, ports, addresses, timeout_ms, on_checked, **kwargs):
        if StubScanner.error is not None:
            raise StubScanner.error
        self.ports = ports
        self.addresses = addresses
        self.timeout_ms = timeout_ms
        self.on_checked = on_checked
        self.kwargs = kwargs
        StubScanner.instances.append(self)

    def run(self):
        return StubScanner.results


@pytest.fixture
def stub_scanner(monkeypatch):
    StubScanner.instances = []
    StubScanner.error = None
    status = PortsStatus()
    status.record(22, True)
    status.record(23, False)
    StubScanner.results = {ipaddress.ip_address("10.0.0.1"): status}
    monkeypatch.setattr(cli, "PortScanner", StubScanner)
    monkeypatch.setattr(cli, "running_as_root", lambda: False)
    return StubScanner


class TestParser:
    """Test cases for build_cli_parser"""

    def test_positional_arguments(self):
        args = cli.build_cli_parser().parse_args(["20-22,80", "10.0.0.1", "::1"])
        assert list(args.ports) == [20, 21, 22, 80]
        assert args.addrs == [ipaddress.ip_address("10.0.0.1"), ipaddress.ip_address("::1")]
        assert args.verbose is False
        assert args.timeout == 1000

    def test_options(self):
        args = cli.build_cli_parser().parse_args(
            ["80", "10.0.0.1", "-v", "-t", "200", "-c", "0", "--ping-method", "command", "--json"]
        )
        assert args.verbose is True
        assert args.timeout == 200
        assert args.concurrency == 0
        assert args.ping_method == "command"
        assert args.json == "AUTO"
        assert args.csv is None

    @pytest.mark.parametrize("argv", [
        ["22-20", "10.0.0.1"],
        ["abc", "10.0.0.1"],
        ["80", "not-an-ip"],
        ["80"],
        ["80", "10.0.0.1", "--ping-method", "telepathy"],
    ])
    def test_invalid_input_exits_with_usage_error(self, argv, capsys):
        with pytest.raises(SystemExit) as excinfo:
            cli.build_cli_parser().parse_args(argv)
        assert excinfo.value.code == 2

    def test_range_error_message(self, capsys):
        with pytest.raises(SystemExit):
            cli.build_cli_parser().parse_args(["22-20", "10.0.0.1"])
        assert "invalid port range 22-20" in capsys.readouterr().err


class TestMain:
    """Test cases for main"""

    def test_successful_run(self, stub_scanner, capsys):
        code = cli.main(["22-23", "10.0.0.1", "10.0.0.9", "--ping-method", "command", "-c", "0"])
        assert code == 0

        scanner = stub_scanner.instances[0]
        assert list(scanner.ports) == [22, 23]
        assert scanner.timeout_ms == 1000
        assert scanner.on_checked is cli.report_checked_port
        assert scanner.kwargs["ping_method"] == "command"
        assert scanner.kwargs["concurrency"] == 0

        out = capsys.readouterr().out
        assert "*** PINGSWEEP ***" in out
        assert "10.0.0.1: open: 22;closed: 23" in out
        assert "responding=1 silent=1 open_found=1" in out

    def test_icmp_requires_root(self, stub_scanner, capsys):
        code = cli.main(["80", "10.0.0.1", "--ping-method", "icmp"])
        assert code == 2
        assert stub_scanner.instances == []
        assert "Root privileges required" in capsys.readouterr().out

    def test_auto_without_root_uses_command(self, stub_scanner, monkeypatch):
        monkeypatch.setattr(cli, "select_ping_method", lambda requested: "command")
        assert cli.main(["80", "10.0.0.1"]) == 0
        assert stub_scanner.instances[0].kwargs["ping_method"] == "command"

    def test_unknown_ping_method_from_environment(self, stub_scanner, monkeypatch, capsys):
        monkeypatch.setitem(cli.DEFAULTS, "PING_METHOD", "foo")
        assert cli.main(["80", "10.0.0.1"]) == 2
        assert stub_scanner.instances == []
        assert "unknown ping method 'foo'" in capsys.readouterr().err

    def test_construction_failure(self, stub_scanner):
        stub_scanner.error = NoSupportedAddressFamily()
        assert cli.main(["80", "10.0.0.1", "--ping-method", "command"]) == 1

    def test_json_output(self, stub_scanner, tmp_path):
        path = tmp_path / "sweep.json"
        assert cli.main(["22-23", "10.0.0.1", "--ping-method", "command", "--json", str(path)]) == 0
        assert json.loads(path.read_text())["10.0.0.1"]["open"] == [22]


class TestReportCheckedPort:
    """Test cases for the live progress callback"""

    def test_open_is_info_closed_is_debug(self, caplog):
        caplog.set_level(logging.DEBUG, logger="pingsweep")
        cli.report_checked_port(ipaddress.ip_address("10.0.0.1"), 22, True)
        cli.report_checked_port(ipaddress.ip_address("10.0.0.1"), 23, False)

        levels = [(r.levelno, r.getMessage()) for r in caplog.records]
        assert levels == [
            (logging.INFO, "Port 22 on 10.0.0.1 is open!"),
            (logging.DEBUG, "Port 23 on 10.0.0.1 is closed"),
        ]
