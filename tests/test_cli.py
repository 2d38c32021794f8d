"""Tests for CLI module - option parsing and command behavior."""

import json
from unittest.mock import MagicMock, patch

import msgpack
import pytest
from typer.testing import CliRunner

from modbus_pipe import __version__
from modbus_pipe.cli import (
    app,
    build_properties,
    load_json_records,
    parse_group,
    parse_property,
)
from modbus_pipe.types import RegisterKind

runner = CliRunner()


@pytest.fixture
def mock_modbus_client() -> MagicMock:
    client = MagicMock()
    client.connect.return_value = True
    client.read_coils.return_value = MagicMock(isError=lambda: False, bits=[True, False, False, False, False, False, False, False])
    client.read_holding_registers.return_value = MagicMock(isError=lambda: False, registers=[10, 20, 30])
    client.write_coil.return_value = MagicMock(isError=lambda: False)
    client.write_register.return_value = MagicMock(isError=lambda: False)
    return client


# ============================================================================
# Option Parsing Tests
# ============================================================================


class TestParseProperty:
    """Test key=value property parsing."""

    def test_simple(self) -> None:
        assert parse_property("address=10.0.0.5") == ("address", "10.0.0.5")

    def test_whitespace_and_extra_equals(self) -> None:
        assert parse_property(" tcp_port = 1502 ") == ("tcp_port", "1502")
        assert parse_property("address=a=b") == ("address", "a=b")

    def test_invalid(self) -> None:
        with pytest.raises(ValueError, match="expected key=value"):
            parse_property("address")
        with pytest.raises(ValueError):
            parse_property("=x")


class TestParseGroup:
    """Test ADDR:COUNT group parsing."""

    def test_decimal_and_hex(self) -> None:
        assert parse_group("0:3") == (0, 3)
        assert parse_group("0x10:8") == (16, 8)

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_group("10")
        with pytest.raises(ValueError):
            parse_group("a:b")
        with pytest.raises(ValueError, match="negative"):
            parse_group("-1:2")


class TestBuildProperties:
    """Test merging of raw properties and typed options."""

    def test_typed_options_override_properties(self) -> None:
        props = build_properties(["address=a", "Unit_Id=4"], address="b", tcp_port="1502")
        assert props == {"address": "b", "unit_id": "4", "tcp_port": "1502"}

    def test_groups(self) -> None:
        props = build_properties(groups={RegisterKind.HOLDING_REGISTER: "5:2", RegisterKind.COIL: None})
        assert props == {"holding_reg_addr": "5", "holding_reg_no": "2"}


class TestLoadJsonRecords:
    """Test JSON write batch parsing."""

    def test_single_record(self) -> None:
        assert load_json_records('[0, {"coils": []}]') == [[0, {"coils": []}]]

    def test_array_of_records(self) -> None:
        text = '[[0, {"coils": []}], [1, {"holding_registers": []}]]'
        assert len(load_json_records(text)) == 2

    def test_json_lines(self) -> None:
        text = '[0, {"coils": []}]\n\n[1, {"coils": []}]\n'
        assert len(load_json_records(text)) == 2

    def test_empty(self) -> None:
        assert load_json_records("  \n") == []


# ============================================================================
# Command Tests
# ============================================================================


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_info_json_without_address() -> None:
    result = runner.invoke(app, ["info", "--json"])
    assert result.exit_code == 0
    assert json.loads(result.output) == {"version": __version__}


def test_info_json_with_settings() -> None:
    result = runner.invoke(app, ["info", "--json", "-a", "plc", "-p", "coil_no=8"])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["settings"]["address"] == "plc"
    assert data["settings"]["groups"] == {"coils": {"address": 0, "count": 8}}


def test_info_invalid_backend() -> None:
    result = runner.invoke(app, ["info", "-a", "plc", "-b", "udp"])
    assert result.exit_code == 2
    assert "unknown" in result.output


def test_poll_requires_address() -> None:
    result = runner.invoke(app, ["poll", "--once"])
    assert result.exit_code == 2
    assert "address is required" in result.output


def test_poll_invalid_format() -> None:
    result = runner.invoke(app, ["poll", "-a", "plc", "--format", "xml"])
    assert result.exit_code == 2


def test_poll_once_json(mock_modbus_client: MagicMock) -> None:
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        result = runner.invoke(
            app, ["poll", "-a", "127.0.0.1", "--coils", "0:2", "--holding-registers", "0:3", "--once"]
        )
    assert result.exit_code == 0, result.output
    line = [ln for ln in result.output.splitlines() if ln.startswith("[")][-1]
    ts, fields = json.loads(line)
    assert ts > 0
    assert fields == {"coils": [1, 0], "holding_registers": [10, 20, 30]}
    mock_modbus_client.close.assert_called()


def test_poll_once_msgpack(mock_modbus_client: MagicMock) -> None:
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        result = runner.invoke(app, ["poll", "-a", "127.0.0.1", "-p", "holding_reg_no=3", "--once", "-f", "msgpack"])
    assert result.exit_code == 0
    ts, fields = msgpack.unpackb(result.stdout_bytes, raw=False)
    assert ts.code == 0
    assert fields == {"holding_registers": [10, 20, 30]}


def test_apply_msgpack_from_stdin(mock_modbus_client: MagicMock) -> None:
    batch = msgpack.packb([0, {"coils": [{"address": 5, "value": True}], "holding_registers": [{"address": 1}]}])
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        result = runner.invoke(app, ["apply", "-a", "127.0.0.1"], input=batch)
    assert result.exit_code == 0, result.output
    assert "OK" in result.output
    mock_modbus_client.write_coil.assert_called_once_with(5, True, device_id=1)
    mock_modbus_client.write_register.assert_not_called()


def test_apply_json_file(mock_modbus_client: MagicMock, tmp_path) -> None:
    path = tmp_path / "batch.json"
    path.write_text('[0, {"holding_registers": [{"address": 7, "value": 100}]}]\n')
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        result = runner.invoke(app, ["apply", str(path), "-a", "127.0.0.1", "-f", "json"])
    assert result.exit_code == 0, result.output
    mock_modbus_client.write_register.assert_called_once_with(7, 100, device_id=1)


def test_apply_retry_exit_code(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.connect.return_value = False
    batch = msgpack.packb([0, {"coils": [{"address": 5, "value": True}]}])
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        result = runner.invoke(app, ["apply", "-a", "127.0.0.1"], input=batch)
    assert result.exit_code == 3
    assert "retry" in result.output
    mock_modbus_client.write_coil.assert_not_called()
    mock_modbus_client.connect.assert_called_once()


def test_apply_missing_file() -> None:
    result = runner.invoke(app, ["apply", "/nonexistent/batch.bin", "-a", "127.0.0.1"])
    assert result.exit_code == 2
    assert "not found" in result.output


def test_apply_invalid_json(mock_modbus_client: MagicMock) -> None:
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        result = runner.invoke(app, ["apply", "-a", "127.0.0.1", "-f", "json"], input="{not json")
    assert result.exit_code == 2
    assert "Invalid JSON" in result.output


def test_ping_ok(mock_modbus_client: MagicMock) -> None:
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        result = runner.invoke(app, ["ping", "-a", "127.0.0.1"])
    assert result.exit_code == 0
    assert "OK: Connected to 127.0.0.1" in result.output


def test_ping_unreachable(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.connect.return_value = False
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        result = runner.invoke(app, ["ping", "-a", "127.0.0.1"])
    assert result.exit_code == 3
    assert "Connection/Modbus error" in result.output


def test_ping_device_error(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.read_holding_registers.return_value = MagicMock(isError=lambda: True)
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        result = runner.invoke(app, ["ping", "-a", "127.0.0.1"])
    assert result.exit_code == 3


def test_apply_unreachable_logs_one_connect_failure(mock_modbus_client: MagicMock, caplog) -> None:
    mock_modbus_client.connect.return_value = False
    batch = msgpack.packb([0, {"coils": [{"address": 5, "value": True}]}])
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        runner.invoke(app, ["apply", "-a", "127.0.0.1"], input=batch)
    assert mock_modbus_client.connect.call_count == 1
    assert len([r for r in caplog.records if "Connection to Modbus device failed" in r.getMessage()]) == 1
    assert not [r for r in caplog.records if "Initial connection failed" in r.getMessage()]
    mock_modbus_client.close.assert_called()


def test_apply_decodes_past_malformed_record(mock_modbus_client: MagicMock) -> None:
    batch = (
        msgpack.packb([0, {"coils": [{"address": 1, "value": True}]}])
        + b"\x92\x00\x81"
        + msgpack.packb([1, 2])
        + b"\x01"
        + msgpack.packb([0, {"coils": [{"address": 3, "value": True}]}])
    )
    with patch("modbus_pipe.bridge.build_client", return_value=mock_modbus_client):
        result = runner.invoke(app, ["apply", "-a", "127.0.0.1"], input=batch)
    assert result.exit_code == 0, result.output
    assert [c.args[0] for c in mock_modbus_client.write_coil.call_args_list] == [1, 3]
