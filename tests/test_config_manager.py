"""Tests for loading and validating the gateway config file."""

from __future__ import annotations

import json

import pytest

from ssh_gateway.exceptions import ConfigurationError, InvalidArgumentError
from ssh_gateway.services.config_manager import ConfigManager


def _load(tmp_path, data) -> ConfigManager:
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps(data))
    cm = ConfigManager(path)
    cm.load()
    return cm


class TestLoad:
    def test_valid_config(self, config_manager, key_file):
        server = config_manager.get_server("web")
        assert server.host == "web-01"
        assert server.port == 22
        assert server.private_key_path == str(key_file)
        assert config_manager.get_server("db").port == 2222
        assert config_manager.command_timeout == 5000
        assert config_manager.max_connections == 3

    def test_defaults(self, tmp_path):
        cm = _load(tmp_path, {})
        assert cm.command_timeout == 30000
        assert cm.max_connections == 5
        assert cm.list_servers() == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Config file not found"):
            ConfigManager(tmp_path / "nope.json").load()

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "cfg.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Failed to read config file"):
            ConfigManager(path).load()

    def test_null_port_defaults_to_22(self, tmp_path, key_file):
        cm = _load(tmp_path, {"servers": {"a": {
            "host": "h", "port": None, "username": "u", "privateKeyPath": str(key_file),
        }}})
        assert cm.get_server("a").port == 22


class TestServerValidation:
    def test_errors_are_aggregated_per_server(self, tmp_path):
        with pytest.raises(ConfigurationError) as excinfo:
            _load(tmp_path, {"servers": {"bad": {"host": "", "port": 70000}}})
        message = str(excinfo.value)
        assert message.startswith("Invalid configuration for server 'bad':")
        assert "  - host is required and must be a non-empty string" in message
        assert "  - port must be a number between 1 and 65535" in message
        assert "  - username is required and must be a non-empty string" in message
        assert "  - privateKeyPath is required and must be a non-empty string" in message

    def test_key_file_must_exist(self, tmp_path):
        with pytest.raises(ConfigurationError, match="privateKeyPath file does not exist: /no/key"):
            _load(tmp_path, {"servers": {"a": {
                "host": "h", "username": "u", "privateKeyPath": "/no/key",
            }}})

    def test_bad_command_timeout(self, tmp_path):
        with pytest.raises(ConfigurationError, match="commandTimeout"):
            _load(tmp_path, {"commandTimeout": -5})


class TestServiceValidation:
    def test_unknown_connection(self, tmp_path, config_data):
        config_data["portForwardingServices"]["ghost"] = {
            "connectionName": "nope", "remoteHost": "db", "remotePort": 5432,
        }
        with pytest.raises(ConfigurationError) as excinfo:
            _load(tmp_path, config_data)
        assert "Invalid port forwarding service 'ghost'" in str(excinfo.value)
        assert "connectionName 'nope' does not exist in servers" in str(excinfo.value)

    def test_port_ranges(self, tmp_path, config_data):
        config_data["portForwardingServices"]["bad"] = {
            "connectionName": "web", "remoteHost": "db", "remotePort": 0, "localPort": -1,
        }
        with pytest.raises(ConfigurationError) as excinfo:
            _load(tmp_path, config_data)
        assert "remotePort must be a number between 1 and 65535" in str(excinfo.value)
        assert "localPort must be a number between 0 and 65535" in str(excinfo.value)

    def test_lookup(self, config_manager):
        service = config_manager.get_service("web-admin")
        assert service.connection_name == "web"
        assert service.local_port is None
        assert config_manager.list_services() == ["web-admin"]
        with pytest.raises(ConfigurationError, match="'nope' not found"):
            config_manager.get_service("nope")
        with pytest.raises(InvalidArgumentError):
            config_manager.get_service("")


class TestTemplates:
    def test_string_and_object_forms(self, config_manager):
        assert config_manager.get_template("who") == "whoami"
        assert config_manager.get_template("logs").startswith("kubectl logs")
        listed = {t["name"]: t for t in config_manager.list_templates()}
        assert listed["logs"]["description"] == "Tail pod logs"
        assert listed["who"]["description"] is None

    @pytest.mark.parametrize("template,expected", [
        ("", "Template command is required and must be a non-empty string"),
        ({"command": ""}, "Template command is required and must be a non-empty string"),
        ({"command": "ls", "description": " "}, "Template description, if provided, must be a non-empty string"),
        (42, "Template must be either a string or an object with a command property"),
    ])
    def test_invalid_templates(self, tmp_path, template, expected):
        with pytest.raises(ConfigurationError) as excinfo:
            _load(tmp_path, {"commandTemplates": {"t": template}})
        assert "Invalid command template 't'" in str(excinfo.value)
        assert expected in str(excinfo.value)

    def test_unknown_template(self, config_manager):
        with pytest.raises(ConfigurationError, match="Command template 'nope' not found"):
            config_manager.get_template("nope")


class TestLookupAndPolicy:
    def test_unknown_server(self, config_manager):
        with pytest.raises(ConfigurationError, match="'prod' not found"):
            config_manager.get_server("prod")

    def test_connection_name_required(self, config_manager):
        with pytest.raises(InvalidArgumentError, match="connectionName is required"):
            config_manager.get_server(None)

    def test_allowlist(self, config_manager):
        assert config_manager.is_command_allowed("ls -la | grep x")
        assert not config_manager.is_command_allowed("ls; rm -rf /")

    def test_no_allowlist_allows_all(self, tmp_path):
        assert _load(tmp_path, {}).is_command_allowed("rm -rf /")


class TestSSHConfigImport:
    def test_imported_servers_merge_and_are_overridden(self, tmp_path, key_file):
        ssh_config = tmp_path / "ssh_config"
        ssh_config.write_text(
            f"Host bastion\n  HostName 10.0.0.1\n  User ops\n  IdentityFile {key_file}\n"
            f"Host web\n  HostName 10.0.0.2\n  User ops\n  IdentityFile {key_file}\n"
        )
        cm = _load(tmp_path, {
            "sshConfigImport": {"path": str(ssh_config), "hosts": ["*"]},
            "servers": {"web": {"host": "web-01", "username": "deploy", "privateKeyPath": str(key_file)}},
        })
        assert cm.get_server("bastion").host == "10.0.0.1"
        assert cm.get_server("web").host == "web-01"
