"""
Unit tests for portalcrypt.config and portalcrypt.errors.

Tests configuration loading, environment overrides and error serialization.
"""

import pytest

from portalcrypt.config import DEFAULT_CONFIG, Config
from portalcrypt.errors import (
    AuthenticationError,
    ConfigurationError,
    DecodeError,
    EncodeError,
    ErrorCode,
    PolicyError,
    PortalError,
)
from portalcrypt.kdf import Argon2KeyDeriver, Pbkdf2KeyDeriver, create_deriver


class TestConfigLoading:
    """Test loading configuration files."""

    def test_defaults_when_file_missing(self, temp_dir):
        """Test that a missing file yields the defaults."""
        config = Config(temp_dir / "config.toml")
        assert config.get("kdf", "iterations") == 10_000
        assert config.get("kdf", "algorithm") == "pbkdf2-sha256"
        assert config.get("kdf", "namespace") == "orca-portal"
        assert config.get("policy", "cleartext_types") == []

    def test_file_values_merge_over_defaults(self, temp_dir):
        """Test that file values override only the keys they name."""
        path = temp_dir / "config.toml"
        path.write_text('[kdf]\niterations = 250000\n')

        config = Config(path)
        assert config.get("kdf", "iterations") == 250_000
        assert config.get("kdf", "namespace") == "orca-portal"

    def test_invalid_toml(self, temp_dir):
        """Test that unparsable files raise ConfigurationError."""
        path = temp_dir / "config.toml"
        path.write_text("[kdf\niterations = ")

        with pytest.raises(ConfigurationError) as exc_info:
            Config(path)
        assert exc_info.value.code is ErrorCode.E704_CONFIG_PARSE_ERROR

    def test_defaults_are_not_mutated(self, temp_dir):
        """Test that changing one config leaves DEFAULT_CONFIG alone."""
        config = Config(temp_dir / "config.toml")
        config.set("kdf", "iterations", 1)
        config.data["policy"]["cleartext_types"].append("ping")

        assert DEFAULT_CONFIG["kdf"]["iterations"] == 10_000
        assert DEFAULT_CONFIG["policy"]["cleartext_types"] == []


class TestEnvironmentOverrides:
    """Test PORTALCRYPT_SECTION_KEY overrides."""

    def test_int_override(self, temp_dir, monkeypatch):
        monkeypatch.setenv("PORTALCRYPT_KDF_ITERATIONS", "100000")
        assert Config(temp_dir / "config.toml").get("kdf", "iterations") == 100_000

    def test_list_override(self, temp_dir, monkeypatch):
        monkeypatch.setenv("PORTALCRYPT_POLICY_ENCRYPTED_TYPES", "command, terminal_input,")
        config = Config(temp_dir / "config.toml")
        assert config.get("policy", "encrypted_types") == ["command", "terminal_input"]

    def test_bad_override(self, temp_dir, monkeypatch):
        monkeypatch.setenv("PORTALCRYPT_KDF_ITERATIONS", "lots")
        with pytest.raises(ConfigurationError):
            Config(temp_dir / "config.toml")


class TestConfigSaving:
    """Test writing configuration back to TOML."""

    def test_save_and_reload(self, temp_dir):
        path = temp_dir / "nested" / "config.toml"
        config = Config(path)
        config.set("kdf", "iterations", 123_456)
        config.set("policy", "encrypted_types", ["command", 'quote"d'])
        config.save()

        reloaded = Config(path)
        assert reloaded.get("kdf", "iterations") == 123_456
        assert reloaded.get("policy", "encrypted_types") == ["command", 'quote"d']

    def test_create_example(self, temp_dir):
        path = temp_dir / "example.toml"
        Config.create_example(path)

        assert path.read_text().startswith("# portalcrypt configuration file")
        assert Config(path).to_dict() == DEFAULT_CONFIG


class TestDeriverSelection:
    """Test building a key deriver from configuration."""

    def test_default_is_pbkdf2(self):
        deriver = create_deriver(None)
        assert isinstance(deriver, Pbkdf2KeyDeriver)
        assert deriver.iterations == 10_000

    def test_argon2_selected(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text('[kdf]\nalgorithm = "argon2id"\nargon2_memory_cost = 1024\n')

        deriver = create_deriver(Config(path))
        assert isinstance(deriver, Argon2KeyDeriver)
        assert deriver.memory_cost == 1024

    def test_unknown_algorithm(self, temp_dir):
        path = temp_dir / "config.toml"
        path.write_text('[kdf]\nalgorithm = "md5"\n')

        with pytest.raises(ConfigurationError):
            create_deriver(Config(path))


class TestErrors:
    """Test the error hierarchy."""

    @pytest.mark.parametrize("error_cls", [
        ConfigurationError, AuthenticationError, DecodeError, EncodeError, PolicyError,
    ])
    def test_all_errors_share_base(self, error_cls):
        error = error_cls()
        assert isinstance(error, PortalError)
        assert str(error).startswith(f"[{error.code.value}]")

    def test_to_dict(self):
        error = DecodeError(ErrorCode.E302_INVALID_IV, "iv must be 12 bytes", {"length": 3})
        assert error.to_dict() == {
            "code": "E302",
            "message": "iv must be 12 bytes",
            "details": {"length": 3},
        }

    def test_family_default_codes(self):
        assert ConfigurationError().code is ErrorCode.E700_CONFIG_ERROR
        assert AuthenticationError().code is ErrorCode.E104_AUTHENTICATION_FAILED
        assert DecodeError().code is ErrorCode.E300_WIRE_ERROR
        assert EncodeError().code is ErrorCode.E300_WIRE_ERROR
        assert PolicyError().code is ErrorCode.E200_POLICY_ERROR
