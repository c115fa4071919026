"""Tests for relay configuration."""
import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from hookrelay.config import RelayConfig


class TestRelayConfig:
    """Tests for RelayConfig."""

    def test_default_values(self) -> None:
        """RelayConfig listens on 8080 and runs webhook on 9000."""
        config = RelayConfig()

        assert config.host == "0.0.0.0"
        assert config.port == 8080
        assert config.dispatch_port == 9000
        assert config.webhook_version == "2.8.1"
        assert config.tunnel_timeout_seconds == 30.0
        assert config.log_level == "INFO"

    def test_env_override_port(self) -> None:
        with patch.dict(os.environ, {"HOOKRELAY_PORT": "9090"}):
            config = RelayConfig()
            assert config.port == 9090

    def test_env_override_base_image(self) -> None:
        with patch.dict(os.environ, {"HOOKRELAY_BASE_IMAGE": "debian:bookworm"}):
            config = RelayConfig()
            assert config.base_image == "debian:bookworm"

    def test_invalid_port_rejected(self) -> None:
        with patch.dict(os.environ, {"HOOKRELAY_PORT": "70000"}), pytest.raises(ValidationError):
            RelayConfig()

    def test_non_positive_timeout_rejected(self) -> None:
        with patch.dict(os.environ, {"HOOKRELAY_TUNNEL_TIMEOUT_SECONDS": "0"}), pytest.raises(ValidationError):
            RelayConfig()
