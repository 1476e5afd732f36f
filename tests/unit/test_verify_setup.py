"""Tests for the setup verification script."""

import importlib.util
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "verify_setup.py"
WEBHOOK_URL = "https://oncall.example.com/hooks/crisis?token=s3cr3t-webhook-key"


@pytest.fixture
def verify_setup():
    spec = importlib.util.spec_from_file_location("verify_setup", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestVerifySetup:
    """Test that configuration output never shows secrets."""

    def test_required_vars_masked(self, verify_setup, monkeypatch, capsys):
        monkeypatch.setenv("ESCALATION_WEBHOOK_URL", WEBHOOK_URL)
        monkeypatch.setenv("REDIS_URL", "redis://:hunter2-password@cache.internal:6379/0")

        results = verify_setup.check_required_vars()

        output = capsys.readouterr().out
        assert results == {"ESCALATION_WEBHOOK_URL": True, "REDIS_URL": True}
        assert "s3cr3t-webhook-key" not in output
        assert "hunter2-password" not in output

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("short", "***"),
            ("https://oncall.example.com/key", "https://.../key"),
        ],
    )
    def test_mask(self, verify_setup, value, expected):
        assert verify_setup.mask(value) == expected
