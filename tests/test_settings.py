"""Tests for settings.py module."""

import pytest

from telegraf_injector.settings import InjectorSettings, check_quantity


class TestCheckQuantity:
    """Tests for check_quantity."""

    @pytest.mark.parametrize("value", ["10m", "10Mi", "200Mi", "1", "1.5", "2E", "1e-3", "-1"])
    def test_valid(self, value):
        """Test that values in the quantity grammar pass."""
        check_quantity(value)

    @pytest.mark.parametrize("value", ["NaN", "Infinity", " 100m", "1K", "1_000", "", "10 Mi", "m"])
    def test_invalid(self, value):
        """Test that values outside the quantity grammar are rejected."""
        with pytest.raises(ValueError):
            check_quantity(value)


class TestValidateRequestsAndLimits:
    """Tests for InjectorSettings.validate_requests_and_limits."""

    def test_defaults_valid(self):
        """Test that the built-in defaults pass."""
        InjectorSettings().validate_requests_and_limits()

    @pytest.mark.parametrize(
        ("field", "label"),
        [
            ("requests_cpu", "requests-cpu"),
            ("requests_memory", "requests-memory"),
            ("limits_cpu", "limits-cpu"),
            ("limits_memory", "limits-memory"),
        ],
    )
    @pytest.mark.parametrize("value", ["NaN", "1_000", "1K"])
    def test_invalid_default(self, field, label, value):
        """Test that each default is checked against the quantity grammar."""
        settings = InjectorSettings(**{field: value})

        with pytest.raises(ValueError) as exc_info:
            settings.validate_requests_and_limits()

        assert f"invalid default {label} {value!r}" in str(exc_info.value)


class TestIstioImage:
    """Tests for InjectorSettings.istio_image."""

    def test_falls_back_to_telegraf_image(self):
        """Test that the istio image defaults to the telegraf image."""
        assert InjectorSettings(telegraf_image="telegraf:1.30").istio_image == "telegraf:1.30"
        assert InjectorSettings(istio_telegraf_image="telegraf:istio").istio_image == "telegraf:istio"
