"""
Unit tests for configuration loading and validation.

Tests strict validation of tariff schedules and settings overrides.
"""

import os
import tempfile
from decimal import Decimal

import pytest
import yaml

from energy_ledger.config.loader import (
    DEFAULT_CYCLE_DAYS,
    ENV_CYCLE_DAYS,
    ENV_DB_PATH,
    Settings,
    load_settings,
    load_tariff_config,
)
from energy_ledger.storage import repository


class TestTariffConfigLoading:
    """Test tariff schedule loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "tariffs.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def _slabs(self, *slabs):
        return {"slabs": list(slabs)}

    def test_default_schedule_loads(self):
        config = load_tariff_config()

        assert len(config.slabs) == 6
        assert config.slabs[0].min_units == Decimal("0")
        assert config.slabs[0].subsidy_percentage == Decimal("50")
        assert config.slabs[-1].max_units is None

    def test_valid_config_loads_correctly(self):
        path = self._write_config(self._slabs(
            {"min_units": 0, "max_units": 100, "rate_per_unit": 0, "subsidy_percentage": 100},
            {"min_units": 101, "rate_per_unit": "2.25", "fixed_charge": 20},
        ))
        config = load_tariff_config(path)

        assert config.slabs[1].rate_per_unit == Decimal("2.25")
        assert config.slabs[1].fixed_charge == Decimal("20")
        assert config.slabs[1].max_units is None

    def test_inactive_slab_is_kept_but_not_active(self):
        path = self._write_config(self._slabs(
            {"min_units": 0, "max_units": 100, "rate_per_unit": 2},
            {"min_units": 101, "rate_per_unit": 3, "active": False},
        ))
        config = load_tariff_config(path)

        assert len(config.slabs) == 2
        assert len(config.active_slabs) == 1

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError, match="config file not found"):
            load_tariff_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_config(self):
        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_tariff_config(self._write_config({}))

    def test_invalid_yaml(self):
        path = os.path.join(self.temp_dir, "broken.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("slabs: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_tariff_config(path)

    def test_unknown_top_level_key(self):
        path = self._write_config({"slabs": [{"min_units": 0, "rate_per_unit": 1}], "extra": 1})
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_tariff_config(path)

    def test_missing_slabs_section(self):
        with pytest.raises(ValueError, match="Missing required 'slabs' section"):
            load_tariff_config(self._write_config({"tariffs": []}))

    def test_empty_slab_list(self):
        with pytest.raises(ValueError, match="non-empty list"):
            load_tariff_config(self._write_config({"slabs": []}))

    def test_unknown_slab_key(self):
        path = self._write_config(self._slabs({"min_units": 0, "rate_per_unit": 1, "tier": "A"}))
        with pytest.raises(ValueError, match="Unknown keys in slabs\\[0\\]"):
            load_tariff_config(path)

    def test_missing_rate(self):
        with pytest.raises(ValueError, match="rate_per_unit"):
            load_tariff_config(self._write_config(self._slabs({"min_units": 0})))

    def test_negative_rate(self):
        path = self._write_config(self._slabs({"min_units": 0, "rate_per_unit": -1}))
        with pytest.raises(ValueError, match="must be >= 0"):
            load_tariff_config(path)

    def test_subsidy_above_hundred(self):
        path = self._write_config(self._slabs(
            {"min_units": 0, "rate_per_unit": 1, "subsidy_percentage": 120},
        ))
        with pytest.raises(ValueError, match="between 0 and 100"):
            load_tariff_config(path)

    def test_max_below_min(self):
        path = self._write_config(self._slabs({"min_units": 50, "max_units": 10, "rate_per_unit": 1}))
        with pytest.raises(ValueError, match="must be >= 'min_units'"):
            load_tariff_config(path)

    def test_active_must_be_boolean(self):
        path = self._write_config(self._slabs({"min_units": 0, "rate_per_unit": 1, "active": "yes"}))
        with pytest.raises(ValueError, match="must be a boolean"):
            load_tariff_config(path)

    def test_slabs_out_of_order(self):
        path = self._write_config(self._slabs(
            {"min_units": 101, "max_units": 200, "rate_per_unit": 3},
            {"min_units": 0, "max_units": 100, "rate_per_unit": 2},
        ))
        with pytest.raises(ValueError, match="ascending"):
            load_tariff_config(path)

    def test_overlapping_slabs(self):
        path = self._write_config(self._slabs(
            {"min_units": 0, "max_units": 100, "rate_per_unit": 2},
            {"min_units": 100, "max_units": 200, "rate_per_unit": 3},
        ))
        with pytest.raises(ValueError, match="overlaps"):
            load_tariff_config(path)

    def test_unbounded_slab_must_be_last(self):
        path = self._write_config(self._slabs(
            {"min_units": 0, "rate_per_unit": 2},
            {"min_units": 101, "rate_per_unit": 3},
        ))
        with pytest.raises(ValueError, match="Only the last slab"):
            load_tariff_config(path)


class TestSettings:
    """Test settings loading and environment overrides."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv(ENV_DB_PATH, raising=False)
        monkeypatch.delenv(ENV_CYCLE_DAYS, raising=False)
        settings = load_settings()

        assert settings.db_path == "energy_ledger.db"
        assert settings.cycle_days == DEFAULT_CYCLE_DAYS

    def test_default_cycle_length_matches_store(self):
        assert DEFAULT_CYCLE_DAYS == repository.DEFAULT_CYCLE_DAYS == 60

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv(ENV_DB_PATH, "/tmp/custom.db")
        monkeypatch.setenv(ENV_CYCLE_DAYS, "30")
        settings = load_settings()

        assert settings.db_path == "/tmp/custom.db"
        assert settings.cycle_days == 30

    def test_environment_cycle_days_must_be_integer(self, monkeypatch):
        monkeypatch.setenv(ENV_CYCLE_DAYS, "thirty")
        with pytest.raises(ValueError, match="must be an integer"):
            load_settings()

    def test_settings_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv(ENV_DB_PATH, raising=False)
        monkeypatch.delenv(ENV_CYCLE_DAYS, raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.dump({"db_path": "home.db", "cycle_days": 30}), encoding="utf-8")

        settings = load_settings(str(path))
        assert settings.db_path == "home.db"
        assert settings.cycle_days == 30

    def test_environment_wins_over_file(self, monkeypatch, tmp_path):
        monkeypatch.setenv(ENV_DB_PATH, "env.db")
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.dump({"db_path": "file.db"}), encoding="utf-8")

        assert load_settings(str(path)).db_path == "env.db"

    def test_settings_file_unknown_key(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.dump({"database": "x.db"}), encoding="utf-8")

        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_settings(str(path))

    def test_cycle_days_must_be_positive(self):
        with pytest.raises(ValueError, match="cycle_days must be > 0"):
            Settings(cycle_days=0)
