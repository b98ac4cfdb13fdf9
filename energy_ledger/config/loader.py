"""
Configuration management and loading.

Handles the tariff slab schedule, application settings and environment variables.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from energy_ledger.storage.db import DEFAULT_DB_PATH
from energy_ledger.storage.models import TariffSlab
from energy_ledger.storage.repository import DEFAULT_CYCLE_DAYS

DEFAULT_TARIFF_PATH = Path(__file__).parent / "default_tariffs.yaml"

ENV_DB_PATH = "ENERGY_LEDGER_DB"
ENV_CYCLE_DAYS = "ENERGY_LEDGER_CYCLE_DAYS"


@dataclass(frozen=True)
class TariffConfig:
    """Validated slab schedule, ordered by min_units."""
    slabs: Tuple[TariffSlab, ...]

    @property
    def active_slabs(self) -> List[TariffSlab]:
        return [slab for slab in self.slabs if slab.active]


@dataclass(frozen=True)
class Settings:
    """Application settings."""
    db_path: str = DEFAULT_DB_PATH
    cycle_days: int = DEFAULT_CYCLE_DAYS
    tariff_path: str = str(DEFAULT_TARIFF_PATH)

    def __post_init__(self):
        """Validate settings values."""
        if not self.db_path:
            raise ValueError("db_path cannot be empty")
        if self.cycle_days <= 0:
            raise ValueError("cycle_days must be > 0")


def _read_yaml(path: str, kind: str) -> Optional[Dict]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"{kind} config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")


def load_tariff_config(path: str = str(DEFAULT_TARIFF_PATH)) -> TariffConfig:
    """Load and validate a tariff slab schedule from YAML.

    The calculator trusts its input, so every structural rule is checked here:
    known keys only, ascending and non-overlapping slabs, subsidies within
    0-100, and only the last slab may be unbounded.

    Args:
        path: Path to YAML tariff file

    Returns:
        Validated TariffConfig

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    raw_config = _read_yaml(path, "Tariff")
    if not raw_config:
        raise ValueError("Configuration file is empty")

    if 'slabs' not in raw_config:
        raise ValueError("Missing required 'slabs' section")

    unknown_keys = set(raw_config.keys()) - {'slabs'}
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    slabs_data = raw_config['slabs']
    if not isinstance(slabs_data, list) or not slabs_data:
        raise ValueError("'slabs' must be a non-empty list")

    slabs = []
    for index, slab_data in enumerate(slabs_data):
        if not isinstance(slab_data, dict):
            raise ValueError(f"Slab 'slabs[{index}]' must be a dictionary")
        slabs.append(_parse_slab(slab_data, f"slabs[{index}]"))

    _validate_schedule(slabs)
    return TariffConfig(slabs=tuple(slabs))


def _decimal(value, path: str, field_name: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"'{field_name}' in {path} must be a number")
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{field_name}' in {path} must be a number")
    if not number.is_finite() or number < 0:
        raise ValueError(f"'{field_name}' in {path} must be >= 0")
    return number


def _parse_slab(data: Dict, path: str) -> TariffSlab:
    """Parse and validate one slab.

    Args:
        data: Slab configuration data
        path: Path for error messages

    Returns:
        Validated TariffSlab

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {
        'min_units', 'max_units', 'rate_per_unit',
        'fixed_charge', 'subsidy_percentage', 'active',
    }
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for required in ('min_units', 'rate_per_unit'):
        if required not in data:
            raise ValueError(f"Missing required '{required}' in {path}")

    min_units = _decimal(data['min_units'], path, 'min_units')
    max_units = None
    if data.get('max_units') is not None:
        max_units = _decimal(data['max_units'], path, 'max_units')
        if max_units < min_units:
            raise ValueError(f"'max_units' in {path} must be >= 'min_units'")

    subsidy = _decimal(data.get('subsidy_percentage', 0), path, 'subsidy_percentage')
    if subsidy > 100:
        raise ValueError(f"'subsidy_percentage' in {path} must be between 0 and 100")

    active = data.get('active', True)
    if not isinstance(active, bool):
        raise ValueError(f"'active' in {path} must be a boolean")

    return TariffSlab(
        min_units=min_units,
        max_units=max_units,
        rate_per_unit=_decimal(data['rate_per_unit'], path, 'rate_per_unit'),
        fixed_charge=_decimal(data.get('fixed_charge', 0), path, 'fixed_charge'),
        subsidy_percentage=subsidy,
        active=active,
    )


def _validate_schedule(slabs: List[TariffSlab]) -> None:
    for previous, slab in zip(slabs, slabs[1:]):
        if slab.min_units <= previous.min_units:
            raise ValueError("Slabs must be ordered by ascending 'min_units'")
        if previous.max_units is None:
            raise ValueError("Only the last slab may omit 'max_units'")
        if slab.min_units <= previous.max_units:
            raise ValueError(
                f"Slab starting at {slab.min_units} overlaps slab ending at {previous.max_units}"
            )


def load_settings(path: Optional[str] = None) -> Settings:
    """Load settings from an optional YAML file, then apply environment overrides.

    Args:
        path: Optional path to a settings YAML file

    Returns:
        Validated Settings

    Raises:
        FileNotFoundError: If an explicit path doesn't exist
        ValueError: If configuration is invalid
    """
    values: Dict = {}
    if path is not None:
        raw_config = _read_yaml(path, "Settings") or {}
        if not isinstance(raw_config, dict):
            raise ValueError("Settings file must contain a mapping")
        unknown_keys = set(raw_config.keys()) - {'db_path', 'cycle_days', 'tariff_path'}
        if unknown_keys:
            raise ValueError(f"Unknown configuration keys: {unknown_keys}")
        values.update(raw_config)

    if os.environ.get(ENV_DB_PATH):
        values['db_path'] = os.environ[ENV_DB_PATH]
    if os.environ.get(ENV_CYCLE_DAYS):
        try:
            values['cycle_days'] = int(os.environ[ENV_CYCLE_DAYS])
        except ValueError:
            raise ValueError(f"{ENV_CYCLE_DAYS} must be an integer")

    cycle_days = values.get('cycle_days', DEFAULT_CYCLE_DAYS)
    if isinstance(cycle_days, bool) or not isinstance(cycle_days, int):
        raise ValueError("'cycle_days' must be an integer")

    return Settings(
        db_path=str(values.get('db_path', DEFAULT_DB_PATH)),
        cycle_days=cycle_days,
        tariff_path=str(values.get('tariff_path', DEFAULT_TARIFF_PATH)),
    )
