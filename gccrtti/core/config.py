# -*- coding: utf-8 -*-
"""
gccrtti/core/config.py - Configuration Management

Centralized management of gccrtti configuration items.
"""

from dataclasses import dataclass, field
from typing import Optional, List
from pathlib import Path
import logging
import os

from .exceptions import ConfigLoadError, ConfigValidationError

logger = logging.getLogger(__name__)

VALID_BACKENDS = ("auto", "elf", "pe", "rizin")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class VtableSearchConfig:
    """
    Vtable resolution configuration

    Controls the symbol fast path, the function-table reader limits and
    the names that identify the pure-virtual trap.
    """
    use_symbols: bool = True                # Try the conventional vtable symbol first
    vtable_symbol_name: str = "vtable"      # Label of the vtable inside a type namespace
    pure_virtual_names: List[str] = field(
        default_factory=lambda: ["__cxa_pure_virtual"]
    )
    max_function_slots: int = 4096          # Upper bound on slots read per function table
    max_function_tables: int = 64           # Upper bound on sub-tables read per vtable group
    max_prefix_words: int = 32              # Upper bound on vbase/vcall offset words before a header
    define_data: bool = False               # Persist accepted vtables in the listing

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            'use_symbols': self.use_symbols,
            'vtable_symbol_name': self.vtable_symbol_name,
            'pure_virtual_names': list(self.pure_virtual_names),
            'max_function_slots': self.max_function_slots,
            'max_function_tables': self.max_function_tables,
            'max_prefix_words': self.max_prefix_words,
            'define_data': self.define_data,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'VtableSearchConfig':
        """Create configuration from dictionary"""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class GccRttiConfig:
    """gccrtti configuration"""

    # =========================================================================
    # Analysis
    # =========================================================================
    vtable: VtableSearchConfig = field(default_factory=VtableSearchConfig)

    # =========================================================================
    # Program backend
    # =========================================================================
    backend: str = "auto"                   # auto | elf | pe | rizin
    rizin_analyze_level: int = 1            # 0-3, see RizinCore

    # =========================================================================
    # Logging
    # =========================================================================
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def __post_init__(self):
        self._apply_env_overrides()

        if self.log_file is not None and not isinstance(self.log_file, Path):
            self.log_file = Path(self.log_file)

    def _apply_env_overrides(self):
        """
        Read configuration overrides from environment variables.

        Variables are named GCCRTTI_<FIELD>; the vtable section uses
        GCCRTTI_VTABLE_<FIELD>.
        """
        overridable = {
            'backend': str,
            'rizin_analyze_level': int,
            'log_level': str,
            'log_file': self._parse_path,
        }
        vtable_overridable = {
            'use_symbols': self._parse_bool,
            'vtable_symbol_name': str,
            'pure_virtual_names': self._parse_list,
            'max_function_slots': int,
            'max_function_tables': int,
            'max_prefix_words': int,
            'define_data': self._parse_bool,
        }

        for name, converter in overridable.items():
            self._override(self, f"GCCRTTI_{name.upper()}", name, converter)
        for name, converter in vtable_overridable.items():
            self._override(self.vtable, f"GCCRTTI_VTABLE_{name.upper()}", name, converter)

    @staticmethod
    def _override(target, env_name: str, attr: str, converter) -> None:
        env_value = os.environ.get(env_name)
        if env_value is None:
            return
        try:
            setattr(target, attr, converter(env_value))
        except (ValueError, TypeError):
            logger.warning("Ignoring invalid value for %s: %r", env_name, env_value)

    @staticmethod
    def _parse_bool(value: str) -> bool:
        """Parse boolean environment variables"""
        return value.lower() in ('true', '1', 'yes', 'on')

    @staticmethod
    def _parse_path(value: str) -> Optional[Path]:
        """Parse path environment variables"""
        if not value or value.lower() in ('none', 'null', ''):
            return None
        return Path(value)

    @staticmethod
    def _parse_list(value: str) -> List[str]:
        """Parse comma separated environment variables"""
        return [item.strip() for item in value.split(',') if item.strip()]

    @classmethod
    def from_dict(cls, data: dict) -> 'GccRttiConfig':
        """Create configuration from dictionary"""
        data = data.copy()
        if 'vtable' in data and isinstance(data['vtable'], dict):
            data['vtable'] = VtableSearchConfig.from_dict(data['vtable'])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @classmethod
    def from_yaml(cls, path: str) -> 'GccRttiConfig':
        """Load configuration from a YAML file"""
        import yaml
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigLoadError(f"Configuration file not found: {path}", config_path=str(path))
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Invalid YAML in {path}: {e}", config_path=str(path))
        if data is not None and not isinstance(data, dict):
            raise ConfigLoadError(f"Configuration root must be a mapping: {path}", config_path=str(path))
        return cls.from_dict(data or {})

    def to_dict(self) -> dict:
        """Convert to complete dictionary"""
        return {
            'vtable': self.vtable.to_dict(),
            'backend': self.backend,
            'rizin_analyze_level': self.rizin_analyze_level,
            'log_level': self.log_level,
            'log_file': str(self.log_file) if self.log_file else None,
        }

    def to_yaml(self, path: str) -> None:
        """Save configuration to a YAML file"""
        import yaml
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)

    def validate(self, raise_on_error: bool = False) -> List[str]:
        """
        Validate the configuration for correctness.

        Args:
            raise_on_error: Raise ConfigValidationError instead of returning errors

        Returns:
            List of error messages (Empty list if valid)

        Raises:
            ConfigValidationError: raise_on_error is set and a value is invalid
        """
        errors = []

        if self.vtable.max_function_slots < 1:
            errors.append(f"vtable.max_function_slots ({self.vtable.max_function_slots}) must be >= 1")
        if self.vtable.max_function_tables < 1:
            errors.append(f"vtable.max_function_tables ({self.vtable.max_function_tables}) must be >= 1")
        if self.vtable.max_prefix_words < 0:
            errors.append(f"vtable.max_prefix_words ({self.vtable.max_prefix_words}) must be >= 0")
        if not self.vtable.vtable_symbol_name:
            errors.append("vtable.vtable_symbol_name must not be empty")

        if self.backend not in VALID_BACKENDS:
            errors.append(f"backend ({self.backend}) is invalid, should be one of: {list(VALID_BACKENDS)}")
        if not 0 <= self.rizin_analyze_level <= 3:
            errors.append(f"rizin_analyze_level ({self.rizin_analyze_level}) must be between 0 and 3")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"log_level ({self.log_level}) is invalid, should be one of: {list(VALID_LOG_LEVELS)}")

        if errors and raise_on_error:
            raise ConfigValidationError(
                f"Invalid configuration: {'; '.join(errors)}",
                field=errors[0].split(" ", 1)[0],
                errors=errors,
            )
        return errors


# Global default configuration instance - automatically finds configuration file
def _load_default_config() -> GccRttiConfig:
    """Automatically load the default configuration file"""
    search_paths = [
        "gccrtti.yaml",
        ".gccrtti.yaml",
        os.path.expanduser("~/.gccrtti.yaml"),
    ]
    for path in search_paths:
        if os.path.exists(path):
            try:
                config = GccRttiConfig.from_yaml(path)
                logger.info("Loaded config from: %s", path)
                return config
            except ConfigLoadError as e:
                logger.warning("Failed to load config from %s: %s", path, e)
    return GccRttiConfig()

default_config = _load_default_config()


def load_config(path: Optional[str] = None) -> GccRttiConfig:
    """
    Load configuration (supports YAML and environment variables).

    Args:
        path: Configuration file path (optional)

    Returns:
        Configuration instance
    """
    if path:
        return GccRttiConfig.from_yaml(path)
    return GccRttiConfig()
