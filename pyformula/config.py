"""
Configuration for pyformula.

Process-wide defaults used when a call does not pass explicit arguments.
Values come from (lowest to highest priority) built-in defaults, an
optional YAML file, environment variables, and keyword overrides.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class MissingPolicy(str, Enum):
    """What prediction does with rows that have missing predictors."""
    FAIL = "fail"
    PROPAGATE = "propagate"
    EXCLUDE = "exclude"


class UnseenPolicy(str, Enum):
    """What encoding does with categorical levels not seen at fit time."""
    ERROR = "error"
    ZERO = "zero"


class FitControl(BaseModel):
    """
    Numerical controls for a single fit (like R's glm.control).

    Attributes
    ----------
    tol : float
        Relative tolerance for rank determination (R's lm uses 1e-7)
    maxit : int
        Maximum IRLS iterations
    epsilon : float
        Convergence tolerance on the relative coefficient change
    """
    model_config = ConfigDict(frozen=True)

    tol: float = 1e-7
    maxit: int = 25
    epsilon: float = 1e-8

    @field_validator("tol", "epsilon")
    @classmethod
    def _positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("maxit")
    @classmethod
    def _at_least_one(cls, v):
        if v < 1:
            raise ValueError("maxit must be >= 1")
        return v


class FitConfig(BaseModel):
    """Fitting defaults."""
    model_config = ConfigDict(validate_assignment=True)

    backend: str = "cpu"
    tol: float = 1e-7
    maxit: int = 25
    epsilon: float = 1e-8

    def control(self) -> FitControl:
        return FitControl(tol=self.tol, maxit=self.maxit, epsilon=self.epsilon)


class PredictionConfig(BaseModel):
    """Prediction defaults."""
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)

    missing: MissingPolicy = MissingPolicy.PROPAGATE
    unseen: UnseenPolicy = UnseenPolicy.ERROR


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)

    level: LogLevel = LogLevel.WARNING
    console: bool = False
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class PyFormulaConfig(BaseModel):
    """Main configuration object."""
    model_config = ConfigDict(validate_assignment=True)

    fit: FitConfig = Field(default_factory=FitConfig)
    prediction: PredictionConfig = Field(default_factory=PredictionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def __init__(self, config_file: Optional[Union[str, Path]] = None, **kwargs):
        """
        Parameters
        ----------
        config_file : str or Path, optional
            YAML file with 'fit', 'prediction' and 'logging' sections
        **kwargs
            Section overrides, e.g. ``fit={'backend': 'pytorch'}``
        """
        config_data: Dict[str, Any] = {}
        if config_file is not None:
            config_data = _merge(config_data, _load_config_file(config_file))
        config_data = _merge(config_data, _load_environment_variables())
        config_data = _merge(config_data, kwargs)
        super().__init__(**config_data)

    def update(self, **kwargs) -> None:
        """Update values, using 'section.key' for nested settings."""
        for key, value in kwargs.items():
            if "." not in key:
                raise KeyError(f"Use 'section.key' to update settings, got '{key}'")
            section, subkey = key.split(".", 1)
            section_obj = getattr(self, section, None)
            if section_obj is None or subkey not in type(section_obj).model_fields:
                raise KeyError(f"Unknown setting '{key}'")
            setattr(section_obj, subkey, value)

    def save_config(self, config_file: Union[str, Path]) -> None:
        """Save the configuration to a YAML file."""
        config_path = Path(config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False, indent=2)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_config_file(config_file: Union[str, Path]) -> Dict[str, Any]:
    config_path = Path(config_file)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


_ENV_MAPPINGS = {
    "PYFORMULA_BACKEND": ("fit", "backend", str),
    "PYFORMULA_MAXIT": ("fit", "maxit", int),
    "PYFORMULA_MISSING_POLICY": ("prediction", "missing", str),
    "PYFORMULA_LOG_LEVEL": ("logging", "level", str.upper),
}


def _load_environment_variables() -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    for env_var, (section, key, convert) in _ENV_MAPPINGS.items():
        value = os.getenv(env_var)
        if value is not None:
            config.setdefault(section, {})[key] = convert(value)
    return config


_default_config: Optional[PyFormulaConfig] = None


def get_config() -> PyFormulaConfig:
    """Get the process-wide configuration instance."""
    global _default_config
    if _default_config is None:
        _default_config = PyFormulaConfig()
    return _default_config


def configure(**kwargs) -> PyFormulaConfig:
    """
    Update the process-wide configuration.

    Examples
    --------
    >>> configure(**{"fit.backend": "cpu", "prediction.missing": "exclude"})
    """
    config = get_config()
    config.update(**kwargs)
    if any(key.startswith("logging.") for key in kwargs):
        from ._logging import setup_logging
        setup_logging()
    return config


def reset_config() -> None:
    """Drop the process-wide configuration (rebuilt from defaults on next use)."""
    global _default_config
    _default_config = None


__all__ = [
    "LogLevel",
    "MissingPolicy",
    "UnseenPolicy",
    "FitControl",
    "FitConfig",
    "PredictionConfig",
    "LoggingConfig",
    "PyFormulaConfig",
    "get_config",
    "configure",
    "reset_config",
]
