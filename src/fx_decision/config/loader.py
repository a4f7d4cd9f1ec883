"""
YAML configuration loader.

Reads three files from the config directory and validates them into an
AppConfig:

    config.yaml   system, analyzer, validator, layers, readiness
    risk.yaml     the risk section (top level of the file)
    filters.yaml  ultra_filter and enhancer

String values of the form ${VAR} or ${VAR:default} are substituted from the
environment (a repository-level .env file is loaded first). A fixed set of
environment variables then overrides individual settings.
"""

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from ..errors import ConfigurationError
from .settings import AppConfig


logger = logging.getLogger(__name__)

# src/fx_decision/config/loader.py -> repository root
PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_CONFIG_DIR = PROJECT_ROOT / "config"

load_dotenv(PROJECT_ROOT / ".env")

_PLACEHOLDER = re.compile(r"^\$\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*(?::(.*))?\}$")

_TRUTHY = {"1", "true", "yes", "on"}


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


# env var -> (section, field, transform)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "ENVIRONMENT": ("system", "environment", str.strip),
    "LOG_LEVEL": ("system", "log_level", lambda raw: raw.strip().upper()),
    "LOG_FILE": ("system", "log_file", str.strip),
    "FX_ACCOUNT_BALANCE": ("risk", "account_balance", str.strip),
    "FX_CONFLUENCE_MIN_SCORE": ("validator", "confluence_min_score", str.strip),
    "FX_STRICT_SMART_CHECKLIST": ("validator", "strict_smart_checklist", _as_bool),
    "FX_ANALYZER_CACHE_TTL": ("analyzer", "cache_ttl_seconds", str.strip),
}

FILTER_SECTIONS = ("ultra_filter", "enhancer")


def substitute_env(value: Any) -> Any:
    """Resolve ${VAR[:default]} placeholders anywhere inside a parsed YAML tree."""
    if isinstance(value, dict):
        return {key: substitute_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [substitute_env(item) for item in value]
    if not isinstance(value, str):
        return value

    match = _PLACEHOLDER.match(value.strip())
    if not match:
        return value
    name, default = match.group(1), match.group(2)
    resolved = os.getenv(name)
    if resolved is not None:
        return resolved
    if default is not None:
        return default.strip()
    logger.warning(f"⚠️ ${{{name}}} is not set; substituting an empty string")
    return ""


class ConfigLoader:
    """Loads, validates and caches the application configuration."""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self._app_config: Optional[AppConfig] = None
        logger.debug(f"ConfigLoader using {self.config_dir}")

    def load_yaml(self, config_name: str) -> Dict[str, Any]:
        """
        Parse `<config_name>.yaml` and substitute placeholders.

        Raises:
            FileNotFoundError: the file does not exist
        """
        path = self.config_dir / f"{config_name}.yaml"
        if not path.is_file():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
        return substitute_env(data or {})

    def _read_or_empty(self, config_name: str) -> Dict[str, Any]:
        try:
            return self.load_yaml(config_name)
        except FileNotFoundError:
            logger.info(f"{config_name}.yaml absent in {self.config_dir}; defaults apply")
            return {}

    def _collect_sections(self) -> Dict[str, Any]:
        sections: Dict[str, Any] = dict(self._read_or_empty("config"))

        risk = self._read_or_empty("risk")
        if risk:
            sections["risk"] = risk

        filters = self._read_or_empty("filters")
        sections.update({name: filters[name] for name in FILTER_SECTIONS if name in filters})
        return sections

    @staticmethod
    def apply_env_overrides(sections: Dict[str, Any]) -> Dict[str, Any]:
        """
        Overlay ENV_OVERRIDES onto the parsed sections.

        Raw strings are passed through; the settings models coerce them and
        fall back to defaults when they do not parse.
        """
        for env_name, (section, field, transform) in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if not raw:
                continue
            if not isinstance(sections.get(section), dict):
                sections[section] = {}
            sections[section][field] = transform(raw)
            logger.debug(f"{env_name} overrides {section}.{field}")
        return sections

    def load_app_config(self, use_cache: bool = True) -> AppConfig:
        """
        Build the validated AppConfig.

        Raises:
            ConfigurationError: a value cannot be coerced at all (e.g. an unknown enum member)
        """
        if use_cache and self._app_config is not None:
            return self._app_config

        sections = self.apply_env_overrides(self._collect_sections())
        try:
            app_config = AppConfig(**sections)
        except (TypeError, ValueError) as e:
            logger.error(f"❌ Invalid configuration in {self.config_dir}: {e}")
            raise ConfigurationError(f"Invalid configuration in {self.config_dir}: {e}") from e

        logger.info(f"✅ Configuration loaded from {self.config_dir}")
        if use_cache:
            self._app_config = app_config
        return app_config

    def reload(self) -> AppConfig:
        """Drop the cached AppConfig and read the files again."""
        self.clear_cache()
        return self.load_app_config()

    def clear_cache(self):
        self._app_config = None


@lru_cache(maxsize=16)
def load_config(config_name: str) -> Dict[str, Any]:
    """Parse a single file from the default config directory, e.g. load_config('risk')."""
    return ConfigLoader().load_yaml(config_name)


_default_loader: Optional[ConfigLoader] = None


def get_config_loader() -> ConfigLoader:
    global _default_loader
    if _default_loader is None:
        _default_loader = ConfigLoader()
    return _default_loader


def get_app_config(use_cache: bool = True) -> AppConfig:
    return get_config_loader().load_app_config(use_cache=use_cache)


def reload_config() -> AppConfig:
    return get_config_loader().reload()
