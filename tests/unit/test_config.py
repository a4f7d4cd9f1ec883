"""
Unit tests for settings models and the YAML config loader.
"""

import pytest
import yaml

from fx_decision.config import (
    AppConfig,
    ConfigLoader,
    RiskSettings,
    UltraFilterSettings,
    ValidatorSettings,
    coerce_settings,
)
from fx_decision.errors import ConfigurationError


# ============================================================================
# Fixtures
# ============================================================================

OVERRIDE_VARS = (
    'ENVIRONMENT', 'LOG_LEVEL', 'LOG_FILE', 'FX_ACCOUNT_BALANCE',
    'FX_CONFLUENCE_MIN_SCORE', 'FX_STRICT_SMART_CHECKLIST', 'FX_ANALYZER_CACHE_TTL',
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in OVERRIDE_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_dir(tmp_path):
    """Temporary config directory with all three YAML files."""
    (tmp_path / "config.yaml").write_text(yaml.safe_dump({
        'system': {'log_level': 'DEBUG'},
        'validator': {'confluence_min_score': 70, 'strict_smart_checklist': True},
        'readiness': {'allow_strong_override': True},
    }))
    (tmp_path / "risk.yaml").write_text(
        "account_balance: ${TEST_FX_BALANCE:25000}\n"
        "max_daily_risk: 0.04\n"
    )
    (tmp_path / "filters.yaml").write_text(yaml.safe_dump({
        'ultra_filter': {'min_confluence': 5},
        'enhancer': {'min_pattern_similarity': 0.9},
        'unrelated': {'ignored': True},
    }))
    return tmp_path


# ============================================================================
# Settings fallback
# ============================================================================

@pytest.mark.parametrize("value", [None, 'abc', float('nan'), float('inf'), -5, True])
def test_invalid_number_falls_back_to_default(value):
    settings = RiskSettings(account_balance=value)
    assert settings.account_balance == 10_000.0


def test_out_of_bounds_falls_back():
    settings = UltraFilterSettings(min_confluence=9, min_win_probability=1.5)
    assert settings.min_confluence == 4
    assert settings.min_win_probability == 0.85


def test_numeric_strings_are_coerced():
    settings = ValidatorSettings(confluence_min_score='55', max_concurrent_trades='3')
    assert settings.confluence_min_score == 55.0
    assert settings.max_concurrent_trades == 3


def test_optional_numbers_keep_none():
    assert RiskSettings(default_currency_limit=None).default_currency_limit is None


def test_coerce_settings_accepts_dict_instance_or_none():
    instance = RiskSettings(max_daily_risk=0.05)
    assert coerce_settings(RiskSettings, instance) is instance
    assert coerce_settings(RiskSettings, {'max_daily_risk': 0.05}).max_daily_risk == 0.05
    assert coerce_settings(RiskSettings, None) == RiskSettings()


def test_nested_sections_fall_back_independently():
    config = AppConfig(risk={'correlation': {'threshold': 3, 'max_cluster_size': 2}})
    assert config.risk.correlation.threshold == 0.8
    assert config.risk.correlation.max_cluster_size == 2


# ============================================================================
# Loader
# ============================================================================

def test_loads_all_files(config_dir, monkeypatch):
    monkeypatch.delenv('TEST_FX_BALANCE', raising=False)
    config = ConfigLoader(config_dir).load_app_config(use_cache=False)

    assert config.system.log_level == 'DEBUG'
    assert config.validator.confluence_min_score == 70
    assert config.validator.strict_smart_checklist is True
    assert config.readiness.allow_strong_override is True
    assert config.risk.account_balance == 25_000
    assert config.risk.max_daily_risk == 0.04
    assert config.ultra_filter.min_confluence == 5
    assert config.enhancer.min_pattern_similarity == 0.9


def test_placeholder_reads_environment(config_dir, monkeypatch):
    monkeypatch.setenv('TEST_FX_BALANCE', '50000')
    config = ConfigLoader(config_dir).load_app_config(use_cache=False)
    assert config.risk.account_balance == 50_000


def test_env_overrides_win(config_dir, monkeypatch):
    monkeypatch.setenv('FX_ACCOUNT_BALANCE', '12345')
    monkeypatch.setenv('FX_STRICT_SMART_CHECKLIST', 'off')
    monkeypatch.setenv('LOG_LEVEL', 'warning')

    config = ConfigLoader(config_dir).load_app_config(use_cache=False)

    assert config.risk.account_balance == 12_345
    assert config.validator.strict_smart_checklist is False
    assert config.system.log_level == 'WARNING'


def test_missing_files_give_defaults(tmp_path):
    config = ConfigLoader(tmp_path).load_app_config(use_cache=False)
    assert config.analyzer.direction_threshold == 12
    assert config.readiness.min_layer17_confidence == 60


def test_load_yaml_raises_for_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader(tmp_path).load_yaml('nope')


def test_invalid_enum_raises_configuration_error(tmp_path):
    (tmp_path / "config.yaml").write_text("system:\n  log_level: LOUD\n")
    with pytest.raises(ConfigurationError):
        ConfigLoader(tmp_path).load_app_config(use_cache=False)


def test_cache_and_reload(config_dir):
    loader = ConfigLoader(config_dir)
    first = loader.load_app_config()
    assert loader.load_app_config() is first

    (config_dir / "risk.yaml").write_text("max_daily_risk: 0.02\n")
    reloaded = loader.reload()
    assert reloaded is not first
    assert reloaded.risk.max_daily_risk == 0.02


def test_repository_config_is_valid():
    config = ConfigLoader().load_app_config(use_cache=False)
    assert config.analyzer.direction_threshold == 12
    assert config.analyzer.signal_threshold == 25
