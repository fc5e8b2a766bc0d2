"""Configuration loading and logging setup for the smart-excel pipeline.

Holds every tunable constant in `DEFAULT_CONFIG`, deep-merges an optional
`config.yaml` over it, exposes a `CFG` singleton and provides
`configure_logging()` for callers that want console logging.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "classifier": {
        "min_score": 10,
        "confidence_divisor": 50,
    },
    "asset_valuation": {
        "scale_threshold_per_bed": 5000,
        "scale_factor": 1000,
        "default_years": ["2025", "2026"],
    },
    "valuation": {
        "snf_owned_cap_rate": 0.125,
        "alf_cap_rate_no_snc": 0.08,
        "alf_cap_rate_low_snc": 0.09,
        "alf_cap_rate_high_snc": 0.12,
        "snc_breakpoint": 0.33,
        "leased_multiplier_default": 2.5,
        "leased_multiplier_min": 2.0,
        "leased_multiplier_max": 3.0,
        "sensitivity_bps": [-200, -150, -100, -50, 0, 50, 100, 150, 200],
        "external_snf_cap_rate": 0.12,
        "external_leased_multiplier": 4.0,
        "external_alf_spread": 0.02,
    },
    "benchmarks": {
        "default_state": "OR",
        "min_revenue_per_bed": 30000,
        "max_medicaid_concentration": 0.85,
        "min_ebitdar_margin_pct": 5,
    },
    "orchestrator": {
        "max_workers": 1,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
    },
}


def _deep_update(dst: dict, src: Optional[dict]) -> dict:
    for k, v in (src or {}).items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_update(dst[k], v)
        else:
            dst[k] = v
    return dst


def _find_config_path() -> Path:
    """Locate config.yaml beside the modules, falling back to CWD"""
    cand = Path(__file__).resolve().parent / "config.yaml"
    if cand.exists():
        return cand
    return Path.cwd() / "config.yaml"


def load_config(path: Optional[str] = None) -> dict:
    """
    Build the effective configuration

    Args:
        path: Optional YAML file; defaults to a discovered config.yaml

    Returns:
        A fresh dict of defaults overlaid with the file's values
    """
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg_path = Path(path) if path else _find_config_path()
    if not cfg_path.exists():
        if path:
            logger.warning("Config file %s not found, using defaults", cfg_path)
        return cfg

    overrides = yaml.safe_load(cfg_path.read_text()) or {}
    if not isinstance(overrides, dict):
        raise ValueError(f"Config file {cfg_path} must contain a mapping")
    logger.debug("Loaded config overrides from %s", cfg_path)
    return _deep_update(cfg, overrides)


def section(config: Optional[dict], name: str) -> dict:
    """Return one config section, falling back to the defaults"""
    cfg = config if config is not None else CFG
    merged = copy.deepcopy(DEFAULT_CONFIG.get(name, {}))
    return _deep_update(merged, cfg.get(name))


# Global singleton config for convenience
CFG: dict = load_config()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging from the argument or CFG['logging']"""
    log_cfg = CFG.get("logging") or {}
    resolved = (level or log_cfg.get("level") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        format=log_cfg.get("format", DEFAULT_CONFIG["logging"]["format"]),
    )


__all__ = ["DEFAULT_CONFIG", "CFG", "load_config", "section", "configure_logging"]
