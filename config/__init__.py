"""config package

Probe configuration (YAML-backed).
"""
from .probe_config import ConfigError, ProbeConfig, TokenInfo, load_probe_config

__all__ = [
    'ConfigError',
    'ProbeConfig',
    'TokenInfo',
    'load_probe_config',
]
