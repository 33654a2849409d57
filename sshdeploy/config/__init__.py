"""
Configuration module for SSH Deploy.

This module contains configuration classes and utilities.
"""

from .deploy_config import DeployConfig, load_env_file, find_config_file
from .runner_config import RunnerSettings, PoolConfig, ConnectionSettings, LoggingConfig

__all__ = [
    "DeployConfig",
    "load_env_file",
    "find_config_file",
    "RunnerSettings",
    "PoolConfig",
    "ConnectionSettings",
    "LoggingConfig"
]
