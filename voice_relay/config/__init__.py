"""
Configuration module for the voice relay application.

This module provides centralized configuration management for the entire application,
including constants, logging setup, and environment-based settings.

Key components:
- constants: Defines application-wide constants used across modules, including
  endpoint paths, provider URLs, telephony event names and fallback texts.
- logging_config: Provides a consistent logging infrastructure with support for
  console and file-based logging with rotation capabilities.
- settings: The Settings model, built from environment variables by the entry point.

Usage examples:
```python
from voice_relay.config.constants import LOGGER_NAME
from voice_relay.config.logging_config import configure_logging
from voice_relay.config.settings import Settings

logger = configure_logging()
settings = Settings.from_env()
logger.info(f"Listening on port {settings.port}")
```
"""
