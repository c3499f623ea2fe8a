"""
Configuration for Wardcord.

- **app_configuration.py**: YAML-backed ``AppConfig`` with typed properties for
  the backend, rate limiting, standing weights and thresholds, expiration
  defaults and guild presentation settings.
"""
