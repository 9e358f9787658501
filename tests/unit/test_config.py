"""
Unit tests for configuration management.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError


def test_settings_loads_from_environment():
    """Test that settings can be loaded from environment variables."""
    with patch.dict(os.environ, {
        'REDIS_URL': 'redis://redis:6379/1',
        'WEBHOOK_SECRET': 'test_secret',
        'LLM_API_KEY': 'test_key',
        'LLM_MODEL': 'gpt-4o',
        'GITHUB_APP_ID': '12345',
        'BOT_LOGIN': 'reviewbot[bot]',
        'LOG_LEVEL': 'DEBUG',
        'TASK_TIMEOUT_SECONDS': '300',
        'RATE_LIMIT_PER_WINDOW': '10',
    }):
        from reviewbot.config import Settings
        settings = Settings()

        assert settings.redis_url == 'redis://redis:6379/1'
        assert settings.webhook_secret == 'test_secret'
        assert settings.llm_api_key == 'test_key'
        assert settings.llm_model == 'gpt-4o'
        assert settings.github_app_id == '12345'
        assert settings.bot_login == 'reviewbot[bot]'
        assert settings.log_level == 'DEBUG'
        assert settings.task_timeout_seconds == 300
        assert settings.rate_limit_per_window == 10


def test_settings_has_default_values():
    """Test that settings have appropriate default values."""
    with patch.dict(os.environ, {
        'WEBHOOK_SECRET': 'test_secret',
        'LLM_API_KEY': 'test_key',
    }, clear=True):
        from reviewbot.config import Settings
        settings = Settings(_env_file=None)

        assert settings.log_level == 'INFO'
        assert settings.max_workers == 3
        assert settings.max_diff_bytes == 500_000
        assert settings.dedup_ttl_seconds == 86400
        assert settings.rate_limit_per_window == 60
        assert settings.rate_limit_window_ms == 60_000
        assert settings.queue_max_retries == 3
        assert settings.github_api_url == 'https://api.github.com'
        assert settings.github_token is None


def test_settings_requires_webhook_secret():
    """Test that a missing webhook secret is rejected."""
    with patch.dict(os.environ, {'LLM_API_KEY': 'test_key'}, clear=True):
        from reviewbot.config import Settings

        with pytest.raises(ValidationError):
            Settings(_env_file=None)
