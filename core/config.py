# core/config.py
import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

log = logging.getLogger("calbot.config")

_TRUE_VALUES = {"1", "true", "yes", "on"}


class BotConfig:
    """Centralized configuration management for the bot.

    Values come from environment variables (a ``.env`` file is honoured).
    An optional YAML file named by ``CONFIG_FILE`` supplies defaults for any
    key the environment does not set.
    """

    REQUIRED_VARS = ("DISCORD_TOKEN", "CHANNEL_ID", "WEBDAV_URL")

    def __init__(self, env_file: Optional[str] = None):
        load_dotenv(env_file)
        self._file_values: Dict[str, Any] = self._load_config_file()

    def _load_config_file(self) -> Dict[str, Any]:
        config_file = os.getenv("CONFIG_FILE")
        if not config_file:
            return {}

        path = Path(config_file)
        if not path.exists():
            log.warning(f"Config file {path} not found, using environment only")
            return {}

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        return {str(key).upper(): value for key, value in data.items()}

    def _get(self, key: str, default: Any = None) -> Any:
        value = os.getenv(key)
        if value is not None and value != "":
            return value
        return self._file_values.get(key, default)

    def _get_bool(self, key: str, default: bool) -> bool:
        value = self._get(key)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_VALUES

    # Discord Configuration
    @property
    def discord_token(self) -> str:
        return str(self._get("DISCORD_TOKEN", ""))

    @property
    def channel_id(self) -> Optional[int]:
        channel_id = self._get("CHANNEL_ID")
        return int(channel_id) if channel_id else None

    @property
    def guild_id(self) -> Optional[int]:
        guild_id = self._get("GUILD_ID")
        return int(guild_id) if guild_id else None

    # Logging Configuration
    @property
    def log_webhook_url(self) -> Optional[str]:
        return self._get("LOG_WEBHOOK_URL")

    @property
    def log_level(self) -> str:
        return str(self._get("LOG_LEVEL", "INFO")).upper()

    # Calendar Source Configuration
    @property
    def webdav_url(self) -> str:
        return str(self._get("WEBDAV_URL", ""))

    @property
    def webdav_username(self) -> Optional[str]:
        return self._get("WEBDAV_USERNAME")

    @property
    def webdav_password(self) -> Optional[str]:
        return self._get("WEBDAV_PASSWORD")

    @property
    def webdav_path(self) -> str:
        return str(self._get("WEBDAV_PATH", "/"))

    # Calendar Configuration
    @property
    def timezone(self) -> str:
        return str(self._get("TIMEZONE", "Europe/Warsaw"))

    @property
    def lookahead_days(self) -> int:
        return int(self._get("LOOKAHEAD_DAYS", 21))

    @property
    def refresh_interval_hours(self) -> float:
        return float(self._get("REFRESH_INTERVAL_HOURS", 12))

    @property
    def alarm_scan_interval_minutes(self) -> float:
        return float(self._get("ALARM_SCAN_INTERVAL_MINUTES", 5))

    @property
    def upcoming_limit(self) -> int:
        return int(self._get("UPCOMING_LIMIT", 3))

    @property
    def announce_new_events(self) -> bool:
        return self._get_bool("ANNOUNCE_NEW_EVENTS", True)

    @property
    def announce_online(self) -> bool:
        return self._get_bool("ANNOUNCE_ONLINE", False)

    @property
    def skip_malformed_calendars(self) -> bool:
        return self._get_bool("SKIP_MALFORMED_CALENDARS", False)

    @property
    def date_format(self) -> str:
        return str(self._get("DATE_FORMAT", "%a %d.%m.%Y %H:%M"))

    # Runner Token API
    @property
    def token_api_url(self) -> Optional[str]:
        return self._get("TOKEN_API_URL")

    @property
    def token_api_key(self) -> Optional[str]:
        return self._get("TOKEN_API_KEY")

    # HTTP Configuration
    @property
    def http_timeout(self) -> int:
        return int(self._get("HTTP_TIMEOUT", 30))

    @property
    def max_connections(self) -> int:
        return int(self._get("MAX_HTTP_CONNECTIONS", 20))

    @property
    def max_connections_per_host(self) -> int:
        return int(self._get("MAX_HTTP_CONNECTIONS_PER_HOST", 5))

    @property
    def max_retries(self) -> int:
        return int(self._get("MAX_RETRIES", 3))

    @property
    def base_retry_delay(self) -> float:
        return float(self._get("BASE_RETRY_DELAY", 2.0))

    def missing_required_vars(self) -> List[str]:
        return [var for var in self.REQUIRED_VARS if not self._get(var)]

    def validate(self):
        """Validate that required settings are present"""
        missing_vars = self.missing_required_vars()
        if missing_vars:
            error_msg = f"Missing required environment variables: {', '.join(missing_vars)}"
            log.error(error_msg)
            raise ValueError(error_msg)

    def log_configuration(self):
        """Log current configuration (excluding sensitive data)"""
        log.info("Bot Configuration:")
        log.info(f"  Channel ID: {self.channel_id}")
        log.info(f"  WebDAV URL: {self.webdav_url} (path {self.webdav_path})")
        log.info(f"  WebDAV Auth: {'Enabled' if self.webdav_username else 'Disabled'}")
        log.info(f"  Timezone: {self.timezone}")
        log.info(f"  Lookahead: {self.lookahead_days} days")
        log.info(f"  Refresh Interval: {self.refresh_interval_hours} hours")
        log.info(f"  Alarm Scan Interval: {self.alarm_scan_interval_minutes} minutes")
        log.info(f"  Announce New Events: {self.announce_new_events}")
        log.info(f"  Skip Malformed Calendars: {self.skip_malformed_calendars}")
        log.info(f"  Runner Token API: {'Enabled' if self.token_api_url else 'Disabled'}")
        log.info(f"  HTTP Timeout: {self.http_timeout} seconds")
        log.info(f"  Webhook Logging: {'Enabled' if self.log_webhook_url else 'Disabled'}")

# Global configuration instance
config = BotConfig()
