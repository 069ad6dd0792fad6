"""Configuration and data validators for Yousei Note."""

import json
import re
from typing import Any
from urllib.parse import urlparse

from .errors import ValidationError


class ConfigValidator:
    """Base class for configuration validators."""

    def validate(self, value: Any) -> Any:
        """Validate and normalize a configuration value.

        Args:
            value: Raw configuration value

        Returns:
            Validated and normalized value

        Raises:
            ValidationError: If validation fails
        """
        raise NotImplementedError


class SyncIntervalValidator(ConfigValidator):
    """Validates auto-sync interval (milliseconds between sync passes)."""

    MIN_INTERVAL = 60 * 1000  # 1 minute
    MAX_INTERVAL = 24 * 60 * 60 * 1000  # 24 hours

    def validate(self, value: Any) -> int:
        try:
            interval = int(value)
        except (ValueError, TypeError):
            raise ValidationError(f"Sync interval must be an integer, got: {value}")

        if interval < self.MIN_INTERVAL:
            raise ValidationError(
                f"Sync interval must be at least {self.MIN_INTERVAL} ms"
            )

        if interval > self.MAX_INTERVAL:
            raise ValidationError(
                f"Sync interval must be at most {self.MAX_INTERVAL} ms (24 hours)"
            )

        return interval


class StoreIdValidator(ConfigValidator):
    """Validates a store identifier (short alphanumeric tenant id)."""

    PATTERN = re.compile(r'^[A-Za-z0-9]{1,32}$')

    def validate(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError(f"Store ID must be a string, got: {type(value)}")

        store_id = value.strip()
        if not self.PATTERN.match(store_id):
            raise ValidationError(
                f"Store ID must be 1-32 alphanumeric characters, got: {value!r}"
            )

        return store_id


class UrlValidator(ConfigValidator):
    """Validates an http(s) endpoint URL."""

    def validate(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError(f"URL must be a string, got: {type(value)}")

        url = value.strip()
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValidationError(f"URL must be an http(s) URL, got: {value!r}")

        return url


class ClientIdValidator(ConfigValidator):
    """Validates a Google OAuth client ID."""

    SUFFIX = '.apps.googleusercontent.com'

    def validate(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError(f"Client ID must be a string, got: {type(value)}")

        client_id = value.strip()

        if not client_id:
            raise ValidationError("Client ID cannot be empty")

        if not client_id.endswith(self.SUFFIX):
            raise ValidationError(
                f"Client ID must end with {self.SUFFIX}, got: {client_id}"
            )

        return client_id


class BooleanValidator(ConfigValidator):
    """Validates boolean values."""

    TRUE_VALUES = {'true', '1', 'yes', 'on', 'enabled'}
    FALSE_VALUES = {'false', '0', 'no', 'off', 'disabled'}

    def validate(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value

        if isinstance(value, str):
            normalized = value.lower().strip()

            if normalized in self.TRUE_VALUES:
                return True

            if normalized in self.FALSE_VALUES:
                return False

            raise ValidationError(
                f"Invalid boolean value: {value}. Expected: true/false, yes/no, 1/0, on/off, enabled/disabled"
            )

        if isinstance(value, int):
            return bool(value)

        raise ValidationError(f"Cannot convert to boolean: {value!r}")


class StringValidator(ConfigValidator):
    """Validates string values with optional constraints."""

    def __init__(self, min_length: int = 0, max_length: int = None, allow_empty: bool = True):
        self.min_length = min_length
        self.max_length = max_length
        self.allow_empty = allow_empty

    def validate(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError(f"Must be a string, got: {type(value)}")

        if not self.allow_empty and not value.strip():
            raise ValidationError("Cannot be empty")

        if len(value) < self.min_length:
            raise ValidationError(
                f"Must be at least {self.min_length} characters, got: {len(value)}"
            )

        if self.max_length is not None and len(value) > self.max_length:
            raise ValidationError(
                f"Must be at most {self.max_length} characters, got: {len(value)}"
            )

        return value


# Registry of validators for known config keys
VALIDATORS = {
    'sync_interval': SyncIntervalValidator(),
    'store_id': StoreIdValidator(),
    'web_app_url': UrlValidator(),
    'client_id': ClientIdValidator(),
    'api_key': StringValidator(allow_empty=False, max_length=256),
    'folder_name': StringValidator(allow_empty=False, max_length=255),
    'enabled': BooleanValidator(),
    'auto_sync': BooleanValidator(),
}


def validate_config_value(key: str, value: Any) -> Any:
    """Validate a configuration value using registered validators.

    Args:
        key: Configuration key
        value: Value to validate

    Returns:
        Validated and normalized value

    Raises:
        ValidationError: If validation fails
    """
    if key in VALIDATORS:
        return VALIDATORS[key].validate(value)

    # Unknown keys pass through unchanged
    return value


def validate_data(data: Any) -> None:
    """Check that ``data`` is present and JSON serializable.

    Raises:
        ValidationError: If data is None or cannot be serialized
    """
    if data is None:
        raise ValidationError("Data cannot be null or undefined")

    try:
        json.dumps(data)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Data must be JSON serializable: {e}")
