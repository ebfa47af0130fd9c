import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from types import MappingProxyType
from typing import Any, Mapping

from app.exceptions import ActionForbiddenError, ConfirmationRequiredError, InvalidDataError
from app.repos.config_override import ConfigOverrideRepo
from settings import settings
from settings.settings import TokenRefreshSettings

MODIFIABLE_KEYS = frozenset(
    {
        "timing.proactive_refresh_minutes",
        "timing.background_refresh_minutes",
        "timing.max_retry_attempts",
        "notifications.throttle_hours",
        "rate_limiting.max_attempts_per_hour",
        "features.proactive_refresh",
        "features.live_validation",
        "features.automatic_recovery",
    }
)

CONFIRMATION_REQUIRED_KEYS = frozenset(
    {
        "features.proactive_refresh",
        "features.automatic_recovery",
        "timing.proactive_refresh_minutes",
    }
)

VALUE_BOUNDS: dict[str, tuple[int, int]] = {
    "timing.proactive_refresh_minutes": (1, 60),
    "timing.background_refresh_minutes": (5, 120),
    "timing.max_retry_attempts": (1, 10),
    "notifications.throttle_hours": (1, 168),
    "rate_limiting.max_attempts_per_hour": (1, 100),
}

# Settings in integer sections that are flags.
BOOLEAN_KEYS = frozenset(
    {
        "notifications.enabled",
        "notifications.escalate_to_admin",
        "rate_limiting.ip_based_limiting",
    }
)
INTEGER_SECTIONS = ("timing.", "rate_limiting.", "notifications.")

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


def _parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise InvalidDataError(f"{key} expects a boolean, got {value!r}")


def coerce_value(key: str, value: Any) -> bool | int | str:
    """Convert a raw (usually string) value to the type its key stores."""
    if key.startswith("features.") or key in BOOLEAN_KEYS:
        return _parse_bool(key, value)
    if key.startswith(INTEGER_SECTIONS):
        if isinstance(value, bool):
            raise InvalidDataError(f"{key} expects an integer, got {value!r}")
        try:
            return int(str(value).strip())
        except ValueError:
            raise InvalidDataError(f"{key} expects an integer, got {value!r}")
    return str(value)


def _serialize(value: bool | int | str) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class ConfigSnapshot:
    """Immutable view of the token refresh configuration.

    One snapshot is taken per scheduler tick or request so a concurrent change never splits an
    operation between two configurations.
    """

    values: Mapping[str, Any]

    def get(self, key: str) -> Any:
        if key not in self.values:
            raise InvalidDataError(f"Unknown configuration key: {key}")
        return self.values[key]

    def feature(self, name: str) -> bool:
        return bool(self.get(f"features.{name}"))

    @property
    def proactive_refresh_window(self) -> timedelta:
        return timedelta(minutes=self.get("timing.proactive_refresh_minutes"))

    @property
    def background_refresh_interval(self) -> timedelta:
        return timedelta(minutes=self.get("timing.background_refresh_minutes"))

    @property
    def max_retry_attempts(self) -> int:
        return int(self.get("timing.max_retry_attempts"))

    @property
    def retry_base_delay_seconds(self) -> int:
        return int(self.get("timing.retry_base_delay_seconds"))

    @property
    def lock_ttl(self) -> timedelta:
        return timedelta(seconds=self.get("timing.coordination_lock_ttl"))

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.get("notifications.enabled"))

    @property
    def notification_throttle(self) -> timedelta:
        return timedelta(hours=self.get("notifications.throttle_hours"))

    @property
    def escalate_to_admin(self) -> bool:
        return bool(self.get("notifications.escalate_to_admin"))

    @property
    def max_notification_failures(self) -> int:
        return int(self.get("notifications.max_notification_failures"))

    @property
    def max_manual_tests_per_hour(self) -> int:
        return int(self.get("rate_limiting.max_attempts_per_hour"))


class ConfigService:
    """Runtime-mutable token refresh configuration.

    Defaults come from ``settings.token_refresh``; overrides live in ``config_overrides`` so every
    process picks them up on its next ``reload()``.
    """

    def __init__(self, config_override_repo: ConfigOverrideRepo, defaults: TokenRefreshSettings | None = None) -> None:
        self._logger = logging.getLogger(__name__)
        self._config_override_repo = config_override_repo
        self._defaults = defaults or settings.token_refresh
        self._overrides: dict[str, bool | int | str] = {}
        self._snapshot: ConfigSnapshot | None = None
        self._loaded_at: float | None = None
        self._reload_lock = asyncio.Lock()

    def default_values(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for section, fields in self._defaults.model_dump().items():
            for name, value in fields.items():
                values[f"{section}.{name}"] = value
        return values

    def snapshot(self) -> ConfigSnapshot:
        if self._snapshot is None:
            values = self.default_values()
            values.update(self._overrides)
            self._snapshot = ConfigSnapshot(values=MappingProxyType(values))
        return self._snapshot

    def get(self, key: str) -> Any:
        return self.snapshot().get(key)

    async def ensure_loaded(self) -> ConfigSnapshot:
        """Reload overrides when the cached copy is older than the configured TTL."""
        ttl = self._defaults.admin.cache_ttl_seconds
        if self._loaded_at is None or time.monotonic() - self._loaded_at >= ttl:
            await self.reload()
        return self.snapshot()

    async def reload(self) -> None:
        async with self._reload_lock:
            overrides: dict[str, bool | int | str] = {}
            for row in await self._config_override_repo.get_all():
                if row.key not in MODIFIABLE_KEYS:
                    self._logger.warning(f"Ignoring override for non-modifiable key {row.key}")
                    continue
                try:
                    overrides[row.key] = coerce_value(row.key, row.value)
                except InvalidDataError as e:
                    self._logger.warning(f"Ignoring invalid override for {row.key}: {e.message}")
            self._overrides = overrides
            self._snapshot = None
            self._loaded_at = time.monotonic()

    def clear_cache(self) -> None:
        self._snapshot = None
        self._loaded_at = None
        self._logger.info("Token refresh configuration cache cleared")

    async def set(self, key: str, value: Any, confirmed: bool = False, updated_by: str | None = None) -> Any:
        """Persist an override and return the stored, coerced value."""
        if not self._defaults.admin.allow_runtime_changes:
            raise ActionForbiddenError("Runtime configuration changes are disabled", action="config.set")
        if key not in MODIFIABLE_KEYS:
            raise ActionForbiddenError(f"Configuration key {key} cannot be modified at runtime", action="config.set")
        if key in CONFIRMATION_REQUIRED_KEYS and not confirmed:
            raise ConfirmationRequiredError(f"Changing {key} requires confirmation", action="config.set")

        coerced = coerce_value(key, value)
        bounds = VALUE_BOUNDS.get(key)
        if bounds is not None and isinstance(coerced, int):
            low, high = bounds
            if not low <= coerced <= high:
                raise InvalidDataError(f"{key} must be between {low} and {high}, got {coerced}")

        previous = self.snapshot().get(key)
        await self._config_override_repo.upsert(key, _serialize(coerced), updated_by)
        await self._config_override_repo.commit()

        self._overrides[key] = coerced
        self._snapshot = None
        self._logger.info(f"Configuration {key} changed from {previous!r} to {coerced!r} by {updated_by or 'system'}")
        return coerced

    def validate(self) -> list[str]:
        """Return a description of every setting outside its allowed range."""
        snapshot = self.snapshot()
        errors = []
        for key, (low, high) in VALUE_BOUNDS.items():
            value = snapshot.get(key)
            if not low <= value <= high:
                errors.append(f"{key} must be between {low} and {high}, got {value}")
        if snapshot.retry_base_delay_seconds < 1:
            errors.append("timing.retry_base_delay_seconds must be at least 1")
        if snapshot.get("timing.coordination_lock_ttl") < 1:
            errors.append("timing.coordination_lock_ttl must be at least 1")
        if snapshot.max_notification_failures < 1:
            errors.append("notifications.max_notification_failures must be at least 1")
        return errors

    def summary(self) -> dict[str, Any]:
        snapshot = self.snapshot()
        sections: dict[str, dict[str, Any]] = {}
        for key, value in snapshot.values.items():
            section, name = key.split(".", 1)
            sections.setdefault(section, {})[name] = value
        return {
            "settings": sections,
            "overridden": sorted(self._overrides),
            "modifiable": sorted(MODIFIABLE_KEYS),
            "requires_confirmation": sorted(CONFIRMATION_REQUIRED_KEYS),
            "allow_runtime_changes": self._defaults.admin.allow_runtime_changes,
        }
