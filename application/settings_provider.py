"""Settings Provider - typed, cached business-rule parameters"""
import json
import logging
import re
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional

from domain.entities import Setting
from domain.enums import SettingStatus, SettingValueType, SpaceType
from domain.repositories import SettingRepository
from domain.value_objects import (
    AutoCompleteSchedule, ReservationRules, TypedSetting, TypeRules,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 60.0

# Global rule keys
MIN_HOURS_BEFORE = "min_hours_before"
OFFICE_OPEN_HOUR = "OFFICE_OPEN_HOUR"
OFFICE_CLOSE_HOUR = "OFFICE_CLOSE_HOUR"
RESERVATION_MIN_MINUTES = "RESERVATION_MIN_MINUTES"
RESERVATION_STEP_MINUTES = "RESERVATION_STEP_MINUTES"
AUTO_COMPLETE_HOUR = "AUTO_COMPLETE_HOUR"
AUTO_COMPLETE_MINUTE = "AUTO_COMPLETE_MINUTE"
LIMIT_ALERT_EMAILS = "limit_alert_emails"

# Per space-type key suffixes, prefixed with the SpaceType value
DAY_HOURS_SUFFIX = "MAX_HOURS_PER_DAY_PER_USER"
WEEK_HOURS_SUFFIX = "MAX_HOURS_PER_WEEK_PER_USER"
DAY_SPACES_SUFFIX = "MAX_SPACES_PER_DAY_PER_USER"
OVERLAPPING_SUFFIX = "MAX_OVERLAPPING_SPACES_PER_USER"

DEFAULT_TYPE_RULES: Dict[SpaceType, TypeRules] = {
    SpaceType.FLEX_DESK: TypeRules(
        max_hours_per_day_per_user=Decimal("4"),
        max_hours_per_week_per_user=Decimal("20"),
        max_spaces_per_day_per_user=2,
        max_overlapping_spaces_per_user=1,
    ),
    SpaceType.FIX_DESK: TypeRules(
        max_hours_per_day_per_user=Decimal("4"),
        max_hours_per_week_per_user=Decimal("15"),
        max_spaces_per_day_per_user=1,
        max_overlapping_spaces_per_user=1,
    ),
    SpaceType.MEETING_ROOM: TypeRules(
        max_hours_per_day_per_user=Decimal("2"),
        max_hours_per_week_per_user=Decimal("6"),
        max_spaces_per_day_per_user=1,
        max_overlapping_spaces_per_user=1,
    ),
}

# Types without their own defaults
FALLBACK_TYPE_RULES = TypeRules(
    max_hours_per_day_per_user=Decimal("8"),
    max_hours_per_week_per_user=Decimal("40"),
    max_spaces_per_day_per_user=99,
    max_overlapping_spaces_per_user=1,
)


def type_rule_key(space_type: SpaceType, suffix: str) -> str:
    return f"{space_type.value}_{suffix}"


def _default_settings() -> List[Setting]:
    settings = [
        Setting(key=MIN_HOURS_BEFORE, value="2", value_type=SettingValueType.NUMBER,
                description="Minimum hours of notice required to book"),
        Setting(key=AUTO_COMPLETE_HOUR, value="2", value_type=SettingValueType.INT,
                description="Hour of day the completion sweep runs"),
        Setting(key=AUTO_COMPLETE_MINUTE, value="0", value_type=SettingValueType.INT,
                description="Minute of hour the completion sweep runs"),
        Setting(key=LIMIT_ALERT_EMAILS, value="admin@coworking.local", value_type=SettingValueType.STRING,
                description="Recipients of limit override alerts, separated by ; or ,"),
    ]
    for space_type, rules in DEFAULT_TYPE_RULES.items():
        settings.extend([
            Setting(key=type_rule_key(space_type, DAY_HOURS_SUFFIX),
                    value=str(rules.max_hours_per_day_per_user), value_type=SettingValueType.NUMBER,
                    description=f"Max hours per day per user ({space_type.value})"),
            Setting(key=type_rule_key(space_type, WEEK_HOURS_SUFFIX),
                    value=str(rules.max_hours_per_week_per_user), value_type=SettingValueType.NUMBER,
                    description=f"Max hours per week per user ({space_type.value})"),
            Setting(key=type_rule_key(space_type, DAY_SPACES_SUFFIX),
                    value=str(rules.max_spaces_per_day_per_user), value_type=SettingValueType.INT,
                    description=f"Max distinct spaces per day per user ({space_type.value})"),
            Setting(key=type_rule_key(space_type, OVERLAPPING_SUFFIX),
                    value=str(rules.max_overlapping_spaces_per_user), value_type=SettingValueType.INT,
                    description=f"Max simultaneous spaces per user ({space_type.value})"),
        ])
    return settings


def _finite_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def parse_setting_value(raw: Optional[str], value_type: SettingValueType, fallback: Any = None) -> Any:
    """Convert a stored raw value to its declared type.

    Missing or malformed values (non-finite numbers, bad JSON, unknown
    booleans) return ``fallback`` instead of raising.
    """
    if raw is None:
        return fallback

    if value_type == SettingValueType.INT:
        number = _finite_decimal(raw)
        if number is None or number != number.to_integral_value():
            return fallback
        return int(number)

    if value_type == SettingValueType.NUMBER:
        number = _finite_decimal(raw)
        return fallback if number is None else number

    if value_type == SettingValueType.BOOL:
        text = str(raw).strip().lower()
        if text in ("true", "1", "yes", "on"):
            return True
        if text in ("false", "0", "no", "off"):
            return False
        return fallback

    if value_type == SettingValueType.JSON:
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return fallback

    return raw


def split_emails(raw: Any) -> List[str]:
    if not raw:
        return []
    return [part.strip() for part in re.split(r"[;,]", str(raw)) if part.strip()]


class SettingsCache:
    """Whole-map cache of ACTIVE settings with a TTL and explicit invalidation"""

    def __init__(self, ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._settings: Optional[Dict[str, Setting]] = None
        self._loaded_at = 0.0

    def get(self) -> Optional[Dict[str, Setting]]:
        if self._settings is None:
            return None
        if self._clock() - self._loaded_at >= self.ttl_seconds:
            self._settings = None
            return None
        return self._settings

    def put(self, settings: Dict[str, Setting]) -> None:
        self._settings = dict(settings)
        self._loaded_at = self._clock()

    def invalidate(self) -> None:
        self._settings = None


class SettingsProvider:
    """Reads typed rule values through a TTL cache; writes invalidate it.

    The provider owns its cache. Whoever constructs the provider decides
    its lifetime; ``main.py`` keeps one per process.
    """

    def __init__(self, repository: SettingRepository, cache: Optional[SettingsCache] = None):
        self.repository = repository
        self.cache = cache or SettingsCache()

    async def _active_map(self) -> Dict[str, Setting]:
        cached = self.cache.get()
        if cached is not None:
            return cached
        settings = await self.repository.find_active_map()
        self.cache.put(settings)
        return settings

    def invalidate(self) -> None:
        self.cache.invalidate()

    # ==================== READS ====================
    async def get(self, keys: Iterable[str]) -> Dict[str, TypedSetting]:
        """Typed values for the requested ACTIVE keys; absent keys are omitted"""
        settings = await self._active_map()
        result = {}
        for key in keys:
            setting = settings.get(key)
            if setting is None:
                continue
            result[key] = TypedSetting(
                value=parse_setting_value(setting.value, setting.value_type),
                value_type=setting.value_type,
            )
        return result

    async def get_value(self, key: str, fallback: Any = None) -> Any:
        setting = (await self._active_map()).get(key)
        if setting is None:
            return fallback
        value = parse_setting_value(setting.value, setting.value_type, fallback)
        return fallback if value is None else value

    async def list_settings(self) -> List[Setting]:
        return await self.repository.find_all()

    async def _number(self, key: str, fallback: Decimal) -> Decimal:
        number = _finite_decimal(await self.get_value(key))
        return fallback if number is None else number

    async def _int(self, key: str, fallback: int, low: int, high: int) -> int:
        number = _finite_decimal(await self.get_value(key))
        if number is None:
            return fallback
        return max(low, min(high, int(number)))

    async def reservation_rules(self) -> ReservationRules:
        defaults = ReservationRules()
        open_hour = await self._int(OFFICE_OPEN_HOUR, defaults.open_hour, 0, 24)
        close_hour = await self._int(OFFICE_CLOSE_HOUR, defaults.close_hour, 0, 24)
        if close_hour <= open_hour:
            logger.warning("Ignoring office hours %s-%s: close must be after open", open_hour, close_hour)
            open_hour, close_hour = defaults.open_hour, defaults.close_hour
        return ReservationRules(
            min_hours_before=await self._number(MIN_HOURS_BEFORE, defaults.min_hours_before),
            open_hour=open_hour,
            close_hour=close_hour,
            min_minutes=await self._int(RESERVATION_MIN_MINUTES, defaults.min_minutes, 1, 24 * 60),
            step_minutes=await self._int(RESERVATION_STEP_MINUTES, defaults.step_minutes, 1, 24 * 60),
        )

    async def type_rules(self, space_type: SpaceType) -> TypeRules:
        """Quota values for a space type, each falling back to the default table"""
        defaults = DEFAULT_TYPE_RULES.get(space_type, FALLBACK_TYPE_RULES)
        return TypeRules(
            max_hours_per_day_per_user=await self._number(
                type_rule_key(space_type, DAY_HOURS_SUFFIX), defaults.max_hours_per_day_per_user),
            max_hours_per_week_per_user=await self._number(
                type_rule_key(space_type, WEEK_HOURS_SUFFIX), defaults.max_hours_per_week_per_user),
            max_spaces_per_day_per_user=await self._int(
                type_rule_key(space_type, DAY_SPACES_SUFFIX), defaults.max_spaces_per_day_per_user, 0, 10 ** 6),
            max_overlapping_spaces_per_user=await self._int(
                type_rule_key(space_type, OVERLAPPING_SUFFIX), defaults.max_overlapping_spaces_per_user, 0, 10 ** 6),
        )

    async def auto_complete_schedule(self) -> AutoCompleteSchedule:
        defaults = AutoCompleteSchedule()
        return AutoCompleteSchedule(
            hour=await self._int(AUTO_COMPLETE_HOUR, defaults.hour, 0, 23),
            minute=await self._int(AUTO_COMPLETE_MINUTE, defaults.minute, 0, 59),
        )

    async def limit_alert_recipients(self) -> List[str]:
        return split_emails(await self.get_value(LIMIT_ALERT_EMAILS))

    # ==================== WRITES ====================
    async def put(
        self,
        key: str,
        value: str,
        value_type: SettingValueType = SettingValueType.STRING,
        description: Optional[str] = None
    ) -> Setting:
        """Create or replace a setting and make it ACTIVE"""
        existing = await self.repository.find_by_key(key)
        setting = Setting(
            key=key,
            value=str(value),
            value_type=value_type,
            status=SettingStatus.ACTIVE,
            description=description if description is not None else (existing.description if existing else None),
        )
        try:
            return await self.repository.save(setting)
        finally:
            self.invalidate()
            logger.info("Setting %s updated", key)

    async def deactivate(self, key: str) -> Optional[Setting]:
        existing = await self.repository.find_by_key(key)
        if existing is None:
            return None
        updated = existing.model_copy(update={"status": SettingStatus.INACTIVE})
        try:
            return await self.repository.save(updated)
        finally:
            self.invalidate()
            logger.info("Setting %s deactivated", key)

    async def ensure_defaults(self) -> int:
        """Seed every default key that is missing; returns how many were created"""
        created = 0
        for setting in _default_settings():
            if await self.repository.find_by_key(setting.key) is None:
                await self.repository.save(setting)
                created += 1
        if created:
            self.invalidate()
            logger.info("Seeded %d default settings", created)
        return created
