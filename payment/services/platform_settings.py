from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from django.conf import settings
from django.db import transaction

from payment.models import PlatformSetting

from .commission import validate_percentage
from .errors import InvalidInputError, ObjectNotFoundError, PaymentConfigurationError

logger = logging.getLogger(__name__)

COMMISSION_KEY = "platform_commission_percentage"


@dataclass(frozen=True)
class CommissionRate:
    percentage: Decimal
    version: Optional[int]
    source: str  # "setting", "default" or "order_override"


class PlatformSettingsService:

    @staticmethod
    def default_commission() -> Decimal:
        raw = getattr(settings, "PLATFORM_DEFAULT_COMMISSION_PERCENTAGE", Decimal("20.00"))
        try:
            return validate_percentage(raw, "PLATFORM_DEFAULT_COMMISSION_PERCENTAGE")
        except InvalidInputError as exc:
            raise PaymentConfigurationError(str(exc)) from exc

    @staticmethod
    def current_commission() -> CommissionRate:
        setting = PlatformSetting.objects.filter(key=COMMISSION_KEY).first()
        if setting is None:
            return CommissionRate(PlatformSettingsService.default_commission(), None, "default")
        try:
            pct = validate_percentage(setting.value, COMMISSION_KEY)
        except InvalidInputError as exc:
            raise PaymentConfigurationError(f"Stored commission setting is invalid: {exc}") from exc
        return CommissionRate(pct, setting.version, "setting")

    @staticmethod
    def commission_for_order(order) -> CommissionRate:
        override = getattr(order, "commission_percentage_override", None)
        if override is not None:
            return CommissionRate(validate_percentage(override), None, "order_override")
        return PlatformSettingsService.current_commission()

    @staticmethod
    @transaction.atomic
    def set_commission_percentage(percentage: Any, updated_by=None) -> CommissionRate:
        pct = validate_percentage(percentage, "commission_percentage")
        setting = PlatformSetting.objects.select_for_update().filter(key=COMMISSION_KEY).first()
        if setting is None:
            setting = PlatformSetting.objects.create(
                key=COMMISSION_KEY,
                value=str(pct),
                description="Platform commission percentage deducted from vendor sales",
                setting_type=PlatformSetting.SettingType.NUMBER,
                is_public=True,
                updated_by=updated_by,
            )
        else:
            previous = setting.value
            setting.value = str(pct)
            setting.version += 1
            setting.updated_by = updated_by
            setting.save(update_fields=["value", "version", "updated_by", "updated_at"])
            logger.info("Commission changed from %s%% to %s%% (v%s)", previous, pct, setting.version)
        return CommissionRate(pct, setting.version, "setting")

    @staticmethod
    def _parse(setting: PlatformSetting) -> Any:
        if setting.setting_type == PlatformSetting.SettingType.NUMBER:
            return Decimal(setting.value)
        if setting.setting_type == PlatformSetting.SettingType.BOOLEAN:
            return setting.value.strip().lower() in {"1", "true", "yes", "on"}
        if setting.setting_type == PlatformSetting.SettingType.JSON:
            return json.loads(setting.value)
        return setting.value

    @staticmethod
    def get_value(key: str, default: Any = None) -> Any:
        setting = PlatformSetting.objects.filter(key=key).first()
        if setting is None:
            return default
        return PlatformSettingsService._parse(setting)

    @staticmethod
    @transaction.atomic
    def set_value(key: str, value: Any, updated_by=None, description: Optional[str] = None) -> PlatformSetting:
        if key == COMMISSION_KEY:
            PlatformSettingsService.set_commission_percentage(value, updated_by=updated_by)
            return PlatformSetting.objects.get(key=key)

        setting = PlatformSetting.objects.select_for_update().filter(key=key).first()
        if setting is None:
            raise ObjectNotFoundError(f"Setting '{key}' not found")

        if setting.setting_type == PlatformSetting.SettingType.JSON and not isinstance(value, str):
            raw = json.dumps(value)
        else:
            raw = str(value)
        setting.value = raw
        try:
            PlatformSettingsService._parse(setting)
        except (ArithmeticError, ValueError) as exc:
            raise InvalidInputError(f"Invalid value for '{key}'") from exc

        setting.version += 1
        setting.updated_by = updated_by
        update_fields = ["value", "version", "updated_by", "updated_at"]
        if description is not None:
            setting.description = description
            update_fields.append("description")
        setting.save(update_fields=update_fields)
        return setting

    @staticmethod
    def list_settings(public_only: bool = False):
        qs = PlatformSetting.objects.all().order_by("key")
        if public_only:
            qs = qs.filter(is_public=True)
        return qs
