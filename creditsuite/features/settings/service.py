"""
Payment and AI platform settings, stored as config store blobs.

Reads merge the stored document over the defaults (gateway by gateway and
platform by platform), so keys added in code appear without a migration.
Stored documents that cannot be read fall back to defaults.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from creditsuite.core.config import settings
from creditsuite.core.errors import ConfigUnavailableError, ValidationError
from creditsuite.features.audit.service import MODULE_MULTI_AI, MODULE_PAYMENTS, record_audit
from creditsuite.features.config_store.service import ConfigStore, get_config_store
from creditsuite.models.settings import (
    SECRET_MASK,
    CreditPackage,
    GatewayConfig,
    MultiAISettings,
    PaymentSettings,
)

logger = logging.getLogger("creditsuite.settings")


def _read(store: ConfigStore, key: str) -> Dict[str, Any]:
    try:
        record = store.get(key)
    except ConfigUnavailableError as exc:
        logger.warning(f"[settings] '{key}' unavailable, using defaults: {exc.message}")
        return {}
    if record is None or not isinstance(record.value, dict):
        return {}
    return record.value


def _merge_section(defaults: Dict[str, Any], saved: Any) -> Dict[str, Any]:
    merged = dict(defaults)
    if isinstance(saved, dict):
        for name, value in saved.items():
            base = merged.get(name)
            if isinstance(base, dict) and isinstance(value, dict):
                merged[name] = {**base, **value}
            else:
                merged[name] = value
    return merged


def get_payment_settings(store: Optional[ConfigStore] = None) -> PaymentSettings:
    store = store or get_config_store()
    defaults = PaymentSettings().model_dump(by_alias=True)
    saved = _read(store, settings.PAYMENT_SETTINGS_KEY)
    merged = {
        **defaults,
        **saved,
        "gateways": _merge_section(defaults["gateways"], saved.get("gateways")),
    }
    try:
        return PaymentSettings.model_validate(merged)
    except PydanticValidationError:
        logger.warning("[settings] stored payment settings malformed, using defaults")
        return PaymentSettings()


def save_gateway_settings(gateways: Dict[str, GatewayConfig], actor_id: str, store: Optional[ConfigStore] = None) -> PaymentSettings:
    store = store or get_config_store()
    current = get_payment_settings(store)
    merged_gateways = {}
    for name, gateway in gateways.items():
        previous = current.gateways.get(name)
        # A masked secret echoed back by the dashboard keeps the stored value
        if previous and gateway.secret_key == SECRET_MASK:
            gateway = gateway.model_copy(update={"secret_key": previous.secret_key})
        merged_gateways[name] = gateway
    updated = current.model_copy(update={"gateways": {**current.gateways, **merged_gateways}})
    store.put(settings.PAYMENT_SETTINGS_KEY, updated.model_dump(by_alias=True), actor_id)
    record_audit(actor_id, "update_payment_settings", MODULE_PAYMENTS, {"updated": "gateways"})
    return updated


def save_credit_packages(packages: List[CreditPackage], actor_id: str, store: Optional[ConfigStore] = None) -> PaymentSettings:
    store = store or get_config_store()
    ids = [package.id for package in packages]
    if len(ids) != len(set(ids)):
        raise ValidationError("Credit package ids must be unique")
    for package in packages:
        if package.credits <= 0 or package.price < 0:
            raise ValidationError(f"Credit package '{package.id}' needs positive credits and a non-negative price")

    current = get_payment_settings(store)
    updated = current.model_copy(update={"packages": list(packages)})
    store.put(settings.PAYMENT_SETTINGS_KEY, updated.model_dump(by_alias=True), actor_id)
    record_audit(actor_id, "update_payment_settings", MODULE_PAYMENTS, {"updated": "packages", "count": len(packages)})
    return updated


def get_multi_ai_settings(store: Optional[ConfigStore] = None) -> MultiAISettings:
    store = store or get_config_store()
    defaults = MultiAISettings().model_dump(by_alias=True)
    saved = _read(store, settings.MULTI_AI_SETTINGS_KEY)
    merged = {
        "platforms": _merge_section(defaults["platforms"], saved.get("platforms")),
        "models": saved.get("models", defaults["models"]),
    }
    try:
        return MultiAISettings.model_validate(merged)
    except PydanticValidationError:
        logger.warning("[settings] stored multi-AI settings malformed, using defaults")
        return MultiAISettings()


def update_multi_ai_settings(new_settings: MultiAISettings, actor_id: str, store: Optional[ConfigStore] = None) -> MultiAISettings:
    store = store or get_config_store()
    current = get_multi_ai_settings(store)
    platforms = {}
    for name, platform in new_settings.platforms.items():
        previous = current.platforms.get(name)
        if previous and platform.api_key == SECRET_MASK:
            platform = platform.model_copy(update={"api_key": previous.api_key})
        platforms[name] = platform
    updated = new_settings.model_copy(update={"platforms": platforms})
    store.put(settings.MULTI_AI_SETTINGS_KEY, updated.model_dump(by_alias=True), actor_id)
    record_audit(
        actor_id,
        "update_multi_ai_settings",
        MODULE_MULTI_AI,
        {"platforms": [name for name, p in updated.platforms.items() if p.enabled]},
    )
    return updated


def mask_payment_settings(value: PaymentSettings) -> Dict[str, Any]:
    data = value.model_dump(by_alias=True)
    for gateway in data["gateways"].values():
        if gateway.get("secretKey"):
            gateway["secretKey"] = SECRET_MASK
    return data


def mask_multi_ai_settings(value: MultiAISettings) -> Dict[str, Any]:
    data = value.model_dump(by_alias=True)
    for platform in data["platforms"].values():
        if platform.get("apiKey"):
            platform["apiKey"] = SECRET_MASK
    return data
