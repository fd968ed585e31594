"""
Load and save the pricing/shipping rule records kept in `system_settings`.

Stored values are merged onto the hard-coded defaults, so a record written by an
older release (or hand-edited with a missing key) still loads. A malformed
record never raises: the defaults are returned and a warning is logged.
"""

import logging
from typing import TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from dropship_engine.models import SystemSetting
from dropship_engine.schemas.config import PricingConfig, ShippingConfig

logger = logging.getLogger(__name__)

PRICING_CONFIG_KEY = "pricing_config"
SHIPPING_CONFIG_KEY = "shipping_config"

ConfigT = TypeVar("ConfigT", bound=BaseModel)


def _load(session: Session, key: str, model: type[ConfigT]) -> ConfigT:
    setting = session.execute(select(SystemSetting).where(SystemSetting.key == key)).scalars().first()
    if setting is None:
        return model()

    if not isinstance(setting.value, dict):
        logger.warning(f"[CONFIG] {key} is not a JSON object; using defaults")
        return model()

    merged = {**model().model_dump(), **setting.value}
    try:
        return model.model_validate(merged)
    except ValidationError as e:
        logger.warning(f"[CONFIG] {key} failed validation; using defaults: {e}")
        return model()


def _save(session: Session, key: str, config: BaseModel, description: str) -> None:
    setting = session.execute(select(SystemSetting).where(SystemSetting.key == key)).scalars().first()
    value = config.model_dump(mode="json")
    if setting is None:
        session.add(SystemSetting(key=key, value=value, description=description))
    else:
        # reassign so the JSON column is flagged dirty
        setting.value = value
    session.commit()


def load_pricing_config(session: Session) -> PricingConfig:
    return _load(session, PRICING_CONFIG_KEY, PricingConfig)


def save_pricing_config(session: Session, config: PricingConfig) -> PricingConfig:
    _save(session, PRICING_CONFIG_KEY, config, "Retail pricing rules")
    return config


def load_shipping_config(session: Session) -> ShippingConfig:
    return _load(session, SHIPPING_CONFIG_KEY, ShippingConfig)


def save_shipping_config(session: Session, config: ShippingConfig) -> ShippingConfig:
    _save(session, SHIPPING_CONFIG_KEY, config, "Customer shipping rules")
    return config
