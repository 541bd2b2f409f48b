from __future__ import annotations

from ..domain.repositories import SettingsRepository
from ..domain.training_config import TRAINING_CONFIG_KEY, TrainingConfig


async def get_training_config(settings_repo: SettingsRepository) -> TrainingConfig:
    setting = await settings_repo.get(TRAINING_CONFIG_KEY)
    if setting is None:
        return TrainingConfig()
    # Unknown keys from older documents are ignored; missing keys take defaults.
    return TrainingConfig.model_validate(setting.value or {})


async def update_training_config(settings_repo: SettingsRepository, *, config: TrainingConfig) -> TrainingConfig:
    await settings_repo.put(TRAINING_CONFIG_KEY, config.model_dump(mode="json"))
    return config
