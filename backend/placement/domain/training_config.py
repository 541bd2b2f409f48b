from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from ..models import TrainingType

TRAINING_CONFIG_KEY = "training_config"


class TrainingConfig(BaseModel):
    required_minutes: int = Field(default=1260, ge=0)
    min_daily_minutes: int = Field(default=120, ge=0)
    max_daily_minutes: int = Field(default=480, ge=0)
    cancellation_deadline_hours: int = Field(default=24, ge=0)
    booking_visibility_hours: int = Field(default=12, ge=0)
    max_students_per_slot: int = Field(default=5, ge=1, le=20)
    lottery_training_types: list[TrainingType] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_daily_bounds(self) -> "TrainingConfig":
        if self.min_daily_minutes > self.max_daily_minutes:
            raise ValueError("min_daily_minutes must not exceed max_daily_minutes")
        return self

    def is_lottery_mode(self, training_type: TrainingType) -> bool:
        return training_type in self.lottery_training_types
