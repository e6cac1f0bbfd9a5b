from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional


class FeatureKey(Enum):
    AUTO_QUALITY = "auto_quality"
    BACKGROUND_REMOVE = "background_remove"
    BACKGROUND_REPLACE = "background_replace"


class ModelType(Enum):
    GENERAL = "General"
    PORTRAIT = "Portrait"
    PRODUCT = "Product"


@dataclass(frozen=True)
class EnhancementRequest:
    feature_key: FeatureKey
    image_url: str
    draft_id: Optional[str] = None
    slot_id: Optional[str] = None
    preset_id: Optional[str] = None
    custom_prompt: Optional[str] = None
    solid_color: Optional[str] = None
    model_type: Optional[ModelType] = None
    params: Dict[str, Any] = field(default_factory=dict)

    def with_image_url(self, image_url: str) -> "EnhancementRequest":
        return replace(self, image_url=image_url)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "feature_key": self.feature_key.value,
            "image_url": self.image_url,
            "draft_id": self.draft_id,
            "slot_id": self.slot_id,
            "preset_id": self.preset_id,
            "custom_prompt": self.custom_prompt,
            "solid_color": self.solid_color,
            "model_type": self.model_type.value if self.model_type else None,
            "params": self.params or None,
        }
        return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    cached: bool = False
    output_url: Optional[str] = None
    request_id: Optional[str] = None
    poll_url: Optional[str] = None
    estimated_time_seconds: Optional[float] = None
