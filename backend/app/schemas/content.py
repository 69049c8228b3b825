"""Pydantic models for definitions read from the content repository

The repository stores documents with camelCase keys and `_id` identifiers;
these models accept that shape and expose snake_case attributes.
"""
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ContentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Reference(ContentModel):
    """Dereferenced document stub (membership tier, course)"""
    id: str = Field(alias="_id")
    name: Optional[str] = None
    title: Optional[str] = None


class DiscountCodeDefinition(ContentModel):
    id: str = Field(alias="_id")
    code: str
    description: Optional[str] = None
    active: bool = True
    discount_type: Literal["percentage", "fixed_amount"]
    discount_value: float
    currency: Optional[str] = None  # Only meaningful for fixed_amount codes
    usage_type: Literal["single_use", "multi_use"] = "multi_use"
    max_uses: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    min_purchase_amount: Optional[float] = None
    applies_to_courses: List[Reference] = []


class PerkDefinition(ContentModel):
    type: str
    title: str
    description: Optional[str] = None
    cap: Optional[int] = None
    priority_plans: List[Reference] = []
    delivery_mode: Literal["automatic", "manual"] = "manual"
    asset_url: Optional[str] = None


class ReplayPlanConfig(ContentModel):
    tier: Optional[Reference] = None
    duration_days: int  # 0 = permanent, bounded only by the recording cutoff


class RecordingDefinition(ContentModel):
    url: Optional[str] = None
    available_until: Optional[datetime] = None
    replay_duration_days: Optional[int] = None
    replay_by_plan: List[ReplayPlanConfig] = []


class EventDefinition(ContentModel):
    id: str = Field(alias="_id")
    title: str
    event_date: datetime
    perks: List[PerkDefinition] = []
    recording: Optional[RecordingDefinition] = None


class LessonDefinition(ContentModel):
    id: str = Field(alias="_id")
    title: Optional[str] = None
    order: Optional[int] = None
    is_free_preview: bool = False
    drip_mode: Optional[Literal["immediate", "offset", "fixed"]] = None
    drip_offset_days: Optional[int] = None
    available_at: Optional[datetime] = None


class ModuleDefinition(ContentModel):
    id: str = Field(alias="_id")
    title: Optional[str] = None
    unlock_date: Optional[datetime] = None
    lessons: List[LessonDefinition] = []


class CourseDefinition(ContentModel):
    id: str = Field(alias="_id")
    title: str
    price: Optional[float] = None
    start_date: Optional[datetime] = None
    drip_enabled: bool = False
    default_drip_days: Optional[int] = None
    included_in_membership: bool = False
    membership_tiers: List[Reference] = []
    modules: List[ModuleDefinition] = []

    def find_lesson(self, lesson_id: str):
        """Locate a lesson, returning (module, lesson, global_index) or None"""
        index = 0
        for module in self.modules:
            for lesson in module.lessons:
                if lesson.id == lesson_id:
                    return module, lesson, index
                index += 1
        return None
