"""In-memory content repository loaded from a JSON catalog"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from app.schemas.content import CourseDefinition, DiscountCodeDefinition, EventDefinition
from app.services.content.base import ContentRepository

logger = logging.getLogger(__name__)


class StaticContentRepository(ContentRepository):
    """Catalog shaped as {"discountCodes": [...], "events": [...], "courses": [...]}"""

    def __init__(self, catalog: Optional[Dict[str, Any]] = None):
        catalog = catalog or {}
        self.discount_codes = {
            d.code.upper(): d
            for d in (DiscountCodeDefinition.model_validate(raw) for raw in catalog.get("discountCodes", []))
        }
        self.events = {
            e.id: e for e in (EventDefinition.model_validate(raw) for raw in catalog.get("events", []))
        }
        self.courses = {
            c.id: c for c in (CourseDefinition.model_validate(raw) for raw in catalog.get("courses", []))
        }

    @classmethod
    def from_file(cls, path: str) -> "StaticContentRepository":
        catalog_path = Path(path)
        if not catalog_path.exists():
            logger.warning(f"Content catalog {path} not found, starting with an empty catalog")
            return cls({})
        with catalog_path.open(encoding="utf-8") as f:
            return cls(json.load(f))

    def get_discount_code(self, code: str) -> Optional[DiscountCodeDefinition]:
        return self.discount_codes.get(code.upper())

    def get_event(self, event_id: str) -> Optional[EventDefinition]:
        return self.events.get(event_id)

    def get_course(self, course_id: str) -> Optional[CourseDefinition]:
        return self.courses.get(course_id)
