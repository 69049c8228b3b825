"""Sanity-backed content repository (GROQ over the HTTP query API)"""
import json
import logging
from typing import Any, Dict, Optional
import httpx

from app.core.config import settings
from app.schemas.content import CourseDefinition, DiscountCodeDefinition, EventDefinition
from app.services.content.base import ContentRepository

logger = logging.getLogger(__name__)

DISCOUNT_CODE_QUERY = """*[_type == "discountCode" && upper(code) == $code][0] {
  _id, code, description, active, discountType, discountValue, currency,
  usageType, maxUses, validFrom, validUntil, minPurchaseAmount,
  appliesToCourses[]-> { _id, title }
}"""

EVENT_QUERY = """*[_type == "event" && _id == $id][0] {
  _id, title, eventDate,
  perks[] { type, title, description, cap, deliveryMode, assetUrl, priorityPlans[]-> { _id, name } },
  recording { url, availableUntil, replayDurationDays, replayByPlan[] { durationDays, tier-> { _id, name } } }
}"""

COURSE_QUERY = """*[_type == "course" && _id == $id][0] {
  _id, title, price, startDate, dripEnabled, defaultDripDays, includedInMembership,
  membershipTiers[]-> { _id, name },
  modules[]-> | order(order asc) {
    _id, title, unlockDate,
    lessons[]-> | order(order asc) { _id, title, order, isFreePreview, dripMode, dripOffsetDays, availableAt }
  }
}"""


class SanityContentRepository(ContentRepository):
    def __init__(self, project_id: str = None, dataset: str = None, api_version: str = None, token: str = None):
        self.project_id = project_id or settings.SANITY_PROJECT_ID
        self.dataset = dataset or settings.SANITY_DATASET
        self.api_version = api_version or settings.SANITY_API_VERSION
        self.token = token if token is not None else settings.SANITY_API_TOKEN

    @property
    def query_url(self) -> str:
        return f"https://{self.project_id}.api.sanity.io/v{self.api_version}/data/query/{self.dataset}"

    def fetch(self, query: str, params: Dict[str, Any]) -> Any:
        """Run a GROQ query and return its `result`

        Raises:
            httpx.HTTPError: If Sanity cannot be reached or answers with an error
        """
        query_params = {"query": query}
        for key, value in params.items():
            query_params[f"${key}"] = json.dumps(value)

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        response = httpx.get(self.query_url, params=query_params, headers=headers, timeout=10.0)
        response.raise_for_status()
        return response.json().get("result")

    def get_discount_code(self, code: str) -> Optional[DiscountCodeDefinition]:
        result = self.fetch(DISCOUNT_CODE_QUERY, {"code": code.upper()})
        return DiscountCodeDefinition.model_validate(result) if result else None

    def get_event(self, event_id: str) -> Optional[EventDefinition]:
        result = self.fetch(EVENT_QUERY, {"id": event_id})
        return EventDefinition.model_validate(result) if result else None

    def get_course(self, course_id: str) -> Optional[CourseDefinition]:
        result = self.fetch(COURSE_QUERY, {"id": course_id})
        return CourseDefinition.model_validate(result) if result else None
