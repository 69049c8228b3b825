"""Abstract read-only contract for the content repository"""
from abc import ABC, abstractmethod
from typing import Optional

from app.schemas.content import CourseDefinition, DiscountCodeDefinition, EventDefinition


class ContentRepository(ABC):
    """Product, event and course definitions authored outside this service.

    Implementations only read; nothing in the payments backend writes to
    the content repository.
    """

    @abstractmethod
    def get_discount_code(self, code: str) -> Optional[DiscountCodeDefinition]:
        """Look up a discount code by its (upper-cased) code string"""
        pass

    @abstractmethod
    def get_event(self, event_id: str) -> Optional[EventDefinition]:
        """Event with its perks and recording configuration"""
        pass

    @abstractmethod
    def get_course(self, course_id: str) -> Optional[CourseDefinition]:
        """Course with modules, lessons, drip settings and membership inclusion"""
        pass
