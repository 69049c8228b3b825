"""Content repository access"""
from typing import Optional

from app.core.config import settings
from app.services.content.base import ContentRepository
from app.services.content.sanity import SanityContentRepository
from app.services.content.static import StaticContentRepository

# Lazy initialization - built on first use from CONTENT_BACKEND
_repository: Optional[ContentRepository] = None


def get_content_repository() -> ContentRepository:
    global _repository
    if _repository is None:
        if settings.CONTENT_BACKEND == "static":
            _repository = StaticContentRepository.from_file(settings.CONTENT_CATALOG_PATH)
        else:
            _repository = SanityContentRepository()
    return _repository


def set_content_repository(repository: Optional[ContentRepository]) -> None:
    """Swap the active repository (None resets to the configured backend)"""
    global _repository
    _repository = repository


__all__ = [
    "ContentRepository",
    "SanityContentRepository",
    "StaticContentRepository",
    "get_content_repository",
    "set_content_repository",
]
