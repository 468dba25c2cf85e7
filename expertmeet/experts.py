from __future__ import annotations

import logging
from typing import Optional

from .db.repository import ProfileRepository
from .schemas import Expert, ProviderProfile

logger = logging.getLogger(__name__)

DEFAULT_RATING = 4.5
PLACEHOLDER_IMAGE = "/placeholder.svg"


def to_expert(provider: ProviderProfile) -> Expert:
    return Expert(
        id=provider.id,
        name=provider.name,
        specialty=provider.specialty or "",
        category=provider.category,
        rating=provider.rating or DEFAULT_RATING,
        image=provider.image_url or PLACEHOLDER_IMAGE,
        years_experience=provider.years_experience,
    )


class ExpertDirectory:
    """Lets clients find a provider to book."""

    def __init__(self, profiles: ProfileRepository, recommended_count: int = 3) -> None:
        self.profiles = profiles
        self.recommended_count = recommended_count

    def search(self, term: Optional[str] = None, category: Optional[str] = None) -> list[Expert]:
        term = (term or "").strip() or None
        providers = self.profiles.search_providers(term, category)
        logger.info("Expert search term=%r category=%r matched %s providers", term, category, len(providers))
        return [to_expert(provider) for provider in providers]

    def recommended(self) -> list[Expert]:
        return [to_expert(provider) for provider in self.profiles.top_rated_providers(self.recommended_count)]
