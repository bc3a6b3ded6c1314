"""Domain models used by the review funnel."""

from dataclasses import dataclass
from urllib.parse import quote

from config import DEFAULT_GOOGLE_REVIEW_BASE_URL


DEFAULT_SLUG = "default"
DEFAULT_BUSINESS_NAME = "Review Tool"
DEFAULT_CATEGORY = "Business"
DEFAULT_REFERRAL_MESSAGE = "Invite your friends to also leave a review and get their own discount!"
DEFAULT_DISCOUNT_PERCENTAGE = 10
DEFAULT_DISCOUNT_VALID_DAYS = 30
DEFAULT_REVIEW_THRESHOLD = 5
MIN_RATING = 1
MAX_RATING = 5


@dataclass(slots=True)
class TenantConfig:
    slug: str
    name: str
    category: str = ""
    google_maps_url: str = ""
    google_place_id: str = ""
    hero_image_url: str = ""
    logo_url: str = ""
    google_review_url: str = ""  # Explicit override; derived from place id when empty
    google_review_base_url: str = DEFAULT_GOOGLE_REVIEW_BASE_URL
    discount_enabled: bool = True
    discount_percentage: int = DEFAULT_DISCOUNT_PERCENTAGE
    discount_valid_days: int = DEFAULT_DISCOUNT_VALID_DAYS
    referral_enabled: bool = True
    referral_message: str = DEFAULT_REFERRAL_MESSAGE
    review_threshold: int = DEFAULT_REVIEW_THRESHOLD
    feedback_sink_url: str = ""
    business_id: int | None = None
    owner_id: int | None = None

    @property
    def review_url(self) -> str:
        if self.google_review_url:
            return self.google_review_url
        if self.google_place_id:
            return f"{self.google_review_base_url}{quote(self.google_place_id, safe='')}"
        return ""

    @property
    def is_default(self) -> bool:
        return self.business_id is None and self.slug == DEFAULT_SLUG


def default_tenant_config(google_review_base_url: str = DEFAULT_GOOGLE_REVIEW_BASE_URL) -> TenantConfig:
    """Placeholder config served when a slug has no business record."""
    return TenantConfig(
        slug=DEFAULT_SLUG,
        name=DEFAULT_BUSINESS_NAME,
        category=DEFAULT_CATEGORY,
        google_review_base_url=google_review_base_url,
    )


@dataclass(slots=True)
class Account:
    id: int
    email: str
    name: str | None
    subscription_tier: str
    subscription_status: str
    created_at: str


@dataclass(slots=True)
class ReviewSubmission:
    id: int
    business_id: int
    rating: int
    name: str | None
    comments: str
    submitted_at: str
