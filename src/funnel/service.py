"""Review funnel use-cases: accounts, business provisioning and feedback."""

from __future__ import annotations

import logging
import math
import sqlite3
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping

from config import CFG, Config
from funnel.analytics import compute_analytics
from funnel.auth import MIN_PASSWORD_LENGTH, hash_password, issue_token, verify_password, verify_token
from funnel.discounts import discount_expiry, format_expiry_label, generate_discount_code
from funnel.flow import ROUTE_EXTERNAL_REVIEW, route_for_rating
from funnel.mirror import FeedbackMirror
from funnel.models import MAX_RATING, MIN_RATING, Account, ReviewSubmission, TenantConfig
from funnel.plans import DEFAULT_STATUS, DEFAULT_TIER, business_limit_for, normalize_tier
from funnel.records import (
    FLAG_DISCOUNT_PERCENTAGE,
    FLAG_DISCOUNT_VALID_DAYS,
    FLAG_REVIEW_THRESHOLD,
    normalize_flags,
    tenant_config_from_row,
    tenant_config_to_dict,
)
from funnel.repository import FunnelRepository
from funnel.slugs import FALLBACK_SLUG, get_unique_slug, public_review_url, slugify


logger = logging.getLogger(__name__)

BUSINESS_LIMIT_MESSAGE = (
    "You have reached the limit of businesses for your plan. Upgrade to add more businesses."
)


class FunnelError(RuntimeError):
    """Base review funnel domain error."""


class ValidationError(FunnelError):
    """Raised when input is missing or malformed."""


class AuthenticationError(FunnelError):
    """Raised when the caller is not (or no longer) signed in."""


class AccessDeniedError(FunnelError):
    """Raised when the caller may not perform the operation."""


class NotFoundError(FunnelError):
    """Raised when the target record does not exist."""


class ConflictError(FunnelError):
    """Raised when a unique record already exists."""


class UpstreamError(FunnelError):
    """Raised when a third-party API fails."""


def parse_rating(value: Any) -> int | None:
    """Integral rating in [1, 5] from int, numeric string or integral float."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        number = float(value)
    elif isinstance(value, float):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number) or not number.is_integer():
        return None
    rating = int(number)
    if not MIN_RATING <= rating <= MAX_RATING:
        return None
    return rating


def parse_business_id(value: Any) -> int | None:
    """Positive integer id from an int, integral float or digit string; else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not value.is_integer():
            return None
        number = int(value)
    elif isinstance(value, str) and value.strip().isdecimal():
        number = int(value.strip())
    else:
        return None
    return number if number > 0 else None


def _optional_text(value: Any) -> str | None:
    text = str(value or "").strip()
    return text or None


def account_from_row(row: Mapping[str, Any]) -> Account:
    return Account(
        id=int(row["id"]),
        email=str(row["email"]),
        name=row.get("name"),
        subscription_tier=normalize_tier(row.get("subscription_tier")),
        subscription_status=str(row.get("subscription_status") or DEFAULT_STATUS),
        created_at=str(row.get("created_at") or ""),
    )


def account_to_dict(account: Account) -> dict[str, Any]:
    return {
        "id": account.id,
        "email": account.email,
        "name": account.name,
        "subscriptionTier": account.subscription_tier,
        "subscriptionStatus": account.subscription_status,
        "createdAt": account.created_at,
    }


def business_to_dict(row: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": int(row["id"]),
        "slug": row["slug"],
        "name": row.get("name"),
        "category": row.get("category"),
        "placeId": row.get("place_id"),
        "googleMapsUrl": row.get("google_maps_url"),
        "heroImage": row.get("hero_image"),
        "logoUrl": row.get("logo_url"),
        "config": dict(row.get("config") or {}),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }


def review_from_row(row: Mapping[str, Any]) -> ReviewSubmission:
    return ReviewSubmission(
        id=int(row["id"]),
        business_id=int(row["business_id"]),
        rating=int(row["rating"]),
        name=row.get("name"),
        comments=str(row.get("comments") or ""),
        submitted_at=str(row.get("submitted_at") or ""),
    )


def review_to_dict(review: ReviewSubmission) -> dict[str, Any]:
    return {
        "id": review.id,
        "rating": review.rating,
        "name": review.name,
        "comments": review.comments,
        "submittedAt": review.submitted_at,
    }


async def _require_owned_business(
    repository: FunnelRepository,
    owner: Account,
    slug: str,
) -> dict[str, Any]:
    if not slug:
        raise ValidationError("Slug is required")
    business = await repository.get_business_by_slug(slug)
    if not business:
        raise NotFoundError("Business not found")
    if int(business["user_id"]) != int(owner.id):
        raise AccessDeniedError("Access denied")
    return business


class AccountService:
    """Registration, login and session verification."""

    def __init__(self, repository: FunnelRepository, config: Config | None = None) -> None:
        self.repository = repository
        self.config = config or CFG

    def issue_token(self, account: Account) -> str:
        return issue_token(
            user_id=account.id,
            email=account.email,
            subscription_tier=account.subscription_tier,
            secret_key=self.config.secret_key,
            ttl_days=self.config.session_ttl_days,
        )

    async def register(
        self,
        email: str | None,
        password: str | None,
        name: str | None = None,
    ) -> tuple[Account, str]:
        normalized_email = str(email or "").strip().lower()
        if not normalized_email or not password:
            raise ValidationError("Email and password are required")
        if "@" not in normalized_email:
            raise ValidationError("Invalid email address")
        if len(str(password)) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        try:
            row = await self.repository.create_user(
                email=normalized_email,
                password_hash=hash_password(str(password)),
                name=_optional_text(name),
                tier=DEFAULT_TIER,
                status=DEFAULT_STATUS,
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError("User with this email already exists") from exc

        account = account_from_row(row)
        logger.info("Registered account id=%s email=%s", account.id, account.email)
        return account, self.issue_token(account)

    async def login(self, email: str | None, password: str | None) -> tuple[Account, str]:
        normalized_email = str(email or "").strip().lower()
        if not normalized_email or not password:
            raise ValidationError("Email and password are required")
        row = await self.repository.get_user_by_email(normalized_email)
        if not row or not verify_password(str(password), str(row.get("password_hash") or "")):
            logger.info("Failed login for %s", normalized_email)
            raise AuthenticationError("Invalid email or password")
        account = account_from_row(row)
        return account, self.issue_token(account)

    async def verify(self, token: str | None) -> Account:
        payload = verify_token(token, self.config.secret_key)
        if not payload:
            raise AuthenticationError("Not authenticated")
        try:
            user_id = int(payload["userId"])
        except (TypeError, ValueError) as exc:
            raise AuthenticationError("Not authenticated") from exc
        row = await self.repository.get_user(user_id)
        if not row:
            raise AuthenticationError("Not authenticated")
        return account_from_row(row)


class ProvisioningService:
    """Business creation, listing and static config export."""

    def __init__(self, repository: FunnelRepository, config: Config | None = None) -> None:
        self.repository = repository
        self.config = config or CFG

    @staticmethod
    def _validated_flags(raw: Any) -> dict[str, Any]:
        if raw is None:
            raw = {}
        if not isinstance(raw, Mapping):
            raise ValidationError("config must be an object")

        threshold = raw.get(FLAG_REVIEW_THRESHOLD)
        if threshold is not None and parse_rating(threshold) is None:
            raise ValidationError("review_threshold must be an integer from 1 to 5")
        for key in (FLAG_DISCOUNT_PERCENTAGE, FLAG_DISCOUNT_VALID_DAYS):
            value = raw.get(key)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float, str)):
                raise ValidationError(f"{key} must be a positive number")
            try:
                number = float(value)
            except ValueError as exc:
                raise ValidationError(f"{key} must be a positive number") from exc
            if not math.isfinite(number) or number <= 0:
                raise ValidationError(f"{key} must be a positive number")
        return normalize_flags(raw)

    async def create_business(
        self,
        owner: Account,
        *,
        name: str | None,
        place_id: str | None,
        category: str | None = None,
        google_maps_url: str | None = None,
        hero_image: str | None = None,
        logo_url: str | None = None,
        config: Mapping[str, Any] | None = None,
        host: str | None = None,
    ) -> dict[str, Any]:
        business_name = str(name or "").strip()
        place = str(place_id or "").strip()
        if not business_name or not place:
            raise ValidationError("Business name and place ID are required")

        limit = business_limit_for(owner.subscription_tier)
        if limit is not None:
            owned = await self.repository.count_businesses_for_user(owner.id)
            if owned >= limit:
                raise AccessDeniedError(BUSINESS_LIMIT_MESSAGE)

        flags = self._validated_flags(config)
        base_slug = slugify(business_name) or FALLBACK_SLUG
        existing = await self.repository.list_slugs_with_base(base_slug)
        slug = get_unique_slug(base_slug, existing)

        try:
            business = await self.repository.create_business(
                user_id=owner.id,
                slug=slug,
                place_id=place,
                name=business_name,
                category=_optional_text(category),
                google_maps_url=_optional_text(google_maps_url),
                hero_image=_optional_text(hero_image),
                logo_url=_optional_text(logo_url),
                config=flags,
            )
        except sqlite3.IntegrityError as exc:
            logger.warning("Slug race while creating %r for user=%s (slug=%s)", business_name, owner.id, slug)
            raise ConflictError("A business with this URL was just created. Please try again.") from exc

        review_url = public_review_url(slug, host, self.config.base_domain)
        logger.info("Business created slug=%s owner=%s url=%s", slug, owner.id, review_url)
        return {"business": business_to_dict(business), "reviewUrl": review_url}

    async def list_businesses(self, owner: Account) -> list[dict[str, Any]]:
        rows = await self.repository.list_businesses_for_user(owner.id)
        return [business_to_dict(row) for row in rows]

    async def export_static_configs(self) -> dict[str, dict[str, Any]]:
        """slug -> exported config, loadable by StaticConfigProvider."""
        rows = await self.repository.list_all_businesses()
        exported: dict[str, dict[str, Any]] = {}
        for row in rows:
            tenant = tenant_config_from_row(row, self.config.google_review_base_url)
            exported[tenant.slug] = tenant_config_to_dict(tenant)
        return exported


@dataclass(frozen=True)
class FeedbackOutcome:
    business_slug: str
    stored: bool
    review_id: int | None = None
    redirect_url: str | None = None
    discount_code: str | None = None
    discount_percentage: int | None = None
    discount_expiry: date | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": True, "reviewId": self.review_id}
        if not self.stored:
            data["redirectUrl"] = self.redirect_url
        if self.discount_code is not None and self.discount_expiry is not None:
            data["discount"] = {
                "code": self.discount_code,
                "percentage": self.discount_percentage,
                "expiresOn": self.discount_expiry.isoformat(),
                "expiresLabel": format_expiry_label(self.discount_expiry),
            }
        return data


class FeedbackService:
    """Feedback ingestion, owner review listing and analytics."""

    def __init__(
        self,
        repository: FunnelRepository,
        config: Config | None = None,
        mirror: FeedbackMirror | None = None,
    ) -> None:
        self.repository = repository
        self.config = config or CFG
        self.mirror = mirror or FeedbackMirror(timeout_sec=self.config.mirror_timeout_sec)

    async def _find_business(self, business_slug: Any, business_id: Any) -> dict[str, Any] | None:
        if business_id not in (None, ""):
            parsed_id = parse_business_id(business_id)
            if parsed_id is None:
                return None
            return await self.repository.get_business_by_id(parsed_id)
        return await self.repository.get_business_by_slug(str(business_slug).strip().lower())

    async def submit(
        self,
        *,
        business_slug: Any = None,
        business_id: Any = None,
        rating: Any = None,
        name: Any = None,
        comments: Any = None,
        today: date | None = None,
    ) -> FeedbackOutcome:
        if not str(business_slug or "").strip() and business_id in (None, ""):
            raise ValidationError("businessSlug or businessId is required")

        business = await self._find_business(business_slug, business_id)
        if not business:
            raise NotFoundError("Business not found")
        tenant = tenant_config_from_row(business, self.config.google_review_base_url)

        parsed_rating = parse_rating(rating)
        if parsed_rating is None:
            raise ValidationError("Invalid rating")

        if route_for_rating(parsed_rating, tenant.review_threshold) == ROUTE_EXTERNAL_REVIEW:
            logger.info("Rating %s for %s routed to external review", parsed_rating, tenant.slug)
            return FeedbackOutcome(
                business_slug=tenant.slug,
                stored=False,
                redirect_url=tenant.review_url or None,
            )

        comment_text = str(comments or "").strip()
        if not comment_text:
            raise ValidationError("Comments are required")
        customer_name = _optional_text(name)

        review = await self.repository.create_review(
            business_id=int(business["id"]),
            rating=parsed_rating,
            name=customer_name,
            comments=comment_text,
        )

        code = expiry = None
        if tenant.discount_enabled:
            code = generate_discount_code(customer_name, tenant.discount_valid_days, today)
            expiry = discount_expiry(tenant.discount_valid_days, today)

        if tenant.feedback_sink_url:
            self.mirror.schedule(
                tenant.feedback_sink_url,
                self._mirror_payload(tenant, review, discount_code=code, expiry=expiry),
            )

        logger.info("Feedback stored id=%s business=%s rating=%s", review["id"], tenant.slug, parsed_rating)
        return FeedbackOutcome(
            business_slug=tenant.slug,
            stored=True,
            review_id=int(review["id"]),
            discount_code=code,
            discount_percentage=tenant.discount_percentage if code else None,
            discount_expiry=expiry,
        )

    @staticmethod
    def _mirror_payload(
        tenant: TenantConfig,
        review: Mapping[str, Any],
        *,
        discount_code: str | None,
        expiry: date | None,
    ) -> dict[str, Any]:
        return {
            "business_slug": tenant.slug,
            "business_name": tenant.name,
            "business_category": tenant.category,
            "place_id": tenant.google_place_id,
            "map_url": tenant.google_maps_url,
            "rating": int(review["rating"]),
            "name": review.get("name") or "",
            "comments": review["comments"],
            "discount_code": discount_code or "",
            "discount_percentage": tenant.discount_percentage if discount_code else "",
            "discount_valid_days": tenant.discount_valid_days if discount_code else "",
            "discount_expiry_date": expiry.isoformat() if expiry else "",
            "submitted_at": review["submitted_at"],
        }

    async def list_reviews(self, owner: Account, slug: str) -> dict[str, Any]:
        business = await _require_owned_business(self.repository, owner, slug)
        tenant = tenant_config_from_row(business, self.config.google_review_base_url)
        rows = await self.repository.list_reviews(int(business["id"]), below_rating=tenant.review_threshold)
        return {
            "businessName": business.get("name"),
            "reviews": [review_to_dict(review_from_row(row)) for row in rows],
        }

    async def analytics(self, owner: Account, slug: str, *, today: date | None = None) -> dict[str, Any]:
        business = await _require_owned_business(self.repository, owner, slug)
        tenant = tenant_config_from_row(business, self.config.google_review_base_url)
        rows = await self.repository.list_review_ratings(
            int(business["id"]),
            below_rating=tenant.review_threshold,
        )
        return {
            "businessName": business.get("name"),
            "analytics": compute_analytics(rows, today=today),
        }
