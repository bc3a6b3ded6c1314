"""Customer-facing review flow.

States:
    RATING_SELECTION -> HIGH_RATING_REDIRECT -> THANK_YOU
    RATING_SELECTION -> FOLLOWUP_FEEDBACK    -> THANK_YOU

The high-rating branch cannot observe whether the customer actually posted a
public review. When the page regains the foreground after the redirect (or is
reloaded with the pending flag in durable storage) the flow optimistically
assumes the review was posted and moves to THANK_YOU. A short debounce ignores
quick tab switches, and pending flags older than the return window are dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Protocol
from urllib.parse import quote

from config import Config
from funnel.discounts import discount_expiry, format_expiry_label, generate_discount_code
from funnel.models import MAX_RATING, MIN_RATING, TenantConfig


logger = logging.getLogger(__name__)

STORAGE_WAITING_KEY = "reviewToolWaitingReturn"
STORAGE_RATING_KEY = "reviewToolRating"
STORAGE_SINCE_KEY = "reviewToolWaitingSince"

DEFAULT_DEBOUNCE = timedelta(milliseconds=500)
DEFAULT_RETURN_WINDOW = timedelta(hours=24)

ROUTE_EXTERNAL_REVIEW = "external_review"
ROUTE_PRIVATE_FEEDBACK = "private_feedback"

RATING_REQUIRED_MESSAGE = "Please select a star rating to continue."
INVALID_RATING_MESSAGE = "Please pick a rating from 1 to 5 stars."
COMMENTS_REQUIRED_MESSAGE = "Please share your feedback before submitting."
REVIEW_LINK_MISSING_MESSAGE = (
    "Google review link missing. Add a Google Place ID or review URL to the business config."
)

THANK_YOU_DISCOUNT_MESSAGE = (
    "We really appreciate you taking the time to help us improve. "
    "As a token of our gratitude, here is a discount code just for you!"
)
THANK_YOU_PLAIN_MESSAGE = (
    "We really appreciate you taking the time to help us improve. "
    "Your feedback directly shapes how we serve our community."
)


class FlowState(str, Enum):
    RATING_SELECTION = "rating_selection"
    HIGH_RATING_REDIRECT = "high_rating_redirect"
    FOLLOWUP_FEEDBACK = "followup_feedback"
    THANK_YOU = "thank_you"


def route_for_rating(rating: int, threshold: int) -> str:
    """External review at/above the threshold, private feedback below it."""
    return ROUTE_EXTERNAL_REVIEW if int(rating) >= int(threshold) else ROUTE_PRIVATE_FEEDBACK


class FlowStorage(Protocol):
    """Durable client-side key/value storage (localStorage semantics)."""

    def get_item(self, key: str) -> str | None:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class IssuedDiscount(Protocol):
    """Discount attached to a stored submission (see FeedbackOutcome)."""

    discount_code: str | None
    discount_percentage: int | None
    discount_expiry: date | None


class MemoryFlowStorage:
    """Dict-backed storage; survives flow instances like a browser's storage."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = str(value)

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


@dataclass(frozen=True)
class ShareLinks:
    whatsapp_url: str
    sms_url: str
    copy_link_url: str


@dataclass(frozen=True)
class ThankYouView:
    message: str
    discount_code: str | None = None
    discount_percentage: int | None = None
    discount_expiry: date | None = None
    discount_expiry_label: str = ""
    share: ShareLinks | None = None

    @property
    def has_discount(self) -> bool:
        return self.discount_code is not None


def build_share_links(business_name: str, percentage: int, page_url: str) -> ShareLinks:
    whatsapp_text = f"Check out {business_name}! Leave a quick review and get {percentage}% off: {page_url} 🎁"
    sms_text = f"Hey! Leave a review for {business_name} and get {percentage}% off: {page_url}"
    return ShareLinks(
        whatsapp_url=f"https://wa.me/?text={quote(whatsapp_text, safe='')}",
        sms_url=f"sms:?&body={quote(sms_text, safe='')}",
        copy_link_url=page_url,
    )


def build_thank_you(
    config: TenantConfig,
    customer_name: str | None,
    *,
    page_url: str = "",
    today: date | None = None,
    issued: IssuedDiscount | None = None,
) -> ThankYouView:
    """Thank-you screen contents: discount + sharing only when discounts are on.

    With `issued` (outcome of the stored submission) its discount is shown
    unchanged and nothing is generated locally.
    """
    if issued is not None:
        if issued.discount_code is None or issued.discount_expiry is None:
            return ThankYouView(message=THANK_YOU_PLAIN_MESSAGE)
        code = issued.discount_code
        percentage = issued.discount_percentage or config.discount_percentage
        expiry = issued.discount_expiry
    elif not config.discount_enabled:
        return ThankYouView(message=THANK_YOU_PLAIN_MESSAGE)
    else:
        code = generate_discount_code(customer_name, config.discount_valid_days, today)
        percentage = config.discount_percentage
        expiry = discount_expiry(config.discount_valid_days, today)

    share = None
    if config.referral_enabled:
        share = build_share_links(config.name, percentage, page_url)
    return ThankYouView(
        message=THANK_YOU_DISCOUNT_MESSAGE,
        discount_code=code,
        discount_percentage=percentage,
        discount_expiry=expiry,
        discount_expiry_label=format_expiry_label(expiry),
        share=share,
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReviewFlow:
    """One customer's pass through the review page."""

    def __init__(
        self,
        config: TenantConfig,
        storage: FlowStorage,
        *,
        page_url: str = "",
        debounce: timedelta = DEFAULT_DEBOUNCE,
        return_window: timedelta = DEFAULT_RETURN_WINDOW,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.config = config
        self.storage = storage
        self.page_url = page_url
        self.debounce = debounce
        self.return_window = return_window
        self.clock = clock

        self.state = FlowState.RATING_SELECTION
        self.selected_rating: int | None = None
        self.customer_name = ""
        self.comments = ""
        self.error = ""
        self.redirect_url: str | None = None
        self.thank_you: ThankYouView | None = None
        self.waiting_for_return = False
        self.confirm_due_at: datetime | None = None

    @classmethod
    def from_settings(
        cls,
        config: TenantConfig,
        storage: FlowStorage,
        settings: Config,
        *,
        page_url: str = "",
        clock: Callable[[], datetime] = _utc_now,
    ) -> ReviewFlow:
        """Flow with debounce and return window taken from app settings."""
        return cls(
            config,
            storage,
            page_url=page_url,
            debounce=timedelta(milliseconds=settings.return_debounce_ms),
            return_window=timedelta(hours=settings.return_window_hours),
            clock=clock,
        )

    # -- rating step --------------------------------------------------------

    def select_rating(self, rating: int) -> bool:
        if self.state is not FlowState.RATING_SELECTION:
            return False
        if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
            self.error = INVALID_RATING_MESSAGE
            return False
        self.selected_rating = rating
        self.error = ""
        return True

    def confirm(self) -> FlowState:
        """Continue from the rating step; returns the resulting state."""
        if self.state is not FlowState.RATING_SELECTION:
            return self.state
        if self.selected_rating is None:
            self.error = RATING_REQUIRED_MESSAGE
            return self.state

        if route_for_rating(self.selected_rating, self.config.review_threshold) == ROUTE_PRIVATE_FEEDBACK:
            self.error = ""
            self.state = FlowState.FOLLOWUP_FEEDBACK
            return self.state

        review_url = self.config.review_url
        if not review_url:
            self.error = REVIEW_LINK_MISSING_MESSAGE
            logger.warning("Tenant %s has no review URL; high rating cannot be forwarded", self.config.slug)
            return self.state

        self.storage.set_item(STORAGE_WAITING_KEY, "true")
        self.storage.set_item(STORAGE_RATING_KEY, str(self.selected_rating))
        self.storage.set_item(STORAGE_SINCE_KEY, self.clock().isoformat())
        self.error = ""
        self.waiting_for_return = True
        self.redirect_url = review_url
        self.state = FlowState.HIGH_RATING_REDIRECT
        return self.state

    # -- feedback step ------------------------------------------------------

    def submit_feedback(
        self,
        comments: str | None,
        name: str | None = None,
        *,
        outcome: IssuedDiscount | None = None,
    ) -> FlowState:
        """Accept follow-up feedback.

        `outcome` is the ingestion result for this feedback; its discount code
        is the one shown. Without it a code is generated locally.
        """
        if self.state is not FlowState.FOLLOWUP_FEEDBACK:
            if self.state is FlowState.RATING_SELECTION:
                self.error = RATING_REQUIRED_MESSAGE
            return self.state
        cleaned = str(comments or "").strip()
        if not cleaned:
            self.error = COMMENTS_REQUIRED_MESSAGE
            return self.state
        self.comments = cleaned
        self.customer_name = str(name or "").strip()
        self._enter_thank_you(issued=outcome)
        return self.state

    # -- return detection ---------------------------------------------------

    def on_foreground(self, now: datetime | None = None) -> bool:
        """Page became visible/focused; schedule the optimistic confirmation."""
        if not self.waiting_for_return or self.state is not FlowState.HIGH_RATING_REDIRECT:
            return False
        if self.confirm_due_at is None:
            self.confirm_due_at = (now or self.clock()) + self.debounce
        return True

    def on_background(self) -> None:
        """Page hidden again before the debounce elapsed."""
        self.confirm_due_at = None

    def tick(self, now: datetime | None = None) -> bool:
        """Fire a scheduled confirmation once its debounce has elapsed."""
        if self.confirm_due_at is None or not self.waiting_for_return:
            return False
        if (now or self.clock()) < self.confirm_due_at:
            return False
        self._confirm_return()
        return True

    def on_page_load(self, now: datetime | None = None) -> bool:
        """Full reload after the redirect: confirm from durable storage."""
        if self.storage.get_item(STORAGE_WAITING_KEY) != "true":
            return False
        try:
            rating = int(self.storage.get_item(STORAGE_RATING_KEY) or "")
        except ValueError:
            self._clear_storage()
            return False

        since_raw = self.storage.get_item(STORAGE_SINCE_KEY)
        if since_raw:
            try:
                since = datetime.fromisoformat(since_raw)
            except ValueError:
                since = None
            if since is not None and (now or self.clock()) - since > self.return_window:
                logger.info("Dropping stale return flag for %s (set at %s)", self.config.slug, since_raw)
                self._clear_storage()
                return False

        if route_for_rating(rating, self.config.review_threshold) != ROUTE_EXTERNAL_REVIEW:
            self._clear_storage()
            return False

        self.selected_rating = rating
        self._confirm_return()
        return True

    # -- internals ----------------------------------------------------------

    def _clear_storage(self) -> None:
        self.storage.remove_item(STORAGE_WAITING_KEY)
        self.storage.remove_item(STORAGE_RATING_KEY)
        self.storage.remove_item(STORAGE_SINCE_KEY)

    def _confirm_return(self) -> None:
        self.waiting_for_return = False
        self.confirm_due_at = None
        self._clear_storage()
        self._enter_thank_you()

    def _enter_thank_you(self, issued: IssuedDiscount | None = None) -> None:
        self.error = ""
        self.thank_you = build_thank_you(
            self.config,
            self.customer_name,
            page_url=self.page_url,
            today=self.clock().astimezone().date(),
            issued=issued,
        )
        self.state = FlowState.THANK_YOU
