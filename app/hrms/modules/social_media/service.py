"""
Social media hub: campaigns, the content approval workflow, scheduling and connected accounts.
Publishing only records the item as published; nothing is posted to a network.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.hrms.audit import record_event
from app.hrms.db import reload_relationships
from app.hrms.models import User
from app.hrms.tenancy import org_user
from app.hrms.utils import clean, parse_datetime, parse_decimal, parse_int

from app.hrms.modules.notifications.service import notify, notify_many, users_with_permission

from .models import ConnectedSocialAccount, ContentItem, SocialMediaCampaign

logger = logging.getLogger(__name__)

PLATFORMS = ("facebook", "instagram", "twitter", "linkedin", "tiktok", "youtube")
CAMPAIGN_STATUSES = ("planning", "active", "paused", "completed")
CONTENT_TYPES = (
    "social_media_post",
    "blog_article",
    "video_content",
    "graphic_design",
    "campaign_material",
    "newsletter",
    "website_content",
    "advertisement",
)
CONTENT_STATUSES = ("draft", "in_review", "approved", "rejected", "published", "archived")
ACCOUNT_STATUSES = ("connected", "disconnected", "expired", "error")

CONTENT_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"in_review"}),
    "in_review": frozenset({"approved", "rejected"}),
    "rejected": frozenset({"draft"}),
    "approved": frozenset({"published"}),
    "published": frozenset({"archived"}),
    "archived": frozenset(),
}
ENGAGEMENT_FIELDS = ("likes", "shares", "comments", "reach", "clicks")


class SocialMediaError(ValueError):
    pass


def _validate_platforms(value: Any, errors: list[str]) -> None:
    if value is None:
        return
    if not isinstance(value, list):
        errors.append("Platforms must be a list.")
        return
    unknown = [p for p in value if p not in PLATFORMS]
    if unknown:
        errors.append(f"Unknown platform(s): {', '.join(str(p) for p in unknown)}.")


def _validate_assignee(s: Session, payload: dict[str, Any], organization_id: str | None, errors: list[str]) -> None:
    assignee_id = parse_int(payload.get("assigned_to_user_id"))
    if assignee_id and org_user(s, assignee_id, organization_id) is None:
        errors.append("Assignee not found.")


# --- campaigns ---------------------------------------------------------------


def validate_campaign_payload(
    s: Session, payload: dict[str, Any], *, creating: bool, organization_id: str | None = None
) -> list[str]:
    errors: list[str] = []
    if creating or "name" in payload:
        if not clean(payload.get("name")):
            errors.append("Campaign name is required.")
    status = clean(payload.get("status"))
    if status and status not in CAMPAIGN_STATUSES:
        errors.append(f"Status must be one of: {', '.join(CAMPAIGN_STATUSES)}.")
    _validate_platforms(payload.get("platforms"), errors)
    try:
        budget = parse_decimal(payload.get("budget"))
        if budget is not None and budget < 0:
            errors.append("Budget cannot be negative.")
    except ValueError:
        errors.append("Budget must be a number.")
    start = end = None
    try:
        start = parse_datetime(payload.get("start_date"))
        end = parse_datetime(payload.get("end_date"))
    except ValueError:
        errors.append("Dates must be ISO date/times.")
    if start and end and end < start:
        errors.append("End date cannot be before start date.")
    _validate_assignee(s, payload, organization_id, errors)
    return errors


def create_campaign(s: Session, payload: dict[str, Any], *, user: User) -> SocialMediaCampaign:
    campaign = SocialMediaCampaign(
        name=clean(payload.get("name")) or "",
        description=clean(payload.get("description")),
        objective=clean(payload.get("objective")),
        target_audience=clean(payload.get("target_audience")),
        platforms=list(payload.get("platforms") or []),
        budget=parse_decimal(payload.get("budget")),
        start_date=parse_datetime(payload.get("start_date")),
        end_date=parse_datetime(payload.get("end_date")),
        status=clean(payload.get("status")) or "planning",
        created_by_user_id=user.id,
        organization_id=user.organization_id,
        assigned_to_user_id=parse_int(payload.get("assigned_to_user_id")),
    )
    s.add(campaign)
    s.flush()
    s.refresh(campaign)
    record_event(s, actor=user, action="social_campaign.create", entity_type="SocialMediaCampaign", entity_id=campaign.id)
    return campaign


def update_campaign(s: Session, campaign: SocialMediaCampaign, payload: dict[str, Any], *, user: User) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for attr, parser in (
        ("name", clean),
        ("description", clean),
        ("objective", clean),
        ("target_audience", clean),
        ("platforms", lambda v: list(v or [])),
        ("budget", parse_decimal),
        ("start_date", parse_datetime),
        ("end_date", parse_datetime),
        ("status", clean),
        ("assigned_to_user_id", parse_int),
    ):
        if attr not in payload:
            continue
        value = parser(payload.get(attr))
        if attr in ("name", "status") and value is None:
            continue
        if getattr(campaign, attr) != value:
            changes[attr] = {"from": str(getattr(campaign, attr)), "to": str(value)}
            setattr(campaign, attr, value)
    if "assigned_to_user_id" in changes:
        reload_relationships(s, campaign, "assignee")
    if changes:
        campaign.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="social_campaign.update", entity_type="SocialMediaCampaign", entity_id=campaign.id, metadata={"changes": changes})
    return changes


def rollup_campaign_metrics(campaign: SocialMediaCampaign) -> SocialMediaCampaign:
    """Recompute campaign totals from its published/archived content."""
    live = [c for c in campaign.content_items if c.status in ("published", "archived")]
    campaign.impressions = sum(c.reach or 0 for c in live)
    campaign.engagements = sum((c.likes or 0) + (c.shares or 0) + (c.comments or 0) for c in live)
    campaign.clicks = sum(c.clicks or 0 for c in live)
    campaign.updated_at = datetime.utcnow()
    return campaign


def campaign_metrics(campaign: SocialMediaCampaign) -> dict[str, Any]:
    by_status: dict[str, int] = {}
    for c in campaign.content_items:
        by_status[c.status] = by_status.get(c.status, 0) + 1
    rate = round(campaign.engagements * 100 / campaign.impressions, 2) if campaign.impressions else 0.0
    return {
        "impressions": campaign.impressions,
        "engagements": campaign.engagements,
        "clicks": campaign.clicks,
        "conversions": campaign.conversions,
        "engagement_rate": rate,
        "content_by_status": by_status,
    }


# --- content -----------------------------------------------------------------


def validate_content_payload(
    s: Session,
    payload: dict[str, Any],
    *,
    creating: bool,
    organization_id: str | None = None,
    now: datetime | None = None,
) -> list[str]:
    errors: list[str] = []
    if creating or "title" in payload:
        if not clean(payload.get("title")):
            errors.append("Title is required.")
    if creating or "content_type" in payload:
        if clean(payload.get("content_type")) not in CONTENT_TYPES:
            errors.append(f"Content type must be one of: {', '.join(CONTENT_TYPES)}.")
    platform = clean(payload.get("platform"))
    if platform and platform not in PLATFORMS:
        errors.append(f"Platform must be one of: {', '.join(PLATFORMS)}.")
    media = payload.get("media_urls")
    if media is not None and not isinstance(media, list):
        errors.append("Media URLs must be a list.")
    campaign_id = parse_int(payload.get("campaign_id"))
    if campaign_id and (
        s.query(SocialMediaCampaign.id)
        .filter(SocialMediaCampaign.id == campaign_id, SocialMediaCampaign.in_org(organization_id))
        .first()
        is None
    ):
        errors.append("Campaign not found.")
    try:
        scheduled = parse_datetime(payload.get("scheduled_date"))
        if scheduled is not None and scheduled <= (now or datetime.utcnow()):
            errors.append("Scheduled date must be in the future.")
    except ValueError:
        errors.append("Scheduled date must be an ISO date/time.")
    _validate_assignee(s, payload, organization_id, errors)
    return errors


def create_content(s: Session, payload: dict[str, Any], *, user: User) -> ContentItem:
    item = ContentItem(
        campaign_id=parse_int(payload.get("campaign_id")),
        title=clean(payload.get("title")) or "",
        description=clean(payload.get("description")),
        content_type=clean(payload.get("content_type")) or "social_media_post",
        content=clean(payload.get("content")),
        media_urls=list(payload.get("media_urls") or []),
        hashtags=clean(payload.get("hashtags")),
        mentions=clean(payload.get("mentions")),
        platform=clean(payload.get("platform")),
        scheduled_date=parse_datetime(payload.get("scheduled_date")),
        status="draft",
        created_by_user_id=user.id,
        organization_id=user.organization_id,
        assigned_to_user_id=parse_int(payload.get("assigned_to_user_id")),
    )
    s.add(item)
    s.flush()
    s.refresh(item)
    record_event(s, actor=user, action="content_item.create", entity_type="ContentItem", entity_id=item.id)
    return item


def update_content(s: Session, item: ContentItem, payload: dict[str, Any], *, user: User) -> dict[str, Any]:
    if item.status in ("published", "archived"):
        raise SocialMediaError(f"{item.status.capitalize()} content cannot be edited.")
    changes: dict[str, Any] = {}
    for attr, parser in (
        ("title", clean),
        ("description", clean),
        ("content_type", clean),
        ("content", clean),
        ("media_urls", lambda v: list(v or [])),
        ("hashtags", clean),
        ("mentions", clean),
        ("platform", clean),
        ("campaign_id", parse_int),
        ("assigned_to_user_id", parse_int),
    ):
        if attr not in payload:
            continue
        value = parser(payload.get(attr))
        if attr in ("title", "content_type") and value is None:
            continue
        if getattr(item, attr) != value:
            changes[attr] = {"from": str(getattr(item, attr)), "to": str(value)}
            setattr(item, attr, value)
    if "assigned_to_user_id" in changes or "campaign_id" in changes:
        reload_relationships(s, item, "assignee", "campaign")
    if changes:
        item.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="content_item.update", entity_type="ContentItem", entity_id=item.id, metadata={"changes": changes})
    return changes


def can_transition(current: str, target: str) -> bool:
    return target in CONTENT_TRANSITIONS.get(current, frozenset())


def change_content_status(
    s: Session,
    item: ContentItem,
    target: str,
    *,
    user: User | None,
    notes: str | None = None,
    now: datetime | None = None,
) -> ContentItem:
    if target not in CONTENT_STATUSES:
        raise SocialMediaError(f"Status must be one of: {', '.join(CONTENT_STATUSES)}.")
    if not can_transition(item.status, target):
        raise SocialMediaError(f"Cannot move content from {item.status} to {target}.")
    now = now or datetime.utcnow()
    previous = item.status
    item.status = target
    item.updated_at = now
    if notes is not None:
        item.review_notes = clean(notes)

    if target == "approved":
        item.approver = user
        item.approved_at = now
    elif target == "draft":
        item.approver = None
        item.approved_at = None
    elif target == "published":
        item.published_date = now
        if item.campaign is not None:
            rollup_campaign_metrics(item.campaign)

    if target == "in_review":
        notify_many(
            s,
            [u.id for u in users_with_permission(s, "social.approve", organization_id=item.organization_id)],
            type="content_review",
            title="Content awaiting review",
            message=f"'{item.title}' was submitted for review.",
            entity_type="ContentItem",
            entity_id=item.id,
        )
    elif target in ("approved", "rejected"):
        notify(
            s,
            item.created_by_user_id,
            type=f"content_{target}",
            title=f"Content {target}",
            message=f"'{item.title}' was {target}." + (f" {item.review_notes}" if target == "rejected" and item.review_notes else ""),
            entity_type="ContentItem",
            entity_id=item.id,
        )
    record_event(
        s,
        actor=user,
        action=f"content_item.{target}",
        entity_type="ContentItem",
        entity_id=item.id,
        reason=item.review_notes if target == "rejected" else None,
        metadata={"from": previous, "to": target},
    )
    return item


def schedule_content(s: Session, item: ContentItem, when: datetime | None, *, user: User, now: datetime | None = None) -> ContentItem:
    now = now or datetime.utcnow()
    if item.status in ("published", "archived"):
        raise SocialMediaError(f"{item.status.capitalize()} content cannot be rescheduled.")
    if when is not None and when <= now:
        raise SocialMediaError("Scheduled date must be in the future.")
    item.scheduled_date = when
    item.updated_at = now
    record_event(s, actor=user, action="content_item.schedule", entity_type="ContentItem", entity_id=item.id, metadata={"scheduled_date": when})
    return item


def record_engagement(s: Session, item: ContentItem, payload: dict[str, Any], *, user: User) -> ContentItem:
    if item.status not in ("published", "archived"):
        raise SocialMediaError("Engagement can only be recorded for published content.")
    for attr in ENGAGEMENT_FIELDS:
        if attr in payload:
            value = parse_int(payload.get(attr))
            if value is None or value < 0:
                raise SocialMediaError(f"{attr.capitalize()} must be a non-negative whole number.")
            setattr(item, attr, value)
    item.updated_at = datetime.utcnow()
    if item.campaign is not None:
        rollup_campaign_metrics(item.campaign)
    record_event(s, actor=user, action="content_item.engagement", entity_type="ContentItem", entity_id=item.id)
    return item


def content_calendar(
    s: Session,
    *,
    organization_id: str | None = None,
    start: datetime,
    end: datetime,
    platform: str | None = None,
    campaign_id: int | None = None,
) -> list[ContentItem]:
    """Items scheduled (or published) inside [start, end)."""
    q = s.query(ContentItem).filter(
        ContentItem.in_org(organization_id),
        ContentItem.status != "archived",
        ContentItem.scheduled_date.is_not(None),
        ContentItem.scheduled_date >= start,
        ContentItem.scheduled_date < end,
    )
    if platform:
        q = q.filter(ContentItem.platform == platform)
    if campaign_id:
        q = q.filter(ContentItem.campaign_id == campaign_id)
    return q.order_by(ContentItem.scheduled_date.asc(), ContentItem.id.asc()).all()


def list_content(
    s: Session,
    *,
    organization_id: str | None = None,
    status: str | None = None,
    campaign_id: int | None = None,
    platform: str | None = None,
) -> list[ContentItem]:
    q = s.query(ContentItem).filter(ContentItem.in_org(organization_id))
    if status:
        q = q.filter(ContentItem.status == status)
    if campaign_id:
        q = q.filter(ContentItem.campaign_id == campaign_id)
    if platform:
        q = q.filter(ContentItem.platform == platform)
    return q.order_by(ContentItem.created_at.desc(), ContentItem.id.desc()).all()


def publish_due_content(s: Session, *, now: datetime | None = None) -> list[ContentItem]:
    """Approved items whose scheduled date has passed are marked published."""
    now = now or datetime.utcnow()
    items = (
        s.query(ContentItem)
        .filter(
            ContentItem.status == "approved",
            ContentItem.scheduled_date.is_not(None),
            ContentItem.scheduled_date <= now,
        )
        .all()
    )
    for item in items:
        change_content_status(s, item, "published", user=None, now=now)
    s.flush()
    if items:
        logger.info("Published %d scheduled content item(s)", len(items))
    return items


# --- connected accounts ------------------------------------------------------


def validate_account_payload(s: Session, payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    platform = clean(payload.get("platform"))
    if platform not in PLATFORMS:
        errors.append(f"Platform must be one of: {', '.join(PLATFORMS)}.")
    if not clean(payload.get("account_id")):
        errors.append("Account id is required.")
    if not clean(payload.get("account_name")):
        errors.append("Account name is required.")
    if not clean(payload.get("access_token")):
        errors.append("Access token is required.")
    if platform and clean(payload.get("account_id")) and (
        s.query(ConnectedSocialAccount.id)
        .filter(
            ConnectedSocialAccount.platform == platform,
            ConnectedSocialAccount.account_id == clean(payload.get("account_id")),
        )
        .first()
    ):
        errors.append("This account is already connected.")
    try:
        parse_datetime(payload.get("token_expires_at"))
    except ValueError:
        errors.append("Token expiry must be an ISO date/time.")
    return errors


def connect_account(s: Session, payload: dict[str, Any], *, user: User) -> ConnectedSocialAccount:
    handle = clean(payload.get("account_handle"))
    if handle and not handle.startswith("@"):
        handle = f"@{handle}"
    account = ConnectedSocialAccount(
        user_id=user.id,
        platform=clean(payload.get("platform")) or "",
        account_id=clean(payload.get("account_id")) or "",
        account_name=clean(payload.get("account_name")) or "",
        account_handle=handle,
        follower_count=parse_int(payload.get("follower_count"), 0) or 0,
        access_token=clean(payload.get("access_token")) or "",
        refresh_token=clean(payload.get("refresh_token")),
        token_expires_at=parse_datetime(payload.get("token_expires_at")),
        status="connected",
        settings=payload.get("settings") if isinstance(payload.get("settings"), dict) else None,
    )
    s.add(account)
    s.flush()
    s.refresh(account)
    record_event(s, actor=user, action="social_account.connect", entity_type="ConnectedSocialAccount", entity_id=account.id, metadata={"platform": account.platform})
    return account


def disconnect_account(s: Session, account: ConnectedSocialAccount, *, user: User) -> ConnectedSocialAccount:
    if account.status == "disconnected":
        raise SocialMediaError("Account is already disconnected.")
    account.status = "disconnected"
    account.access_token = ""
    account.refresh_token = None
    account.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="social_account.disconnect", entity_type="ConnectedSocialAccount", entity_id=account.id)
    return account


def effective_account_status(account: ConnectedSocialAccount, *, now: datetime | None = None) -> str:
    if account.status == "connected" and account.token_expires_at and account.token_expires_at <= (now or datetime.utcnow()):
        return "expired"
    return account.status
