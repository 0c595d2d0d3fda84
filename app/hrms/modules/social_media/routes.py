from __future__ import annotations

from datetime import datetime, timedelta

from flask import Blueprint, abort, g, jsonify, request

from app.hrms.db import db_session
from app.hrms.rbac import require_feature, require_permission, user_has_permission
from app.hrms.tenancy import current_org, get_in_org_or_404
from app.hrms.utils import error_response, get_payload, iso, parse_datetime, parse_int, user_summary

from .models import ConnectedSocialAccount, ContentItem, SocialMediaCampaign
from .service import (
    CONTENT_STATUSES,
    SocialMediaError,
    campaign_metrics,
    change_content_status,
    connect_account,
    content_calendar,
    create_campaign,
    create_content,
    disconnect_account,
    effective_account_status,
    list_content,
    record_engagement,
    rollup_campaign_metrics,
    schedule_content,
    update_campaign,
    update_content,
    validate_account_payload,
    validate_campaign_payload,
    validate_content_payload,
)

bp = Blueprint("social_media", __name__)

# Statuses a reviewer (social.approve) sets; the rest are open to content creators.
REVIEW_STATUSES = ("approved", "rejected", "published", "archived")


def campaign_json(c: SocialMediaCampaign, *, with_metrics: bool = False) -> dict:
    data = {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "objective": c.objective,
        "target_audience": c.target_audience,
        "platforms": c.platforms,
        "budget": iso(c.budget),
        "start_date": iso(c.start_date),
        "end_date": iso(c.end_date),
        "status": c.status,
        "created_by": user_summary(c.created_by),
        "assigned_to": user_summary(c.assignee),
        "impressions": c.impressions,
        "engagements": c.engagements,
        "clicks": c.clicks,
        "conversions": c.conversions,
        "updated_at": iso(c.updated_at),
    }
    if with_metrics:
        data["metrics"] = campaign_metrics(c)
    return data


def content_json(item: ContentItem) -> dict:
    return {
        "id": item.id,
        "campaign_id": item.campaign_id,
        "title": item.title,
        "description": item.description,
        "content_type": item.content_type,
        "content": item.content,
        "media_urls": item.media_urls,
        "hashtags": item.hashtags,
        "mentions": item.mentions,
        "platform": item.platform,
        "scheduled_date": iso(item.scheduled_date),
        "published_date": iso(item.published_date),
        "status": item.status,
        "review_notes": item.review_notes,
        "created_by": user_summary(item.created_by),
        "assigned_to": user_summary(item.assignee),
        "approved_by": user_summary(item.approver),
        "approved_at": iso(item.approved_at),
        "likes": item.likes,
        "shares": item.shares,
        "comments": item.comments,
        "reach": item.reach,
        "clicks": item.clicks,
        "updated_at": iso(item.updated_at),
    }


def account_json(a: ConnectedSocialAccount) -> dict:
    return {
        "id": a.id,
        "platform": a.platform,
        "account_id": a.account_id,
        "account_name": a.account_name,
        "account_handle": a.account_handle,
        "follower_count": a.follower_count,
        "status": effective_account_status(a),
        "token_expires_at": iso(a.token_expires_at),
        "last_sync_at": iso(a.last_sync_at),
        "error_message": a.error_message,
        "connected_by": user_summary(a.user),
        "created_at": iso(a.created_at),
    }


# --- campaigns ---------------------------------------------------------------


@bp.get("/social/campaigns")
@require_permission("social.view")
@require_feature("social_media_hub")
def social_campaigns_list():
    s = db_session()
    q = s.query(SocialMediaCampaign).filter(SocialMediaCampaign.in_org(current_org()))
    status = request.args.get("status")
    if status:
        q = q.filter(SocialMediaCampaign.status == status)
    campaigns = q.order_by(SocialMediaCampaign.created_at.desc(), SocialMediaCampaign.id.desc()).all()
    return jsonify({"items": [campaign_json(c) for c in campaigns]})


@bp.post("/social/campaigns")
@require_permission("social.manage")
@require_feature("social_media_hub")
def social_campaigns_create():
    s = db_session()
    payload = get_payload()
    errors = validate_campaign_payload(s, payload, creating=True, organization_id=current_org())
    if errors:
        return error_response("Invalid campaign.", errors)
    campaign = create_campaign(s, payload, user=g.current_user)
    s.commit()
    return jsonify(campaign_json(campaign)), 201


@bp.get("/social/campaigns/<int:campaign_id>")
@require_permission("social.view")
@require_feature("social_media_hub")
def social_campaigns_detail(campaign_id: int):
    s = db_session()
    campaign = get_in_org_or_404(s, SocialMediaCampaign, campaign_id)
    data = campaign_json(campaign, with_metrics=True)
    data["content"] = [content_json(i) for i in campaign.content_items]
    return jsonify(data)


@bp.patch("/social/campaigns/<int:campaign_id>")
@require_permission("social.manage")
@require_feature("social_media_hub")
def social_campaigns_update(campaign_id: int):
    s = db_session()
    campaign = get_in_org_or_404(s, SocialMediaCampaign, campaign_id)
    payload = get_payload()
    errors = validate_campaign_payload(s, payload, creating=False, organization_id=current_org())
    if errors:
        return error_response("Invalid campaign.", errors)
    update_campaign(s, campaign, payload, user=g.current_user)
    s.commit()
    return jsonify(campaign_json(campaign))


@bp.post("/social/campaigns/<int:campaign_id>/metrics/refresh")
@require_permission("social.manage")
@require_feature("social_media_hub")
def social_campaigns_refresh_metrics(campaign_id: int):
    s = db_session()
    campaign = get_in_org_or_404(s, SocialMediaCampaign, campaign_id)
    rollup_campaign_metrics(campaign)
    s.commit()
    return jsonify(campaign_json(campaign, with_metrics=True))


# --- content -----------------------------------------------------------------


@bp.get("/social/content")
@require_permission("social.view")
@require_feature("social_media_hub")
def social_content_list():
    s = db_session()
    status = request.args.get("status")
    if status and status not in CONTENT_STATUSES:
        return error_response(f"Status must be one of: {', '.join(CONTENT_STATUSES)}.")
    items = list_content(
        s,
        organization_id=current_org(),
        status=status,
        campaign_id=parse_int(request.args.get("campaign_id")),
        platform=request.args.get("platform"),
    )
    return jsonify({"items": [content_json(i) for i in items]})


@bp.get("/social/calendar")
@require_permission("social.view")
@require_feature("social_media_hub")
def social_calendar():
    s = db_session()
    try:
        start = parse_datetime(request.args.get("start"))
        end = parse_datetime(request.args.get("end"))
    except ValueError:
        return error_response("start and end must be ISO date/times.")
    if start is None:
        today = datetime.utcnow()
        start = datetime(today.year, today.month, 1)
    if end is None:
        end = start + timedelta(days=31)
    if end <= start:
        return error_response("end must be after start.")
    items = content_calendar(
        s,
        organization_id=current_org(),
        start=start,
        end=end,
        platform=request.args.get("platform"),
        campaign_id=parse_int(request.args.get("campaign_id")),
    )
    return jsonify({"start": iso(start), "end": iso(end), "items": [content_json(i) for i in items]})


@bp.post("/social/content")
@require_permission("social.create")
@require_feature("social_media_hub")
def social_content_create():
    s = db_session()
    payload = get_payload()
    errors = validate_content_payload(s, payload, creating=True, organization_id=current_org())
    if errors:
        return error_response("Invalid content.", errors)
    item = create_content(s, payload, user=g.current_user)
    s.commit()
    return jsonify(content_json(item)), 201


@bp.get("/social/content/<int:item_id>")
@require_permission("social.view")
@require_feature("social_media_hub")
def social_content_detail(item_id: int):
    s = db_session()
    return jsonify(content_json(get_in_org_or_404(s, ContentItem, item_id)))


@bp.patch("/social/content/<int:item_id>")
@require_permission("social.create")
@require_feature("social_media_hub")
def social_content_update(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, ContentItem, item_id)
    payload = {k: v for k, v in get_payload().items() if k != "scheduled_date"}
    errors = validate_content_payload(s, payload, creating=False, organization_id=current_org())
    if errors:
        return error_response("Invalid content.", errors)
    try:
        update_content(s, item, payload, user=g.current_user)
    except SocialMediaError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(content_json(item))


@bp.post("/social/content/<int:item_id>/status")
@require_permission("social.create")
@require_feature("social_media_hub")
def social_content_status(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, ContentItem, item_id)
    payload = get_payload()
    target = (payload.get("status") or "").strip()
    if target not in CONTENT_STATUSES:
        return error_response(f"Status must be one of: {', '.join(CONTENT_STATUSES)}.")
    if target in REVIEW_STATUSES and not user_has_permission(g.current_user, "social.approve"):
        g.missing_permission = "social.approve"
        abort(403)
    if target == "rejected" and not (payload.get("notes") or "").strip():
        return error_response("A reason is required when rejecting content.")
    try:
        change_content_status(s, item, target, user=g.current_user, notes=payload.get("notes"))
    except SocialMediaError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(content_json(item))


@bp.post("/social/content/<int:item_id>/schedule")
@require_permission("social.create")
@require_feature("social_media_hub")
def social_content_schedule(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, ContentItem, item_id)
    try:
        when = parse_datetime(get_payload().get("scheduled_date"))
    except ValueError:
        return error_response("Scheduled date must be an ISO date/time.")
    try:
        schedule_content(s, item, when, user=g.current_user)
    except SocialMediaError as e:
        return error_response(str(e))
    s.commit()
    return jsonify(content_json(item))


@bp.post("/social/content/<int:item_id>/engagement")
@require_permission("social.manage")
@require_feature("social_media_hub")
def social_content_engagement(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, ContentItem, item_id)
    try:
        record_engagement(s, item, get_payload(), user=g.current_user)
    except SocialMediaError as e:
        return error_response(str(e))
    s.commit()
    return jsonify(content_json(item))


# --- connected accounts ------------------------------------------------------


@bp.get("/social/accounts")
@require_permission("social.view")
@require_feature("social_media_hub")
def social_accounts_list():
    s = db_session()
    accounts = (
        s.query(ConnectedSocialAccount)
        .filter(ConnectedSocialAccount.in_org(current_org()))
        .order_by(ConnectedSocialAccount.platform.asc(), ConnectedSocialAccount.id.asc())
        .all()
    )
    return jsonify({"items": [account_json(a) for a in accounts]})


@bp.post("/social/accounts")
@require_permission("social.manage")
@require_feature("social_media_hub")
def social_accounts_connect():
    s = db_session()
    payload = get_payload()
    errors = validate_account_payload(s, payload)
    if errors:
        return error_response("Invalid account.", errors)
    account = connect_account(s, payload, user=g.current_user)
    s.commit()
    return jsonify(account_json(account)), 201


@bp.delete("/social/accounts/<int:account_id>")
@require_permission("social.manage")
@require_feature("social_media_hub")
def social_accounts_disconnect(account_id: int):
    s = db_session()
    account = get_in_org_or_404(s, ConnectedSocialAccount, account_id)
    try:
        disconnect_account(s, account, user=g.current_user)
    except SocialMediaError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(account_json(account))
