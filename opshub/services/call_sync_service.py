"""Call sync service - incremental call ingestion from CallTrackingMetrics.

One pass per client: fetch the window since the cursor, reconcile star
ratings with the provider, classify new conversations, enrich caller
identity, persist, then push auto-star scores and emit attention alerts.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from opshub.core.config import settings
from opshub.core.structured_logging import build_log_context
from opshub.db.enums import ADMIN_ROLES, CallCategory
from opshub.db.models import ActiveClient, CallLog, ClientProfile, User
from opshub.services import call_records, notification_service
from opshub.services.ai_provider import AIProvider
from opshub.services.call_classification import (
    auto_star_rating,
    canonicalize_category,
    classify_content,
    rating_to_category,
)
from opshub.services.call_enrichment import enrich_caller_type
from opshub.services.ctm_client import CallProviderError, CTMClient, CTMCredentials
from opshub.utils.datetime_utils import (
    ensure_utc,
    format_duration,
    format_relative_time,
    utcnow,
)
from opshub.utils.normalization import normalize_phone

logger = logging.getLogger(__name__)

CREDENTIALS_MISSING_MESSAGE = "CallTrackingMetrics credentials not configured."
FETCH_FAILED_MESSAGE = "Unable to fetch latest calls. Showing cached data."
SYNC_FAILED_MESSAGE = "Sync failed. Showing cached data."
RATING_SYNC_WARNING = "Score saved locally. Warning: Could not sync to CallTrackingMetrics."
CLEAR_SYNC_WARNING = "Score cleared locally. Warning: Could not sync to CallTrackingMetrics."

NEEDS_ATTENTION_TITLE = "Voicemail needs attention"
LEADS_LINK = "/portal?tab=leads"

ELEVATED_CATEGORIES = frozenset(
    {CallCategory.WARM, CallCategory.VERY_GOOD, CallCategory.APPLICANT}
)

CTMClientFactory = Callable[[CTMCredentials], CTMClient]


class CallNotFoundError(LookupError):
    """Raised when a call id does not belong to the user."""

    pass


@dataclass
class SyncReport:
    latest_timestamp: datetime | None = None
    pages_processed: int = 0
    start_date: date | None = None
    end_date: date | None = None
    total_fetched: int = 0
    processed_count: int = 0
    new_count: int = 0
    updated_count: int = 0
    classified_count: int = 0
    errors: list[str] = field(default_factory=list)
    warning: str | None = None
    full_sync: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors and self.warning is None

    def as_dict(self) -> dict:
        data = asdict(self)
        for key in ("latest_timestamp", "start_date", "end_date"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class RatingResult:
    message: str
    rating: int
    warning: str | None = None


@dataclass
class ProcessedCall:
    """Outcome of reconciling one provider record against the stored row."""

    call_id: str
    score: int
    meta: dict
    direction: str | None
    from_number: str | None
    to_number: str | None
    started_at: datetime | None
    duration_sec: int | None
    ai_called: bool = False
    should_post_score: bool = False
    notify_needs_attention: bool = False


def compute_fetch_window(
    cursor: datetime | None,
    *,
    full_sync: bool,
    today: date,
    full_sync_days: int,
) -> tuple[date, date]:
    """
    Provider date window (day-granular, end exclusive of tomorrow).

    Full sync looks back `full_sync_days`; incremental starts one day
    before the cursor to absorb clock skew and late rating changes.
    """
    end_date = today + timedelta(days=1)
    if full_sync or cursor is None:
        return today - timedelta(days=full_sync_days), end_date
    return ensure_utc(cursor).date() - timedelta(days=1), end_date


def _default_client_factory(credentials: CTMCredentials) -> CTMClient:
    return CTMClient(credentials)


def get_client_profile(db: Session, user_id: UUID) -> ClientProfile | None:
    return db.scalars(select(ClientProfile).where(ClientProfile.user_id == user_id)).first()


def _get_call(db: Session, user_id: UUID, call_id: str) -> CallLog | None:
    return db.scalars(
        select(CallLog).where(CallLog.user_id == user_id, CallLog.call_id == call_id)
    ).first()


def _record_provider_score(db: Session, user_id: UUID, call_id: str, score: int) -> None:
    """Remember the score the provider now holds after a successful push."""
    call = _get_call(db, user_id, call_id)
    if call is None:
        return
    call.meta = {**(call.meta or {}), "provider_score": score, "provider_rating_cleared": False}
    db.commit()


def resolve_alert_recipient(db: Session, profile: ClientProfile | None) -> UUID | None:
    """Client's account manager, else the first admin by creation order."""
    if profile is not None and profile.account_manager_user_id:
        return profile.account_manager_user_id
    return db.scalars(
        select(User.id)
        .where(User.role.in_([role.value for role in ADMIN_ROLES]))
        .order_by(User.created_at)
        .limit(1)
    ).first()


async def reconcile_record(
    raw: dict,
    existing: CallLog | None,
    *,
    business_prompt: str | None,
    auto_star_enabled: bool,
    can_classify: bool,
    ai_provider: AIProvider | None = None,
) -> ProcessedCall | None:
    """
    Reconcile one provider record. Returns None for records without an id.

    Provider ratings are authoritative for score and displayed category.
    AI runs only for conversations that were never usefully classified.
    """
    call_id = call_records.get_call_id(raw)
    if not call_id:
        return None

    prev_meta = dict(existing.meta or {}) if existing else {}
    provider_score = call_records.get_provider_score(raw)
    db_score = existing.score if existing else 0
    has_provider_rating = provider_score > 0
    # Only a rating the provider itself reported can be removed there; local
    # scores whose push failed are kept.
    rating_removed = (
        existing is not None and int(prev_meta.get("provider_score") or 0) > 0 and not has_provider_rating
    )
    rating_cleared = not has_provider_rating and (
        rating_removed or bool(prev_meta.get("provider_rating_cleared"))
    )

    classification = prev_meta.get("classification") or ""
    summary = prev_meta.get("classification_summary") or ""
    category = canonicalize_category(prev_meta.get("category"))
    ai_category = prev_meta.get("ai_category")
    ai_classified = bool(prev_meta.get("ai_classified"))
    if rating_removed:
        ai_classified = False

    if has_provider_rating:
        category = rating_to_category(provider_score)
    elif rating_removed:
        category = CallCategory.UNREVIEWED

    transcript = call_records.get_transcript(raw)
    message = call_records.build_message(raw)
    conversation = call_records.has_conversation(transcript, message)
    voicemail = call_records.is_voicemail(raw)
    fresh_ai = False
    ai_called = False

    if not conversation:
        if call_records.is_likely_unanswered(raw):
            classification = CallCategory.UNANSWERED.value
            summary = summary or "Call was unanswered with no voicemail."
            fallback = CallCategory.UNANSWERED
        elif voicemail:
            classification = CallCategory.VOICEMAIL.value
            summary = summary or "Voicemail left without a transcript."
            fallback = CallCategory.VOICEMAIL
        else:
            classification = CallCategory.NEUTRAL.value
            summary = summary or "Call logged from CTM metadata."
            fallback = CallCategory.NEUTRAL
        if not has_provider_rating and not rating_removed:
            category = fallback
    elif not ai_classified and can_classify and not rating_removed:
        ai_called = True
        result = await classify_content(business_prompt, transcript, message, provider=ai_provider)
        classification = result.classification
        summary = result.summary
        ai_category = result.category.value
        ai_classified = result.category != CallCategory.UNREVIEWED
        if not has_provider_rating:
            category = result.category
            fresh_ai = ai_classified
    elif not ai_classified:
        classification = classification or CallCategory.UNREVIEWED.value

    if voicemail and category in ELEVATED_CATEGORIES and not has_provider_rating:
        category = CallCategory.NEEDS_ATTENTION

    score = provider_score if has_provider_rating or rating_removed else db_score
    should_post = False
    if auto_star_enabled and fresh_ai and db_score == 0 and not rating_cleared:
        score = auto_star_rating(category)
        should_post = True

    started_at, unix_time = call_records.parse_call_timestamp(raw)
    source = call_records.get_source(raw)
    assets = call_records.extract_assets(raw)
    caller_name = call_records.get_caller_name(raw)
    caller_number = call_records.get_caller_number(raw)
    direction = str(raw.get("direction") or "").lower()
    duration = call_records.get_duration(raw)

    meta = {
        **prev_meta,
        "id": call_id,
        "name": caller_name or f"Call {call_id}",
        "source": source,
        "source_key": call_records.sanitize_source_key(source),
        "timestamp": int(started_at.timestamp() * 1000) if started_at else None,
        "unix_time": unix_time,
        "caller_name": caller_name,
        "caller_number": caller_number,
        "caller_number_normalized": normalize_phone(caller_number),
        "to_number": call_records.get_to_number(raw),
        "region": call_records.build_region(raw),
        "transcript": transcript,
        "message": message,
        "transcript_url": call_records.build_transcript_url(unix_time),
        "recording_url": (assets[0]["url"] if assets else raw.get("recording_url")) or "",
        "direction": direction,
        "activity_type": call_records.determine_activity_type(direction),
        "classification": classification,
        "classification_summary": summary or "",
        "category": category.value,
        "ai_category": ai_category,
        "ai_classified": ai_classified,
        "is_voicemail": voicemail,
        "assets": assets,
        "duration_sec": duration,
        "started_at": started_at.isoformat() if started_at else None,
        "provider_score": provider_score,
        "provider_rating_cleared": rating_cleared,
    }

    return ProcessedCall(
        call_id=call_id,
        score=score,
        meta=meta,
        direction=direction or None,
        from_number=caller_number or None,
        to_number=meta["to_number"] or None,
        started_at=started_at,
        duration_sec=duration,
        ai_called=ai_called,
        should_post_score=should_post,
        notify_needs_attention=(
            category == CallCategory.NEEDS_ATTENTION and fresh_ai and not has_provider_rating
        ),
    )


def _persist(db: Session, user_id: UUID, processed: ProcessedCall, existing: CallLog | None) -> bool:
    """Upsert one call row with enrichment. Returns True when inserted."""
    enrichment = enrich_caller_type(
        db, user_id, processed.from_number, current_call_id=processed.call_id
    )
    meta = {**processed.meta, **enrichment.as_meta()}
    if existing is None:
        db.add(
            CallLog(
                user_id=user_id,
                call_id=processed.call_id,
                direction=processed.direction,
                from_number=processed.from_number,
                to_number=processed.to_number,
                started_at=processed.started_at,
                duration_sec=processed.duration_sec,
                score=processed.score,
                meta=meta,
            )
        )
        return True
    existing.direction = processed.direction
    existing.from_number = processed.from_number
    existing.to_number = processed.to_number
    existing.started_at = processed.started_at
    existing.duration_sec = processed.duration_sec
    existing.score = processed.score
    existing.meta = meta
    return False


def _notify_needs_attention(
    db: Session, recipient_id: UUID | None, processed: ProcessedCall
) -> None:
    meta = processed.meta
    caller = meta.get("caller_name") or meta.get("caller_number") or "A caller"
    summary = meta.get("classification_summary") or "Review the voicemail details."
    notification_service.create_notification(
        db,
        recipient_id,
        NEEDS_ATTENTION_TITLE,
        f"{caller} left a voicemail. Summary: {summary}",
        link_url=f"{LEADS_LINK}&call={processed.call_id}",
        meta={
            "call_id": processed.call_id,
            "caller_name": meta.get("caller_name"),
            "caller_number": meta.get("caller_number"),
            "category": meta.get("category"),
        },
    )


async def sync_client(
    db: Session,
    user_id: UUID,
    *,
    full_sync: bool = False,
    ctm_client_factory: CTMClientFactory | None = None,
    ai_provider: AIProvider | None = None,
    now: datetime | None = None,
) -> SyncReport:
    """
    Run one sync pass for one client. Never raises.

    Provider failures abort the pass with the cursor untouched. A record
    that fails to persist is skipped; the cursor then stays put so the
    next pass re-reads the window.
    """
    report = SyncReport(full_sync=full_sync)
    log_ctx = build_log_context(user_id=user_id, component="call_sync")

    profile = get_client_profile(db, user_id)
    credentials = CTMCredentials.from_profile(profile)
    if not credentials.is_configured:
        report.warning = CREDENTIALS_MISSING_MESSAGE
        logger.info("Call sync skipped: credentials not configured", extra=log_ctx)
        return report

    current = ensure_utc(now) if now else utcnow()
    report.start_date, report.end_date = compute_fetch_window(
        profile.ctm_sync_cursor,
        full_sync=full_sync,
        today=current.date(),
        full_sync_days=settings.CTM_FULL_SYNC_DAYS,
    )

    try:
        client = (ctm_client_factory or _default_client_factory)(credentials)
        fetched = await client.fetch_calls(
            start_date=report.start_date,
            end_date=report.end_date,
            per_page=settings.CTM_PER_PAGE,
        )
    except CallProviderError as exc:
        report.errors.append(str(exc))
        report.warning = FETCH_FAILED_MESSAGE
        logger.warning(
            "Call sync fetch failed (status=%s, retryable=%s)", exc.status, exc.retryable, extra=log_ctx
        )
        return report

    report.pages_processed = fetched.pages_processed
    report.total_fetched = len(fetched.calls)
    report.latest_timestamp = fetched.latest_timestamp

    business_prompt = profile.ai_prompt
    auto_star_enabled = profile.auto_star_enabled
    to_post: list[ProcessedCall] = []
    to_notify: list[ProcessedCall] = []
    persist_failures = 0

    for raw in fetched.calls[: settings.CTM_MAX_CALLS]:
        call_id = call_records.get_call_id(raw)
        if not call_id:
            continue
        try:
            existing = _get_call(db, user_id, call_id)
            processed = await reconcile_record(
                raw,
                existing,
                business_prompt=business_prompt,
                auto_star_enabled=auto_star_enabled,
                can_classify=report.classified_count < settings.CTM_CLASSIFY_LIMIT,
                ai_provider=ai_provider,
            )
            if processed is None:
                continue
            if processed.ai_called:
                report.classified_count += 1
            inserted = _persist(db, user_id, processed, existing)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            persist_failures += 1
            logger.exception(
                "Call upsert failed; skipping record",
                extra={**log_ctx, "call_id": call_id},
            )
            continue

        report.processed_count += 1
        if inserted:
            report.new_count += 1
        else:
            report.updated_count += 1
        if processed.should_post_score:
            to_post.append(processed)
        if processed.notify_needs_attention:
            to_notify.append(processed)

    if persist_failures:
        report.errors.append(f"{persist_failures} call(s) could not be saved")
    elif fetched.latest_timestamp:
        try:
            profile.ctm_sync_cursor = fetched.latest_timestamp
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            report.errors.append("Sync cursor could not be saved")
            logger.exception("Failed to advance call sync cursor", extra=log_ctx)

    for processed in to_post:
        try:
            # conversion=1 mirrors the provider dashboard's starred-lead semantics
            await client.post_sale(processed.call_id, score=processed.score, conversion=1, value=0)
        except CallProviderError as exc:
            logger.warning(
                "Auto-star post failed (status=%s)",
                exc.status,
                extra={**log_ctx, "call_id": processed.call_id},
            )
            continue
        try:
            _record_provider_score(db, user_id, processed.call_id, processed.score)
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Failed to record posted score", extra={**log_ctx, "call_id": processed.call_id}
            )

    if to_notify:
        try:
            recipient = resolve_alert_recipient(db, profile)
            for processed in to_notify:
                _notify_needs_attention(db, recipient, processed)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to store call alerts", extra=log_ctx)

    logger.info(
        "Call sync finished: %s fetched, %s new, %s updated, %s classified",
        report.total_fetched,
        report.new_count,
        report.updated_count,
        report.classified_count,
        extra=log_ctx,
    )
    return report


async def sync_all_clients(
    session_factory: Callable[[], Session],
    *,
    ctm_client_factory: CTMClientFactory | None = None,
    ai_provider: AIProvider | None = None,
) -> dict[str, dict]:
    """Sync every client with credentials; one session and pass per client."""
    with session_factory() as db:
        profiles = db.scalars(
            select(ClientProfile).where(ClientProfile.ctm_account_id.is_not(None))
        ).all()
        user_ids = [p.user_id for p in profiles if p.has_ctm_credentials]

    reports: dict[str, dict] = {}
    for user_id in user_ids:
        with session_factory() as db:
            try:
                report = await sync_client(
                    db,
                    user_id,
                    ctm_client_factory=ctm_client_factory,
                    ai_provider=ai_provider,
                )
            except Exception:
                db.rollback()
                logger.exception(
                    "Call sync crashed", extra=build_log_context(user_id=user_id, component="call_sync")
                )
                report = SyncReport(errors=[SYNC_FAILED_MESSAGE])
        reports[str(user_id)] = report.as_dict()
    return reports


async def reset_and_reload(
    db: Session,
    user_id: UUID,
    *,
    ctm_client_factory: CTMClientFactory | None = None,
    ai_provider: AIProvider | None = None,
    now: datetime | None = None,
) -> SyncReport:
    """Delete all stored calls for the client, then run a full sync."""
    db.execute(delete(CallLog).where(CallLog.user_id == user_id))
    profile = get_client_profile(db, user_id)
    if profile is not None:
        profile.ctm_sync_cursor = None
    db.commit()
    return await sync_client(
        db,
        user_id,
        full_sync=True,
        ctm_client_factory=ctm_client_factory,
        ai_provider=ai_provider,
        now=now,
    )


async def rate_call(
    db: Session,
    user_id: UUID,
    call_id: str,
    score: int,
    *,
    ctm_client_factory: CTMClientFactory | None = None,
) -> RatingResult:
    """
    Store a 1..5 rating locally, then best-effort push it to the provider.

    A failed push still keeps the local rating and returns a warning.
    """
    if not isinstance(score, int) or score < 1 or score > 5:
        raise ValueError("Invalid score. Must be between 1 and 5.")
    call = _get_call(db, user_id, call_id)
    if call is None:
        raise CallNotFoundError(call_id)

    call.score = score
    call.meta = {**(call.meta or {}), "category": rating_to_category(score).value}
    db.commit()

    credentials = CTMCredentials.from_profile(get_client_profile(db, user_id))
    if not credentials.is_configured:
        return RatingResult(message="Score saved (CallTrackingMetrics not configured)", rating=score)
    try:
        client = (ctm_client_factory or _default_client_factory)(credentials)
        await client.post_sale(call_id, score=score, conversion=1, value=0)
    except CallProviderError as exc:
        logger.warning(
            "Rating push failed (status=%s)",
            exc.status,
            extra=build_log_context(user_id=user_id, call_id=call_id, component="call_sync"),
        )
        return RatingResult(message=RATING_SYNC_WARNING, rating=score, warning=RATING_SYNC_WARNING)
    _record_provider_score(db, user_id, call_id, score)
    return RatingResult(message="Score saved and synced to CallTrackingMetrics", rating=score)


async def clear_call_rating(
    db: Session,
    user_id: UUID,
    call_id: str,
    *,
    ctm_client_factory: CTMClientFactory | None = None,
) -> RatingResult:
    """Reset the local rating to 0 and push score 0 / conversion 0."""
    call = _get_call(db, user_id, call_id)
    if call is None:
        raise CallNotFoundError(call_id)

    call.score = 0
    call.meta = {**(call.meta or {}), "category": CallCategory.UNREVIEWED.value}
    db.commit()

    credentials = CTMCredentials.from_profile(get_client_profile(db, user_id))
    if not credentials.is_configured:
        return RatingResult(message="Score cleared (CallTrackingMetrics not configured)", rating=0)
    try:
        client = (ctm_client_factory or _default_client_factory)(credentials)
        await client.post_sale(call_id, score=0, conversion=0, value=0)
    except CallProviderError as exc:
        logger.warning(
            "Rating clear push failed (status=%s)",
            exc.status,
            extra=build_log_context(user_id=user_id, call_id=call_id, component="call_sync"),
        )
        return RatingResult(message=CLEAR_SYNC_WARNING, rating=0, warning=CLEAR_SYNC_WARNING)
    _record_provider_score(db, user_id, call_id, 0)
    return RatingResult(message="Score cleared and synced to CallTrackingMetrics", rating=0)


def link_call_to_active_client(
    db: Session, user_id: UUID, call_id: str, active_client_id: UUID
) -> CallLog:
    """Mark a call as coming from a known customer."""
    call = _get_call(db, user_id, call_id)
    if call is None:
        raise CallNotFoundError(call_id)
    client = db.scalars(
        select(ActiveClient).where(
            ActiveClient.id == active_client_id, ActiveClient.owner_user_id == user_id
        )
    ).first()
    if client is None:
        raise LookupError("Active client not found")

    call.meta = {
        **(call.meta or {}),
        "caller_type": "returning_customer",
        "active_client_id": str(client.id),
        "active_client": {"id": str(client.id), "client_name": client.client_name},
    }
    db.commit()
    return call


def unlink_call_from_active_client(db: Session, user_id: UUID, call_id: str) -> CallLog:
    """Drop the customer link and recompute repeat/new from call history."""
    call = _get_call(db, user_id, call_id)
    if call is None:
        raise CallNotFoundError(call_id)

    enrichment = enrich_caller_type(db, user_id, call.from_number, current_call_id=call_id)
    meta = {key: value for key, value in (call.meta or {}).items() if key != "active_client"}
    meta.update(
        {
            "caller_type": "repeat" if enrichment.call_sequence > 1 else "new",
            "active_client_id": None,
            "call_sequence": enrichment.call_sequence,
        }
    )
    call.meta = meta
    db.commit()
    return call


def build_calls_from_cache(rows: list[CallLog], *, now: datetime | None = None) -> list[dict]:
    """Shape stored rows for display, newest first."""
    shaped = []
    for row in rows:
        if not row.call_id:
            continue
        meta = dict(row.meta or {})
        duration = row.duration_sec or meta.get("duration_sec") or 0
        direction = row.direction or meta.get("direction") or "inbound"
        started_at = ensure_utc(row.started_at)
        assets = meta.get("assets") or []
        shaped.append(
            {
                **meta,
                "id": row.call_id,
                "rating": row.score or 0,
                "category": canonicalize_category(meta.get("category")).value,
                "caller_type": meta.get("caller_type") or "new",
                "active_client_id": meta.get("active_client_id"),
                "call_sequence": meta.get("call_sequence") or 1,
                "previous_calls": meta.get("previous_calls") or [],
                "duration_sec": duration,
                "duration_formatted": format_duration(duration),
                "direction": direction,
                "is_inbound": direction in ("inbound", "in"),
                "started_at": started_at.isoformat() if started_at else meta.get("started_at"),
                "time_ago": format_relative_time(started_at, now) if started_at else None,
                "from_number": row.from_number or meta.get("caller_number"),
                "to_number": row.to_number or meta.get("to_number"),
                "recording_url": meta.get("recording_url") or (assets[0].get("url") if assets else None),
            }
        )
    shaped.sort(key=lambda call: call.get("timestamp") or 0, reverse=True)
    return shaped
