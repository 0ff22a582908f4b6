"""
Legacy Field Mapping
Pure functions turning legacy documents into new-schema documents
"""
import logging
import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId

from ..models import (
    AnalyticsRecord,
    BlogArticle,
    ContactMessage,
    PlantLog,
    PlantProfile,
    Post,
    PostComment,
    Report,
    SystemLog,
    UserAccount,
    UserNotification,
    utcnow,
)

logger = logging.getLogger(__name__)

MAX_EMBEDDED_VOTERS = 5000


def safe_object_id(value: Any) -> Optional[ObjectId]:
    """ObjectId from an ObjectId, a 24-hex string or None; None when not convertible"""
    if not value:
        return None
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def normalize_email(email: Any) -> Optional[str]:
    if not isinstance(email, str):
        return None
    trimmed = email.strip().lower()
    return trimmed or None


def normalize_roles(roles: Any) -> List[str]:
    if not isinstance(roles, list):
        return [roles if isinstance(roles, str) and roles else "member"]
    return [r for r in roles if isinstance(r, str) and r]


def generate_slug(title: str) -> str:
    slug = re.sub(r"[^a-z0-9\s-]", "", title.lower())
    slug = re.sub(r"\s+", "-", slug)
    return re.sub(r"-+", "-", slug).strip("-")


def first_of(doc: Dict[str, Any], *keys: str) -> Any:
    """First truthy value among the given legacy field names"""
    for key in keys:
        value = doc.get(key)
        if value:
            return value
    return None


def group_by(documents: Iterable[Dict[str, Any]], field: str) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for doc in documents:
        if doc.get(field) is not None:
            grouped[str(doc[field])].append(doc)
    return grouped


# Users

def map_legacy_user(user: Dict[str, Any], source: str) -> Dict[str, Any]:
    created_at = user.get("createdAt") or utcnow()
    return UserAccount(
        firebase_uid=first_of(user, "firebaseUid", "uid"),
        email=normalize_email(user.get("email")),
        phone=user.get("phone"),
        name=first_of(user, "name", "displayName"),
        roles=normalize_roles(first_of(user, "role", "roles") or ["member"]),
        source_ids={source: user["_id"]},
        created_at=created_at,
        updated_at=user.get("updatedAt") or created_at,
        source=source,
    ).to_document()


def map_community_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return map_legacy_user(user, "communityusers")


def map_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return map_legacy_user(user, "users")


# Posts

async def load_post_context(database, posts: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Comments and votes of the posts in a batch, grouped by post id"""
    post_ids = [post["_id"] for post in posts]
    comments = await database["communitycomments"].find({"postId": {"$in": post_ids}}).to_list(length=None)
    votes = await database["communityvotes"].find({"postId": {"$in": post_ids}}).to_list(length=None)
    return {
        "comments": group_by(comments, "postId"),
        "votes": group_by(votes, "postId"),
    }


def map_community_post(post: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    key = str(post["_id"])
    votes = context["votes"].get(key, [])
    voter_ids = None
    if len(votes) < MAX_EMBEDDED_VOTERS:
        voter_ids = [oid for oid in (safe_object_id(v.get("userId")) for v in votes) if oid]

    comments = []
    for comment in context["comments"].get(key, []):
        author_id = safe_object_id(first_of(comment, "authorId", "userId"))
        body = first_of(comment, "body", "content", "text")
        if author_id and body:
            comments.append(PostComment(
                id=safe_object_id(comment.get("_id")),
                author_id=author_id,
                body=body,
                created_at=comment.get("createdAt") or utcnow(),
            ))

    created_at = post.get("createdAt") or utcnow()
    return Post(
        source_id=post["_id"],
        author_id=safe_object_id(first_of(post, "authorId", "userId")),
        title=post.get("title") or "Untitled Post",
        body=first_of(post, "body", "content", "description") or "",
        images=post["images"] if isinstance(post.get("images"), list) else [],
        tags=post["tags"] if isinstance(post.get("tags"), list) else [],
        comments=comments,
        vote_count=len(votes),
        voter_ids=voter_ids,
        created_at=created_at,
        updated_at=post.get("updatedAt") or created_at,
        source="communityposts",
    ).to_document()


# Analytics

def _analytics(doc: Dict[str, Any], analytics_type: str, source: str,
               with_user: bool = True) -> Dict[str, Any]:
    return AnalyticsRecord(
        type=analytics_type,
        user_id=safe_object_id(doc.get("userId")) if with_user else None,
        record=doc,
        created_at=doc.get("createdAt") or utcnow(),
        source=source,
    ).to_document()


def map_user_analytics(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _analytics(doc, "user", "useranalytics")


def map_system_metrics(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _analytics(doc, "system", "systemmetrics", with_user=False)


def map_dashboard_analytics(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _analytics(doc, "dashboard", "dashboardanalytics")


def map_search_analytics(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _analytics(doc, "search", "searchanalytics")


# Plant logs

def _plant_log(doc: Dict[str, Any], log_type: str, source: str, *date_fields: str) -> Dict[str, Any]:
    return PlantLog(
        plant_id=safe_object_id(doc.get("plantId")),
        user_id=safe_object_id(doc.get("userId")),
        type=log_type,
        details=doc,
        occurred_at=first_of(doc, *date_fields) or utcnow(),
        source=source,
    ).to_document()


def map_care_log(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _plant_log(doc, "care", "carelogs", "careDate", "createdAt")


def map_plant_analytics(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _plant_log(doc, "analytics", "plantcareanalytics", "createdAt")


def map_reminder(doc: Dict[str, Any]) -> Dict[str, Any]:
    return _plant_log(doc, "reminder", "reminders", "dueDate", "createdAt")


# Blogs

async def load_blog_context(database, posts: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Tags, categories and series referenced by the posts of a batch, keyed by id"""
    tag_ids = {t for post in posts for t in (post.get("tags") or [])}
    category_ids = {post["categoryId"] for post in posts if post.get("categoryId")}
    series_ids = {post["seriesId"] for post in posts if post.get("seriesId")}

    async def by_id(collection: str, ids) -> Dict[str, Dict[str, Any]]:
        if not ids:
            return {}
        docs = await database[collection].find({"_id": {"$in": list(ids)}}).to_list(length=None)
        return {str(doc["_id"]): doc for doc in docs}

    return {
        "tags": await by_id("blogtags", tag_ids),
        "categories": await by_id("blogcategories", category_ids),
        "series": await by_id("blogseries", series_ids),
    }


def map_blog_post(post: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    tags = []
    for tag_id in post.get("tags") or []:
        tag = context["tags"].get(str(tag_id))
        if tag and tag.get("name"):
            tags.append(tag["name"])

    category = context["categories"].get(str(post.get("categoryId")))
    series = context["series"].get(str(post.get("seriesId")))
    title = post.get("title") or ""
    created_at = post.get("createdAt") or utcnow()

    return BlogArticle(
        title=title,
        slug=post.get("slug") or generate_slug(title),
        body=first_of(post, "body", "content"),
        tags=tags,
        category=category.get("name") if category else None,
        series=series.get("name") if series else None,
        author_id=safe_object_id(post.get("authorId")),
        created_at=created_at,
        updated_at=post.get("updatedAt") or created_at,
        source="blogposts",
    ).to_document()


# Notifications

async def load_notification_context(database, notifications: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Notification preferences of the users in a batch, keyed by user id"""
    user_ids = list({n["userId"] for n in notifications if n.get("userId")})
    if not user_ids:
        return {}
    preferences = await database["notificationpreferences"].find(
        {"userId": {"$in": user_ids}}).to_list(length=None)
    return {str(pref["userId"]): pref for pref in preferences}


def map_notification(notification: Dict[str, Any], preferences: Dict[str, Any]) -> Dict[str, Any]:
    prefs = preferences.get(str(notification.get("userId"))) or {}
    return UserNotification(
        user_id=safe_object_id(notification.get("userId")),
        type=notification.get("type"),
        title=notification.get("title"),
        message=first_of(notification, "message", "body"),
        data=notification.get("data"),
        read=bool(notification.get("read", False)),
        preferences={
            "email": prefs.get("email") is not False,
            "push": prefs.get("push") is not False,
            "in_app": prefs.get("inApp") is not False,
        },
        created_at=notification.get("createdAt") or utcnow(),
        source="notifications",
    ).to_document()


# Messages, reports, system logs, plants

def map_contact_message(message: Dict[str, Any]) -> Dict[str, Any]:
    return ContactMessage(
        from_email=first_of(message, "email", "fromEmail"),
        from_name=first_of(message, "name", "fromName"),
        user_id=safe_object_id(message.get("userId")),
        subject=message.get("subject"),
        body=first_of(message, "message", "body"),
        handled=bool(message.get("handled", False)),
        created_at=message.get("createdAt") or utcnow(),
        source="contactmessages",
    ).to_document()


def map_community_report(report: Dict[str, Any]) -> Dict[str, Any]:
    return Report(
        kind="community",
        reporter_id=safe_object_id(first_of(report, "reporterUid", "reporterId")),
        post_id=safe_object_id(report.get("targetId")),
        severity=report.get("severity") or "medium",
        status=report.get("status") or "pending",
        details={
            "reason": report.get("reason"),
            "description": report.get("description"),
            "targetType": report.get("targetType"),
        },
        created_at=report.get("createdAt") or utcnow(),
        source="communityreports",
    ).to_document()


def map_bug_report(report: Dict[str, Any]) -> Dict[str, Any]:
    return Report(
        kind="bug",
        reporter_id=safe_object_id(report.get("userId")),
        severity=report.get("severity") or "medium",
        status=report.get("status") or "pending",
        details={
            "title": report.get("title"),
            "description": report.get("description"),
            "steps": report.get("steps"),
            "environment": report.get("environment"),
        },
        created_at=report.get("createdAt") or utcnow(),
        source="bugreports",
    ).to_document()


def map_export_import_operation(operation: Dict[str, Any]) -> Dict[str, Any]:
    return SystemLog(
        action=operation.get("action") or "export_import",
        actor_id=safe_object_id(operation.get("userId")),
        payload=operation,
        created_at=operation.get("createdAt") or utcnow(),
        source="exportimportoperations",
    ).to_document()


def map_plant(plant: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: v for k, v in plant.items() if k not in ("source", "migratedAt")}
    return PlantProfile(source="plants", **fields).to_document()
