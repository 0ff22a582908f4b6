"""
Data models for the new application schema
Every migrated record is validated by one of these models before it is written
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NewSchemaDocument(BaseModel):
    """Base for target documents: camelCase field names, migration provenance"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra="forbid",
    )

    source: str = Field(..., description="Legacy collection the record came from")
    migrated_at: datetime = Field(default_factory=utcnow, description="When the record was migrated")

    def to_document(self) -> Dict[str, Any]:
        """Document as stored in the target collection"""
        return self.model_dump(by_alias=True, exclude_none=True)


class UserAccount(NewSchemaDocument):
    """Unified user account (legacy users + community users)"""
    firebase_uid: Optional[str] = Field(None, description="Firebase authentication uid")
    email: Optional[str] = Field(None, description="Normalised email address")
    phone: Optional[str] = Field(None, description="Phone number")
    name: Optional[str] = Field(None, description="Display name")
    roles: List[str] = Field(default_factory=lambda: ["member"], description="Granted roles")
    source_ids: Dict[str, ObjectId] = Field(default_factory=dict, description="Legacy ids per collection")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PostComment(BaseModel):
    """Comment embedded in a post"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True,
                              arbitrary_types_allowed=True)

    id: Optional[ObjectId] = Field(None, alias="_id")
    author_id: ObjectId
    body: str
    created_at: datetime = Field(default_factory=utcnow)


class Post(NewSchemaDocument):
    """Community post with embedded comments and vote totals"""
    source_id: ObjectId = Field(..., description="Legacy post id")
    author_id: ObjectId = Field(..., description="Author user id")
    title: str = Field(..., description="Post title")
    body: str = Field(..., description="Post body")
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    comments: List[PostComment] = Field(default_factory=list)
    vote_count: int = Field(0, description="Number of votes")
    voter_ids: Optional[List[ObjectId]] = Field(None, description="Voters, omitted for very popular posts")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AnalyticsRecord(NewSchemaDocument):
    """Analytics entry of any legacy analytics collection"""
    type: Literal["user", "system", "dashboard", "search"]
    user_id: Optional[ObjectId] = None
    record: Dict[str, Any] = Field(..., description="Original legacy document")
    created_at: datetime = Field(default_factory=utcnow)


class PlantLog(NewSchemaDocument):
    """Care log, care analytics entry or reminder attached to a plant"""
    plant_id: ObjectId
    user_id: ObjectId
    type: Literal["care", "analytics", "reminder"]
    details: Dict[str, Any]
    occurred_at: datetime


class BlogArticle(NewSchemaDocument):
    """Blog article with denormalised tags, category and series"""
    title: str
    slug: str
    body: str
    tags: List[str] = Field(default_factory=list)
    category: Optional[str] = None
    series: Optional[str] = None
    author_id: ObjectId
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class NotificationPreferences(BaseModel):
    """Delivery channels enabled for a notification"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: bool = True
    push: bool = True
    in_app: bool = True


class UserNotification(NewSchemaDocument):
    """Notification with the user's delivery preferences folded in"""
    user_id: ObjectId
    type: str
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None
    read: bool = False
    preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    created_at: datetime = Field(default_factory=utcnow)


class ContactMessage(NewSchemaDocument):
    """Message sent through the contact form"""
    from_email: str
    from_name: Optional[str] = None
    user_id: Optional[ObjectId] = None
    subject: str
    body: str
    handled: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Report(NewSchemaDocument):
    """Community moderation report or bug report"""
    kind: Literal["community", "bug"]
    reporter_id: Optional[ObjectId] = None
    post_id: Optional[ObjectId] = None
    severity: Literal["low", "medium", "high"] = "medium"
    status: Literal["pending", "resolved", "dismissed"] = "pending"
    details: Dict[str, Any]
    created_at: datetime = Field(default_factory=utcnow)


class SystemLog(NewSchemaDocument):
    """Audit entry of a system operation"""
    action: str
    actor_id: Optional[ObjectId] = None
    payload: Dict[str, Any]
    created_at: datetime = Field(default_factory=utcnow)


class PlantProfile(NewSchemaDocument):
    """Plant document; legacy fields are carried over as-is"""
    model_config = ConfigDict(extra="allow")

    id: ObjectId = Field(..., alias="_id", description="Legacy plant id, kept so references stay valid")
    user_id: ObjectId
    name: str
