"""
Tests for the legacy field mappings and the built-in steps that use them.
"""
from datetime import datetime, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from docmigrate.migrations import mapping
from docmigrate.migrations.checkpoint import CheckpointStore
from docmigrate.migrations.engine import BatchProcessor, MigrationOptions, StepStatus
from docmigrate.migrations.steps import build_default_registry

CREATED = datetime(2023, 5, 1, tzinfo=timezone.utc)


class TestHelpers:

    def test_safe_object_id(self):
        oid = ObjectId()
        assert mapping.safe_object_id(oid) is oid
        assert mapping.safe_object_id(str(oid)) == oid
        assert mapping.safe_object_id("not-an-id") is None
        assert mapping.safe_object_id(None) is None

    def test_normalize_email(self):
        assert mapping.normalize_email("  Jane@Example.COM ") == "jane@example.com"
        assert mapping.normalize_email("   ") is None
        assert mapping.normalize_email(42) is None

    def test_normalize_roles(self):
        assert mapping.normalize_roles("admin") == ["admin"]
        assert mapping.normalize_roles(["admin", "", None, "editor"]) == ["admin", "editor"]
        assert mapping.normalize_roles(None) == ["member"]

    def test_generate_slug(self):
        assert mapping.generate_slug("Caring for  Monstera: A Guide!") == "caring-for-monstera-a-guide"
        assert mapping.generate_slug("--Hello -- World--") == "hello-world"


class TestUserMapping:

    def test_community_user(self):
        legacy_id = ObjectId()
        doc = mapping.map_community_user({
            "_id": legacy_id, "uid": "firebase-1", "email": " A@B.io ",
            "displayName": "Ann", "role": "moderator", "createdAt": CREATED,
        })

        assert doc["firebaseUid"] == "firebase-1"
        assert doc["email"] == "a@b.io"
        assert doc["name"] == "Ann"
        assert doc["roles"] == ["moderator"]
        assert doc["sourceIds"] == {"communityusers": legacy_id}
        assert doc["createdAt"] == CREATED
        assert doc["updatedAt"] == CREATED
        assert doc["source"] == "communityusers"
        assert "phone" not in doc

    def test_user_without_role_is_member(self):
        doc = mapping.map_user({"_id": ObjectId(), "email": "x@y.z"})

        assert doc["roles"] == ["member"]
        assert doc["source"] == "users"


class TestPostMapping:

    def test_comments_and_votes_are_embedded(self):
        post_id, author, voter = ObjectId(), ObjectId(), ObjectId()
        context = {
            "comments": {str(post_id): [
                {"_id": ObjectId(), "authorId": author, "body": "Nice plant"},
                {"_id": ObjectId(), "authorId": author, "body": ""},
                {"_id": ObjectId(), "body": "anonymous"},
            ]},
            "votes": {str(post_id): [{"userId": voter}, {"userId": "bogus"}]},
        }

        doc = mapping.map_community_post(
            {"_id": post_id, "userId": author, "content": "Look", "tags": ["ficus"]}, context)

        assert doc["sourceId"] == post_id
        assert doc["authorId"] == author
        assert doc["title"] == "Untitled Post"
        assert doc["body"] == "Look"
        assert doc["voteCount"] == 2
        assert doc["voterIds"] == [voter]
        assert [c["body"] for c in doc["comments"]] == ["Nice plant"]
        assert doc["comments"][0]["authorId"] == author

    def test_voters_are_omitted_for_popular_posts(self):
        post_id = ObjectId()
        votes = [{"userId": ObjectId()} for _ in range(mapping.MAX_EMBEDDED_VOTERS)]

        doc = mapping.map_community_post(
            {"_id": post_id, "authorId": ObjectId(), "body": "b"},
            {"comments": {}, "votes": {str(post_id): votes}})

        assert doc["voteCount"] == mapping.MAX_EMBEDDED_VOTERS
        assert "voterIds" not in doc

    def test_post_without_author_is_rejected(self):
        with pytest.raises(ValidationError):
            mapping.map_community_post({"_id": ObjectId(), "body": "b"}, {"comments": {}, "votes": {}})


class TestOtherMappings:

    def test_analytics_keep_original_record(self):
        doc = mapping.map_system_metrics({"_id": 1, "cpu": 0.5, "userId": ObjectId()})

        assert doc["type"] == "system"
        assert "userId" not in doc
        assert doc["record"]["cpu"] == 0.5

    def test_care_log_uses_care_date(self):
        plant, user = ObjectId(), ObjectId()
        doc = mapping.map_care_log({"_id": 1, "plantId": plant, "userId": user, "careDate": CREATED})

        assert doc["type"] == "care"
        assert doc["plantId"] == plant
        assert doc["occurredAt"] == CREATED

    def test_blog_post_denormalises_lookups(self):
        tag_id, category_id = ObjectId(), ObjectId()
        context = {
            "tags": {str(tag_id): {"name": "succulents"}},
            "categories": {str(category_id): {"name": "Guides"}},
            "series": {},
        }

        doc = mapping.map_blog_post({
            "_id": ObjectId(), "title": "Water Less, Grow More", "content": "...",
            "tags": [tag_id, ObjectId()], "categoryId": category_id, "authorId": ObjectId(),
        }, context)

        assert doc["slug"] == "water-less-grow-more"
        assert doc["tags"] == ["succulents"]
        assert doc["category"] == "Guides"
        assert "series" not in doc

    def test_notification_folds_in_preferences(self):
        user = ObjectId()
        doc = mapping.map_notification(
            {"_id": 1, "userId": user, "type": "reply", "title": "New reply", "body": "Someone replied"},
            {str(user): {"userId": user, "push": False}})

        assert doc["message"] == "Someone replied"
        assert doc["preferences"] == {"email": True, "push": False, "inApp": True}

    def test_reports_default_severity_and_status(self):
        community = mapping.map_community_report({"_id": 1, "reason": "spam"})
        bug = mapping.map_bug_report({"_id": 2, "title": "Crash", "severity": "high", "status": "resolved"})

        assert (community["kind"], community["severity"], community["status"]) == ("community", "medium", "pending")
        assert (bug["kind"], bug["severity"], bug["status"]) == ("bug", "high", "resolved")

    def test_contact_message(self):
        doc = mapping.map_contact_message(
            {"_id": 1, "email": "a@b.io", "name": "Ann", "subject": "Hi", "message": "Hello"})

        assert doc["fromEmail"] == "a@b.io"
        assert doc["body"] == "Hello"
        assert doc["handled"] is False

    def test_plant_keeps_legacy_fields(self):
        plant_id, user = ObjectId(), ObjectId()
        doc = mapping.map_plant({"_id": plant_id, "userId": user, "name": "Fern", "wateringDays": 3})

        assert doc["_id"] == plant_id
        assert doc["userId"] == user
        assert doc["wateringDays"] == 3
        assert doc["source"] == "plants"

    def test_soft_deleted_plant_is_still_migrated(self):
        plant_id, user = ObjectId(), ObjectId()
        doc = mapping.map_plant({"_id": plant_id, "userId": user, "name": "Fern", "isDeleted": True})

        assert doc["_id"] == plant_id
        assert doc["name"] == "Fern"
        assert doc["isDeleted"] is True

    def test_export_import_operation(self):
        doc = mapping.map_export_import_operation({"_id": 1, "action": "export", "userId": ObjectId()})

        assert doc["action"] == "export"
        assert doc["payload"]["action"] == "export"


class TestBuiltinSteps:

    @pytest.mark.asyncio
    async def test_posts_step_loads_comments_and_votes_per_batch(self, database):
        post_id, author = ObjectId(), ObjectId()
        database["communityposts"].seed([{"_id": post_id, "authorId": author, "title": "T", "body": "B"}])
        database["communitycomments"].seed([{"postId": post_id, "authorId": author, "body": "c1"}])
        database["communityvotes"].seed([{"postId": post_id, "userId": ObjectId()} for _ in range(3)])
        store = CheckpointStore(database)
        step = build_default_registry().get("posts")

        result = await BatchProcessor(database, store, show_progress=False).run(step, MigrationOptions())

        assert result.status == StepStatus.COMPLETED
        post = database["posts"].documents[0]
        assert post["voteCount"] == 3
        assert post["comments"][0]["body"] == "c1"
        assert post["migration_key"] == f"communityposts:{post_id}"

    @pytest.mark.asyncio
    async def test_users_step_merges_both_sources(self, database):
        database["communityusers"].seed([{"_id": ObjectId(), "email": "a@b.io"}])
        database["users"].seed([{"_id": ObjectId(), "email": "c@d.io"}, {"_id": ObjectId()}])
        step = build_default_registry().get("users")

        result = await BatchProcessor(database, CheckpointStore(database), show_progress=False).run(
            step, MigrationOptions())

        assert result.inserted_count == 3
        assert sorted(d["source"] for d in database["user_accounts"].documents) == \
            ["communityusers", "users", "users"]

    @pytest.mark.asyncio
    async def test_invalid_legacy_documents_count_as_errors(self, database):
        database["contactmessages"].seed([
            {"email": "a@b.io", "subject": "Hi", "message": "Hello"},
            {"subject": "no sender"},
        ])
        step = build_default_registry().get("messages")

        result = await BatchProcessor(database, CheckpointStore(database), show_progress=False).run(
            step, MigrationOptions())

        assert result.inserted_count == 1
        assert result.errors == 1
        assert result.status == StepStatus.COMPLETED_WITH_ERRORS

    @pytest.mark.asyncio
    async def test_plants_step_migrates_soft_deleted_plants(self, database):
        user = ObjectId()
        database["plants"].seed([
            {"_id": ObjectId(), "userId": user, "name": "Fern"},
            {"_id": ObjectId(), "userId": user, "name": "Cactus", "isDeleted": True},
        ])
        step = build_default_registry().get("plants")

        result = await BatchProcessor(database, CheckpointStore(database), show_progress=False).run(
            step, MigrationOptions())

        assert result.inserted_count == 2
        assert result.filtered_count == 0
        assert sorted(d["name"] for d in database["plant_profiles"].documents) == ["Cactus", "Fern"]
