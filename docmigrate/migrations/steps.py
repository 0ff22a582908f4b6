"""
Built-in Migration Steps
Declared order of the legacy-to-new-schema pipeline
"""
from .mapping import (
    load_blog_context,
    load_notification_context,
    load_post_context,
    map_blog_post,
    map_bug_report,
    map_care_log,
    map_community_post,
    map_community_report,
    map_community_user,
    map_contact_message,
    map_dashboard_analytics,
    map_export_import_operation,
    map_notification,
    map_plant,
    map_plant_analytics,
    map_reminder,
    map_search_analytics,
    map_system_metrics,
    map_user,
    map_user_analytics,
)
from .registry import SourceSpec, StepDescriptor, StepRegistry, source_key


def _source(collection: str, transform, context_loader=None) -> SourceSpec:
    return SourceSpec(
        collection=collection,
        transform=transform,
        natural_key=source_key(collection),
        context_loader=context_loader,
    )


DEFAULT_STEPS = (
    StepDescriptor(
        name="users",
        target_collection="user_accounts",
        sources=(
            _source("communityusers", map_community_user),
            _source("users", map_user),
        ),
        description="Merge legacy and community users into unified accounts",
    ),
    StepDescriptor(
        name="posts",
        target_collection="posts",
        sources=(_source("communityposts", map_community_post, load_post_context),),
        auxiliary_collections=("communitycomments", "communityvotes"),
        description="Community posts with embedded comments and vote totals",
    ),
    StepDescriptor(
        name="analytics",
        target_collection="analytics",
        sources=(
            _source("useranalytics", map_user_analytics),
            _source("systemmetrics", map_system_metrics),
            _source("dashboardanalytics", map_dashboard_analytics),
            _source("searchanalytics", map_search_analytics),
        ),
        description="Consolidate analytics collections",
    ),
    StepDescriptor(
        name="plant_logs",
        target_collection="plant_logs",
        sources=(
            _source("carelogs", map_care_log),
            _source("plantcareanalytics", map_plant_analytics),
            _source("reminders", map_reminder),
        ),
        description="Care logs, care analytics and reminders as plant logs",
    ),
    StepDescriptor(
        name="blogs",
        target_collection="blogs",
        sources=(_source("blogposts", map_blog_post, load_blog_context),),
        auxiliary_collections=("blogtags", "blogcategories", "blogseries"),
        description="Blog posts with denormalised tags, category and series",
    ),
    StepDescriptor(
        name="notifications",
        target_collection="user_notifications",
        sources=(_source("notifications", map_notification, load_notification_context),),
        auxiliary_collections=("notificationpreferences",),
        description="Notifications with delivery preferences folded in",
    ),
    StepDescriptor(
        name="messages",
        target_collection="messages",
        sources=(_source("contactmessages", map_contact_message),),
        description="Contact form messages",
    ),
    StepDescriptor(
        name="reports",
        target_collection="reports",
        sources=(
            _source("communityreports", map_community_report),
            _source("bugreports", map_bug_report),
        ),
        description="Community moderation reports and bug reports",
    ),
    StepDescriptor(
        name="plants",
        target_collection="plant_profiles",
        sources=(_source("plants", map_plant),),
        description="Every plant document, soft-deleted ones included",
    ),
    StepDescriptor(
        name="systemlogs",
        target_collection="system_logs",
        sources=(_source("exportimportoperations", map_export_import_operation),),
        description="Export/import operations as system audit logs",
    ),
)


def build_default_registry() -> StepRegistry:
    """Registry of the built-in steps in execution order"""
    return StepRegistry(DEFAULT_STEPS)
