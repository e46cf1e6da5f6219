"""
Cache Control - Trigger Map

Maps host lifecycle events, option changes and content edits to the cache
tiers they make stale.
"""
from types import MappingProxyType
from typing import Any, Optional

import structlog

from .content_urls import ContentSource, Post, urls_for_post
from .hooks import HookRegistry
from .registry import CacheControl
from .types import CacheType

logger = structlog.get_logger(__name__)

ALL = frozenset(CacheType)
OBJECT_HTTP = frozenset({CacheType.OBJECT, CacheType.HTTP})
OBJECT_HTTP_TRANSIENT = frozenset({CacheType.OBJECT, CacheType.HTTP, CacheType.TRANSIENT})
OBJECT_HTTP_OPCODE = frozenset({CacheType.OBJECT, CacheType.HTTP, CacheType.OPCODE})
OBJECT_OPCODE_TRANSIENT = frozenset({CacheType.OBJECT, CacheType.OPCODE, CacheType.TRANSIENT})

FLUSH_HOOKS = MappingProxyType({
    "_core_updated_successfully": ALL,
    "activated_plugin": ALL,
    "customize_save": OBJECT_HTTP,
    "deactivated_plugin": ALL,
    "deleted_plugin": OBJECT_OPCODE_TRANSIENT,
    "pre_uninstall_plugin": OBJECT_OPCODE_TRANSIENT,
    "switch_theme": ALL,
    "upgrader_process_complete": ALL,
    "wp_delete_nav_menu": OBJECT_HTTP,
    "wp_update_nav_menu": OBJECT_HTTP,
})

FLUSH_OPTIONS = MappingProxyType({
    "avatar_default": OBJECT_HTTP,
    "avatar_rating": OBJECT_HTTP,
    "blog_public": OBJECT_HTTP,
    "blogdescription": OBJECT_HTTP_TRANSIENT,
    "blogname": OBJECT_HTTP_TRANSIENT,
    "category_base": OBJECT_HTTP_TRANSIENT,
    "category_children": OBJECT_HTTP,
    "close_comments_days_old": OBJECT_HTTP,
    "close_comments_for_old_posts": OBJECT_HTTP,
    "comment_order": OBJECT_HTTP,
    "comment_registration": OBJECT_HTTP,
    "comments_per_page": OBJECT_HTTP_TRANSIENT,
    "date_format": OBJECT_HTTP_TRANSIENT,
    "default_comments_page": OBJECT_HTTP,
    "gmt_offset": OBJECT_HTTP_TRANSIENT,
    "hack_file": OBJECT_HTTP_OPCODE,
    "link_manager_enabled": OBJECT_HTTP,
    "links_updated_date_format": OBJECT_HTTP,
    "page_comments": OBJECT_HTTP,
    "page_for_posts": OBJECT_HTTP,
    "page_on_front": OBJECT_HTTP,
    "permalink_structure": OBJECT_HTTP_TRANSIENT,
    "posts_per_page": OBJECT_HTTP_TRANSIENT,
    "posts_per_rss": OBJECT_HTTP,
    "recently_edited": OBJECT_HTTP_OPCODE,
    "require_name_email": OBJECT_HTTP,
    "rewrite_rules": OBJECT_HTTP_TRANSIENT,
    "rss_use_excerpt": OBJECT_HTTP,
    "show_avatars": OBJECT_HTTP,
    "show_on_front": OBJECT_HTTP,
    "sidebars_widgets": OBJECT_HTTP,
    "site_icon": OBJECT_HTTP,
    "start_of_week": OBJECT_HTTP,
    "sticky_posts": OBJECT_HTTP,
    "tag_base": OBJECT_HTTP_TRANSIENT,
    "thread_comments": OBJECT_HTTP,
    "thread_comments_depth": OBJECT_HTTP,
    "time_format": OBJECT_HTTP_TRANSIENT,
    "timezone_string": OBJECT_HTTP_TRANSIENT,
    "use_smilies": OBJECT_HTTP,
    "users_can_register": OBJECT_HTTP,
    "wp_user_roles": OBJECT_HTTP,
    "WPLANG": OBJECT_HTTP_TRANSIENT,
})

# Option name prefixes matched when no exact entry exists
FLUSH_OPTION_PREFIXES = ("widget_", "theme_mods_")

EVENT_PRIORITY = -999
OPTION_PRIORITY = 999


class TriggerMap:
    """Turns host events into registry flushes and purges."""

    def __init__(self, control: CacheControl, content: ContentSource):
        self.control = control
        self.content = content

    async def flush_hook(self, event: str) -> None:
        types = FLUSH_HOOKS.get(event)
        if types:
            logger.debug("Flush triggered by event", event=event)
            await self.control.flush(types)

    async def flush_options(self, option: str, old_value: Any, new_value: Any) -> None:
        if old_value == new_value:
            return

        types = FLUSH_OPTIONS.get(option)
        if types is None and option.startswith(FLUSH_OPTION_PREFIXES):
            types = OBJECT_HTTP

        if types:
            logger.debug("Flush triggered by option", option=option)
            await self.control.flush(types)

    async def purge_post_urls(self, post_id: int, post: Optional[Post] = None) -> None:
        if post is None:
            post = self.content.get_post(post_id)

        urls = urls_for_post(self.content, post)
        if urls:
            await self.control.flush([CacheType.OBJECT])
            await self.control.purge(urls)

    async def purge_comment_urls(self, comment_id: int) -> None:
        comment = self.content.get_comment(comment_id)
        post = self.content.get_post(comment.post_id) if comment is not None else None

        urls = urls_for_post(self.content, post)
        if urls:
            await self.control.purge(urls)

    def register(self, hooks: HookRegistry) -> None:
        """Subscribe to every trigger event on the execution's hooks."""
        for event in FLUSH_HOOKS:
            hooks.add_action(event, self._event_handler(event), EVENT_PRIORITY)

        hooks.add_action(
            "update_option",
            lambda option, old_value, new_value, *args: self.flush_options(option, old_value, new_value),
            OPTION_PRIORITY
        )
        hooks.add_action(
            "clean_comment_cache",
            lambda comment_id, *args: self.purge_comment_urls(comment_id),
            EVENT_PRIORITY
        )
        hooks.add_action(
            "clean_post_cache",
            lambda post_id, post=None, *args: self.purge_post_urls(post_id, post),
            EVENT_PRIORITY
        )

    def _event_handler(self, event: str):
        async def handler(*args):
            await self.flush_hook(event)
        return handler
