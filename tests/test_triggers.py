"""
Tests for the trigger map: lifecycle events, option changes and content edits.
"""
from unittest.mock import AsyncMock

import pytest

from src.cache_control.hooks import HookRegistry
from src.cache_control.registry import CacheControl
from src.cache_control.triggers import FLUSH_HOOKS, FLUSH_OPTION_PREFIXES, FLUSH_OPTIONS, TriggerMap
from src.cache_control.types import CacheType

ALL = {CacheType.HTTP, CacheType.OBJECT, CacheType.OPCODE, CacheType.TRANSIENT}


@pytest.fixture
def control():
    control = AsyncMock(spec=CacheControl)
    control.flush.return_value = {}
    control.purge.return_value = []
    return control


@pytest.fixture
def triggers(control, content):
    return TriggerMap(control, content)


def flushed(control):
    """Type sets passed to each flush call."""
    return [set(call.args[0]) for call in control.flush.await_args_list]


class TestTables:

    def test_table_sizes(self):
        assert len(FLUSH_HOOKS) == 10
        assert len(FLUSH_OPTIONS) == 43
        assert FLUSH_OPTION_PREFIXES == ("widget_", "theme_mods_")

    def test_tables_are_immutable(self):
        with pytest.raises(TypeError):
            FLUSH_HOOKS["new_event"] = frozenset()

    def test_selected_entries(self):
        assert FLUSH_HOOKS["switch_theme"] == ALL
        assert FLUSH_HOOKS["deleted_plugin"] == {CacheType.OBJECT, CacheType.OPCODE, CacheType.TRANSIENT}
        assert FLUSH_OPTIONS["permalink_structure"] == {CacheType.OBJECT, CacheType.HTTP, CacheType.TRANSIENT}
        assert FLUSH_OPTIONS["hack_file"] == {CacheType.OBJECT, CacheType.HTTP, CacheType.OPCODE}
        assert FLUSH_OPTIONS["WPLANG"] == {CacheType.OBJECT, CacheType.HTTP, CacheType.TRANSIENT}


class TestEventTriggers:

    @pytest.mark.asyncio
    async def test_lifecycle_event(self, triggers, control):
        await triggers.flush_hook("activated_plugin")
        assert flushed(control) == [ALL]

    @pytest.mark.asyncio
    async def test_unknown_event(self, triggers, control):
        await triggers.flush_hook("init")
        control.flush.assert_not_awaited()


class TestOptionTriggers:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["My Site", 0, None, ["a", {"b": 1}]])
    async def test_unchanged_value_is_noop(self, triggers, control, value):
        await triggers.flush_options("blogname", value, value)
        control.flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_equal_values_compared_by_value(self, triggers, control):
        await triggers.flush_options("sidebars_widgets", {"sidebar-1": ["search-2"]}, {"sidebar-1": ["search-2"]})
        control.flush.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exact_option(self, triggers, control):
        await triggers.flush_options("blogname", "Old", "New")
        assert flushed(control) == [{CacheType.OBJECT, CacheType.HTTP, CacheType.TRANSIENT}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("option", ["widget_text", "theme_mods_twentytwentyone"])
    async def test_prefix_option(self, triggers, control, option):
        await triggers.flush_options(option, {}, {"title": "x"})
        assert flushed(control) == [{CacheType.OBJECT, CacheType.HTTP}]

    @pytest.mark.asyncio
    async def test_unrelated_option(self, triggers, control):
        await triggers.flush_options("cron", 1, 2)
        control.flush.assert_not_awaited()


class TestContentTriggers:

    @pytest.mark.asyncio
    async def test_post_flushes_object_then_purges(self, triggers, control):
        calls = []
        control.flush.side_effect = lambda types: calls.append(("flush", set(types))) or {}
        control.purge.side_effect = lambda urls: calls.append(("purge", list(urls))) or []

        await triggers.purge_post_urls(1)

        assert calls[0] == ("flush", {CacheType.OBJECT})
        assert calls[1][0] == "purge"
        assert "https://example.com/2021/03/15/hello-world/" in calls[1][1]

    @pytest.mark.asyncio
    async def test_revision_is_skipped(self, triggers, control, content):
        await triggers.purge_post_urls(3, content.get_post(3))

        control.flush.assert_not_awaited()
        control.purge.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_post_is_skipped(self, triggers, control):
        await triggers.purge_post_urls(404)
        control.purge.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_comment_purges_parent_post_urls(self, triggers, control):
        await triggers.purge_comment_urls(10)

        control.flush.assert_not_awaited()
        urls = control.purge.await_args.args[0]
        assert "https://example.com/2021/03/15/hello-world/" in urls

    @pytest.mark.asyncio
    async def test_comment_on_missing_post(self, triggers, control):
        await triggers.purge_comment_urls(11)
        await triggers.purge_comment_urls(999)
        control.purge.assert_not_awaited()


class TestRegistration:

    @pytest.mark.asyncio
    async def test_registered_handlers_drive_registry(self, content):
        hooks = HookRegistry()
        control = AsyncMock(spec=CacheControl)
        TriggerMap(control, content).register(hooks)

        for event in FLUSH_HOOKS:
            assert hooks.has_action(event)

        await hooks.do_action("switch_theme", "twentytwentyone", object())
        await hooks.do_action("update_option", "blogname", "Old", "New")
        await hooks.do_action("update_option", "blogname", "Same", "Same")
        await hooks.do_action("clean_post_cache", 1, content.get_post(1))
        await hooks.do_action("clean_comment_cache", 10)

        assert flushed(control) == [
            ALL,
            {CacheType.OBJECT, CacheType.HTTP, CacheType.TRANSIENT},
            {CacheType.OBJECT},
        ]
        assert control.purge.await_count == 2

    @pytest.mark.asyncio
    async def test_end_to_end_with_registry(self, content):
        from src.cache_control.drivers import HTTPCacheDriver
        from unittest.mock import Mock

        edge = Mock()
        hooks = HookRegistry()
        control = CacheControl({CacheType.HTTP: HTTPCacheDriver(edge)}, hooks)
        TriggerMap(control, content).register(hooks)

        await hooks.do_action("clean_post_cache", 1, content.get_post(1))
        await hooks.do_action("clean_comment_cache", 10)

        # The comment's post URLs were already purged in this execution
        edge.purge.assert_called_once()
        assert "https://example.com/category/news/" in edge.purge.call_args.args[0]
