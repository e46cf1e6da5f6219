"""
MWP System - Command Line Interface

Usage:
    mwp-system cache flush [TYPES]... [--all]
    mwp-system cache purge [URLS]... [--post_ids=1,2] [--comment_ids=3] [--format=table]
    mwp-system serve [--host=0.0.0.0] [--port=8000]
"""
import asyncio
import logging
from typing import Dict, List, Optional, Tuple

import click

from ..cache_control.content_urls import urls_for_post
from ..cache_control.execution import CacheServices
from ..cache_control.registry import CacheControl
from ..cache_control.types import ALL_CACHE_TYPES, CacheFlushError, CacheType, FlushOutcome, coerce_cache_type
from ..shared.config import ConfigError, get_settings
from ..shared.logging_config import ExecutionContext, initialize_logging
from .output import FORMATS, format_items
from .relay import RestFlushRelay

logger = logging.getLogger(__name__)


def success(message: str) -> None:
    click.echo(f"Success: {message}")


def fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    raise SystemExit(1)


def parse_ids(value: Optional[str]) -> List[int]:
    """Comma separated ids as positive integers."""
    ids = []
    for item in (value or "").split(","):
        try:
            number = abs(int(item.strip()))
        except ValueError:
            continue
        if number and number not in ids:
            ids.append(number)
    return ids


def flush_message(cache_type: CacheType, outcome: FlushOutcome) -> str:
    if cache_type is CacheType.TRANSIENT and outcome is not True:
        return f"{outcome} transient(s) deleted from the database." if outcome else "No transients found."
    return f"The {cache_type.label} cache was flushed."


def get_services(ctx: click.Context) -> CacheServices:
    services = ctx.obj.get("services")
    if services is None:
        services = ctx.obj["services"] = CacheServices.create(get_settings())
    return services


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
@click.pass_context
def cli(ctx, verbose):
    """MWP System - hosting platform controls for the site."""
    ctx.ensure_object(dict)

    # Leave logging alone when the host process already configured it
    if not logging.getLogger().handlers:
        initialize_logging(get_settings(), level="DEBUG" if verbose else "WARNING")


@cli.group()
def cache():
    """Flush and purge the site's caches."""
    pass


@cache.command()
@click.argument('types', nargs=-1)
@click.option('--all', 'all_types', is_flag=True, help='Flush every cache type')
@click.pass_context
def flush(ctx, types, all_types):
    """Flush cache types (http, object, opcode, transient). Defaults to object."""
    services = get_services(ctx)

    if all_types:
        requested = list(ALL_CACHE_TYPES)
    else:
        wanted = {coerce_cache_type(t) for t in types}
        requested = [t for t in ALL_CACHE_TYPES if t in wanted] or [CacheType.OBJECT]

    async def run_flush() -> Tuple[Dict[CacheType, FlushOutcome], Dict[CacheType, CacheFlushError]]:
        relay = ctx.obj.get("relay") or RestFlushRelay(services.site_config, services.settings)
        try:
            with ExecutionContext(source="cli"):
                async with services.execution() as execution:
                    execution.hooks.add_action(CacheControl.FLUSH_ACTION, relay)
                    results = await execution.control.flush(requested)
                    return results, dict(execution.control.errors)
        finally:
            await relay.aclose()
            await services.aclose()

    try:
        results, errors = asyncio.run(run_flush())
    except ConfigError as e:
        fail(str(e))

    if not results:
        fail("Unable to flush cache.")

    for cache_type, outcome in results.items():
        success(flush_message(cache_type, outcome))

    for error in errors.values():
        fail(error.message)


@cache.command()
@click.argument('urls', nargs=-1)
@click.option('--post_ids', help='Comma-separated post IDs')
@click.option('--comment_ids', help='Comma-separated comment IDs')
@click.option('--format', 'format_type', type=click.Choice(FORMATS), default='table', help='Output format')
@click.pass_context
def purge(ctx, urls, post_ids, comment_ids, format_type):
    """
    Purge URLs, or the URLs of posts and comments, from the HTTP cache.

    Post and comment IDs are resolved through the content source the
    services were created with. Without an injected ContentSource only the
    home URL is known and IDs resolve to nothing.
    """
    services = get_services(ctx)
    content = services.content

    urls = [url.strip() for url in urls if url.strip()]
    post_ids = parse_ids(post_ids)
    comment_ids = parse_ids(comment_ids)

    if not urls and not post_ids and not comment_ids:
        urls.append(content.home_url())

    for comment in content.get_comments(comment_ids):
        if comment.post_id not in post_ids:
            post_ids.append(comment.post_id)

    posts = content.get_posts(post_ids)
    missing = sorted(set(post_ids) - {post.id for post in posts})
    if missing:
        logger.warning(f"Posts not found in the content source: {missing}")

    for post in posts:
        urls.extend(urls_for_post(content, post))

    async def run_purge() -> List[str]:
        try:
            with ExecutionContext(source="cli"):
                async with services.execution() as execution:
                    return await execution.control.purge(urls)
        finally:
            await services.aclose()

    try:
        purged = asyncio.run(run_purge())
    except ConfigError as e:
        fail(str(e))

    if not purged:
        fail("There are no URLs to purge.")

    click.echo(format_items(format_type, [{"url": url} for url in purged], ["url"]))


@cli.command()
@click.option('--host', default='0.0.0.0', help='Bind address')
@click.option('--port', default=8000, help='Bind port')
@click.option('--reload', is_flag=True, help='Reload on code changes')
def serve(host, port, reload):
    """Run the system API service."""
    from ..system_api.app import run_server

    run_server(host=host, port=port, reload=reload)


if __name__ == '__main__':
    cli()
