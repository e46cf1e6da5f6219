"""
Shared fixtures for the cache control test suite.
"""
import json
from datetime import datetime
from unittest.mock import Mock

import httpx
import pytest
import pytest_asyncio

from src.cache_control.content_urls import Comment, InMemoryContentSource, Post, Term
from src.cache_control.execution import CacheServices
from src.cache_control.object_cache import ObjectCache
from src.cache_control.storage import DatabaseManager, Option
from src.shared.config import DatabaseSettings, Settings, SiteConfig
from src.shared.logging_config import configure_structlog

SITE_UID = "3f1c2a4b-5d6e-4f70-8a9b-0c1d2e3f4a5b"
ACCOUNT_UID = "9d8c7b6a-5e4f-4a3b-9c2d-1e0f9a8b7c6d"
SITE_TOKEN = "0123456789abcdef0123456789abcdef"
HOME_URL = "https://example.com"
API_URL = "https://api.example.test/v1"

# Keep structlog output on the captured stdlib handlers
configure_structlog()


@pytest.fixture
def site_document():
    return {
        "site_uid": SITE_UID,
        "account_uid": ACCOUNT_UID,
        "site_token": SITE_TOKEN,
        "default_site_url": HOME_URL,
        "api_url": API_URL,
    }


@pytest.fixture
def site_config(tmp_path, site_document):
    path = tmp_path / "site.json"
    path.write_text(json.dumps(site_document))
    return SiteConfig([str(path), str(tmp_path / "config-local.json")])


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'options.db'}"


@pytest.fixture
def settings(database_url):
    return Settings(database=DatabaseSettings(database_url=database_url))


@pytest.fixture
def edge_requests():
    """Requests received by the mocked cache tier."""
    return []


@pytest.fixture
def edge_client(edge_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        edge_requests.append(request)
        return httpx.Response(200)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def content():
    """A published post on 2021-03-15 filed under the "news" category."""
    source = InMemoryContentSource(
        HOME_URL,
        posts=[
            Post(id=1, post_type="post", post_date_gmt=datetime(2021, 3, 15, 9, 30), author_id=1, slug="hello-world"),
            Post(id=2, post_type="page", post_date_gmt=datetime(2020, 1, 1), author_id=1, slug="blog"),
            Post(id=3, post_type="post", post_date_gmt=datetime(2021, 3, 16), author_id=1, slug="hello-world", is_revision=True),
        ],
        comments=[Comment(id=10, post_id=1), Comment(id=11, post_id=99)],
        authors={1: "admin"},
        page_for_posts=2
    )
    source.set_terms(1, "category", [Term(id=5, taxonomy="category", slug="news")])
    return source


def option_rows(transients: int = 12, others: int = 3):
    """Options table rows: transient rows plus unrelated options."""
    rows = [
        Option(option_name=f"_transient_feed_{i}", option_value=json.dumps(i))
        for i in range(transients)
    ]
    rows.extend(
        Option(option_name=name, option_value=json.dumps(name))
        for name in ["blogname", "siteurl", "transient_like_but_not%"][:others]
    )
    return rows


async def seed_options(database_url: str, rows) -> None:
    """Create the options table and insert rows, then release the engine."""
    db = DatabaseManager(database_url)
    await db.create_schema()
    async with db.get_session() as session:
        session.add_all(rows)
        await session.commit()
    await db.close()


@pytest_asyncio.fixture
async def db(database_url):
    manager = DatabaseManager(database_url)
    await manager.create_schema()
    yield manager
    await manager.close()


@pytest.fixture
def opcode_reset():
    return Mock()


@pytest.fixture
def services(settings, site_config, content, edge_client, opcode_reset, database_url):
    return CacheServices(
        settings=settings,
        site_config=site_config,
        content=content,
        db=DatabaseManager(database_url),
        object_cache=ObjectCache(max_size=100),
        http_client=edge_client,
        opcode_reset=opcode_reset
    )
