"""
Cache Control - Content URL Derivation

Works out every URL through which a post may be rendered so that an edit can
purge exactly those pages from the HTTP cache.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

import structlog

from .types import TaxonomyError

logger = structlog.get_logger(__name__)


@dataclass
class Post:
    """A content item of the host."""
    id: int
    post_type: str = "post"
    post_date_gmt: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    author_id: int = 0
    slug: str = ""
    is_revision: bool = False


@dataclass
class Comment:
    id: int
    post_id: int


@dataclass
class Term:
    id: int
    taxonomy: str
    slug: str


class ContentSource(ABC):
    """Read access to the host's content model and link builders."""

    @abstractmethod
    def home_url(self) -> str:
        pass

    @abstractmethod
    def get_post(self, post_id: int) -> Optional[Post]:
        pass

    def get_posts(self, post_ids: Iterable[int]) -> List[Post]:
        posts = (self.get_post(post_id) for post_id in post_ids)
        return [post for post in posts if post is not None]

    @abstractmethod
    def get_comment(self, comment_id: int) -> Optional[Comment]:
        pass

    def get_comments(self, comment_ids: Iterable[int]) -> List[Comment]:
        comments = (self.get_comment(comment_id) for comment_id in comment_ids)
        return [comment for comment in comments if comment is not None]

    @abstractmethod
    def permalink(self, post: Post) -> Optional[str]:
        pass

    @abstractmethod
    def post_type_archive_link(self, post_type: str) -> Optional[str]:
        pass

    @abstractmethod
    def year_link(self, year: int) -> Optional[str]:
        pass

    @abstractmethod
    def month_link(self, year: int, month: int) -> Optional[str]:
        pass

    @abstractmethod
    def day_link(self, year: int, month: int, day: int) -> Optional[str]:
        pass

    @abstractmethod
    def author_posts_url(self, author_id: int) -> Optional[str]:
        pass

    @abstractmethod
    def post_taxonomies(self, post: Post) -> List[str]:
        pass

    @abstractmethod
    def post_terms(self, post: Post, taxonomy: str) -> List[Term]:
        """Terms of a post in one taxonomy. Raises TaxonomyError."""
        pass

    @abstractmethod
    def term_link(self, term: Term) -> Optional[str]:
        pass


def urls_for_post(source: ContentSource, post) -> List[str]:
    """
    Return the URLs where a post might appear.

    Covers the home page, the permalink, the post type archive, the date
    archives of the publication day, the author archive and every attached
    term archive. Empty links are dropped and the order of first appearance is
    kept. Revisions and anything that is not a Post yield no URLs.
    """
    if not isinstance(post, Post) or post.is_revision:
        return []

    date = post.post_date_gmt

    urls = [
        source.home_url().rstrip("/"),
        source.permalink(post),
        source.post_type_archive_link(post.post_type),
        source.year_link(date.year),
        source.month_link(date.year, date.month),
        source.day_link(date.year, date.month, date.day),
        source.author_posts_url(post.author_id),
    ]

    for taxonomy in source.post_taxonomies(post):
        try:
            terms = source.post_terms(post, taxonomy)
        except TaxonomyError as e:
            logger.debug("Skipping taxonomy", taxonomy=taxonomy, error=str(e))
            continue

        urls.extend(source.term_link(term) for term in terms)

    return list(dict.fromkeys(url for url in urls if url))


class InMemoryContentSource(ContentSource):
    """
    Dict-backed content model with pretty permalinks.

    Posts link to ``/YYYY/MM/DD/slug/``, pages to ``/slug/``, other post types
    to ``/{post_type}/{slug}/``. Terms link to ``/{base}/{slug}/`` where the
    base comes from ``taxonomy_bases``. Authors link to ``/author/{nicename}/``.
    """

    DEFAULT_TAXONOMY_BASES = {"category": "category", "post_tag": "tag"}

    def __init__(
        self,
        home_url: str,
        posts: Optional[Iterable[Post]] = None,
        comments: Optional[Iterable[Comment]] = None,
        authors: Optional[Dict[int, str]] = None,
        taxonomy_bases: Optional[Dict[str, str]] = None,
        archived_post_types: Iterable[str] = (),
        page_for_posts: Optional[int] = None
    ):
        self._home_url = home_url.rstrip("/")
        self.posts: Dict[int, Post] = {post.id: post for post in posts or ()}
        self.comments: Dict[int, Comment] = {comment.id: comment for comment in comments or ()}
        self.authors: Dict[int, str] = dict(authors or {})
        self.taxonomy_bases = dict(taxonomy_bases or self.DEFAULT_TAXONOMY_BASES)
        self.archived_post_types = set(archived_post_types)
        self.page_for_posts = page_for_posts
        self.terms: Dict[int, Dict[str, List[Term]]] = {}

    def _url(self, path: str) -> str:
        return f"{self._home_url}/{path.strip('/')}/" if path.strip("/") else f"{self._home_url}/"

    def add_post(self, post: Post) -> Post:
        self.posts[post.id] = post
        return post

    def add_comment(self, comment: Comment) -> Comment:
        self.comments[comment.id] = comment
        return comment

    def set_terms(self, post_id: int, taxonomy: str, terms: Iterable[Term]) -> None:
        self.terms.setdefault(post_id, {})[taxonomy] = list(terms)

    def home_url(self) -> str:
        return self._home_url

    def get_post(self, post_id: int) -> Optional[Post]:
        return self.posts.get(post_id)

    def get_comment(self, comment_id: int) -> Optional[Comment]:
        return self.comments.get(comment_id)

    def permalink(self, post: Post) -> Optional[str]:
        if not post.slug:
            return None
        if post.post_type == "post":
            date = post.post_date_gmt
            return self._url(f"{date:%Y/%m/%d}/{post.slug}")
        if post.post_type == "page":
            return self._url(post.slug)
        return self._url(f"{post.post_type}/{post.slug}")

    def post_type_archive_link(self, post_type: str) -> Optional[str]:
        if post_type == "post":
            page = self.posts.get(self.page_for_posts) if self.page_for_posts else None
            return self.permalink(page) if page else self._url("")
        if post_type in self.archived_post_types:
            return self._url(post_type)
        return None

    def year_link(self, year: int) -> Optional[str]:
        return self._url(f"{year:04d}")

    def month_link(self, year: int, month: int) -> Optional[str]:
        return self._url(f"{year:04d}/{month:02d}")

    def day_link(self, year: int, month: int, day: int) -> Optional[str]:
        return self._url(f"{year:04d}/{month:02d}/{day:02d}")

    def author_posts_url(self, author_id: int) -> Optional[str]:
        nicename = self.authors.get(author_id)
        return self._url(f"author/{nicename}") if nicename else None

    def post_taxonomies(self, post: Post) -> List[str]:
        return list(self.terms.get(post.id, {}))

    def post_terms(self, post: Post, taxonomy: str) -> List[Term]:
        if taxonomy not in self.taxonomy_bases:
            raise TaxonomyError(f"Invalid taxonomy: {taxonomy}")
        return list(self.terms.get(post.id, {}).get(taxonomy, []))

    def term_link(self, term: Term) -> Optional[str]:
        base = self.taxonomy_bases.get(term.taxonomy)
        if base is None or not term.slug:
            return None
        return self._url(f"{base}/{term.slug}")
