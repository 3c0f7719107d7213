"""
Entity store adapter: the relational store of record for posts and
comments.

Every method is a single parameterised statement (plus a commit for
writes).  Lookups that match nothing raise ``NotFound``; any driver or
SQLAlchemy failure is re-raised as ``StoreError`` after rolling the
session back.  There are no retries here.

Writes commit before returning so that whatever the caller puts in the
cache afterwards describes a committed row.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFound, StoreError
from app.identity import IdentityScheme, get_identity_scheme
from app.models import Comment, Post

logger = logging.getLogger(__name__)

__all__ = ["CommentRecord", "EntityStore", "PostRecord"]


@dataclass(frozen=True)
class PostRecord:
    external_id: str
    key: int
    body: str


@dataclass(frozen=True)
class CommentRecord:
    external_id: str
    body: str
    post_id: str


class EntityStore:
    """Thin async adapter over an ``AsyncSession``."""

    def __init__(self, session: AsyncSession, scheme: IdentityScheme | None = None) -> None:
        self.session = session
        self.scheme = scheme or get_identity_scheme()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _guard(self, operation: str):
        try:
            yield
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Store %s failed: %s", operation, exc, extra={"operation": operation})
            await self.session.rollback()
            raise StoreError(f"{operation} failed") from exc

    def _post_key_subquery(self, external_id: str):
        return (
            select(Post.id)
            .where(self.scheme.matches(Post, external_id))
            .scalar_subquery()
        )

    def _to_record(self, post: Post) -> PostRecord:
        return PostRecord(
            external_id=self.scheme.external_id(post), key=post.id, body=post.body
        )

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    async def insert_post(self, body: str) -> PostRecord:
        """Insert a post; both id forms are fixed by this single insert."""
        async with self._guard("insert_post"):
            post = Post(external_id=self.scheme.new_external_id(), body=body)
            self.session.add(post)
            await self.session.flush()
            record = self._to_record(post)
            await self.session.commit()
        return record

    async def list_posts(
        self,
        limit: int,
        before_key: int | None = None,
        before_external: str | None = None,
    ) -> list[PostRecord]:
        """
        Return at most *limit* posts, newest first.

        *before_key* restricts the page to posts with a smaller internal
        key.  *before_external* is the fallback when the cursor could not
        be resolved up front: the key is looked up inside the query, and
        an unknown cursor yields an empty page.
        """
        stmt = select(Post).order_by(Post.id.desc()).limit(limit)
        if before_key is not None:
            stmt = stmt.where(Post.id < before_key)
        elif before_external is not None:
            stmt = stmt.where(Post.id < self._post_key_subquery(before_external))
        async with self._guard("list_posts"):
            result = await self.session.execute(stmt)
            posts = result.scalars().all()
        return [self._to_record(p) for p in posts]

    async def get_post(self, external_id: str) -> PostRecord:
        async with self._guard("get_post"):
            result = await self.session.execute(
                select(Post).where(self.scheme.matches(Post, external_id))
            )
            post = result.scalar_one_or_none()
        if post is None:
            raise NotFound("post", external_id)
        return self._to_record(post)

    async def delete_post(self, external_id: str) -> int:
        """Delete the post row only; its comments stay.  Returns rows affected."""
        async with self._guard("delete_post"):
            result = await self.session.execute(
                delete(Post).where(self.scheme.matches(Post, external_id))
            )
            await self.session.commit()
        return result.rowcount

    async def count_posts(self) -> int:
        async with self._guard("count_posts"):
            result = await self.session.execute(select(func.count()).select_from(Post))
            return result.scalar_one()

    async def resolve_internal_key(self, external_id: str) -> int:
        """Map an external post id to its internal key, checking existence."""
        stmt = select(Post.id).where(self.scheme.matches(Post, external_id))
        async with self._guard("resolve_internal_key"):
            key = (await self.session.execute(stmt)).scalar_one_or_none()
        if key is None:
            raise NotFound("post", external_id)
        return key

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    async def count_comments(self, post_external_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(Comment)
            .where(Comment.post_id == self._post_key_subquery(post_external_id))
        )
        async with self._guard("count_comments"):
            return (await self.session.execute(stmt)).scalar_one()

    async def insert_comment(self, body: str, post_key: int) -> str:
        """
        Insert a comment under the post with internal key *post_key*.

        The caller resolves the key first; nothing here re-checks that
        the post still exists.
        """
        async with self._guard("insert_comment"):
            comment = Comment(
                external_id=self.scheme.new_external_id(), body=body, post_id=post_key
            )
            self.session.add(comment)
            await self.session.flush()
            external_id = self.scheme.external_id(comment)
            await self.session.commit()
        return external_id

    async def list_comments(self, post_external_id: str) -> list[CommentRecord]:
        stmt = (
            select(Comment)
            .where(Comment.post_id == self._post_key_subquery(post_external_id))
            .order_by(Comment.id)
        )
        async with self._guard("list_comments"):
            comments = (await self.session.execute(stmt)).scalars().all()
        return [
            CommentRecord(
                external_id=self.scheme.external_id(c),
                body=c.body,
                post_id=post_external_id,
            )
            for c in comments
        ]
