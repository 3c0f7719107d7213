"""
Post service: the cache-aside coordinator for posts.

Design notes
------------
- The relational store is the only write path of record.  Every write
  goes to the store first; cache population afterwards is advisory and
  wrapped in ``best_effort`` so a cache outage never fails a request.
- Each cached field (body, id mapping, counters) is decided on its own,
  so one response may mix cache hits and store fallbacks.
- A cache read that fails is treated exactly like a miss.  An absent
  entry always means "ask the store", never "zero" or "empty".
- Counters are not authoritative.  ``get_post`` recounts comments from
  the store and overwrites the per-post counter on every call; that is
  the repair path for any drift left by concurrent writers.
- Entries carry no TTL; they leave the cache only through
  ``delete_post`` or an overwrite.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import (
    TOTAL_POSTS_KEY,
    Counter,
    best_effort,
    cache,
    comment_count_key,
    post_body_key,
    post_pk_key,
)
from app.config import settings
from app.errors import CacheError, NotFound, StoreError
from app.schemas import CommentResponse, PostCreate, PostPage, PostResponse
from app.store import EntityStore, PostRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def clamp_limit(limit: int | None) -> int:
    """Page size to use: the default when unset, else clamped to [1, MAX_PAGE_SIZE]."""
    if limit is None:
        return settings.DEFAULT_PAGE_SIZE
    return max(1, min(limit, settings.MAX_PAGE_SIZE))


async def resolve_post_key(store: EntityStore, post_id: str) -> int:
    """
    Internal key of *post_id*, preferring the identifier-mapping entry.

    On a miss the store is asked (``NotFound`` propagates) and the
    mapping is backfilled.
    """
    pk_key = post_pk_key(post_id)
    key = await best_effort(cache.get_int(pk_key), "get post key", pk_key)
    if key is not None:
        return key
    key = await store.resolve_internal_key(post_id)
    await best_effort(cache.set(pk_key, key), "set post key", pk_key)
    return key


async def _cursor_key(store: EntityStore, cursor: str) -> int | None:
    """
    Internal key for a pagination cursor, or None when it cannot be
    resolved up front (the page query then resolves it itself).
    """
    local = store.scheme.local_key(cursor)
    if local is not None:
        return local
    try:
        return await resolve_post_key(store, cursor)
    except (NotFound, StoreError) as exc:
        logger.info("Cursor %r unresolved, paging by subquery: %s", cursor, exc)
        return None


async def _total_posts(store: EntityStore) -> int:
    counter = Counter(cache, TOTAL_POSTS_KEY)
    total = await best_effort(counter.get(), "get total count", TOTAL_POSTS_KEY)
    if total is not None:
        return total
    total = await store.count_posts()
    await best_effort(counter.set(total), "set total count", TOTAL_POSTS_KEY)
    return total


async def _comment_counts(store: EntityStore, posts: list[PostRecord]) -> list[int]:
    """
    Comment count per post: one MGET, then a store count (and counter
    backfill) for every slot that missed or held garbage.
    """
    keys = [comment_count_key(p.external_id) for p in posts]
    cached = await best_effort(cache.mget_int(keys), "mget comment counts")
    if cached is None:
        cached = [None] * len(keys)

    counts: list[int] = []
    for post, key, value in zip(posts, keys, cached):
        if isinstance(value, int):
            counts.append(value)
            continue
        if isinstance(value, CacheError):
            logger.warning(
                "Unusable comment count for post %s, recounting: %s",
                post.external_id,
                value,
                extra={"cache_key": key, "post_id": post.external_id},
            )
        count = await store.count_comments(post.external_id)
        await best_effort(cache.set(key, count), "set comment count", key)
        counts.append(count)
    return counts


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def create_post(db: AsyncSession, data: PostCreate) -> PostResponse:
    """
    Insert a post, then populate its cache entries.

    A brand-new post has zero comments, so its counter starts at a real
    baseline.  The global counter is only bumped when it already exists.
    """
    store = EntityStore(db)
    record = await store.insert_post(data.body)
    post_id = record.external_id

    pk_key = post_pk_key(post_id)
    await best_effort(cache.set(pk_key, record.key), "set post key", pk_key)
    body_key = post_body_key(post_id)
    await best_effort(cache.set(body_key, record.body), "set post body", body_key)
    count_key = comment_count_key(post_id)
    await best_effort(Counter(cache, count_key).set(0), "set comment count", count_key)
    await best_effort(
        Counter(cache, TOTAL_POSTS_KEY).incr_if_present(), "incr total count", TOTAL_POSTS_KEY
    )

    return PostResponse(id=post_id, body=record.body, comment_count=0)


async def list_posts(
    db: AsyncSession,
    limit: int | None = None,
    cursor: str | None = None,
) -> PostPage:
    """
    Return one page of posts, newest first.

    ``next_cursor`` is the id of the last post on the page and is absent
    on an empty page, so chaining cursors visits every post exactly once.
    """
    limit = clamp_limit(limit)
    store = EntityStore(db)

    if cursor:
        key = await _cursor_key(store, cursor)
        if key is not None:
            posts = await store.list_posts(limit, before_key=key)
        else:
            posts = await store.list_posts(limit, before_external=cursor)
    else:
        posts = await store.list_posts(limit)

    total = await _total_posts(store)
    counts = await _comment_counts(store, posts)

    return PostPage(
        posts=[
            PostResponse(id=p.external_id, body=p.body, comment_count=count)
            for p, count in zip(posts, counts)
        ],
        limit=limit,
        total=total,
        next_cursor=posts[-1].external_id if posts else None,
    )


async def get_post(db: AsyncSession, post_id: str) -> PostResponse:
    """
    Return a post with all of its comments.

    The body may come from the cache; comments always come from the
    store, and their number overwrites the cached counter.  Raises
    ``NotFound`` when the post does not exist.
    """
    store = EntityStore(db)

    body_key = post_body_key(post_id)
    body = await best_effort(cache.get(body_key), "get post body", body_key)
    if body is None:
        record = await store.get_post(post_id)
        body = record.body
        await best_effort(cache.set(body_key, body), "set post body", body_key)
        pk_key = post_pk_key(post_id)
        await best_effort(cache.set(pk_key, record.key), "set post key", pk_key)

    comments = await store.list_comments(post_id)
    count_key = comment_count_key(post_id)
    await best_effort(
        Counter(cache, count_key).set(len(comments)), "set comment count", count_key
    )

    return PostResponse(
        id=post_id,
        body=body,
        comment_count=len(comments),
        comments=[
            CommentResponse(id=c.external_id, body=c.body, post_id=c.post_id)
            for c in comments
        ],
    )


async def delete_post(db: AsyncSession, post_id: str) -> None:
    """
    Delete a post from the store, then drop its cache entries.

    Raises ``NotFound`` when no row was deleted; the entries are cleared
    either way and the global counter only moves for a real deletion.
    Comment rows are left in place.
    """
    store = EntityStore(db)
    affected = await store.delete_post(post_id)

    keys = (post_body_key(post_id), post_pk_key(post_id), comment_count_key(post_id))
    await best_effort(cache.delete(*keys), "delete post entries", ",".join(keys))

    if not affected:
        raise NotFound("post", post_id)
    await best_effort(
        Counter(cache, TOTAL_POSTS_KEY).decr_if_present(), "decr total count", TOTAL_POSTS_KEY
    )
