"""
Comment service: append-only comment creation.

Comments are never cached as bodies or lists; ``get_post`` reads them
straight from the store.  Only the per-post counter is touched here.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import Counter, best_effort, cache, comment_count_key
from app.schemas import CommentCreate, CommentResponse
from app.services.post_service import resolve_post_key
from app.store import EntityStore


async def add_comment(
    db: AsyncSession,
    post_id: str,
    data: CommentCreate,
) -> CommentResponse:
    """
    Append a comment to the post identified by *post_id*.

    The post's internal key is resolved before anything is written, so
    an unknown post raises ``NotFound`` with no side effects.

    Counter policy is increment-if-present.  This is neither
    get-then-increment-or-initialize (an absent counter is NOT set to 1)
    nor a blind INCR: an absent counter may hide existing comments, so
    it is left absent and the next ``list_posts`` or ``get_post``
    rebuilds it from the store.
    """
    store = EntityStore(db)
    post_key = await resolve_post_key(store, post_id)
    comment_id = await store.insert_comment(data.body, post_key)

    count_key = comment_count_key(post_id)
    await best_effort(
        Counter(cache, count_key).incr_if_present(), "incr comment count", count_key
    )

    return CommentResponse(id=comment_id, body=data.body, post_id=post_id)
