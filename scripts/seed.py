"""Database seeder for the feed API.

Drops and recreates the schema, clears every post entry from the cache,
and inserts posts with a random number of comments.  Cache entries carry
no TTL and integer ids restart after a drop, so the entries go with the
tables.  The first reads after seeding repopulate them from the store.
"""
import asyncio
import argparse
import random
import time

from app.cache import POST_KEY_PATTERNS, best_effort, cache
from app.database import engine, async_session, Base
from app.identity import get_identity_scheme
from app.models import Post, Comment

WORDS = ["cache", "aside", "valkey", "redis", "mysql", "postgres", "cursor",
         "counter", "feed", "comment", "latency", "consistency", "repair"]


def _sentence(n_words: int) -> str:
    return " ".join(random.choice(WORDS) for _ in range(n_words)).capitalize() + "."


async def init_schema(drop: bool = False) -> None:
    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def clear_cache() -> None:
    removed = 0
    for pattern in POST_KEY_PATTERNS:
        count = await best_effort(cache.delete_pattern(pattern), "delete_pattern", pattern)
        if count is None:
            print(f"  Warning: could not clear {pattern!r}; flush the cache before serving")
            continue
        removed += count
    print(f"  Cache: {removed} stale entries removed")


async def seed(num_posts: int, max_comments: int) -> None:
    scheme = get_identity_scheme()
    print(f"Seeding: {num_posts} posts, up to {max_comments} comments each ({scheme.name} ids)")
    start = time.perf_counter()

    await init_schema(drop=True)
    await clear_cache()

    total_comments = 0
    batch_size = 500
    async with async_session() as session:
        for batch_start in range(0, num_posts, batch_size):
            batch_end = min(batch_start + batch_size, num_posts)
            posts = [
                Post(external_id=scheme.new_external_id(), body=_sentence(random.randint(3, 20)))
                for _ in range(batch_start, batch_end)
            ]
            session.add_all(posts)
            await session.flush()

            for post in posts:
                for _ in range(random.randint(0, max_comments)):
                    session.add(Comment(
                        external_id=scheme.new_external_id(),
                        body=_sentence(random.randint(2, 10)),
                        post_id=post.id,
                    ))
                    total_comments += 1
            await session.flush()
            print(f"  Batch {batch_start}-{batch_end}: posts created")

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Posts: {num_posts}")
    print(f"  Comments: {total_comments}")


async def _seed_with_cache(num_posts: int, max_comments: int) -> None:
    await cache.connect()
    try:
        await seed(num_posts, max_comments)
    finally:
        await cache.disconnect()


def main():
    parser = argparse.ArgumentParser(description="Seed the feed database")
    parser.add_argument("-n", "--posts", type=int, default=1000, help="Number of posts")
    parser.add_argument("--max-comments", type=int, default=5, help="Max comments per post")
    parser.add_argument("--init-only", action="store_true", help="Create missing tables and exit")
    args = parser.parse_args()
    if args.init_only:
        asyncio.run(init_schema())
        print("Schema ready")
        return
    asyncio.run(_seed_with_cache(args.posts, args.max_comments))


if __name__ == "__main__":
    main()
