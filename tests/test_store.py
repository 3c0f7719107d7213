"""
Entity store adapter tests: the relational side on its own, without the
cache in the picture.
"""
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFound, StoreError
from app.identity import IntegerScheme
from app.models import Comment
from app.store import EntityStore


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_insert_post_assigns_both_ids(db_session: AsyncSession):
    store = EntityStore(db_session)
    first = await store.insert_post("one")
    second = await store.insert_post("two")
    assert first.external_id != second.external_id
    assert second.key > first.key
    assert first.body == "one"


@pytest.mark.asyncio
async def test_insert_post_integer_scheme(db_session: AsyncSession):
    store = EntityStore(db_session, IntegerScheme())
    record = await store.insert_post("hello")
    assert record.external_id == str(record.key)


@pytest.mark.asyncio
async def test_get_post(db_session: AsyncSession):
    store = EntityStore(db_session)
    created = await store.insert_post("hello")
    fetched = await store.get_post(created.external_id)
    assert fetched == created


@pytest.mark.asyncio
async def test_get_post_not_found(db_session: AsyncSession):
    with pytest.raises(NotFound) as info:
        await EntityStore(db_session).get_post("missing")
    assert info.value.kind == "post"
    assert info.value.external_id == "missing"


@pytest.mark.asyncio
async def test_list_posts_newest_first(db_session: AsyncSession):
    store = EntityStore(db_session)
    created = [await store.insert_post(f"post {i}") for i in range(5)]
    page = await store.list_posts(3)
    assert [p.body for p in page] == ["post 4", "post 3", "post 2"]

    rest = await store.list_posts(3, before_key=page[-1].key)
    assert [p.external_id for p in rest] == [created[1].external_id, created[0].external_id]


@pytest.mark.asyncio
async def test_list_posts_before_external(db_session: AsyncSession):
    store = EntityStore(db_session)
    created = [await store.insert_post(f"post {i}") for i in range(4)]
    page = await store.list_posts(10, before_external=created[2].external_id)
    assert [p.body for p in page] == ["post 1", "post 0"]


@pytest.mark.asyncio
async def test_list_posts_unknown_external_cursor_is_empty(db_session: AsyncSession):
    store = EntityStore(db_session)
    await store.insert_post("only")
    assert await store.list_posts(10, before_external="gone") == []


@pytest.mark.asyncio
async def test_delete_post_reports_rows(db_session: AsyncSession):
    store = EntityStore(db_session)
    record = await store.insert_post("bye")
    assert await store.delete_post(record.external_id) == 1
    assert await store.delete_post(record.external_id) == 0
    assert await store.count_posts() == 0


@pytest.mark.asyncio
async def test_delete_post_leaves_comments(db_session: AsyncSession):
    store = EntityStore(db_session)
    record = await store.insert_post("parent")
    await store.insert_comment("orphan-to-be", record.key)
    await store.delete_post(record.external_id)

    rows = (await db_session.execute(select(Comment))).scalars().all()
    assert len(rows) == 1
    assert rows[0].post_id == record.key
    # The post no longer resolves, so its comments are unreachable by id.
    assert await store.list_comments(record.external_id) == []


@pytest.mark.asyncio
async def test_keys_not_reused_after_tail_delete(db_session: AsyncSession):
    store = EntityStore(db_session)
    first = await store.insert_post("first")
    await store.delete_post(first.external_id)
    second = await store.insert_post("second")
    assert second.key > first.key


@pytest.mark.asyncio
async def test_resolve_internal_key(db_session: AsyncSession):
    store = EntityStore(db_session)
    record = await store.insert_post("x")
    assert await store.resolve_internal_key(record.external_id) == record.key
    with pytest.raises(NotFound):
        await store.resolve_internal_key("nope")


@pytest.mark.asyncio
async def test_resolve_internal_key_integer_scheme_checks_existence(db_session: AsyncSession):
    store = EntityStore(db_session, IntegerScheme())
    with pytest.raises(NotFound):
        await store.resolve_internal_key("12")
    with pytest.raises(NotFound):
        await store.resolve_internal_key("not-a-number")


# ---------------------------------------------------------------------------
# Comments
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_comments_roundtrip(db_session: AsyncSession):
    store = EntityStore(db_session)
    post = await store.insert_post("parent")
    other = await store.insert_post("other")
    first = await store.insert_comment("a", post.key)
    second = await store.insert_comment("b", post.key)
    await store.insert_comment("elsewhere", other.key)

    comments = await store.list_comments(post.external_id)
    assert [c.external_id for c in comments] == [first, second]
    assert [c.body for c in comments] == ["a", "b"]
    assert all(c.post_id == post.external_id for c in comments)
    assert await store.count_comments(post.external_id) == 2
    assert await store.count_comments(other.external_id) == 1


@pytest.mark.asyncio
async def test_count_comments_unknown_post(db_session: AsyncSession):
    assert await EntityStore(db_session).count_comments("ghost") == 0


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_driver_errors_become_store_errors(db_session: AsyncSession, monkeypatch):
    async def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("server has gone away"))

    monkeypatch.setattr(db_session, "execute", broken_execute)
    with pytest.raises(StoreError) as info:
        await EntityStore(db_session).count_posts()
    assert isinstance(info.value.__cause__, OperationalError)
