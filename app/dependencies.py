from fastapi import Query


class FeedPageParams:
    """
    Reusable FastAPI dependency that parses the feed pagination query.

    Usage in a router::

        @router.get("/posts")
        async def list_posts(page: FeedPageParams = Depends()):
            ...

    Attributes
    ----------
    limit:
        Requested page size, or None.  Out-of-range values are clamped by
        the service layer rather than rejected here; a non-integer value
        fails validation (400).
    cursor:
        Id of the last post seen on the previous page.  ``last_uuid`` is
        accepted as an older spelling of the same parameter.
    """

    def __init__(
        self,
        limit: int | None = Query(
            None,
            description="Posts per page (clamped to 1..100, default 10).",
        ),
        cursor: str | None = Query(
            None,
            description="Id of the last post on the previous page.",
        ),
        last_uuid: str | None = Query(
            None,
            include_in_schema=False,
        ),
    ) -> None:
        self.limit = limit
        self.cursor = cursor or last_uuid or None
