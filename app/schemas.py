from pydantic import BaseModel


# --- Comment ---

class CommentCreate(BaseModel):
    body: str


class CommentResponse(BaseModel):
    id: str
    body: str
    post_id: str


# --- Post ---

class PostCreate(BaseModel):
    body: str


class PostResponse(BaseModel):
    id: str
    body: str
    comment_count: int = 0
    # Only GetPost fills this in; omitted from create and list responses.
    comments: list[CommentResponse] | None = None


# --- Pagination ---

class PostPage(BaseModel):
    posts: list[PostResponse]
    limit: int
    total: int
    next_cursor: str | None = None
