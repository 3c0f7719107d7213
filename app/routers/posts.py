from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.dependencies import FeedPageParams
from app.errors import NotFound
from app.schemas import CommentCreate, CommentResponse, PostCreate, PostPage, PostResponse
from app.services import comment_service, post_service

router = APIRouter(prefix="/ui/v1/posts", tags=["posts"])

@router.post("", status_code=201, response_model=PostResponse, response_model_exclude_none=True)
async def create_post(data: PostCreate, db: AsyncSession = Depends(get_db)):
    return await post_service.create_post(db, data)

@router.get("", response_model=PostPage, response_model_exclude_none=True)
async def list_posts(page: FeedPageParams = Depends(), db: AsyncSession = Depends(get_db)):
    return await post_service.list_posts(db, page.limit, page.cursor)

@router.get("/{post_id}", response_model=PostResponse)
async def get_post(post_id: str, db: AsyncSession = Depends(get_db)):
    try:
        return await post_service.get_post(db, post_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Post not found")

@router.delete("/{post_id}", status_code=204)
async def delete_post(post_id: str, db: AsyncSession = Depends(get_db)):
    try:
        await post_service.delete_post(db, post_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Post not found")

@router.post("/{post_id}/comment", status_code=201, response_model=CommentResponse)
async def add_comment(post_id: str, data: CommentCreate, db: AsyncSession = Depends(get_db)):
    try:
        return await comment_service.add_comment(db, post_id, data)
    except NotFound:
        raise HTTPException(status_code=404, detail="Post not found")
