from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.cache import cache
from app.config import settings
from app.error_handlers import register_error_handlers
from app.middleware import TimingMiddleware
from app.observability import setup_logging
from app.routers import health, posts

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    await cache.connect()  # never raises; the app works without Redis
    yield
    # Shutdown
    await cache.disconnect()

app = FastAPI(
    title="Feed API",
    description="Posts and comments served through a cache-aside Redis layer",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

register_error_handlers(app)

# Routers
app.include_router(posts.router)
app.include_router(health.router)
