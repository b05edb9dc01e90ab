import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from blog_api.cache import cache
from blog_api.errors import HTTP_STATUS_BY_KIND, ServiceError
from blog_api.logging_config import configure_logging
from blog_api.middleware import TimingMiddleware
from blog_api.routers import categories, comments, metrics, posts, tags, users

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # The app runs without Redis; CacheManager degrades to no-ops.
    await cache.connect()
    yield
    await cache.disconnect()


app = FastAPI(
    title="Blog API",
    description="Posts, taxonomy and threaded comments for a blogging platform",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = HTTP_STATUS_BY_KIND[exc.kind]
    logger.info(
        "%s %s failed: %s (%s)", request.method, request.url.path, exc.kind.value, exc.message
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "kind": exc.kind.value},
    )


# Routers
app.include_router(posts.router)
app.include_router(comments.router)
app.include_router(categories.router)
app.include_router(tags.router)
app.include_router(users.router)
app.include_router(metrics.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
