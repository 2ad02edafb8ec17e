import logging
import time
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from src.config import settings
from src.database import Base, engine
from src.ports import router as ports_router
from src.tickets import router as tickets_router, agent_router as ticket_agent_router, admin_router as ticket_admin_router
from src.decisions import router as decisions_router, overstay_router

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create missing tables; schema changes still go through migrations
    Base.metadata.create_all(bind=engine)
    logger.info("%s started (%s)", settings.PROJECT_NAME, settings.ENVIRONMENT)
    yield
    logger.info("%s shutting down", settings.PROJECT_NAME)

# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Border control ticketing and decision API",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],  # Agent and traveler front ends
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next: Callable) -> Response:
    """Log every request with its status and processing time"""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    logger.info("%s %s -> %s (%.3fs)", request.method, request.url.path, response.status_code, process_time)
    response.headers["X-Process-Time"] = str(process_time)
    return response

# Include routers
app.include_router(
    ports_router.router,
    prefix=f"{settings.API_V1_STR}/ports",
    tags=["Ports"]
)

app.include_router(
    tickets_router,
    prefix=f"{settings.API_V1_STR}/tickets",
    tags=["Tickets"]
)

app.include_router(
    overstay_router,
    prefix=f"{settings.API_V1_STR}/tickets",
    tags=["Tickets"]
)

app.include_router(
    decisions_router,
    prefix=f"{settings.API_V1_STR}/agent",
    tags=["Agent Decisions"]
)

app.include_router(
    ticket_agent_router,
    prefix=f"{settings.API_V1_STR}/agent",
    tags=["Agent Decisions"]
)

app.include_router(
    ticket_admin_router,
    prefix=f"{settings.API_V1_STR}/admin",
    tags=["Admin"]
)

@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": settings.PROJECT_NAME,
        "version": "1.0.0",
        "docs": "/docs"
    }

@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
