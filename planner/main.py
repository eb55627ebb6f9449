"""Main FastAPI application for the planner service."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from planner import config
from planner.db.init import init_db
from planner.middleware.cors import add_cors_middleware
from planner.routers import patterns_router, tasks_router
from planner.routers.errors import status_code_for
from planner.services.errors import PlannerError
from planner.utils.metrics import metrics_collector

logging.basicConfig(
    level=config.get_log_level(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI application
app = FastAPI(
    title="Planner API",
    description="Daily planner with prioritized tasks and recurring series",
    version="1.0.0",
)

# Add CORS middleware
add_cors_middleware(app)


@app.on_event("startup")
async def startup_event():
    """Initialize database tables on startup."""
    try:
        init_db()
        logger.info("Database tables initialized successfully.")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        logger.warning("Server will continue but database operations may fail.")


@app.exception_handler(PlannerError)
async def planner_error_handler(request: Request, exc: PlannerError):
    """Render engine errors as {"detail": {code, message, details}}."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/metrics")
async def get_metrics():
    """Engine counters and timers."""
    return metrics_collector.get_metrics()


@app.get("/")
async def root():
    """Root endpoint - API welcome message."""
    return {
        "title": "Planner API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


app.include_router(tasks_router, prefix="/api")  # /api/{user_id}/days, /api/{user_id}/tasks
app.include_router(patterns_router, prefix="/api")  # /api/{user_id}/patterns


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "planner.main:app",
        host="0.0.0.0",
        port=8000,
        reload=config.ENVIRONMENT == "development",
    )
