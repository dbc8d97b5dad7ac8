from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from calendar_ai.api.routes import calendar
from calendar_ai.core.config import settings
from calendar_ai.core.errors import AIError
from calendar_ai.utils.audit_logger import audit_logger


# Create FastAPI app
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(calendar.router, prefix=f"{settings.API_V1_PREFIX}/calendar", tags=["Calendar"])


@app.exception_handler(AIError)
async def ai_error_handler(request: Request, exc: AIError):
    """Return service errors with their user-facing message and status"""
    logger.error(f"{exc.code.value} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def startup_event():
    """Log application startup"""
    audit_logger.log(
        action="application_startup",
        resource_type="application",
        status="success",
        details={"environment": settings.ENVIRONMENT}
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up resources on application shutdown"""
    audit_logger.log(
        action="application_shutdown",
        resource_type="application",
        status="success"
    )


@app.get("/", tags=["Health"])
async def health_check():
    """Basic health check endpoint"""
    return {"status": "ok", "version": "1.0.0"}
