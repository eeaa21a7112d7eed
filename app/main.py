"""FastAPI application: main entry point."""

import structlog
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.infrastructure.database import engine, Base, SessionLocal
from app.core.logging import configure_logging
from app.core.middleware import setup_middleware
from app.core.exceptions import AppError, ValidationException, global_exception_handler

# Import all models so SQLAlchemy knows about them
from app.domain.models.department import Department, EmployeeIdCounter
from app.domain.models.user import User

from app.interfaces.api.users import router as users_router

settings = get_settings()

# Configure logging immediately
configure_logging()
logger = structlog.get_logger(__name__)


def bootstrap_database() -> None:
    """Create tables, seed the fixed departments and the optional default admin."""
    from app.application.services.password_hasher import get_password_hasher
    from app.interfaces.api.deps import get_account_service, get_notification_service

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")

    db = SessionLocal()
    try:
        service = get_account_service(db, get_password_hasher(), get_notification_service())
        service.departments.ensure_defaults()
        service.bootstrap_admin(settings.DEFAULT_ADMIN_EMAIL, settings.DEFAULT_ADMIN_PASSWORD)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    logger.info("Starting CADD Attendance identity service...", env=settings.ENVIRONMENT)
    bootstrap_database()

    yield

    logger.info("CADD Attendance identity service stopped")


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return await global_exception_handler(
        request, ValidationException("Invalid request body", details={"errors": errors})
    )


app = FastAPI(
    title="CADD Attendance Identity Service",
    description="Accounts, sessions and password flows for the CDC attendance system",
    version="1.0.0",
    lifespan=lifespan,
)

# Setup Middleware (Correlation ID, Logging)
setup_middleware(app)

# Global Exception Handling
app.add_exception_handler(AppError, global_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# CORS (credentials need explicit origins)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(users_router)


@app.get("/")
def root():
    return {
        "name": "CADD Attendance Identity Service",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
def health():
    return {"status": "healthy"}
