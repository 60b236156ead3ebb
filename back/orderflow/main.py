import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models, security
from .db import check_db_connection, create_db_and_tables, create_db_engine, get_session
from .errors import Internal, OrderFlowError
from .events import build_publisher
from .order_routes import router as order_router
from .report_routes import router as report_router
from .settings import Settings, settings
from .stock_routes import router as stock_router
from .table_routes import router as table_router
from .takeaway_routes import router as takeaway_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    status.HTTP_400_BAD_REQUEST: "invalid_input",
    status.HTTP_401_UNAUTHORIZED: "unauthorized",
    status.HTTP_403_FORBIDDEN: "forbidden",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
    status.HTTP_409_CONFLICT: "conflict",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """The process owns the engine and the publisher; anything preset on app.state wins."""
    logger.info("Starting application...")
    app_settings: Settings = app.state.settings
    owns_engine = getattr(app.state, "engine", None) is None
    if owns_engine:
        app.state.engine = create_db_engine(app_settings)
        create_db_and_tables(app.state.engine)
    if getattr(app.state, "publisher", None) is None:
        app.state.publisher = build_publisher(app_settings.redis_url, app_settings.events_channel)

    yield

    if owns_engine:
        app.state.engine.dispose()
    logger.info("Shutdown complete")


async def orderflow_error_handler(request: Request, exc: OrderFlowError) -> JSONResponse:
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "status": "error",
            "code": "invalid_input",
            "message": "Request validation failed",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "status": "error",
            "code": HTTP_ERROR_CODES.get(exc.status_code, "error"),
            "message": str(exc.detail),
            "details": {},
        },
        headers=getattr(exc, "headers", None),
    )


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return _internal_error("Unexpected database error")


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return _internal_error("Internal server error")


def _internal_error(message: str) -> JSONResponse:
    error = Internal(message)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def create_app(app_settings: Settings | None = None) -> FastAPI:
    app = FastAPI(
        title="Order Flow API",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = app_settings or settings

    # Parse CORS origins from environment (comma-separated)
    cors_origins_list = [
        origin.strip()
        for origin in app.state.settings.cors_origins.split(",")
        if origin.strip()
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(OrderFlowError, orderflow_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(order_router, tags=["orders"])
    app.include_router(table_router, tags=["tables"])
    app.include_router(takeaway_router, tags=["takeaway"])
    app.include_router(stock_router, tags=["stock"])
    app.include_router(report_router, tags=["reports"])

    register_core_routes(app)
    return app


def register_core_routes(app: FastAPI) -> None:
    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/health/db")
    def health_db(request: Request) -> dict:
        """Check database connection."""
        try:
            check_db_connection(request.app.state.engine)
        except SQLAlchemyError as e:
            raise HTTPException(status_code=503, detail=f"Database error: {e}")
        return {"status": "ok", "database": "connected"}

    # ============ AUTH ============

    @app.post("/token")
    def login_for_access_token(
        request: Request,
        form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
        session: Session = Depends(get_session),
    ) -> JSONResponse:
        statement = select(models.User).where(models.User.username == form_data.username)
        user = session.exec(statement).first()

        if not user or not security.verify_password(form_data.password, user.hashed_password):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect username or password",
                headers={"WWW-Authenticate": "Bearer"},
            )

        app_settings: Settings = request.app.state.settings
        access_token = security.create_access_token(
            data={"sub": user.username, "role": user.role.value},
            app_settings=app_settings,
            expires_delta=timedelta(minutes=app_settings.access_token_expire_minutes),
        )

        response = JSONResponse(content={
            "status": "success",
            "access_token": access_token,
            "token_type": "bearer",
            "role": user.role.value,
        })
        response.set_cookie(
            key="access_token",
            value=access_token,
            httponly=True,
            secure=app_settings.is_production,  # Only enforce HTTPS in production
            samesite="lax",
            path="/",
            max_age=app_settings.access_token_expire_minutes * 60,
        )
        return response

    @app.post("/logout")
    def logout() -> JSONResponse:
        response = JSONResponse(content={"status": "success", "message": "Logged out"})
        response.delete_cookie(key="access_token", path="/")  # Must match path used in set_cookie
        return response

    @app.get("/users/me", response_model=models.UserRead)
    def read_users_me(
        current_user: Annotated[models.User, Depends(security.get_current_user)],
    ):
        return current_user


app = create_app()
