"""
FastAPI application factory.
create_app() is the single entry point for building the app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Callable, Optional

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.asynchronous.mongo_client import AsyncMongoClient
from starlette.middleware.sessions import SessionMiddleware

from config import AppSettings
from errors import register_error_handlers
from infrastructure.cache.redis_client import create_redis_client
from infrastructure.cache.request_throttle import RequestThrottle, throttle_storage
from infrastructure.email.protocol import EmailProvider
from infrastructure.email.zeptomail import ZeptoMailProvider
from infrastructure.http_client import HttpClient
from infrastructure.oauth_clients import init_oauth
from repositories.indexes import (
    LOGIN_ATTEMPTS_COLLECTION,
    USERS_COLLECTION,
    ensure_indexes,
)
from repositories.login_attempt_repository import LoginAttemptRepository
from repositories.user_repository import UserRepository
from routes.admin_routes import router as admin_router
from routes.auth_routes import router as auth_router
from routes.health_routes import router as health_router
from services.auth_service import AuthService
from services.federated_identity_service import FederatedIdentityService
from services.lockout_service import LockoutService
from services.password_recovery_service import PasswordRecoveryService
from services.session_policy import SessionPolicy
from services.token_service import TokenService
from shared.datetime_utils import Clock, utcnow
from shared.logging import get_logger
from shared.logging_config import setup_logging

log = get_logger(__name__)

Lifespan = Callable[[FastAPI], AsyncContextManager[None]]


def attach_services(
    app: FastAPI,
    settings: AppSettings,
    *,
    user_repo: UserRepository,
    attempt_repo: LoginAttemptRepository,
    email_provider: EmailProvider,
    throttle: RequestThrottle,
    clock: Clock = utcnow,
) -> None:
    """Wire the service graph onto app.state.

    The lifespan calls this with Mongo-backed repositories; tests call it
    with in-memory ones.
    """
    sessions = SessionPolicy(settings.session)
    tokens = TokenService(settings.jwt, user_repo, sessions, clock=clock)
    lockout = LockoutService(settings.lockout, attempt_repo, clock=clock)
    recovery = PasswordRecoveryService(
        settings.recovery, user_repo, email_provider, throttle, clock=clock
    )
    federated = FederatedIdentityService(user_repo, clock=clock)

    app.state.settings = settings
    app.state.token_service = tokens
    app.state.lockout_service = lockout
    app.state.auth_service = AuthService(
        user_repo,
        tokens,
        lockout,
        recovery,
        federated,
        sessions,
        settings.lockout,
        clock=clock,
    )


def _default_lifespan(settings: AppSettings) -> Lifespan:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        mongo_client: AsyncMongoClient = AsyncMongoClient(
            settings.db.mongodb_uri,
            tz_aware=True,
            serverSelectionTimeoutMS=settings.db.server_selection_timeout_ms,
        )
        db = mongo_client[settings.db.db_name]
        app.state.mongo_client = mongo_client
        app.state.db = db

        # Redis is optional; without it the OTP request throttle counts in memory
        redis_client = None
        if settings.redis.redis_uri:
            redis_client = await create_redis_client(settings.redis.redis_uri)
        app.state.redis = redis_client

        await ensure_indexes(db)

        http_client = HttpClient(timeout=10.0)
        attach_services(
            app,
            settings,
            user_repo=UserRepository(
                db[USERS_COLLECTION],
                timeout_ms=settings.db.store_timeout_ms,
                retries=settings.db.store_retries,
            ),
            attempt_repo=LoginAttemptRepository(
                db[LOGIN_ATTEMPTS_COLLECTION],
                timeout_ms=settings.lockout.store_timeout_ms,
                retries=settings.lockout.store_retries,
            ),
            email_provider=ZeptoMailProvider(settings.email, http_client),
            throttle=RequestThrottle(
                throttle_storage(
                    settings.redis.redis_uri if redis_client is not None else None
                ),
                prefix="password_recovery",
                limit=settings.recovery.otp_requests_per_hour,
            ),
        )
        log.info("app_started", env=settings.env, db=settings.db.db_name)

        yield

        # ── Shutdown ─────────────────────────────────────────────────────────
        await http_client.aclose()
        await mongo_client.close()
        if redis_client is not None:
            await redis_client.aclose()

    return lifespan


def create_app(
    settings: Optional[AppSettings] = None, *, lifespan: Optional[Lifespan] = None
) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if settings is None:
        settings = AppSettings()

    setup_logging(settings.logging, is_production=settings.is_production)

    # Initialise Sentry before anything else so it captures startup errors
    if settings.sentry.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry.sentry_dsn,
            environment=settings.env,
            send_default_pii=settings.sentry.sentry_send_pii,
            traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
        )

    if not settings.secret_key:
        raise RuntimeError("SECRET_KEY must be set (signs the OAuth session cookie)")

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan or _default_lifespan(settings),
    )
    app.state.settings = settings

    oauth, providers = init_oauth(settings.oauth)
    app.state.oauth = oauth
    app.state.oauth_providers = providers

    # Authlib keeps the OAuth state/nonce in the session between redirects
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        same_site="lax",
        https_only=settings.jwt.cookie_secure,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(admin_router)

    return app
