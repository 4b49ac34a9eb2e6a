"""
DocVault HTTP Application — FastAPI factory wiring services to routes.

Run:
    uvicorn docvault.api.app:create_app --factory --port 3000

create_app() builds every service from VaultConfig once and stores them
on app.state.services; routes reach them through the `services`
dependency. Tests pass their own session factory, store and limiter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from docvault import __version__
from docvault.accounts.service import AccountService
from docvault.activity.recorder import ActivityRecorder
from docvault.api.middleware import install_middleware
from docvault.api.routes import router
from docvault.db.session import init_db
from docvault.documents.delivery import FileDeliveryService
from docvault.documents.service import DocumentService, Notifier
from docvault.documents.validation import UploadValidator
from docvault.engine.config import VaultConfig, get_config, set_config
from docvault.engine.errors import DocVaultError, DocVaultSessionError, DocVaultValidationError
from docvault.engine.logging import configure_logging, log, log_system_event
from docvault.security.identity import IdentityResolver
from docvault.security.policy import AccessPolicy
from docvault.security.rate_limit import RateLimiter, create_rate_limiter
from docvault.storage import FileStore, create_file_store

logger = logging.getLogger("docvault.api.app")

_UNSET = object()


@dataclass
class VaultServices:
    """Everything a request handler needs, built once per application."""

    config: VaultConfig
    session_factory: sessionmaker
    store: FileStore
    resolver: IdentityResolver
    policy: AccessPolicy
    recorder: ActivityRecorder
    delivery: FileDeliveryService
    documents: DocumentService
    accounts: AccountService


def build_services(
    config: VaultConfig,
    session_factory: Optional[sessionmaker] = None,
    store: Optional[FileStore] = None,
    notifier: Optional[Notifier] = None,
    bcrypt_rounds: int = 12,
) -> VaultServices:
    if session_factory is None:
        session_factory = init_db(
            config.database.url,
            create_tables=config.database.create_tables,
            pool_pre_ping=config.database.pool_pre_ping,
            pool_recycle=config.database.pool_recycle,
        )
    if store is None:
        store = create_file_store(config.storage)

    resolver = IdentityResolver(session_factory, config.security)
    policy = AccessPolicy()
    recorder = ActivityRecorder(session_factory)
    return VaultServices(
        config=config,
        session_factory=session_factory,
        store=store,
        resolver=resolver,
        policy=policy,
        recorder=recorder,
        delivery=FileDeliveryService(session_factory, resolver, policy, store),
        documents=DocumentService(
            session_factory,
            store,
            resolver,
            recorder,
            policy=policy,
            validator=UploadValidator(config.uploads),
            notifier=notifier,
        ),
        accounts=AccountService(session_factory, recorder, config.security, bcrypt_rounds=bcrypt_rounds),
    )


def _error_body(exc: DocVaultError) -> str:
    # Validation and session messages describe the caller's own input; everything else stays generic.
    if isinstance(exc, (DocVaultValidationError, DocVaultSessionError)):
        return exc.message
    return exc.public_message


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DocVaultError)
    async def docvault_error(request: Request, exc: DocVaultError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.to_json()}")
        else:
            logger.info(f"{request.method} {request.url.path} → {exc.status_code} {exc.error_type}")
        return JSONResponse({"error": _error_body(exc)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse({"error": "Invalid request body"}, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse({"error": "Internal server error"}, status_code=500)


def create_app(
    config: Optional[VaultConfig] = None,
    session_factory: Optional[sessionmaker] = None,
    store: Optional[FileStore] = None,
    rate_limiter=_UNSET,
    notifier: Optional[Notifier] = None,
    bcrypt_rounds: int = 12,
    file_events: bool = True,
) -> FastAPI:
    """
    Build the DocVault application.

    Args:
        config: Explicit config; defaults to docvault.yaml + environment.
        session_factory: Pre-built sessionmaker (skips engine creation).
        store: Pre-built FileStore (skips backend selection).
        rate_limiter: Limiter to use, or None to disable; defaults to config.
        notifier: Upload notification hook.
        file_events: Write structured JSONL event files.
    """
    if config is None:
        config = get_config()
    else:
        set_config(config)

    configure_logging(config.logging, file_events=file_events)

    limiter: Optional[RateLimiter]
    limiter = create_rate_limiter(config.rate_limit) if rate_limiter is _UNSET else rate_limiter

    services = build_services(
        config,
        session_factory=session_factory,
        store=store,
        notifier=notifier,
        bcrypt_rounds=bcrypt_rounds,
    )

    app = FastAPI(
        title=config.name,
        description="Role-based document vault with access-checked file delivery",
        version=__version__,
    )
    app.state.services = services

    install_middleware(app, limiter)
    install_error_handlers(app)
    app.include_router(router)

    logger.info(
        f"{config.name} ready (env={config.environment}, storage={services.store.backend_name}, "
        f"rate_limit={'on' if limiter else 'off'})"
    )
    log(log_system_event("startup", details={
        "environment": config.environment,
        "storage_backend": services.store.backend_name,
    }))
    return app
