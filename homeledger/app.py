from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request

from homeledger.config import Settings, configure_logging, load_settings
from homeledger.db import close_pool, get_db, init_db, open_pool
from homeledger.routes import (
    ai_planning,
    auth,
    backup,
    budget,
    families,
    family,
    goals,
    market,
    notifications,
    push,
    reports,
    settings as settings_routes,
    simulations,
    transactions,
    translations,
    users,
)
from homeledger.scheduler import default_jobs
from homeledger.schema import init_schema
from homeledger.security import SESSION_COOKIE, SESSION_MAX_AGE, RequireLoginMiddleware

logger = logging.getLogger(__name__)

API_PREFIX = "/api"

ROUTERS = (
    auth.router,
    transactions.router,
    budget.router,
    goals.router,
    family.router,
    families.router,
    users.router,
    settings_routes.router,
    notifications.router,
    push.router,
    translations.router,
    reports.router,
    backup.router,
    simulations.router,
    market.router,
    ai_planning.router,
)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    init_db(settings)

    app = FastAPI(title="homeledger")
    app.state.settings = settings
    app.state.jobs = []

    for router in ROUTERS:
        app.include_router(router, prefix=API_PREFIX)

    @app.on_event("startup")
    async def _startup():
        open_pool()
        init_schema(get_db(), settings.locales_dir)
        if settings.scheduler_enabled:
            app.state.jobs = default_jobs()
            for job in app.state.jobs:
                await job.start()
        logger.info("homeledger ready (env=%s, db=%s)", settings.env, get_db().dialect)

    @app.on_event("shutdown")
    async def _shutdown():
        for job in app.state.jobs:
            await job.stop()
        app.state.jobs = []
        close_pool()

    @app.middleware("http")
    async def _no_store(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith(API_PREFIX + "/"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
            response.headers["Pragma"] = "no-cache"
        return response

    @app.get(API_PREFIX + "/health")
    def health():
        return {"ok": True, "status": "ok", "database": get_db().dialect}

    # added last so it runs first: the login gate needs request.session
    app.add_middleware(RequireLoginMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=SESSION_COOKIE,
        same_site="lax",
        max_age=SESSION_MAX_AGE,
        https_only=settings.secure_cookies,
    )
    return app
