from __future__ import annotations

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from notifier.api.deps import caller_from_headers
from notifier.api.handlers import register_exception_handlers
from notifier.api.routers import api_router
from notifier.config import Settings, settings
from notifier.container import build_services
from notifier.db import create_engine, create_session_factory, init_models
from notifier.logging import configure_logging
from notifier.realtime.filters import open_recipient_stream
from notifier.realtime.streams import serve_websocket


def create_app(app_settings: Settings | None = None) -> FastAPI:
    app_settings = app_settings or settings
    configure_logging(app_settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_engine(app_settings.DATABASE_URL)
        if app_settings.DATABASE_CREATE_TABLES:
            await init_models(engine)
        http_client = httpx.AsyncClient()
        services = build_services(
            app_settings,
            session_factory=create_session_factory(engine),
            http_client=http_client,
        )
        if services.relay is not None:
            services.relay.start()
        app.state.services = services
        try:
            yield
        finally:
            if services.relay is not None:
                await services.relay.stop()
            services.hub.close()
            await http_client.aclose()
            await engine.dispose()

    app = FastAPI(title="TaskFlow Notifications", default_response_class=ORJSONResponse, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "subscribers": app.state.services.hub.subscriber_count}

    @app.websocket("/ws/notifications")
    async def ws_notifications(websocket: WebSocket) -> None:
        caller = caller_from_headers(websocket.headers.get("x-user-id"), websocket.headers.get("x-user-role"))
        if caller.subject_id is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        # Attach before the handshake completes so nothing published in between is missed.
        subscription = open_recipient_stream(websocket.app.state.services.hub, caller.subject_id)
        await serve_websocket(websocket, subscription)

    return app


app = create_app()
