from contextlib import asynccontextmanager
from fastapi import FastAPI
from storefront.api import cur_version
from storefront.api.routers import public_routers
from storefront.auth.services import AuthService
from storefront.background_workers.handlers import PostRegistrationHandlers
from storefront.background_workers.outbox_dispatcher import OutboxDispatcher
from storefront.cache._cache import redis_client
from storefront.common.custom_exceptions import register_all_exceptions
from storefront.common.logging_setup import get_logger, setup_logging, shutdown_logging
from storefront.db.connection import async_engine,async_session
from storefront.middlewares.request_id_middleware import RequestIdMiddleware
from storefront.otp.service import OtpService
from storefront.otp.store import RedisOtpStore
from storefront.config.settings import config_settings

logger = get_logger("storefront.app")


def build_services(app: FastAPI, redis, session_factory, settings=config_settings):
    """Wire the otp store, flows and outbox dispatcher onto app.state."""
    otp_service = OtpService.from_settings(RedisOtpStore(redis), settings)
    app.state.redis = redis
    app.state.session_factory = session_factory
    app.state.otp_service = otp_service
    app.state.auth_service = AuthService(
        otp_service, session_factory,
        encrypt_key=settings.PASSWORD_ENCRYPT_KEY,
        default_role=settings.DEFAULT_ROLE,
        tx_timeout=settings.IDENTITY_TX_TIMEOUT_SECONDS,
        tx_isolation=settings.IDENTITY_TX_ISOLATION,
    )
    handlers = PostRegistrationHandlers(session_factory, otp_service)
    app.state.outbox_dispatcher = OutboxDispatcher(
        session_factory, handlers.registry(),
        batch_size=settings.OUTBOX_BATCH_SIZE,
        poll_interval=settings.OUTBOX_POLL_SECONDS,
        max_attempts=settings.OUTBOX_MAX_ATTEMPTS,
    )


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()
    build_services(app, redis_client, async_session)

    dispatcher = app.state.outbox_dispatcher
    if config_settings.OUTBOX_DISPATCHER_ENABLED:
        dispatcher.start()

    try:
        yield
    finally:
        # requests have stopped by now; let the dispatcher finish its batch before the engine goes away
        await app.state.auth_service.wait_for_deliveries()
        await dispatcher.shutdown()
        await redis_client.aclose()
        await async_engine.dispose()
        logger.info("app.shutdown.complete")
        shutdown_logging()


def create_app():
    app=FastAPI(
        title="Storefront",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app

app=create_app()
