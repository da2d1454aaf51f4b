from fastapi import APIRouter, HTTPException, Request, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from storefront.common.logging_setup import get_logger
from storefront.common.utils import success_response

logger = get_logger("storefront.health")

home_router = APIRouter()


@home_router.get("/health")
async def health_check(request: Request):
    session_factory = request.app.state.session_factory
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health.database_unreachable")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database connection error")

    try:
        await request.app.state.redis.ping()
    except RedisError:
        logger.exception("health.redis_unreachable")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cache connection error")

    return success_response({"status": "healthy"})
