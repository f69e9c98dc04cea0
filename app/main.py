"""FastAPI entry point for Cloud Run deployment."""
import hmac
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.config import Settings
from app.logging_config import setup_logging
from app.telegram_handler import TelegramBotHandler

setup_logging()
logger = logging.getLogger(__name__)

settings = Settings.from_env()
settings.validate()

telegram_handler: Optional[TelegramBotHandler] = None

if settings.telegram_bot_token:
    logger.info(f"TELEGRAM_BOT_TOKEN found, length: {len(settings.telegram_bot_token)}")
else:
    logger.warning("TELEGRAM_BOT_TOKEN not set - Telegram integration disabled")


async def init_telegram():
    """Initialize the Telegram bot handler."""
    global telegram_handler
    if settings.telegram_bot_token and telegram_handler is None:
        try:
            logger.info("Initializing Telegram bot...")
            handler = TelegramBotHandler(settings)
            await handler.initialize()
            telegram_handler = handler
            logger.info("Telegram bot initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Telegram bot: {e}")
            import traceback
            logger.error(traceback.format_exc())


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    await init_telegram()
    yield
    # Shutdown logic
    if telegram_handler:
        await telegram_handler.shutdown()


app = FastAPI(lifespan=lifespan)

# Rate limiting configuration
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors.

    Returns JSONResponse instead of raising exception.
    """
    logger.warning(f"Rate limit exceeded for {request.client.host}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "detail": "Too many requests. Please try again later.",
            "retry_after": "60 seconds"
        }
    )


def _secret_matches(request: Request) -> bool:
    """Check Telegram's secret-token header when a webhook secret is configured."""
    expected = settings.telegram_webhook_secret
    if not expected:
        return True
    received = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
    return hmac.compare_digest(received, expected)


@app.post("/webhook/telegram")
@limiter.limit("30/minute")
async def telegram_webhook(request: Request):
    """Webhook endpoint for Telegram bot updates.

    Endpoint: POST /webhook/telegram
    """
    # Lazy initialization on first webhook call
    if telegram_handler is None and settings.telegram_bot_token:
        await init_telegram()

    if not telegram_handler:
        raise HTTPException(
            status_code=503, detail="Telegram bot not configured"
        )

    if not _secret_matches(request):
        logger.warning("Rejected webhook call with invalid secret token")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    try:
        update_data = await request.json()
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Failed to parse update")

    if not isinstance(update_data, dict):
        raise HTTPException(status_code=400, detail="Update must be a JSON object")

    await telegram_handler.handle_webhook(update_data)
    return {"ok": True}


@app.get("/telegram/webhook-status")
async def telegram_webhook_status():
    """Get Telegram webhook status."""
    # Lazy initialization on status check
    if telegram_handler is None and settings.telegram_bot_token:
        await init_telegram()

    if not telegram_handler:
        return {
            "status": "disabled",
            "message": "Telegram bot not configured",
            "token_present": bool(settings.telegram_bot_token),
            "token_length": len(settings.telegram_bot_token),
        }

    try:
        bot_info = await telegram_handler.get_me()
        return {
            "status": "active",
            "bot_username": bot_info.username,
            "bot_name": bot_info.first_name,
            "session_backend": settings.session_backend,
            "completion_model": settings.completion_model,
        }
    except Exception as e:
        logger.error(f"Error getting bot info: {e}")
        return {"status": "error", "message": str(e)}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/healthz")
async def healthz():
    """Basic health check for Cloud Run."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 8080)))
