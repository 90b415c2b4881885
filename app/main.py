import uvicorn
from fastapi import FastAPI

from app.api.routes.chat_sessions import router as chat_sessions_router
from app.api.routes.checkouts import router as checkouts_router
from app.api.routes.entitlements import router as entitlements_router
from app.api.routes.health import router as health_router
from app.api.routes.provider_webhook import router as provider_webhook_router
from app.api.routes.subscriptions import router as subscriptions_router
from app.core.config import get_settings
from app.core.logging import configure_logging


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Creator Billing API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.include_router(health_router)
    app.include_router(provider_webhook_router)
    app.include_router(subscriptions_router)
    app.include_router(checkouts_router)
    app.include_router(entitlements_router)
    app.include_router(chat_sessions_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
