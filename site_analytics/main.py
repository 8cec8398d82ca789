import logging

from fastapi import FastAPI
from prometheus_client import make_asgi_app
import structlog

from site_analytics.api import funnels, goals, products
from site_analytics.config import settings
from site_analytics.db.clickhouse import init_clickhouse
from site_analytics.db.postgres import init_db
from site_analytics.middleware.logging import logging_middleware
from site_analytics.services.products import ProductApiClient, ProductInfoCache

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.log_level.upper())
    ),
)

app = FastAPI(title="Site Analytics API")


@app.on_event("startup")
async def startup():
    await init_db()
    await init_clickhouse()
    app.state.product_api = ProductApiClient(
        settings.product_api_url, timeout=settings.product_api_timeout_seconds
    )
    app.state.product_cache = ProductInfoCache(app.state.product_api)


@app.on_event("shutdown")
async def shutdown():
    await app.state.product_api.aclose()


app.middleware("http")(logging_middleware)

app.include_router(funnels.router, tags=["funnels"])
app.include_router(goals.router, tags=["goals"])
app.include_router(products.router, tags=["products"])

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.get("/health")
async def health():
    return {"status": "healthy"}
