from fastapi import APIRouter, Depends, HTTPException, Query, status
import httpx
import structlog

from site_analytics.api.deps import get_product_cache
from site_analytics.services.products import ProductInfoCache, extract_product_slug

router = APIRouter()
logger = structlog.get_logger()


@router.get("/products")
async def get_product(
        path: str = Query(..., min_length=1),
        cache: ProductInfoCache = Depends(get_product_cache)
):
    slug = extract_product_slug(path)
    if not slug:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No product in path")

    try:
        return await cache.get_or_fetch(slug)

    except httpx.HTTPError as e:
        logger.error("product_lookup_failed", slug=slug, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Product lookup failed")
