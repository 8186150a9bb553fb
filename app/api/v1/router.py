from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Stock Counts
    stock_counts,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Stock Counts ====================
api_router.include_router(
    stock_counts.router,
    prefix="/stock-counts",
    tags=["Stock Counts"]
)
