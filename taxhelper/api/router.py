"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from taxhelper.api.health import router as health_router
from taxhelper.api.insights import router as insights_router
from taxhelper.api.receipt_jobs import router as receipt_jobs_router
from taxhelper.api.receipts import router as receipts_router
from taxhelper.api.transactions import router as transactions_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(receipts_router)
api_router.include_router(receipt_jobs_router)
api_router.include_router(insights_router)
api_router.include_router(transactions_router)
