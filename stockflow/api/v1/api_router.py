"""
Main API Router - Consolidates all module routes
"""

from fastapi import APIRouter

from stockflow.api.v1 import counts, documents, models, onhand, transfers

api_router = APIRouter()

# Documents (GR / GI / GT / IC)
api_router.include_router(documents.router, prefix="/documents", tags=["documents"])

# Model master
api_router.include_router(models.router, prefix="/models", tags=["models"])

# Onhand ledger inquiry
api_router.include_router(onhand.router, prefix="/onhand", tags=["onhand"])

# Inventory count review
api_router.include_router(counts.router, prefix="/counts", tags=["counts"])

# Transfer linkage
api_router.include_router(transfers.router, prefix="/transfers", tags=["transfers"])
