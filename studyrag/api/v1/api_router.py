from fastapi import APIRouter

from studyrag.api.v1.routers.documents import router as documents_router
from studyrag.api.v1.routers.quota import router as quota_router
from studyrag.api.v1.routers.retrieval import router as retrieval_router

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(documents_router)
v1_router.include_router(retrieval_router)
v1_router.include_router(quota_router)
