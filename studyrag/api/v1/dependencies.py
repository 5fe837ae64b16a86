from fastapi import Depends, Request

from studyrag.application.use_cases.document_ingestion_use_case import DocumentIngestionUseCase
from studyrag.application.use_cases.document_management_use_case import DocumentManagementUseCase
from studyrag.infrastructure.container import ServiceContainer
from studyrag.services.quota_service import QuotaService
from studyrag.services.retrieval.retrieval_engine import RetrievalEngine


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_ingestion_use_case(container: ServiceContainer = Depends(get_container)) -> DocumentIngestionUseCase:
    return container.ingestion_use_case


def get_quota_service(container: ServiceContainer = Depends(get_container)) -> QuotaService:
    return container.quota_service


def get_retrieval_engine(container: ServiceContainer = Depends(get_container)) -> RetrievalEngine:
    return container.retrieval_engine


def get_document_management(
    container: ServiceContainer = Depends(get_container),
) -> DocumentManagementUseCase:
    return container.document_management_use_case
