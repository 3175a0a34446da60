"""
Import request endpoints: submit a background import and poll its status.
"""
from typing import Optional
from fastapi import APIRouter, Depends, Request
import time
from heartbeat_importer.api.deps import get_api_token, get_import_service
from heartbeat_importer.models.schemas.imports import ImportRequestPayload, ImportRequestResponse
from heartbeat_importer.services.import_requests import ImportRequestService
from heartbeat_importer.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)

@router.post(
    "",
    response_model=ImportRequestResponse,
    summary="Submit a heartbeat import job"
)
async def submit_import(
    payload: ImportRequestPayload,
    request: Request,
    token: Optional[str] = Depends(get_api_token),
    service: ImportRequestService = Depends(get_import_service)
) -> ImportRequestResponse:
    """Enqueue an import of the given day range and return immediately.

    Earlier failed attempts with identical parameters are discarded first.
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", None)
    response = service.submit(token, payload, request_id=request_id)
    log_performance(
        operation="submit_import",
        duration_ms=(time.time() - start_time) * 1000,
    )
    return response

@router.post(
    "/status",
    response_model=ImportRequestResponse,
    summary="Check the status of a heartbeat import job"
)
async def import_status(
    payload: ImportRequestPayload,
    request: Request,
    token: Optional[str] = Depends(get_api_token),
    service: ImportRequestService = Depends(get_import_service)
) -> ImportRequestResponse:
    """Status of the job submitted with the same parameters: pending, failed or finished."""
    request_id = getattr(request.state, "request_id", None)
    return service.check_status(token, payload, request_id=request_id)
