"""Document submission and status API router."""

import base64
import binascii
import logging
from typing import Literal

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile
from fastapi.responses import JSONResponse

from docbatch.api.deps import get_extraction_service
from docbatch.config import Settings, get_settings
from docbatch.models.extraction_request import ExtractionRequest
from docbatch.models.status import RequestStatus
from docbatch.schemas.request import DocumentSubmission, ProcessDocumentJsonRequest, RequestStatusResponse
from docbatch.services.extraction import ExtractionService

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_status(request: ExtractionRequest) -> RequestStatusResponse:
    return RequestStatusResponse(
        request_id=request.id,
        status=request.status,
        result=request.result,
        error_message=request.error_message,
        created_at=request.created_at,
        completed_at=request.completed_at,
    )


def _dispatch(
    svc: ExtractionService, submission: DocumentSubmission, mode: str, response: Response
) -> RequestStatusResponse:
    if mode == "batch":
        request = svc.queue_for_batch(submission)
        response.status_code = 202
    else:
        request = svc.process_realtime(submission)
    return _to_status(request)


@router.post("/process")
def process_document(
    response: Response,
    document: UploadFile = File(...),
    instruction: str = Form(...),
    output_schema: str = Form(...),
    model_id: str | None = Form(None),
    mode: Literal["realtime", "batch"] = Form("realtime"),
    callback_url: str | None = Form(None),
    settings: Settings = Depends(get_settings),
    svc: ExtractionService = Depends(get_extraction_service),
) -> RequestStatusResponse:
    """Accept an uploaded document. Real-time answers 200 with the result; batch answers 202."""
    content = document.file.read()
    if len(content) > settings.max_document_bytes:
        raise HTTPException(status_code=413, detail=f"Document exceeds {settings.max_document_bytes} bytes")
    submission = DocumentSubmission(
        document_bytes=content,
        document_name=document.filename or "",
        instruction=instruction,
        output_schema=output_schema,
        model_id=model_id,
        callback_url=callback_url,
    )
    return _dispatch(svc, submission, mode, response)


@router.post("/process/json")
def process_document_json(
    body: ProcessDocumentJsonRequest,
    response: Response,
    settings: Settings = Depends(get_settings),
    svc: ExtractionService = Depends(get_extraction_service),
) -> RequestStatusResponse:
    try:
        content = base64.b64decode(body.document_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Invalid base64 document content") from exc
    if len(content) > settings.max_document_bytes:
        raise HTTPException(status_code=413, detail=f"Document exceeds {settings.max_document_bytes} bytes")
    submission = DocumentSubmission(
        document_bytes=content,
        document_name=body.document_name,
        instruction=body.instruction,
        output_schema=body.output_schema,
        model_id=body.model_id,
        callback_url=body.callback_url,
    )
    return _dispatch(svc, submission, body.mode, response)


@router.get("/{request_id}/status")
def get_status(
    request_id: str,
    svc: ExtractionService = Depends(get_extraction_service),
) -> RequestStatusResponse:
    return _to_status(svc.get_status(request_id))


@router.get("/{request_id}/result", response_model=None)
def get_result(
    request_id: str,
    svc: ExtractionService = Depends(get_extraction_service),
) -> Response:
    """Return the stored JSON result, 400 with the error if it failed, or 202 while in progress."""
    request = svc.get_status(request_id)
    if request.status == RequestStatus.COMPLETED and request.result is not None:
        return Response(content=request.result, media_type="application/json")
    if request.status == RequestStatus.FAILED:
        return JSONResponse(status_code=400, content={"error": request.error_message})
    return JSONResponse(
        status_code=202,
        content={
            "request_id": request.id,
            "status": str(request.status),
            "message": "Request is still being processed",
        },
    )
