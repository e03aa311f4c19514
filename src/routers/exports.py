from urllib.parse import quote

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from src.core.database import get_db
from src.core.security import (
    ACTION_EXPORT,
    ACTION_MIGRATE,
    Identity,
    SecurityTokenValidator,
    get_current_identity,
    get_token_validator,
    require_authorized,
    verify_api_key,
)
from src.dtos.export_dto import (
    ActionTokenRequest,
    ActionTokenResponse,
    ExportBatchResponse,
    ExportFilter,
    ExportStartResponse,
)
from src.services.csv_export_service import CsvExportService

router = APIRouter(
    prefix="/api/v1/exports",
    tags=["exports"],
    dependencies=[Depends(verify_api_key)],
)

TOKEN_ACTIONS = {ACTION_EXPORT, ACTION_MIGRATE}


def get_export_service(
    db: Session = Depends(get_db),
    tokens: SecurityTokenValidator = Depends(get_token_validator),
) -> CsvExportService:
    return CsvExportService(db, token_validator=tokens)


@router.post("/tokens", response_model=ActionTokenResponse)
def issue_action_token(
    body: ActionTokenRequest,
    identity: Identity = Depends(get_current_identity),
    tokens: SecurityTokenValidator = Depends(get_token_validator),
):
    """Issue a short-lived token for one protected action (export or migration run)."""
    if body.action not in TOKEN_ACTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown action: {body.action}")
    require_authorized(identity, body.action, phase="token")
    return ActionTokenResponse(
        token=tokens.issue(identity, body.action),
        expires_in=tokens.ttl_seconds,
    )


@router.post("", response_model=ExportStartResponse, status_code=201)
def start_export(
    export_filter: ExportFilter,
    x_action_token: str | None = Header(default=None),
    identity: Identity = Depends(get_current_identity),
    service: CsvExportService = Depends(get_export_service),
):
    return service.start(identity, export_filter, x_action_token)


@router.post("/{job_id}/batch", response_model=ExportBatchResponse)
def export_batch(
    job_id: str,
    x_action_token: str | None = Header(default=None),
    identity: Identity = Depends(get_current_identity),
    service: CsvExportService = Depends(get_export_service),
):
    return service.batch(identity, job_id, x_action_token)


@router.get("/{job_id}/download")
def download_export(
    job_id: str,
    token: str | None = Query(default=None),
    identity: Identity = Depends(get_current_identity),
    service: CsvExportService = Depends(get_export_service),
):
    download = service.download(identity, job_id, token)
    return StreamingResponse(
        download.chunks,
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(download.filename)}",
            "Content-Length": str(download.size),
        },
    )
