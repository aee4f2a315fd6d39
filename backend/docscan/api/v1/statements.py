"""Bank statement scan endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from docscan.core.auth import CurrentUser, get_current_user
from docscan.core.dependencies import get_db
from docscan.services.ai.statement_scan.contracts import ScanResult

router = APIRouter()


class ScanDocumentRequest(BaseModel):
    file_reference: str | None = Field(default=None, max_length=2048)
    content_type: str | None = Field(default=None, max_length=255)
    override_provider: str | None = None
    override_model: str | None = None


@router.post("/statements/scan", response_model=ScanResult, summary="Detect bank and account details")
async def scan_statement(
    body: ScanDocumentRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    from docscan.services.ai.statement_scan.service import scan_document

    result = await scan_document(
        body.file_reference,
        body.content_type,
        db,
        owner_id=user.id,
        org_id=user.org_id,
        override_provider=body.override_provider,
        override_model=body.override_model,
    )
    db.commit()
    return result
