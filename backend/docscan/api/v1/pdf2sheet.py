"""PDF-to-sheet endpoints: column detection, single-page and batch extraction."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from docscan.core.auth import CurrentUser, get_current_user
from docscan.core.dependencies import get_db
from docscan.services.ai.pdf2sheet.contracts import (
    BatchExtractResult,
    ColumnSpec,
    PageExtractionResult,
    Pdf2SheetScanResult,
)

router = APIRouter()


class _FileRequest(BaseModel):
    file_reference: str | None = Field(default=None, max_length=2048)
    content_type: str | None = Field(default=None, max_length=255)
    override_provider: str | None = None
    override_model: str | None = None


class ColumnScanRequest(_FileRequest):
    pass


class PageExtractRequest(_FileRequest):
    page_number: int
    total_pages: int = 1
    columns: list[ColumnSpec] = Field(default_factory=list)


class BatchExtractRequest(_FileRequest):
    total_pages: int
    columns: list[ColumnSpec] = Field(default_factory=list)


@router.post("/pdf2sheet/scan", response_model=Pdf2SheetScanResult, summary="Propose table columns")
async def scan_table_columns(
    body: ColumnScanRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    from docscan.services.ai.pdf2sheet.service import scan_columns

    result = await scan_columns(
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


@router.post("/pdf2sheet/extract", response_model=PageExtractionResult, summary="Extract one page")
async def extract_single_page(
    body: PageExtractRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    from docscan.services.ai.pdf2sheet.service import extract_page

    result = await extract_page(
        body.file_reference,
        body.page_number,
        body.total_pages,
        body.columns,
        db,
        owner_id=user.id,
        org_id=user.org_id,
        content_type=body.content_type,
        override_provider=body.override_provider,
        override_model=body.override_model,
    )
    db.commit()
    return result


@router.post("/pdf2sheet/batch-extract", response_model=BatchExtractResult, summary="Extract all pages")
async def extract_all_pages(
    body: BatchExtractRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    from docscan.services.ai.pdf2sheet.service import batch_extract

    result = await batch_extract(
        body.file_reference,
        body.total_pages,
        body.columns,
        db,
        owner_id=user.id,
        org_id=user.org_id,
        content_type=body.content_type,
        override_provider=body.override_provider,
        override_model=body.override_model,
    )
    db.commit()
    return result
