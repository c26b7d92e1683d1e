"""Document metadata endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from fieldsync_core import documents, schemas
from fieldsync_core.api.dependencies import BUSINESS_ERRORS, CurrentUser, get_current_user, http_error

from ...database import get_db

logger = logging.getLogger("fieldsync-core.documents")

router = APIRouter(tags=["documents"])


@router.post("/", response_model=schemas.DocumentResponse, status_code=201)
def register_document(
    document: schemas.DocumentCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Register an uploaded document.

    - **file_name** / **file_path**: Name and storage reference of the blob
    - **file_size**: Size in bytes (limited by FIELDSYNC_MAX_DOCUMENT_BYTES)
    - **document_type**: id_card, passport, contract, certificate or other
    - **task_id**: Task the document supports (must be assigned to the caller)
    """
    try:
        return documents.register_document(db, current_user.user_id, document)
    except BUSINESS_ERRORS as e:
        raise http_error(e)


@router.get("/", response_model=list[schemas.DocumentResponse])
def list_documents(
    task_id: Optional[UUID] = Query(None, description="Filter by task"),
    user_id: Optional[UUID] = Query(None, description="Filter by uploader (admin only)"),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List documents, newest first. Employees only see their own."""
    owner = user_id if current_user.is_admin else current_user.user_id
    return documents.get_documents(db, user_id=owner, task_id=task_id)


@router.delete("/{document_id}", status_code=204)
def delete_document(
    document_id: UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Delete one of the caller's documents."""
    try:
        documents.delete_document(db, current_user.user_id, document_id)
    except BUSINESS_ERRORS as e:
        raise http_error(e)
    return Response(status_code=204)
