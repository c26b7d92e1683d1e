"""Document metadata. Blobs are stored externally; rows keep the reference."""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models, schemas
from .config import get_settings
from .exceptions import NotFoundError, PermissionDeniedError

logger = logging.getLogger("fieldsync-core.documents")


def register_document(
    db: Session,
    user_id: UUID,
    data: schemas.DocumentCreate,
) -> models.Document:
    """
    Register an uploaded document for the user.

    Args:
        db: Database session
        user_id: Uploader
        data: Document metadata

    Returns:
        Created Document

    Raises:
        ValueError: If the file is too large
        NotFoundError: If the referenced task does not exist
        PermissionDeniedError: If the task is not assigned to the uploader
    """
    max_bytes = get_settings().max_document_bytes
    if data.file_size > max_bytes:
        raise ValueError(f"File is too large ({data.file_size} bytes, maximum {max_bytes})")

    if data.task_id is not None:
        task = db.query(models.Task).filter(models.Task.id == data.task_id).first()
        if not task:
            raise NotFoundError("Task", data.task_id)
        assignment = task.assignment
        if assignment is None or assignment.user_id != user_id:
            raise PermissionDeniedError("Documents can only be attached to your own tasks")

    document = models.Document(
        user_id=user_id,
        task_id=data.task_id,
        file_name=data.file_name,
        file_path=data.file_path,
        file_type=data.file_type,
        file_size=data.file_size,
        document_type=data.document_type,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info(f"User {user_id} registered document {document.file_name} ({document.document_type.value})")
    return document


def get_documents(
    db: Session,
    user_id: Optional[UUID] = None,
    task_id: Optional[UUID] = None,
) -> list[models.Document]:
    """Return documents, newest first, filtered by owner and/or task."""
    query = db.query(models.Document)
    if user_id is not None:
        query = query.filter(models.Document.user_id == user_id)
    if task_id is not None:
        query = query.filter(models.Document.task_id == task_id)
    return query.order_by(models.Document.uploaded_at.desc()).all()


def delete_document(db: Session, user_id: UUID, document_id: UUID) -> None:
    """
    Delete one of the user's documents.

    Raises:
        NotFoundError: If the document does not exist
        PermissionDeniedError: If it belongs to another user
    """
    document = db.query(models.Document).filter(models.Document.id == document_id).first()
    if not document:
        raise NotFoundError("Document", document_id)
    if document.user_id != user_id:
        raise PermissionDeniedError("Only the uploader can delete a document")
    db.delete(document)
    db.commit()
    logger.info(f"User {user_id} deleted document {document_id}")


def has_supporting_document(db: Session, task_id: UUID, user_id: UUID) -> bool:
    """True when the user uploaded at least one document for the task."""
    return db.query(models.Document.id).filter(
        models.Document.task_id == task_id,
        models.Document.user_id == user_id,
    ).first() is not None
