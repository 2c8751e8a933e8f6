# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from ..errors import ValidationError
from ..models import DocumentSequence
from .persistence import Repository, get_repository

SALE_DOCUMENT = "SALE"


def next_document_number(
    *,
    store_id: int,
    document_type: str,
    repository: Repository | None = None,
) -> int:
    """
    Allocate the next number for a store/type.

    The counter moves with an atomic increment, so run this inside the same
    repository transaction as the record that uses the number: if that write
    rolls back, the number is released with it.
    """
    if not store_id:
        raise ValidationError("store_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    repo = get_repository(repository)
    rows = repo.query(
        DocumentSequence,
        {"store_id": store_id, "document_type": document_type},
        limit=1,
    )
    if rows:
        seq_id = rows[0].id
    else:
        seq_id = repo.insert(
            DocumentSequence,
            {"store_id": store_id, "document_type": document_type, "next_number": 1},
        )

    after = repo.increment_field(DocumentSequence, seq_id, "next_number", 1)
    return after - 1


def next_sale_number(store_id: int, repository: Repository | None = None) -> int:
    return next_document_number(store_id=store_id, document_type=SALE_DOCUMENT, repository=repository)
