"""Document sets: titled bundles of reference files that managers keep.

Managers create, read and delete their own sets. View-only managers read
every set. Workers have no access.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from stepflow.core.config import AppSettings
from stepflow.core.exceptions import NotFoundError, ValidationError
from stepflow.core.protocols import IEntityStore
from stepflow.models.entities import Document, DocumentDraft, DocumentSet, FileMeta, Role
from stepflow.models.views import DocumentSetWithDocuments
from stepflow.workflow.authorization import (
    Caller,
    require_document_set_owner,
    require_document_set_reader,
    require_role,
)
from stepflow.workflow.files import check_file

logger = logging.getLogger(__name__)


class DocumentLibrary:
    def __init__(self, *, store: IEntityStore, settings: AppSettings) -> None:
        self._store = store
        self._settings = settings

    def create_document_set(
        self,
        caller: Caller,
        *,
        title: str,
        files: Sequence[FileMeta],
        description: str = "",
        details: Optional[Sequence[DocumentDraft]] = None,
    ) -> DocumentSetWithDocuments:
        """Create a set from ``files`` in the given order.

        ``details[i]`` supplies the title and description of ``files[i]``; a
        missing or blank title falls back to the file's original name.
        """
        require_role(caller, "create document set", Role.MANAGER)
        title = (title or "").strip()
        if not title:
            raise ValidationError("Document set title is required")
        if not files:
            raise ValidationError("A document set needs at least one document")
        limit = self._settings.upload.max_documents_per_set
        if len(files) > limit:
            raise ValidationError(
                f"A document set can have at most {limit} documents, got {len(files)}"
            )
        for file in files:
            check_file(file, self._settings.upload)

        details = list(details or [])
        document_set = DocumentSet(
            title=title, description=(description or "").strip(), manager_id=caller.user_id,
        )
        documents = []
        for position, file in enumerate(files):
            draft = details[position] if position < len(details) else DocumentDraft()
            documents.append(
                Document(
                    document_set_id=document_set.id,
                    title=draft.title or file.original_name,
                    description=draft.description,
                    order=position + 1,
                    **file.model_dump(),
                )
            )
        self._store.create_document_set(document_set, documents)
        logger.info(
            "Created document set %s with %d documents for manager %s",
            document_set.id, len(documents), caller.user_id,
        )
        return self._view(document_set, documents)

    def list_document_sets(self, caller: Caller) -> list[DocumentSetWithDocuments]:
        """Own sets for managers, every set for view-only managers; newest first."""
        require_role(caller, "list document sets", Role.MANAGER, Role.MANAGER_VIEW_ONLY)
        if caller.role == Role.MANAGER_VIEW_ONLY:
            sets = self._store.list_document_sets()
        else:
            sets = self._store.list_document_sets(manager_id=caller.user_id)
        sets.sort(key=lambda s: s.created_at, reverse=True)
        return [self._view(s, self._store.list_documents(s.id)) for s in sets]

    def get_document_set(self, caller: Caller, set_id: str) -> DocumentSetWithDocuments:
        document_set = self._readable(caller, set_id)
        return self._view(document_set, self._store.list_documents(document_set.id))

    def get_document(self, caller: Caller, set_id: str, document_id: str) -> Document:
        document_set = self._readable(caller, set_id)
        for document in self._store.list_documents(document_set.id):
            if document.id == document_id:
                return document
        raise NotFoundError("Document", document_id)

    def delete_document_set(self, caller: Caller, set_id: str) -> list[Document]:
        """Delete an owned set; returns the removed documents so their files can go too."""
        require_role(caller, "delete document set", Role.MANAGER)
        document_set = self._set(set_id)
        require_document_set_owner(caller, document_set, "delete document set")
        documents = self._store.list_documents(set_id)
        self._store.delete_document_set(set_id)
        logger.info("Deleted document set %s (%d documents)", set_id, len(documents))
        return documents

    def _set(self, set_id: str) -> DocumentSet:
        document_set = self._store.get_document_set(set_id)
        if document_set is None:
            raise NotFoundError("DocumentSet", set_id)
        return document_set

    def _readable(self, caller: Caller, set_id: str) -> DocumentSet:
        require_role(caller, "view document set", Role.MANAGER, Role.MANAGER_VIEW_ONLY)
        document_set = self._set(set_id)
        require_document_set_reader(caller, document_set)
        return document_set

    def _view(self, document_set: DocumentSet, documents: list[Document]) -> DocumentSetWithDocuments:
        return DocumentSetWithDocuments(
            **document_set.model_dump(),
            documents=documents,
            manager=self._store.get_user(document_set.manager_id),
        )
