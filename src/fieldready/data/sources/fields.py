"""
Field profile sources.
"""
from typing import Iterable, List, Optional

from pydantic import ValidationError

from fieldready.core import constants as C
from fieldready.core.types import DocumentStore
from fieldready.data.contracts import FieldProfile
from fieldready.data.sources.base import FieldSource


class InMemoryFieldSource(FieldSource):
    """Fixed list of profiles"""

    def __init__(self, profiles: Optional[Iterable[FieldProfile]] = None):
        super().__init__("in_memory_fields")
        self._profiles = {p.id: p for p in (profiles or [])}

    def list_fields(self) -> List[FieldProfile]:
        return [self._profiles[k] for k in sorted(self._profiles)]

    def get(self, field_id: str) -> Optional[FieldProfile]:
        return self._profiles.get(field_id)


class DocumentFieldSource(FieldSource):
    """
    Field documents from a DocumentStore collection. The document id is the
    field id; documents without usable sliders fall back to the default
    soil profile, documents that fail validation are skipped.
    """

    def __init__(self, store: DocumentStore, collection: str = C.COLLECTIONS["fields"]):
        super().__init__("document_fields")
        self.store = store
        self.collection = collection

    def _parse(self, doc_id: str, doc: dict) -> Optional[FieldProfile]:
        try:
            return FieldProfile.model_validate({**doc, "id": doc_id})
        except ValidationError as e:
            self.logger.warning(f"Skipping malformed field {doc_id}: {e.error_count()} errors")
            return None

    def list_fields(self) -> List[FieldProfile]:
        profiles = []
        for doc_id, doc in sorted(self.store.list(self.collection).items()):
            profile = self._parse(doc_id, doc)
            if profile is not None:
                profiles.append(profile)
        return profiles

    def get(self, field_id: str) -> Optional[FieldProfile]:
        doc = self.store.get(self.collection, field_id)
        return None if doc is None else self._parse(field_id, doc)

    def put(self, profile: FieldProfile):
        self.store.set(self.collection, profile.id, profile.to_document(), merge=True)
