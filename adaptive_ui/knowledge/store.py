"""
Flat JSON document store for the retrieval corpus.

Documents are upserted by id and the whole corpus is rewritten on every
change. The store also knows which documents describe user preferences.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from adaptive_ui.errors import ValidationError
from adaptive_ui.knowledge.retrieval import build_term_frequency, tokenize
from adaptive_ui.registry.models import now_iso

logger = logging.getLogger(__name__)


SEED_DOCUMENTS: List[Dict[str, Any]] = [
    {
        "id": "modality-guideline-hands-occupied",
        "content": (
            'When the user activity sensor reports the state "hands-occupied", prefer audio-first '
            "guidance. Provide spoken prompts and minimize the need for direct touch input. When the "
            'sensor reports "hands-free", present tactile controls such as buttons or toggles for the '
            "light switch."
        ),
        "metadata": {"source": "safety-guidelines", "version": "1.0.0"},
        "tags": ["modality", "hands-occupied", "audio", "light-switch"],
    },
    {
        "id": "user-preference-primary-color",
        "content": (
            'The primary household preference for interface accents is the color "#808080" (a grey). '
            "Whenever possible, set the UI theme primary color to this value so buttons, toggles, and "
            "other interactive highlights align with the user preference. Ensure sufficient contrast "
            "by using light text on dark backgrounds."
        ),
        "metadata": {"source": "user-profile", "version": "2025.10"},
        "tags": ["preference", "theme", "primary-color", "personalization"],
    },
]

PREFERENCE_TAG_KEYWORDS = ("preference", "preferences", "user-preference", "user-preferences", "personalization")


@dataclass
class Document:
    id: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    tokens: List[str] = field(default_factory=list)
    term_frequency: Dict[str, int] = field(default_factory=dict)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @property
    def is_user_preference(self) -> bool:
        for tag in self.tags:
            if isinstance(tag, str) and any(k in tag.strip().lower() for k in PREFERENCE_TAG_KEYWORDS):
                return True
        for key in ("source", "category", "type"):
            value = self.metadata.get(key)
            if isinstance(value, str):
                token = value.strip().lower()
                if "preference" in token or "profile" in token:
                    return True
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "metadata": self.metadata,
            "tags": list(self.tags),
            "tokens": list(self.tokens),
            "termFrequency": dict(self.term_frequency),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        content = data.get("content") or ""
        tokens = data.get("tokens") or tokenize(content)
        return cls(
            id=data["id"],
            content=content,
            metadata=dict(data.get("metadata") or {}),
            tags=list(data.get("tags") or []),
            tokens=list(tokens),
            term_frequency=dict(data.get("termFrequency") or build_term_frequency(tokens)),
            created_at=data.get("createdAt") or now_iso(),
            updated_at=data.get("updatedAt") or now_iso(),
        )


class DocumentStore:
    """
    Retrieval corpus persisted as {"documents": [...]} in one JSON file.

    data_file=None keeps the corpus in memory only.
    """

    def __init__(self, data_file: Optional[Path] = None):
        self.data_file = Path(data_file) if data_file is not None else None
        self._documents: List[Document] = []

    def load(self) -> List[Document]:
        """Load the corpus from disk; a missing or unreadable file yields an empty corpus."""
        if self.data_file is None or not self.data_file.exists():
            logger.info("No document file found, starting with an empty corpus")
            self._documents = []
            return self.documents()

        try:
            with open(self.data_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            raw = data.get("documents") if isinstance(data, dict) else None
            self._documents = [
                Document.from_dict(d) for d in (raw or []) if isinstance(d, dict) and d.get("id")
            ]
            logger.info(f"Loaded {len(self._documents)} documents from {self.data_file}")
        except Exception as e:
            logger.error(f"Failed to load documents from {self.data_file}: {e}")
            self._documents = []
        return self.documents()

    def _persist(self) -> None:
        if self.data_file is None:
            return
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.data_file, "w", encoding="utf-8") as f:
                json.dump({"documents": [d.to_dict() for d in self._documents]}, f, indent=2, ensure_ascii=False)
        except Exception as e:
            logger.error(f"Failed to persist documents to {self.data_file}: {e}")

    def add_document(
        self,
        content: Any,
        id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
    ) -> Document:
        """
        Insert or replace a document by id.

        Raises:
            ValidationError: If content is not a non-empty string
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Document `content` must be a non-empty string.")

        doc_id = id or f"doc-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
        tokens = tokenize(content)
        existing_index = next((i for i, d in enumerate(self._documents) if d.id == doc_id), None)
        now = now_iso()

        document = Document(
            id=doc_id,
            content=content,
            metadata=dict(metadata or {}),
            tags=list(tags or []),
            tokens=tokens,
            term_frequency=build_term_frequency(tokens),
            created_at=self._documents[existing_index].created_at if existing_index is not None else now,
            updated_at=now,
        )

        if existing_index is not None:
            self._documents[existing_index] = document
        else:
            self._documents.append(document)

        self._persist()
        return document

    def seed_defaults(self) -> List[str]:
        """Add the built-in documents that are not present yet; returns the seeded ids."""
        seeded = []
        known = {d.id for d in self._documents}
        for seed in SEED_DOCUMENTS:
            if seed["id"] in known:
                continue
            self.add_document(**seed)
            seeded.append(seed["id"])
            logger.info(f"Seeded knowledge document: {seed['id']}")
        return seeded

    def documents(self) -> List[Document]:
        return list(self._documents)

    def preference_documents(self) -> List[Document]:
        return [d for d in self._documents if d.is_user_preference]

    def build_preference_context(self) -> Optional[str]:
        blocks = []
        for doc in self.preference_documents():
            if not doc.content.strip():
                continue
            label = doc.metadata.get("source") or doc.metadata.get("category") or doc.id or "user-preference"
            blocks.append(f"Preference ({label}):\n{doc.content.strip()}")
        return "\n\n".join(blocks) if blocks else None

    @property
    def document_count(self) -> int:
        return len(self._documents)
