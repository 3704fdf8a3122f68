from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from models.analysis_payload import AnalysisPayload, Classification


@dataclass
class AnalysisRecord:
    """In-memory representation of one document in an identity's analysis history.

    Attributes:
        id: Store-assigned identifier (None until written).
        scientific_name: Scientific name reported by the model.
        common_name: Common name, if the model knows one.
        summary: Short description of the organism, habitat, and size.
        classification: Order, family, and class; members may be None.
        ecological_role: Role as a water-quality bioindicator.
        image_url: Original image as a `data:<mime>;base64,...` URI.
        mime_type: Mime type of the original image.
        thumbnail_url: Optional PNG thumbnail data URI for compact listings.
        created_at: Server timestamp (seconds) assigned at write time.
    """

    id: Optional[str]
    scientific_name: str
    common_name: str
    summary: str
    ecological_role: str
    image_url: str
    mime_type: str
    classification: Dict[str, Optional[str]] = field(default_factory=dict)
    thumbnail_url: Optional[str] = None
    created_at: Optional[float] = None

    @classmethod
    def from_payload(
        cls,
        payload: AnalysisPayload,
        *,
        image_url: str,
        mime_type: str,
        thumbnail_url: Optional[str] = None,
    ) -> "AnalysisRecord":
        """Build an unsaved record from a validated inference payload."""
        return cls(
            id=None,
            scientific_name=payload.scientific_name,
            common_name=payload.common_name,
            summary=payload.summary,
            ecological_role=payload.ecological_role,
            classification=payload.classification.model_dump(by_alias=True),
            image_url=image_url,
            mime_type=mime_type,
            thumbnail_url=thumbnail_url,
        )

    def to_document(self) -> Dict[str, Any]:
        """Fields written to the store; `id` and `createdAt` are never client supplied."""
        return {
            "scientificName": self.scientific_name,
            "commonName": self.common_name,
            "summary": self.summary,
            "classification": dict(self.classification),
            "ecologicalRole": self.ecological_role,
            "imageUrl": self.image_url,
            "mimeType": self.mime_type,
            "thumbnailUrl": self.thumbnail_url,
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any], created_at: float) -> "AnalysisRecord":
        """Rebuild a record from a stored document and its server metadata."""
        classification = Classification.model_validate(data.get("classification") or {})
        return cls(
            id=doc_id,
            scientific_name=data.get("scientificName", ""),
            common_name=data.get("commonName", ""),
            summary=data.get("summary", ""),
            ecological_role=data.get("ecologicalRole", ""),
            classification=classification.model_dump(by_alias=True),
            image_url=data.get("imageUrl", ""),
            mime_type=data.get("mimeType", ""),
            thumbnail_url=data.get("thumbnailUrl"),
            created_at=created_at,
        )

    def to_summary(self, include_image: bool = False) -> Dict[str, Any]:
        """JSON-friendly view for the HTTP and websocket surfaces."""
        summary = {"id": self.id, "createdAt": self.created_at, **self.to_document()}
        if not include_image:
            summary.pop("imageUrl")
        return summary
