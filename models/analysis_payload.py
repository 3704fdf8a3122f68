"""Pydantic model for the schema-constrained inference output."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Classification(BaseModel):
    """Taxonomic placement; each rank may be missing when the model is unsure."""

    model_config = ConfigDict(populate_by_name=True)

    order: Optional[str] = None
    family: Optional[str] = None
    class_: Optional[str] = Field(default=None, alias="class")


class AnalysisPayload(BaseModel):
    """Structured identification of one macroinvertebrate image."""

    model_config = ConfigDict(populate_by_name=True)

    scientific_name: str = Field(alias="scientificName")
    common_name: str = Field(alias="commonName")
    summary: str
    classification: Classification
    ecological_role: str = Field(alias="ecologicalRole")

    def to_document(self) -> Dict[str, Any]:
        """Return the camelCase dict used on the wire and in stored documents."""
        return self.model_dump(by_alias=True)
