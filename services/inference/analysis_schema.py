"""Response schema for the macroinvertebrate identification request."""

from typing import Any, Dict

ANALYSIS_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "scientificName": {
            "type": "STRING",
            "description": "Scientific name (e.g. Ephemeroptera, or the most specific taxon possible).",
        },
        "commonName": {
            "type": "STRING",
            "description": "Common name (e.g. mayfly), if one applies.",
        },
        "summary": {
            "type": "STRING",
            "description": "A concise description of the macroinvertebrate, its habitat, and size.",
        },
        "classification": {
            "type": "OBJECT",
            "properties": {
                "order": {"type": "STRING"},
                "family": {"type": "STRING"},
                "class": {"type": "STRING"},
            },
            "description": "Main taxonomic classification.",
        },
        "ecologicalRole": {
            "type": "STRING",
            "description": "Its role as a water-quality bioindicator (e.g. pollution sensitive, tolerant).",
        },
    },
    "required": ["scientificName", "commonName", "summary", "classification", "ecologicalRole"],
}
