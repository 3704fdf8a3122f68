"""Prompt text for the identification request."""

ANALYSIS_PROMPT = (
    "Identify the aquatic macroinvertebrate in this image. "
    "Provide its name, basic information, taxonomic classification, and its significance as a bioindicator. "
    "Format the response as strict JSON following the provided schema."
)
