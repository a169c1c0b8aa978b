"""Section / Similarity document model shared by the loader, backends and API."""

from typing import List

from pydantic import BaseModel, TypeAdapter, model_validator


class Section(BaseModel):
    title: str = ""
    heading: str = ""
    content: str = ""
    embedding: List[float] = []

    @model_validator(mode="before")
    @classmethod
    def _fold_key_case(cls, data):
        # JSON keys match field names case-insensitively ("Title" -> title)
        if not isinstance(data, dict):
            return data
        folded = {}
        for key, value in data.items():
            name = key.lower() if isinstance(key, str) else key
            if name in cls.model_fields and name != key and name in data:
                continue
            folded.setdefault(name, value)
        return folded


class Similarity(BaseModel):
    section: Section
    id: int
    score: float  # L2 distance, smaller is closer


_sections_adapter = TypeAdapter(List[Section])


def parse_sections(data) -> List[Section]:
    """Validate a decoded JSON array (or raw JSON text/bytes) into sections."""
    if isinstance(data, (str, bytes, bytearray)):
        return _sections_adapter.validate_json(data)
    return _sections_adapter.validate_python(data)
