from pathlib import Path
from typing import List

from ..logging_utils import emit_metric, get_logger
from ..rag.models import Section, parse_sections

logger = get_logger("json_loader")


def read_sections(filename: str) -> List[Section]:
    """Read a JSON array of sections (``title``/``heading``/``content``/``embedding``)."""
    path = Path(filename)
    data = path.read_bytes()
    sections = parse_sections(data)
    logger.info(f"read_sections file={path} sections={len(sections)} bytes={len(data)}")
    emit_metric("read_sections", file=str(path), sections=len(sections))
    return sections
