"""Canonical JSON bytes for an assembled document, and atomic file writes."""

import json
import logging
import tempfile
from pathlib import Path

from api_doc_builder.document.nodes import DocumentNode

logger = logging.getLogger(__name__)


def emit(document: DocumentNode) -> bytes:
    """Serialize a document: two-space indent, UTF-8, trailing newline.

    Key order comes from the node models and the order the maps were built in,
    so identical documents always produce identical bytes.
    """
    text = json.dumps(document.to_dict(), indent=2, ensure_ascii=False)
    return (text + "\n").encode("utf-8")


def write_atomic(data: bytes, path: Path) -> Path:
    """Write bytes through a temporary file in the target directory, then replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(mode="wb", dir=path.parent, prefix=f".{path.name}.", delete=False) as f:
            tmp_path = Path(f.name)
            f.write(data)
        tmp_path.replace(path)
    except OSError:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise
    logger.info("Wrote %s (%d bytes)", path, len(data))
    return path
