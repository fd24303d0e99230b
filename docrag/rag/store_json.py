"""Flat JSON persistence for embedded chunks (used when Chroma is disabled)."""
import json
import os
import tempfile
from pathlib import Path
from typing import List, Sequence

import structlog

from docrag.rag.chunker import Chunk

logger = structlog.get_logger()


def write_embedded_chunks(path: Path, chunks: Sequence[Chunk]) -> None:
    """Write chunks as a JSON array of ``{id, title, url, content, embedding}``.

    The file is written to a temporary sibling and renamed into place, so a
    reader never sees a partial file.

    Raises:
        ValueError: If a chunk has no embedding
        RuntimeError: If the file cannot be written
    """
    missing = [c.id for c in chunks if not c.embedding]
    if missing:
        raise ValueError(f"Chunks without embeddings cannot be saved: {missing}")

    path.parent.mkdir(parents=True, exist_ok=True)
    records = [chunk.to_record() for chunk in chunks]

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(records, f, ensure_ascii=False, indent=2)
        os.replace(tmp_name, path)
    except OSError as e:
        Path(tmp_name).unlink(missing_ok=True)
        raise RuntimeError(f"Failed to save embedded chunks to {path}: {e}") from e

    logger.info("embedded_chunks_saved", path=str(path), count=len(records))


def load_embedded_chunks(path: Path) -> List[Chunk]:
    """Read chunks written by ``write_embedded_chunks``.

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If a record is malformed
    """
    if not path.exists():
        raise FileNotFoundError(f"Embedded chunks file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        records = json.load(f)

    try:
        return [
            Chunk(
                id=r["id"],
                title=r["title"],
                source_id=r.get("url"),
                text=r["content"],
                embedding=r["embedding"],
            )
            for r in records
        ]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed embedded chunk record in {path}: {e}") from e
