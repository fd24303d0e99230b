"""HTML parser for splitting a document into titled sections.

Handles:
- Heading discovery (one section per heading)
- Internal ID marker extraction from heading text
- Clean text extraction of the content between headings
- JSON persistence of parsed sections
"""
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

import structlog
from bs4 import BeautifulSoup, Tag

logger = structlog.get_logger()


@dataclass(frozen=True)
class Section:
    """A heading and the text that follows it."""

    title: str
    source_id: Optional[str]
    body: str


class HtmlSegmenter:
    """Splits HTML into sections at headings of one level."""

    # Internal ID = "value" (also the Russian "Внутренний ID" form)
    SOURCE_ID_PATTERN = re.compile(
        r"(?:Internal|Внутренний)\s+ID\s*=\s*(?:\"([^\"]*)\"|(\S+))",
        re.IGNORECASE,
    )

    def __init__(self, heading_tag: str = "h2"):
        """Initialize the segmenter.

        Args:
            heading_tag: Tag name that starts a new section
        """
        self.heading_tag = heading_tag

    def iter_sections(self, html: str) -> Iterator[Section]:
        """Yield sections in document order.

        Parsing starts on the first ``next()``; the iterator cannot be
        restarted.

        Args:
            html: Raw document markup

        Yields:
            Section objects (none if the document has no headings)
        """
        soup = BeautifulSoup(html, "html.parser")
        count = 0

        for heading in soup.find_all(self.heading_tag):
            title, source_id = self._split_heading(heading.get_text())
            body = self._collect_body(heading)
            count += 1
            yield Section(title=title, source_id=source_id, body=body)

        logger.info("html_segmented", heading_tag=self.heading_tag, section_count=count)

    def parse_file(self, file_path: Path) -> Iterator[Section]:
        """Read an HTML file and yield its sections.

        Raises:
            FileNotFoundError: If file doesn't exist
        """
        if not file_path.exists():
            raise FileNotFoundError(f"Document not found: {file_path}")

        return self.iter_sections(file_path.read_text(encoding="utf-8"))

    def _split_heading(self, raw_title: str) -> Tuple[str, Optional[str]]:
        """Separate the display title from the Internal ID marker."""
        match = self.SOURCE_ID_PATTERN.search(raw_title)
        if not match:
            return raw_title.strip(), None

        source_id = match.group(1) if match.group(1) is not None else match.group(2)
        return raw_title[: match.start()].strip(), source_id or None

    def _collect_body(self, heading: Tag) -> str:
        """Join the text of sibling elements up to the next heading."""
        parts = []
        for sibling in heading.find_next_siblings():
            if sibling.name == self.heading_tag:
                break
            text = sibling.get_text().strip()
            if text:
                parts.append(text)
        return "\n\n".join(parts)


def iter_sections(html: str, heading_tag: str = "h2") -> Iterator[Section]:
    """Segment HTML into sections (convenience function)."""
    return HtmlSegmenter(heading_tag=heading_tag).iter_sections(html)


def save_sections(path: Path, sections: Iterable[Section]) -> int:
    """Write parsed sections as a JSON array of ``{title, url, content}``.

    Returns:
        Number of sections written
    """
    records = [
        {"title": s.title, "url": s.source_id, "content": s.body}
        for s in sections
    ]
    path.write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info("sections_saved", path=str(path), count=len(records))
    return len(records)


def load_sections(path: Path) -> List[Section]:
    """Load sections previously written by ``save_sections``.

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If the file is not a JSON array of section records
    """
    if not path.exists():
        raise FileNotFoundError(f"Sections file not found: {path}")

    records = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(records, list):
        raise ValueError(f"Expected a JSON array of sections in {path}")

    sections = []
    for index, record in enumerate(records):
        if not isinstance(record, dict) or not isinstance(record.get("title"), str):
            raise ValueError(f"Malformed section record #{index} in {path}: title must be a string")
        if not isinstance(record.get("content") or "", str):
            raise ValueError(f"Malformed section record #{index} in {path}: content must be a string")
        sections.append(
            Section(
                title=record["title"],
                source_id=record.get("url"),
                body=record.get("content") or "",
            )
        )
    return sections
