"""
Markdown export for recognized documents.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from ..config import TOOL_NAME
from .assembler import DocumentResult, PageResult

logger = logging.getLogger(__name__)


class MarkdownExporter:
    """Export a DocumentResult to Markdown."""

    def __init__(
        self,
        include_metadata: bool = True,
        include_failures: bool = True
    ):
        self.include_metadata = include_metadata
        self.include_failures = include_failures

    def export(
        self,
        document: DocumentResult,
        output_path: Union[str, Path]
    ) -> Path:
        """
        Export document to a Markdown file.

        Returns:
            Path to the generated Markdown file
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        markdown = self.build(document)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(markdown)

        logger.info(f"Exported Markdown to: {output_path}")
        return output_path

    def build(self, document: DocumentResult, processed_at: Optional[datetime] = None) -> str:
        """Generate Markdown for a document."""
        parts = []

        if self.include_metadata:
            parts.append(self._metadata(document, processed_at or datetime.now()))
            parts.append("\n---\n\n")

        for page in document.pages:
            parts.append(self._page(page))

        if self.include_failures and document.failures:
            parts.append("## Failed pages\n\n")
            for failure in document.failures:
                parts.append(f"- Page {failure.page_num} ({failure.stage.value}): {failure.error}\n")
            parts.append("\n")

        return "".join(parts)

    def _metadata(self, document: DocumentResult, processed_at: datetime) -> str:
        return (
            "# Document OCR Result\n\n"
            f"- **Source**: {document.source}\n"
            f"- **Processed**: {processed_at.strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"- **Total Pages**: {len(document.pages)}\n"
            f"- **Tool**: {TOOL_NAME}\n"
        )

    def _page(self, page: PageResult) -> str:
        lines: List[str] = [f"## Page {page.page_num}\n\n"]
        for block in page.page.blocks:
            cleaned = clean_ocr_text(block.text)
            if cleaned:
                lines.append(cleaned)
                lines.append("\n\n")
        return "".join(lines)


def clean_ocr_text(text: str) -> str:
    """Trim every line and drop empty ones."""
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())
