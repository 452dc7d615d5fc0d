"""Summary document regeneration with manual-section preservation."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from cmem.merge import merge_manual_sections, scan_manual_sections
from cmem.synthesis import DocumentSynthesizer

if TYPE_CHECKING:
    from cmem.backup import BackupManager
    from cmem.store import MemoryStore

logger = logging.getLogger(__name__)


@dataclass
class DocumentUpdate:
    path: Path
    preserved_sections: list[str] = field(default_factory=list)
    backup_path: Path | None = None

    @property
    def summary(self) -> str:
        if self.preserved_sections:
            return "preserved manual sections: " + ", ".join(self.preserved_sections)
        return "no manual sections"


class DocumentSync:
    """Regenerates CLAUDE.md and the context side documents from the store."""

    def __init__(self, store: "MemoryStore", backups: "BackupManager"):
        self.store = store
        self.backups = backups
        self.synthesizer = DocumentSynthesizer(store)

    def update(self) -> DocumentUpdate:
        """Rewrite the summary document, keeping any manual sections.

        The previous document (if any) is backed up first. Side documents are
        regenerated unconditionally afterwards.
        """
        path = self.store.document_file
        sections = []
        backup_path = None

        if path.is_file():
            previous = path.read_text(encoding="utf-8")
            sections = scan_manual_sections(previous)
            backup_path = self.backups.backup_document(previous)

        body = self.synthesizer.render(optimize=self.store.config.token_optimization)
        merged, kept = merge_manual_sections(body, sections)
        path.write_text(merged, encoding="utf-8")
        logger.debug("Wrote %s (%d manual sections)", path, len(kept))

        self.write_side_documents()

        return DocumentUpdate(
            path=path,
            preserved_sections=kept,
            backup_path=backup_path,
        )

    def write_side_documents(self) -> list[Path]:
        context_dir = self.store.context_dir
        context_dir.mkdir(parents=True, exist_ok=True)
        written = []
        for name, content in self.synthesizer.render_side_documents().items():
            target = context_dir / name
            target.write_text(content, encoding="utf-8")
            written.append(target)
        return written
