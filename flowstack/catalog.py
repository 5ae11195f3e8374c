"""Workflow catalog: the set of loaded workflow document templates."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

from .errors import MalformedWorkflow, UnknownWorkflow
from .flowstack_logging import log_operation
from .models import WorkflowDocument
from .parser import parse_text

logger = logging.getLogger("flowstack.catalog")

BUILTIN_WORKFLOWS_DIR = Path(__file__).resolve().parent / "workflows"


class WorkflowCatalog:
    """Immutable collection of workflow templates keyed by name."""

    def __init__(self, documents: Iterable[WorkflowDocument], source_dir: Optional[Path] = None):
        self.source_dir = source_dir
        self._documents: Dict[str, WorkflowDocument] = {}
        for document in documents:
            existing = self._documents.get(document.name)
            if existing is not None:
                raise MalformedWorkflow(
                    document.source_path,
                    f"workflow name '{document.name}' is already defined by {existing.source_path or '<text>'}",
                )
            self._documents[document.name] = document
        self._validate_references()

    def _validate_references(self) -> None:
        for document in self._documents.values():
            unknown = sorted(dep for dep in document.depends_on if dep not in self._documents)
            if unknown:
                raise MalformedWorkflow(
                    document.source_path,
                    f"depends_on references unknown workflow(s): {', '.join(unknown)}",
                )

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> "WorkflowCatalog":
        """Load every ``*.md`` file in a directory (non-recursive)."""
        path = Path(directory).expanduser().resolve()
        if not path.is_dir():
            raise MalformedWorkflow(path, "workflow directory does not exist")

        with log_operation("load_catalog", directory=str(path)):
            documents: List[WorkflowDocument] = []
            for source in sorted(path.glob("*.md")):
                if source.name.lower() == "readme.md":
                    continue
                try:
                    text = source.read_text(encoding="utf-8")
                except OSError as e:
                    raise MalformedWorkflow(source, f"cannot read file: {e}") from e
                documents.append(parse_text(text, source_path=source))
            catalog = cls(documents, source_dir=path)

        logger.info(f"Loaded {len(catalog)} workflows from {path}")
        return catalog

    @classmethod
    def builtin(cls) -> "WorkflowCatalog":
        """Load the playbooks shipped with Flowstack."""
        return cls.from_directory(BUILTIN_WORKFLOWS_DIR)

    def get(self, name: str) -> WorkflowDocument:
        document = self._documents.get(name.strip().lower())
        if document is None:
            raise UnknownWorkflow(name)
        return document

    def names(self) -> List[str]:
        return sorted(self._documents)

    def select(self, tags: Iterable[str]) -> List[WorkflowDocument]:
        """Documents whose applicable tags intersect ``tags``, sorted by name."""
        wanted = set(tags)
        return [self._documents[name] for name in self.names() if self._documents[name].matches(wanted)]

    def all_tags(self) -> List[str]:
        tags = set()
        for document in self._documents.values():
            tags |= document.tags
        return sorted(tags)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name in self._documents

    def __iter__(self) -> Iterator[WorkflowDocument]:
        return (self._documents[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._documents)
