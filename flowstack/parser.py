"""Markdown workflow source parser.

A workflow source is a Markdown playbook with an optional YAML front matter
block::

    ---
    name: python-service
    version: 1.2.0
    stacks: [python, service]
    depends_on: [python-development]
    gates:
      commit: [format, lint, typecheck, test, coverage]
    ---
    # Python Service Workflow

    ## RED Phase
    - [ ] Write a failing endpoint test

    ## Commit
    - [ ] Conventional commit message

    ## Related Workflows
    - [Python Development](python-development.md)

Phase headers are headings whose text starts with RED, GREEN, REFACTOR or
COMMIT (after optional numbering such as ``1.`` or ``Step 2:``). A deeper
heading inside an open phase is a sub-section of it, even when its text
starts with a phase word (``### Commit message format``). Checklist
items are ``-``/``*``/``+`` or numbered bullets followed by ``[ ]``/``[x]``.
Dependencies come only from ``depends_on``; the "Related Workflows" section
is kept as informational links.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

import yaml

from .errors import MalformedWorkflow
from .flowstack_logging import log_performance
from .gates import DEFAULT_CHECKS, ValidationGate
from .models import ChecklistItem, Phase, PhaseName, WorkflowDocument

logger = logging.getLogger("flowstack.parser")

_FRONT_MATTER_PATTERN = re.compile(
    r"\A\ufeff?---[ \t]*\r?\n(?P<body>.*?)(?:\r?\n)?^---[ \t]*\r?$\n?", re.DOTALL | re.MULTILINE
)
_HEADING_PATTERN = re.compile(r"^(?P<hashes>#{1,6})\s+(?P<text>.+?)\s*#*\s*$")
_PHASE_HEADING_PATTERN = re.compile(
    r"^(?:(?:step|phase)\s*)?(?:\d+\s*[.):-]?\s*)?(?P<phase>red|green|refactor|commit)\b",
    re.IGNORECASE,
)
_CHECKBOX_PATTERN = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+\[(?P<mark>[ xX])\]\s+(?P<rest>.+?)\s*$")
_BULLET_PATTERN = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(?P<rest>.+?)\s*$")
_LINK_PATTERN = re.compile(r"\[(?P<label>[^\]]+)\]\((?P<target>[^)\s]+)\)")
_RELATED_HEADING_PATTERN = re.compile(r"\brelated\s+workflows?\b", re.IGNORECASE)
_FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")
_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
_LEADING_SYMBOLS_PATTERN = re.compile(r"^[^A-Za-z0-9]+")


def _split_front_matter(text: str) -> Tuple[Optional[str], str]:
    match = _FRONT_MATTER_PATTERN.match(text)
    if not match:
        return None, text
    return match.group("body"), text[match.end():]


def _as_list(value: Any, field_name: str, path: Optional[str]) -> List[str]:
    """Accept a YAML list or a comma separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(part).strip() for part in value if str(part).strip()]
    raise MalformedWorkflow(path, f"'{field_name}' must be a list or a comma separated string")


def _parse_front_matter(raw: Optional[str], path: Optional[str]) -> Dict[str, Any]:
    if raw is None or not raw.strip():
        return {}
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise MalformedWorkflow(path, f"invalid YAML front matter: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MalformedWorkflow(path, "front matter must be a mapping")
    return data


def _phase_from_heading(text: str) -> Optional[str]:
    cleaned = _LEADING_SYMBOLS_PATTERN.sub("", text)
    match = _PHASE_HEADING_PATTERN.match(cleaned)
    if not match:
        return None
    return PhaseName.normalize(match.group("phase"))


def _parse_gates(raw: Any, path: Optional[str]) -> Dict[str, ValidationGate]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise MalformedWorkflow(path, "'gates' must map phase names to lists of checks")
    gates: Dict[str, ValidationGate] = {}
    for key, value in raw.items():
        phase = PhaseName.normalize(str(key))
        if phase is None:
            raise MalformedWorkflow(path, f"gate declared for unknown phase '{key}'")
        if value == "default":
            checks = list(DEFAULT_CHECKS)
        else:
            checks = _as_list(value, f"gates.{key}", path)
        if not checks:
            raise MalformedWorkflow(path, f"gate for phase '{phase}' has no checks")
        gates[phase] = ValidationGate.of(checks)
    return gates


def _normalize_name(value: str) -> str:
    return value.strip().lower()


def parse_text(
    text: str,
    source_path: Optional[Union[str, Path]] = None,
    known_names: Optional[Iterable[str]] = None,
) -> WorkflowDocument:
    """Parse Markdown text into an immutable WorkflowDocument."""
    path = str(source_path) if source_path is not None else None
    raw_front, body = _split_front_matter(text)
    meta = _parse_front_matter(raw_front, path)

    # (phase name, heading level, items)
    blocks: List[Tuple[str, int, List[ChecklistItem]]] = []
    related: List[str] = []
    first_title: Optional[str] = None
    current: Optional[Tuple[str, int, List[ChecklistItem]]] = None
    related_level: Optional[int] = None
    in_fence = False

    for line in body.splitlines():
        if _FENCE_PATTERN.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue

        heading = _HEADING_PATTERN.match(line)
        if heading:
            level = len(heading.group("hashes"))
            heading_text = heading.group("text").strip()
            if level == 1 and first_title is None:
                first_title = heading_text

            phase_name = _phase_from_heading(heading_text)
            # Deeper headings inside an open phase are sub-sections of it
            if phase_name is not None and (current is None or level <= current[1]):
                if any(block[0] == phase_name for block in blocks):
                    raise MalformedWorkflow(path, f"phase '{phase_name}' is declared more than once")
                current = (phase_name, level, [])
                blocks.append(current)
                related_level = None
                continue

            if current is not None and level <= current[1]:
                current = None
            if related_level is not None and level <= related_level:
                related_level = None
            if _RELATED_HEADING_PATTERN.search(heading_text):
                related_level = level
            continue

        if current is not None:
            box = _CHECKBOX_PATTERN.match(line)
            if box:
                # Template marks are ignored: instances always start pending
                items = current[2]
                item_id = f"{current[0].lower()}/{len(items) + 1}"
                items.append(ChecklistItem.create(box.group("rest"), item_id=item_id))
            continue

        if related_level is not None:
            links = _LINK_PATTERN.findall(line)
            if links:
                related.extend(label.strip() for label, _target in links)
            else:
                bullet = _BULLET_PATTERN.match(line)
                if bullet:
                    related.append(bullet.group("rest"))

    if not blocks:
        raise MalformedWorkflow(path, "no RED/GREEN/REFACTOR/COMMIT phases found")

    order = [PhaseName.ORDER.index(block[0]) for block in blocks]
    for previous, following, block in zip(order, order[1:], blocks[1:]):
        if following < previous:
            raise MalformedWorkflow(
                path,
                f"phase '{block[0]}' is out of order; phases must follow {' -> '.join(PhaseName.ORDER)}",
            )

    for phase_name, _level, items in blocks:
        if not items:
            raise MalformedWorkflow(path, f"phase '{phase_name}' has no checklist items")

    gates = _parse_gates(meta.get("gates"), path)
    declared = {block[0] for block in blocks}
    for phase_name in gates:
        if phase_name not in declared:
            raise MalformedWorkflow(path, f"gate declared for phase '{phase_name}' which the document does not define")

    phases = tuple(
        Phase(name=phase_name, items=items, gate=gates.get(phase_name))
        for phase_name, _level, items in blocks
    )

    raw_name = meta.get("name")
    if raw_name is None and source_path is not None:
        raw_name = Path(source_path).stem
    if raw_name is None:
        raise MalformedWorkflow(path, "missing 'name' in front matter")
    name = _normalize_name(str(raw_name))
    if not _NAME_PATTERN.match(name):
        raise MalformedWorkflow(path, f"invalid workflow name '{raw_name}'")

    stacks: FrozenSet[str] = frozenset(
        _normalize_name(tag) for tag in _as_list(meta.get("stacks", meta.get("tags")), "stacks", path)
    )
    depends_on: FrozenSet[str] = frozenset(
        _normalize_name(dep) for dep in _as_list(meta.get("depends_on"), "depends_on", path)
    )

    if known_names is not None:
        known = set(known_names)
        unknown = sorted(depends_on - known)
        if unknown:
            raise MalformedWorkflow(path, f"depends_on references unknown workflow(s): {', '.join(unknown)}")

    document = WorkflowDocument(
        name=name,
        version=str(meta.get("version", "0.0.0")),
        phases=phases,
        applicable_stacks=stacks,
        depends_on=depends_on,
        title=str(meta.get("title") or first_title or name),
        related=tuple(related),
        source_path=path,
    )
    logger.debug(
        f"Parsed workflow '{document.name}' with {len(phases)} phases "
        f"and {sum(len(phase.items) for phase in phases)} items"
    )
    return document


@log_performance("load_workflow")
def load(
    source: Union[str, Path],
    known_names: Optional[Iterable[str]] = None,
) -> WorkflowDocument:
    """Load a workflow template.

    ``source`` is either a :class:`~pathlib.Path` to a Markdown file or the
    Markdown text itself. When ``known_names`` is given, every ``depends_on``
    entry must be one of them.
    """
    if isinstance(source, Path):
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as e:
            raise MalformedWorkflow(source, f"cannot read file: {e}") from e
        return parse_text(text, source_path=source, known_names=known_names)
    return parse_text(source, known_names=known_names)
