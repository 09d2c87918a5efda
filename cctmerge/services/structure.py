"""Static program structure: reading, search-path resolution and CCT overlay.

Structure documents describe load modules, source files, procedures and
loops::

    {"load_modules": [{"name": "a.out", "files": [{"name": "main.c",
        "procedures": [{"name": "main", "lines": [10, 40],
                        "loops": [{"lines": [12, 20], "loops": []}]}]}]}]}

Overlay binds CCT frames to the procedures they execute and inserts loop
nodes between a frame and the statements/call sites that fall inside a
loop's line range. Overlay only restructures the tree; it never changes a
total, so it must run before dense ids are assigned.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError

from cctmerge.common.errors import DiagnosticError
from cctmerge.models import (
    CCTNode,
    NodeKind,
    NormalizePolicy,
    Profile,
    StructKind,
    StructureNode,
    StructureTree,
)

logger = logging.getLogger(__name__)

# Runtime frames hidden by each agent; their samples move to the caller.
AGENTS: dict[str, tuple[str, ...]] = {
    "none": (),
    "pthread": ("start_thread", "clone", "pthread_"),
    "openmp": ("__kmp", "__kmpc_", "GOMP_", "gomp_"),
    "cilk": ("__cilkrts_", "cilk_"),
}


# MARK: - Search paths


class SearchPathResolver:
    """Resolve source file names against user-supplied search directories.

    A path ending in ``/+`` is searched recursively. Names that cannot be
    found are returned unchanged.
    """

    def __init__(self, search_paths: Iterable[str] = ()):
        self.entries: list[tuple[Path, bool]] = []
        for raw in search_paths:
            for part in raw.split(os.pathsep):
                if not part:
                    continue
                recursive = part.endswith("/+")
                base = Path(part[:-2] if recursive else part)
                self.entries.append((base, recursive))
        self._cache: dict[str, str] = {}

    def resolve(self, name: str) -> str:
        if name in self._cache:
            return self._cache[name]
        resolved = self._search(name)
        self._cache[name] = resolved
        return resolved

    def _search(self, name: str) -> str:
        target = Path(name)
        if target.is_absolute() and target.exists():
            return str(target)
        for base, recursive in self.entries:
            candidate = base / target
            if candidate.exists():
                return str(candidate)
            if recursive:
                for match in sorted(base.rglob(target.name)):
                    if match.is_file():
                        return str(match)
        return name


# MARK: - Document models


class LoopDocument(BaseModel):
    lines: tuple[int, int]
    loops: list["LoopDocument"] = Field(default_factory=list)


LoopDocument.model_rebuild()


class ProcedureDocument(BaseModel):
    name: str
    lines: Optional[tuple[int, int]] = None
    loops: list[LoopDocument] = Field(default_factory=list)


class FileDocument(BaseModel):
    name: str
    procedures: list[ProcedureDocument] = Field(default_factory=list)


class LoadModuleDocument(BaseModel):
    name: str
    files: list[FileDocument] = Field(default_factory=list)


class StructureDocument(BaseModel):
    load_modules: list[LoadModuleDocument] = Field(default_factory=list)


def read_structure(
    structure_files: Sequence[str],
    resolver: Optional[SearchPathResolver] = None,
    tree: Optional[StructureTree] = None,
) -> StructureTree:
    """Read structure documents into ``tree`` (a new empty tree by default)."""
    resolver = resolver or SearchPathResolver()
    tree = tree if tree is not None else StructureTree("")

    for structure_file in structure_files:
        try:
            text = Path(structure_file).read_text(encoding="utf-8")
        except OSError as exc:
            raise DiagnosticError(
                f"Cannot read structure file '{structure_file}': {exc.strerror}"
            ) from exc
        try:
            document = StructureDocument.model_validate_json(text)
        except ValidationError as exc:
            raise DiagnosticError(f"Malformed structure file '{structure_file}': {exc}") from exc

        for module in document.load_modules:
            module_node = tree.add(tree.root, StructKind.LOAD_MODULE, module.name)
            for file_doc in module.files:
                file_node = tree.add(
                    module_node,
                    StructKind.FILE,
                    file_doc.name,
                    path=resolver.resolve(file_doc.name),
                )
                for procedure in file_doc.procedures:
                    begin, end = procedure.lines if procedure.lines else (None, None)
                    proc_node = tree.add(
                        file_node, StructKind.PROCEDURE, procedure.name, begin, end
                    )
                    _add_loops(tree, proc_node, procedure.loops)
        logger.info("Read structure file %s", structure_file)

    return tree


def _add_loops(tree: StructureTree, parent: StructureNode, loops: list[LoopDocument]) -> None:
    for loop in loops:
        begin, end = loop.lines
        if end < begin:
            raise DiagnosticError(f"Loop line range [{begin}, {end}] is reversed")
        loop_node = tree.add(parent, StructKind.LOOP, f"loop@{begin}", begin, end)
        _add_loops(tree, loop_node, loop.loops)


# MARK: - Overlay


def resolve_agent(agent: Optional[str]) -> tuple[str, ...]:
    if agent is None:
        return ()
    try:
        return AGENTS[agent]
    except KeyError:
        raise DiagnosticError(
            f"Unknown agent '{agent}' (expected one of: {', '.join(sorted(AGENTS))})"
        ) from None


def overlay_static_structure(
    profile: Profile,
    agent: Optional[str] = None,
    normalize_policy: NormalizePolicy = NormalizePolicy.SAFE,
) -> None:
    """Attach static structure to ``profile.cct`` in place."""
    cct = profile.cct
    hidden = resolve_agent(agent)
    if hidden:
        spliced = 0
        for node in cct.postorder():
            # nodes merged away by an earlier splice are detached
            if node.parent is None:
                continue
            if node.kind is NodeKind.FRAME and node.name.startswith(hidden):
                cct.splice(node)
                spliced += 1
        logger.info("Agent '%s' hid %d runtime frames", agent, spliced)

    structure = profile.structure
    if structure is not None and not structure.is_empty():
        procedures = _index_procedures(structure)
        frames = [node for node in cct.preorder() if node.kind is NodeKind.FRAME]
        bound = 0
        for frame in frames:
            procedure = _match_procedure(structure, procedures, frame)
            if procedure is None:
                continue
            frame.structure_id = procedure.index
            if frame.file is None:
                file_node = structure.enclosing_file(procedure)
                frame.file = file_node.path if file_node is not None else None
            _insert_loops(profile, frame, frame, structure.children_of(procedure))
            bound += 1
        logger.info("Bound %d of %d frames to static structure", bound, len(frames))

    if normalize_policy is not NormalizePolicy.NONE:
        _coalesce_duplicates(profile)
    if normalize_policy is NormalizePolicy.ALL:
        _prune_empty(profile)


def _index_procedures(structure: StructureTree) -> dict[str, list[StructureNode]]:
    procedures: dict[str, list[StructureNode]] = {}
    for procedure in structure.procedures():
        procedures.setdefault(procedure.name, []).append(procedure)
    return procedures


def _match_procedure(
    structure: StructureTree,
    procedures: dict[str, list[StructureNode]],
    frame: CCTNode,
) -> Optional[StructureNode]:
    candidates = procedures.get(frame.name, [])
    if len(candidates) <= 1 or frame.file is None:
        return candidates[0] if candidates else None
    frame_file = Path(frame.file).name
    for candidate in candidates:
        file_node = structure.enclosing_file(candidate)
        if file_node is not None and Path(file_node.name).name == frame_file:
            return candidate
    return candidates[0]


def _insert_loops(
    profile: Profile,
    frame: CCTNode,
    parent: CCTNode,
    loops: list[StructureNode],
) -> None:
    cct = profile.cct
    structure = profile.structure
    for loop in loops:
        members = [
            child
            for child in cct.children_of(parent)
            if child.kind in (NodeKind.STATEMENT, NodeKind.CALL_SITE)
            and loop.contains_line(child.line)
        ]
        if not members:
            continue
        loop_node = cct.insert_between(
            parent, members, NodeKind.LOOP, loop.name, file=frame.file, line=loop.begin_line
        )
        loop_node.structure_id = loop.index
        _insert_loops(profile, frame, loop_node, structure.children_of(loop))


def _coalesce_duplicates(profile: Profile) -> None:
    cct = profile.cct
    merged = 0
    for node in list(cct.preorder()):
        seen: dict[tuple, int] = {}
        for child_index in list(node.children):
            child = cct.node(child_index)
            key = child.key()
            if key in seen:
                node.children.remove(child_index)
                cct.adopt(node, child)
                merged += 1
            else:
                seen[key] = child_index
    if merged:
        logger.info("Coalesced %d duplicate sibling contexts", merged)


def _prune_empty(profile: Profile) -> None:
    cct = profile.cct
    has_samples: dict[int, bool] = {}
    for node in cct.postorder():
        has_samples[node.index] = bool(node.values.any()) or any(
            has_samples[i] for i in node.children
        )
    pruned = 0
    for node in list(cct.preorder()):
        kept = [i for i in node.children if has_samples[i]]
        pruned += len(node.children) - len(kept)
        node.children = kept
    if pruned:
        logger.info("Pruned %d subtrees without samples", pruned)


__all__ = [
    "AGENTS",
    "SearchPathResolver",
    "StructureDocument",
    "read_structure",
    "resolve_agent",
    "overlay_static_structure",
]
