"""Composition resolver.

Turns a :class:`CompositionRequest` into a :class:`ResolvedPlan`:

1. select every workflow whose applicable tags intersect the request,
2. add the transitive ``depends_on`` closure of the selection,
3. fail with CyclicDependency if the closure contains a loop,
4. topologically sort with Kahn's algorithm. Whenever several workflows
   are ready, the alphabetically smallest name is taken first.

The tie-break makes the ordering a pure function of the catalog and the
requested tags. For ``{python, sqlite}`` with ``python-service`` depending on
``python-development`` the order is ``python-development, python-service,
sqlite-development``.
"""

from __future__ import annotations

import heapq
import logging
from typing import Dict, Iterable, List, Set, Union

from .catalog import WorkflowCatalog
from .errors import CyclicDependency
from .flowstack_logging import log_performance, log_plan_resolved
from .models import CompositionRequest, ResolvedPlan, WorkflowDocument, WorkflowInstance

logger = logging.getLogger("flowstack.resolver")


def dependency_closure(seeds: Iterable[str], catalog: WorkflowCatalog) -> Set[str]:
    """Names of the seeds plus everything they transitively depend on."""
    closure: Set[str] = set()
    stack = list(seeds)
    while stack:
        name = stack.pop()
        if name in closure:
            continue
        closure.add(name)
        stack.extend(catalog.get(name).depends_on - closure)
    return closure


def _find_cycle(remaining: Set[str], documents: Dict[str, WorkflowDocument]) -> List[str]:
    """Walk unresolved nodes until one repeats; return the loop it closes.

    Every node left over by Kahn's algorithm still has an unresolved
    dependency inside ``remaining``, so following the smallest such
    dependency from any node must eventually revisit a node.
    """
    node = min(remaining)
    path: List[str] = []
    seen: Dict[str, int] = {}
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = min(dep for dep in documents[node].depends_on if dep in remaining)
    return path[seen[node]:] + [node]


def topological_order(documents: Dict[str, WorkflowDocument]) -> List[str]:
    """Dependency-first ordering with alphabetical tie-break.

    Raises CyclicDependency if the documents cannot be ordered.
    """
    indegree = {name: 0 for name in documents}
    dependents: Dict[str, List[str]] = {name: [] for name in documents}
    for name, document in documents.items():
        for dep in document.depends_on:
            if dep in documents:
                indegree[name] += 1
                dependents[dep].append(name)

    ready = [name for name, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    ordered: List[str] = []
    while ready:
        name = heapq.heappop(ready)
        ordered.append(name)
        for dependent in dependents[name]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(ordered) != len(documents):
        remaining = set(documents) - set(ordered)
        cycle = _find_cycle(remaining, documents)
        logger.error(f"Dependency cycle detected: {' -> '.join(cycle)}")
        raise CyclicDependency(cycle)
    return ordered


@log_performance("resolve_plan")
def resolve(
    request: Union[CompositionRequest, Iterable[str]],
    catalog: WorkflowCatalog,
) -> ResolvedPlan:
    """Resolve the ordered set of workflow instances for a request."""
    if not isinstance(request, CompositionRequest):
        request = CompositionRequest.of(request)

    selected = catalog.select(request.requested_tags)
    matched_tags: Set[str] = set()
    for document in selected:
        matched_tags |= document.tags & request.requested_tags
    unmatched = tuple(sorted(request.requested_tags - matched_tags))
    if unmatched:
        logger.warning(f"No workflow applies to tag(s): {', '.join(unmatched)}")

    closure = dependency_closure((document.name for document in selected), catalog)
    documents = {name: catalog.get(name) for name in closure}
    ordered_names = topological_order(documents)

    plan = ResolvedPlan(
        requested_tags=tuple(sorted(request.requested_tags)),
        ordered_workflow_instances=[
            WorkflowInstance.from_document(documents[name]) for name in ordered_names
        ],
        unmatched_tags=unmatched,
    )

    implicit = sorted(closure - {document.name for document in selected})
    log_plan_resolved(
        list(plan.requested_tags),
        plan.workflow_names,
        implicit_dependencies=implicit,
        unmatched_tags=list(unmatched),
    )
    return plan
