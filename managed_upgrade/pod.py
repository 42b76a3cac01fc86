"""Filtering, deleting and un-finalizing pods."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

from managed_upgrade.objects import KubeClient, Node, Pod

log = logging.getLogger(__name__)

PodPredicate = Callable[[Pod], bool]


@dataclass
class DeleteResult:
    """Outcome of a pod deletion pass."""

    message: str
    num_marked_for_deletion: int


@dataclass
class RemoveFinalizersResult:
    """Outcome of a finalizer removal pass."""

    message: str
    num_removed: int


class PodOperationError(Exception):
    """Raised when some pods in a batch operation failed.

    ``result`` describes the pods that succeeded; ``errors`` holds the
    individual failures, most recent first.
    """

    def __init__(self, result: Any, errors: Sequence[BaseException]) -> None:
        self.result = result
        self.errors = list(errors)
        detail = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} error(s) occurred: {detail}")


def filter_pods(pods: Iterable[Pod], *predicates: PodPredicate) -> list[Pod]:
    """Return the pods that satisfy every predicate."""
    return [pod for pod in pods if all(p(pod) for p in predicates)]


def delete_pods(
    client: KubeClient, pods: Iterable[Pod], ignore_already_deleting: bool, **kwargs: Any
) -> DeleteResult:
    """Delete pods, optionally skipping those already being deleted.

    Extra keyword arguments are passed to ``client.delete``.
    """
    errors: list[BaseException] = []
    marked: list[str] = []
    for pod in pods:
        meta = pod.metadata
        if not ignore_already_deleting or meta.deletion_timestamp is None:
            log.info(
                "Applying pod deletion drain strategy to pod %s/%s", meta.namespace, meta.name
            )
            try:
                client.delete(pod, **kwargs)
            except Exception as exc:  # collected and reported together
                errors.insert(0, exc)
            else:
                marked.append(meta.name)
        else:
            log.info("Ignoring deleting pod %s because it is already being deleted", meta.name)

    result = DeleteResult(
        message=f"Pod(s) {','.join(marked)} have been marked for deletion",
        num_marked_for_deletion=len(marked),
    )
    if errors:
        raise PodOperationError(result, errors)
    return result


def remove_finalizers_from_pods(client: KubeClient, pods: Iterable[Pod]) -> RemoveFinalizersResult:
    """Clear the finalizers of every pod that has any."""
    errors: list[BaseException] = []
    removed: list[str] = []
    for pod in pods:
        if not pod.metadata.finalizers:
            continue
        log.info(
            "Applying remove finalizer strategy to pod %s/%s",
            pod.metadata.namespace,
            pod.metadata.name,
        )
        updated = copy.deepcopy(pod)
        updated.metadata.finalizers = []
        try:
            client.update(updated)
        except Exception as exc:  # collected and reported together
            errors.insert(0, exc)
        else:
            removed.append(pod.metadata.name)

    result = RemoveFinalizersResult(
        message=f"Finalizers removed for pods: {','.join(removed)}",
        num_removed=len(removed),
    )
    if errors:
        raise PodOperationError(result, errors)
    return result


def get_pod_list(
    client: KubeClient, node: Node, filters: Sequence[PodPredicate]
) -> list[Pod]:
    """Return the pods on ``node`` that satisfy every filter."""
    pods = client.list(Pod, field_selector={"spec.nodeName": node.metadata.name})
    return filter_pods(pods, *filters)