"""Persistence of plans and schedule exceptions as store documents.

A plan ``<name>`` is stored as document ``plan-<name>`` labelled
``kind=HibernatePlan``: ``data.spec`` and ``data.status`` hold JSON, plan
annotations and labels map onto the document's own.  A schedule exception is
stored as ``exception-<name>`` labelled ``kind=ScheduleException`` and
``plan=<planRef>``.

The spec belongs to whoever applies the plan; the controller only owns the
status, a few annotations and ``spec.suspend``.  :meth:`PlanStore.save`
therefore writes a patch: what the controller changed relative to the copy
it loaded is replayed onto the latest stored plan when the write conflicts.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from infra import Document, DocumentStore
from Orchestrator import annotations
from Orchestrator.models import Plan, PlanStatus, ScheduleExceptionResource
from Orchestrator.planner import ExecutionPlanner
from protocol.errors import (
    ConfigurationError,
    ConflictError,
    DocumentNotFoundError,
    StoreError,
)
from scheduler import resolve_timezone

from .schema_validator import validate_exception, validate_plan

logger = logging.getLogger(__name__)

KIND_LABEL = "kind"
PLAN_LABEL = "plan"
PLAN_KIND = "HibernatePlan"
EXCEPTION_KIND = "ScheduleException"

_PLAN_PREFIX = "plan-"
_EXCEPTION_PREFIX = "exception-"

# Annotations written by the controller survive a re-apply of the plan.
_CONTROLLER_ANNOTATIONS = frozenset(
    {annotations.SUSPENDED_AT_PHASE, annotations.DEADLINE_SUSPENSION}
)


def plan_document_name(name: str) -> str:
    return f"{_PLAN_PREFIX}{name}"


def exception_document_name(name: str) -> str:
    return f"{_EXCEPTION_PREFIX}{name}"


class PlanStore:
    """Typed access to plan and exception documents.

    Parameters
    ----------
    store:
        Backing :class:`DocumentStore`.
    max_conflict_retries:
        Attempts for a write before :class:`ConflictError` is raised.
    """

    def __init__(self, store: DocumentStore, max_conflict_retries: int = 5) -> None:
        self._store = store
        self._max_retries = max(1, max_conflict_retries)
        self._planner = ExecutionPlanner()

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def get(self, namespace: str, name: str) -> Plan | None:
        """Return the plan, ``None`` if absent.  Raises StoreError if corrupt."""
        doc = self._store.get(namespace, plan_document_name(name))
        if doc is None:
            return None
        return _plan_from_document(doc)

    def list(self, namespace: str) -> list[Plan]:
        """All readable plans in *namespace*, sorted by name."""
        plans: list[Plan] = []
        for doc in self._store.list(namespace, {KIND_LABEL: PLAN_KIND}):
            try:
                plans.append(_plan_from_document(doc))
            except StoreError as exc:
                logger.warning("Skipping unreadable plan %s/%s: %s", namespace, doc.name, exc)
        return sorted(plans, key=lambda p: p.metadata.name)

    def apply(self, data: dict[str, Any]) -> Plan | ScheduleExceptionResource:
        """Create or update a plan or exception from its document form.

        ``kind`` selects the document type and defaults to ``HibernatePlan``.
        Raises ConfigurationError (SchemaValidationError) on invalid input.
        """
        kind = data.get("kind", PLAN_KIND)
        if kind == EXCEPTION_KIND:
            return self.apply_exception(data)
        if kind != PLAN_KIND:
            raise ConfigurationError(f"unknown document kind {kind!r}")
        return self.apply_plan(data)

    def apply_plan(self, data: dict[str, Any]) -> Plan:
        validate_plan(data)
        try:
            plan = Plan.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid plan: {exc}") from exc
        plan.spec.schedule.windows()
        resolve_timezone(plan.spec.schedule.timezone)
        self._planner.validate(plan.spec.execution.strategy, plan.spec.targets)

        ns, name = plan.metadata.namespace, plan.metadata.name
        for _ in range(self._max_retries):
            existing = self.get(ns, name)
            try:
                if existing is None:
                    plan.status = PlanStatus()
                    plan.metadata.resource_version = 0
                    doc = self._store.create(_plan_to_document(plan))
                    logger.info("Created plan %s", plan.key)
                else:
                    kept = {
                        k: v
                        for k, v in existing.metadata.annotations.items()
                        if k in _CONTROLLER_ANNOTATIONS
                    }
                    existing.spec = plan.spec
                    existing.metadata.annotations = {**kept, **plan.metadata.annotations}
                    existing.metadata.labels = dict(plan.metadata.labels)
                    doc = self._store.update(_plan_to_document(existing))
                    logger.info("Updated plan %s", plan.key)
            except ConflictError:
                continue
            return _plan_from_document(doc)
        raise ConflictError(ns, plan_document_name(name), f"gave up after {self._max_retries} attempts")

    def save(self, plan: Plan, baseline: Plan) -> Plan:
        """Persist the controller's changes to *plan* since *baseline*.

        Status, annotation changes and a ``spec.suspend`` flip are replayed
        onto the latest stored plan if it moved on.  Returns the plan as
        written, including its new resource version.

        Raises
        ------
        DocumentNotFoundError
            If the plan was deleted meanwhile.
        ConflictError
            If every attempt lost a race.
        """
        ns, name = plan.metadata.namespace, plan.metadata.name
        base = baseline
        for attempt in range(1, self._max_retries + 1):
            merged = _rebase(plan, baseline, base)
            try:
                doc = self._store.update(_plan_to_document(merged))
            except ConflictError as exc:
                logger.debug("Conflict saving %s (attempt %d): %s", plan.key, attempt, exc)
                latest = self.get(ns, name)
                if latest is None:
                    raise DocumentNotFoundError(ns, plan_document_name(name)) from exc
                base = latest
                continue
            merged.metadata.resource_version = doc.resource_version
            return merged
        raise ConflictError(ns, plan_document_name(name), f"gave up after {self._max_retries} attempts")

    def delete(self, namespace: str, name: str) -> bool:
        return self._store.delete(namespace, plan_document_name(name))

    # ------------------------------------------------------------------
    # Schedule exceptions
    # ------------------------------------------------------------------

    def apply_exception(self, data: dict[str, Any]) -> ScheduleExceptionResource:
        validate_exception(data)
        try:
            resource = ScheduleExceptionResource.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid schedule exception: {exc}") from exc
        resource.to_exception()

        ns, name = resource.metadata.namespace, resource.metadata.name
        doc_name = exception_document_name(name)
        for _ in range(self._max_retries):
            existing = self._store.get(ns, doc_name)
            doc = _exception_to_document(resource)
            try:
                if existing is None:
                    doc = self._store.create(doc)
                else:
                    doc.resource_version = existing.resource_version
                    doc = self._store.update(doc)
            except ConflictError:
                continue
            logger.info("Applied schedule exception %s/%s for plan %s", ns, name, resource.spec.plan_ref)
            return _exception_from_document(doc)
        raise ConflictError(ns, doc_name, f"gave up after {self._max_retries} attempts")

    def list_exceptions(
        self, namespace: str, plan: str | None = None
    ) -> list[ScheduleExceptionResource]:
        """Readable exceptions in *namespace*, optionally only those for *plan*."""
        labels = {KIND_LABEL: EXCEPTION_KIND}
        if plan is not None:
            labels[PLAN_LABEL] = plan
        resources: list[ScheduleExceptionResource] = []
        for doc in self._store.list(namespace, labels):
            try:
                resources.append(_exception_from_document(doc))
            except StoreError as exc:
                logger.warning("Skipping unreadable exception %s/%s: %s", namespace, doc.name, exc)
        return resources

    def delete_exception(self, namespace: str, name: str) -> bool:
        return self._store.delete(namespace, exception_document_name(name))


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------


def _rebase(plan: Plan, baseline: Plan, base: Plan) -> Plan:
    """Apply the delta *baseline* -> *plan* onto a copy of *base*."""
    merged = base.model_copy(deep=True)
    target = merged.metadata.annotations
    before, after = baseline.metadata.annotations, plan.metadata.annotations
    for key in before.keys() - after.keys():
        target.pop(key, None)
    for key, value in after.items():
        if before.get(key) != value:
            target[key] = value
    if plan.spec.suspend != baseline.spec.suspend:
        merged.spec.suspend = plan.spec.suspend
    merged.status = plan.status.model_copy(deep=True)
    return merged


def _dumps(value: dict[str, Any]) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


def _plan_to_document(plan: Plan) -> Document:
    labels = dict(plan.metadata.labels)
    labels[KIND_LABEL] = PLAN_KIND
    return Document(
        namespace=plan.metadata.namespace,
        name=plan_document_name(plan.metadata.name),
        data={
            "spec": _dumps(plan.spec.to_dict()),
            "status": _dumps(plan.status.to_dict()),
        },
        annotations=dict(plan.metadata.annotations),
        labels=labels,
        resource_version=plan.metadata.resource_version,
    )


def _plan_from_document(doc: Document) -> Plan:
    try:
        return Plan.model_validate(
            {
                "metadata": {
                    "name": doc.name[len(_PLAN_PREFIX):],
                    "namespace": doc.namespace,
                    "annotations": dict(doc.annotations),
                    "labels": {k: v for k, v in doc.labels.items() if k != KIND_LABEL},
                    "resourceVersion": doc.resource_version,
                },
                "spec": json.loads(doc.data.get("spec") or "{}"),
                "status": json.loads(doc.data.get("status") or "{}"),
            }
        )
    except (json.JSONDecodeError, ValidationError) as exc:
        raise StoreError(f"corrupt plan document {doc.namespace}/{doc.name}: {exc}") from exc


def _exception_to_document(resource: ScheduleExceptionResource) -> Document:
    labels = dict(resource.metadata.labels)
    labels[KIND_LABEL] = EXCEPTION_KIND
    labels[PLAN_LABEL] = resource.spec.plan_ref
    return Document(
        namespace=resource.metadata.namespace,
        name=exception_document_name(resource.metadata.name),
        data={"spec": _dumps(resource.spec.to_dict())},
        annotations=dict(resource.metadata.annotations),
        labels=labels,
    )


def _exception_from_document(doc: Document) -> ScheduleExceptionResource:
    try:
        return ScheduleExceptionResource.model_validate(
            {
                "metadata": {
                    "name": doc.name[len(_EXCEPTION_PREFIX):],
                    "namespace": doc.namespace,
                    "annotations": dict(doc.annotations),
                    "labels": {
                        k: v for k, v in doc.labels.items() if k not in (KIND_LABEL, PLAN_LABEL)
                    },
                    "resourceVersion": doc.resource_version,
                },
                "spec": json.loads(doc.data.get("spec") or "{}"),
            }
        )
    except (json.JSONDecodeError, ValidationError) as exc:
        raise StoreError(f"corrupt exception document {doc.namespace}/{doc.name}: {exc}") from exc
