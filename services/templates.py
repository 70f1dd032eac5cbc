"""Process-wide cache of workflow templates read from the document store."""

from __future__ import annotations

import logging
from threading import Lock
from typing import List, Optional

from .documents import DocumentStore
from .models import WorkflowTemplate

TEMPLATES_COLLECTION = "workflow_templates"

logger = logging.getLogger(__name__)

_cache_lock = Lock()
_cached_templates: Optional[List[WorkflowTemplate]] = None


class TemplateNotFoundError(KeyError):
    """Raised when a requested workflow template is not stored."""


def get_workflow_templates(store: DocumentStore) -> List[WorkflowTemplate]:
    """Return all templates, reading the store only on first use."""
    global _cached_templates
    with _cache_lock:
        if _cached_templates is None:
            templates = [WorkflowTemplate.from_dict(payload) for payload in store.get_all(TEMPLATES_COLLECTION)]
            _cached_templates = templates
            logger.info("Loaded %d workflow templates", len(templates))
        return list(_cached_templates)


def find_workflow_template(store: DocumentStore, template_id: str) -> WorkflowTemplate:
    for template in get_workflow_templates(store):
        if template.id == template_id:
            return template
    raise TemplateNotFoundError(f"Workflow template '{template_id}' not found")


def reset_template_cache() -> None:
    """Drop cached templates so the next read goes back to the store."""
    global _cached_templates
    with _cache_lock:
        _cached_templates = None


__all__ = [
    "TEMPLATES_COLLECTION",
    "TemplateNotFoundError",
    "find_workflow_template",
    "get_workflow_templates",
    "reset_template_cache",
]
