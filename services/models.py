"""Typed views over the loosely shaped order, contract and template documents."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

ORDER_STATUSES = ("pending", "processing", "completed")
VIRTUAL_ORDER_PREFIX = "contract-"


class DocumentValidationError(Exception):
    """Raised when a stored document cannot be read as the expected entity."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__("Document validation failed")
        self.errors = errors


def _require_mapping(payload: Any, entity: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise DocumentValidationError({entity: f"Expected an object, got {type(payload).__name__}"})
    return payload


def _clean_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _clean_optional_str(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    return str(value)


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "y"}
    return False


def _mapping_entries(value: Any) -> List[Mapping[str, Any]]:
    """Return the dict entries of a list field, dropping anything malformed."""
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, Mapping)]


@dataclass
class Task:
    id: str
    title: str
    done: bool = False

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Task":
        payload = _require_mapping(payload, "task")
        return cls(
            id=_clean_str(payload.get("id")),
            title=_clean_str(payload.get("title")),
            done=coerce_bool(payload.get("done")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "done": self.done}


@dataclass
class Category:
    id: str
    name: str
    tasks: List[Task] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Category":
        payload = _require_mapping(payload, "category")
        return cls(
            id=_clean_str(payload.get("id")),
            name=_clean_str(payload.get("name")),
            tasks=[Task.from_dict(entry) for entry in _mapping_entries(payload.get("tasks"))],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tasks": [task.to_dict() for task in self.tasks],
        }


def workflow_from_list(value: Any) -> List[Category]:
    return [Category.from_dict(entry) for entry in _mapping_entries(value)]


def workflow_to_list(categories: List[Category]) -> List[Dict[str, Any]]:
    return [category.to_dict() for category in categories]


@dataclass
class LineItem:
    """A purchased product reference; ``name``, ``product_id`` and ``productId`` are synonyms."""

    name: Optional[str] = None
    product_id: Optional[str] = None
    productId: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.product_id or self.productId or ""

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "LineItem":
        payload = _require_mapping(payload, "item")
        extra = {key: value for key, value in payload.items() if key not in {"name", "product_id", "productId"}}
        return cls(
            name=_clean_optional_str(payload.get("name")),
            product_id=_clean_optional_str(payload.get("product_id")),
            productId=_clean_optional_str(payload.get("productId")),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        for key in ("name", "product_id", "productId"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        payload.update(self.extra)
        return payload


@dataclass
class Order:
    id: str
    customer_name: str = ""
    customer_email: str = ""
    created_at: Any = None
    items: List[LineItem] = field(default_factory=list)
    contract_id: Optional[str] = None
    workflow: List[Category] = field(default_factory=list)
    status: Optional[str] = None

    @property
    def is_virtual(self) -> bool:
        """Placeholder rows built from a contract have no order document behind them."""
        return self.id.startswith(VIRTUAL_ORDER_PREFIX)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Order":
        payload = _require_mapping(payload, "order")
        return cls(
            id=_clean_str(payload.get("id")),
            customer_name=_clean_str(payload.get("customer_name")),
            customer_email=_clean_str(payload.get("customer_email")),
            created_at=payload.get("created_at"),
            items=[LineItem.from_dict(entry) for entry in _mapping_entries(payload.get("items"))],
            contract_id=_clean_optional_str(payload.get("contractId")),
            workflow=workflow_from_list(payload.get("workflow")),
            status=_clean_optional_str(payload.get("status")),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "created_at": self.created_at,
            "items": [item.to_dict() for item in self.items],
            "workflow": workflow_to_list(self.workflow),
        }
        if self.contract_id:
            payload["contractId"] = self.contract_id
        if self.status:
            payload["status"] = self.status
        return payload


@dataclass
class Contract:
    id: str
    client_name: str = ""
    client_email: str = ""
    store_items: List[LineItem] = field(default_factory=list)
    workflow: List[Category] = field(default_factory=list)
    created_at: Any = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Contract":
        payload = _require_mapping(payload, "contract")
        return cls(
            id=_clean_str(payload.get("id")),
            client_name=_clean_str(payload.get("clientName") or payload.get("client_name")),
            client_email=_clean_str(payload.get("clientEmail") or payload.get("client_email")),
            store_items=[LineItem.from_dict(entry) for entry in _mapping_entries(payload.get("storeItems"))],
            workflow=workflow_from_list(payload.get("workflow")),
            created_at=payload.get("created_at"),
        )

    def to_virtual_order(self) -> Order:
        """Build the placeholder order row shown for a contract without an order."""
        return Order(
            id=f"{VIRTUAL_ORDER_PREFIX}{self.id}",
            customer_name=self.client_name,
            customer_email=self.client_email,
            created_at=self.created_at,
            items=[LineItem(name=item.name, extra=dict(item.extra)) for item in self.store_items],
            contract_id=self.id,
            workflow=copy.deepcopy(self.workflow),
        )


@dataclass
class WorkflowTemplate:
    id: str
    name: str = ""
    categories: List[Category] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "WorkflowTemplate":
        payload = _require_mapping(payload, "template")
        return cls(
            id=_clean_str(payload.get("id")),
            name=_clean_str(payload.get("name")),
            categories=workflow_from_list(payload.get("categories")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "categories": workflow_to_list(self.categories)}


__all__ = [
    "Category",
    "Contract",
    "DocumentValidationError",
    "LineItem",
    "ORDER_STATUSES",
    "coerce_bool",
    "Order",
    "Task",
    "VIRTUAL_ORDER_PREFIX",
    "WorkflowTemplate",
    "workflow_from_list",
    "workflow_to_list",
]
