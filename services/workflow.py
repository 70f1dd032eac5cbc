"""Checklist workflow rules shared by the order listing and the task write path.

Everything here is pure: functions take typed orders, contracts and
checklists and return new values without touching storage.
"""

from __future__ import annotations

import copy
import unicodedata
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .documents import new_id
from .models import Category, Contract, LineItem, Order, Task, WorkflowTemplate

DELIVERY_MARKER = "entrega"
DELIVERY_CATEGORY_NAME = "Entrega de productos"
DELIVERY_TASK_PREFIX = "Entregar"

IdFactory = Callable[[], str]


class WorkflowIndexError(IndexError):
    """Raised when a toggle targets a category or task that does not exist."""


def normalize(text: Optional[str]) -> str:
    """Accent-stripped, case-folded, trimmed form used for every title comparison."""
    decomposed = unicodedata.normalize("NFD", text or "")
    # Spacing accents such as "´" or "^" are modifier symbols (Sk), not combining marks
    stripped = "".join(
        ch for ch in decomposed
        if not unicodedata.combining(ch) and unicodedata.category(ch) != "Sk"
    )
    return stripped.lower().strip()


def normalize_email(email: Optional[str]) -> str:
    return (email or "").lower().strip()


def is_delivery_category(category: Category) -> bool:
    return DELIVERY_MARKER in normalize(category.name)


def delivery_task_title(product_name: str) -> str:
    return f"{DELIVERY_TASK_PREFIX} {product_name}"


def find_delivery_category(categories: Sequence[Category]) -> Optional[Category]:
    for category in categories:
        if is_delivery_category(category):
            return category
    return None


# ----------------------------------------------------------------------
# Contract resolution
# ----------------------------------------------------------------------

class ContractDirectory:
    """Lookup of known contracts by id and by normalized client email."""

    def __init__(self, contracts: Iterable[Contract] = ()):
        self._by_id: Dict[str, Contract] = {}
        self._by_email: Dict[str, Contract] = {}
        for contract in contracts:
            self.replace(contract)

    def replace(self, contract: Contract) -> None:
        previous = self._by_id.get(contract.id)
        if previous is not None:
            previous_key = normalize_email(previous.client_email)
            if self._by_email.get(previous_key) is previous:
                del self._by_email[previous_key]
        self._by_id[contract.id] = contract
        key = normalize_email(contract.client_email)
        # First contract seen for an email keeps the index slot
        if key and key not in self._by_email:
            self._by_email[key] = contract

    def get(self, contract_id: Optional[str]) -> Optional[Contract]:
        if not contract_id:
            return None
        return self._by_id.get(contract_id)

    def find_by_email(self, email: Optional[str]) -> Optional[Contract]:
        key = normalize_email(email)
        if not key:
            return None
        indexed = self._by_email.get(key)
        if indexed is not None:
            return indexed
        for contract in self._by_id.values():
            if normalize_email(contract.client_email) == key:
                return contract
        return None

    def all(self) -> List[Contract]:
        return list(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)


def resolve_contract(order: Order, contracts: ContractDirectory) -> Optional[Contract]:
    """Find the contract linked to ``order`` by explicit id, then by customer email."""
    contract = contracts.get(order.contract_id)
    if contract is None and order.customer_email:
        contract = contracts.find_by_email(order.customer_email)
    return contract


# ----------------------------------------------------------------------
# Items and checklists
# ----------------------------------------------------------------------

def display_items(order: Order, contract: Optional[Contract]) -> List[LineItem]:
    if contract is not None and contract.store_items:
        names = {normalize(item.name or "") for item in contract.store_items}
        return [item for item in order.items if normalize(item.display_name) in names]
    return list(order.items)


def product_names(items: Iterable[LineItem]) -> List[str]:
    return [item.display_name for item in items]


def resolve_workflow(order: Order, contract: Optional[Contract]) -> List[Category]:
    if order.workflow:
        return order.workflow
    if contract is not None and contract.workflow:
        return contract.workflow
    return []


def ensure_delivery_tasks(
    base: Sequence[Category],
    names: Iterable[str],
    id_factory: IdFactory = new_id,
) -> List[Category]:
    """Return a copy of ``base`` whose delivery category has a task per product.

    A delivery category is appended when none exists. Existing tasks are kept
    in place with their ``done`` flags; only missing titles are added.
    """
    categories = copy.deepcopy(list(base))
    delivery = find_delivery_category(categories)
    if delivery is None:
        delivery = Category(id=id_factory(), name=DELIVERY_CATEGORY_NAME, tasks=[])
        categories.append(delivery)

    known = {normalize(task.title) for task in delivery.tasks}
    for name in names:
        title = delivery_task_title(name)
        key = normalize(title)
        if key in known:
            continue
        delivery.tasks.append(Task(id=id_factory(), title=title, done=False))
        known.add(key)
    return categories


def toggle_task(
    categories: Sequence[Category],
    category_index: int,
    task_index: int,
    done: bool,
) -> List[Category]:
    """Copy of ``categories`` with a single task's ``done`` flag replaced."""
    if not 0 <= category_index < len(categories):
        raise WorkflowIndexError(f"Category index {category_index} is out of range")
    if not 0 <= task_index < len(categories[category_index].tasks):
        raise WorkflowIndexError(f"Task index {task_index} is out of range")
    updated = copy.deepcopy(list(categories))
    updated[category_index].tasks[task_index].done = bool(done)
    return updated


def merge_delivery_progress(
    contract_workflow: Sequence[Category],
    order_workflow: Sequence[Category],
    names: Iterable[str],
    id_factory: IdFactory = new_id,
) -> List[Category]:
    """Carry the order's delivery ``done`` flags into the contract's checklist.

    Tasks the order does not know about keep the contract's value.
    """
    merged = ensure_delivery_tasks(contract_workflow, names, id_factory)
    order_delivery = find_delivery_category(order_workflow)
    if order_delivery is None:
        return merged
    order_flags: Dict[str, bool] = {}
    for task in order_delivery.tasks:
        order_flags.setdefault(normalize(task.title), task.done)
    for category in merged:
        if not is_delivery_category(category):
            continue
        for task in category.tasks:
            key = normalize(task.title)
            if key in order_flags:
                task.done = bool(order_flags[key])
    return merged


def apply_template(template: WorkflowTemplate, id_factory: IdFactory = new_id) -> List[Category]:
    """Fresh checklist cloned from ``template`` with every task reset to not done."""
    return [
        Category(
            id=category.id or id_factory(),
            name=category.name,
            tasks=[Task(id=task.id or id_factory(), title=task.title, done=False) for task in category.tasks],
        )
        for category in template.categories
    ]


# ----------------------------------------------------------------------
# Status
# ----------------------------------------------------------------------

def is_delivery_complete(order: Order, contract: Optional[Contract]) -> bool:
    items = display_items(order, contract)
    if not items:
        return False
    delivery = find_delivery_category(resolve_workflow(order, contract))
    if delivery is None or not delivery.tasks:
        return False
    done_titles = {normalize(task.title) for task in delivery.tasks if task.done}
    return all(normalize(delivery_task_title(name)) in done_titles for name in product_names(items))


def derived_status(order: Order, contract: Optional[Contract]) -> str:
    if is_delivery_complete(order, contract):
        return "completed"
    workflow = resolve_workflow(order, contract)
    if any(task.done for category in workflow for task in category.tasks):
        return "processing"
    return "pending"


def category_progress(categories: Sequence[Category]) -> List[int]:
    """Percentage of done tasks per category; empty categories report 0."""
    progress: List[int] = []
    for category in categories:
        total = len(category.tasks) or 1
        done = sum(1 for task in category.tasks if task.done)
        progress.append(round(done / total * 100))
    return progress


__all__ = [
    "ContractDirectory",
    "DELIVERY_CATEGORY_NAME",
    "WorkflowIndexError",
    "apply_template",
    "category_progress",
    "delivery_task_title",
    "derived_status",
    "display_items",
    "ensure_delivery_tasks",
    "find_delivery_category",
    "is_delivery_category",
    "is_delivery_complete",
    "merge_delivery_progress",
    "normalize",
    "normalize_email",
    "product_names",
    "resolve_contract",
    "resolve_workflow",
    "toggle_task",
]
