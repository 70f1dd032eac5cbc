"""Order listing, workflow views and the order/contract checklist write path."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytz
from dateutil.parser import parse as dateutil_parse

from .documents import DocumentNotFoundError, DocumentStore
from .models import (
    ORDER_STATUSES,
    VIRTUAL_ORDER_PREFIX,
    Category,
    Contract,
    Order,
    workflow_to_list,
)
from .templates import find_workflow_template
from .workflow import (
    ContractDirectory,
    apply_template,
    category_progress,
    derived_status,
    display_items,
    ensure_delivery_tasks,
    is_delivery_complete,
    merge_delivery_progress,
    product_names,
    resolve_contract,
    resolve_workflow,
    toggle_task,
)

ORDERS_COLLECTION = "orders"
CONTRACTS_COLLECTION = "contracts"
STATUS_FILTER_ALL = "all"
DEFAULT_DUE_DAYS = 15

logger = logging.getLogger(__name__)


class OrderNotFoundError(KeyError):
    """Raised when an order id matches neither an order nor a contract placeholder."""


def due_date_label(created_at: Any, timezone_name: str = "UTC", due_days: int = DEFAULT_DUE_DAYS) -> str:
    """Return the delivery due date for an order creation time, or ``"-"``."""
    if not created_at:
        return "-"
    if isinstance(created_at, datetime):
        created = created_at
    else:
        try:
            created = dateutil_parse(str(created_at))
        except (ValueError, OverflowError):
            return "-"
    if created.tzinfo is None:
        created = pytz.utc.localize(created)
    try:
        zone = pytz.timezone(timezone_name)
    except pytz.UnknownTimeZoneError:
        zone = pytz.utc
    due = (created + timedelta(days=due_days)).astimezone(zone)
    return due.date().isoformat()


class OrderWorkflowService:
    """Coordinates order/contract documents around the checklist rules in ``workflow``."""

    def __init__(self, store: DocumentStore, timezone_name: str = "UTC", due_days: int = DEFAULT_DUE_DAYS):
        self.store = store
        self.timezone_name = timezone_name
        self.due_days = due_days

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load_contracts(self) -> ContractDirectory:
        return ContractDirectory(Contract.from_dict(payload) for payload in self.store.get_all(CONTRACTS_COLLECTION))

    def load_orders(self) -> List[Order]:
        return [Order.from_dict(payload) for payload in self.store.get_all(ORDERS_COLLECTION)]

    def get_order(self, order_id: str, contracts: Optional[ContractDirectory] = None) -> Order:
        if order_id.startswith(VIRTUAL_ORDER_PREFIX):
            contracts = contracts if contracts is not None else self.load_contracts()
            contract = contracts.get(order_id[len(VIRTUAL_ORDER_PREFIX):])
            if contract is None:
                raise OrderNotFoundError(f"Order {order_id} not found")
            return contract.to_virtual_order()
        payload = self.store.get(ORDERS_COLLECTION, order_id)
        if payload is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        return Order.from_dict(payload)

    def _rows_source(self, contracts: ContractDirectory) -> List[Order]:
        """Stored orders plus a placeholder for each contract no order links to."""
        orders = self.load_orders()
        linked_ids = set()
        for order in orders:
            contract = resolve_contract(order, contracts)
            if contract is not None:
                linked_ids.add(contract.id)
        for contract in contracts.all():
            if contract.store_items and contract.id not in linked_ids:
                orders.append(contract.to_virtual_order())
        return orders

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def build_row(self, order: Order, contracts: ContractDirectory) -> Dict[str, Any]:
        contract = resolve_contract(order, contracts)
        workflow = resolve_workflow(order, contract)
        row = order.to_dict()
        row.update(
            {
                "contract_id": contract.id if contract else None,
                "is_virtual": order.is_virtual,
                "display_items": [item.to_dict() for item in display_items(order, contract)],
                "derived_status": derived_status(order, contract),
                "delivery_complete": is_delivery_complete(order, contract),
                "workflow": workflow_to_list(workflow),
                "progress": category_progress(workflow),
                "due_date": due_date_label(order.created_at, self.timezone_name, self.due_days),
            }
        )
        return row

    def list_orders(self, status: str = STATUS_FILTER_ALL, search: str = "") -> List[Dict[str, Any]]:
        if status != STATUS_FILTER_ALL and status not in ORDER_STATUSES:
            raise ValueError(f"Unknown status filter '{status}'")
        contracts = self.load_contracts()
        term = (search or "").strip().lower()
        rows: List[Dict[str, Any]] = []
        for order in self._rows_source(contracts):
            row = self.build_row(order, contracts)
            if status != STATUS_FILTER_ALL and row["derived_status"] != status:
                continue
            if term and term not in order.customer_name.lower() and term not in order.customer_email.lower():
                continue
            if not row["display_items"]:
                continue
            rows.append(row)
        return rows

    def status_counts(self) -> Dict[str, int]:
        contracts = self.load_contracts()
        orders = self._rows_source(contracts)
        counts = {STATUS_FILTER_ALL: len(orders)}
        counts.update({status: 0 for status in ORDER_STATUSES})
        for order in orders:
            counts[derived_status(order, resolve_contract(order, contracts))] += 1
        return counts

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------
    def open_workflow(
        self,
        order_id: str,
        contracts: Optional[ContractDirectory] = None,
    ) -> Tuple[Order, List[Category]]:
        """Order plus the checklist staff sees for it, delivery tasks included."""
        contracts = contracts if contracts is not None else self.load_contracts()
        order = self.get_order(order_id, contracts)
        names = product_names(display_items(order, resolve_contract(order, contracts)))
        return order, ensure_delivery_tasks(order.workflow, names)

    def persist_task_change(
        self,
        order: Order,
        workflow: Sequence[Category],
        category_index: int,
        task_index: int,
        done: bool,
        contracts: Optional[ContractDirectory] = None,
    ) -> List[Category]:
        """Flip one task, then write the order and its linked contract.

        The updated checklist is returned even when a write fails; failures are
        logged and the two documents converge on the next toggle.
        """
        updated = toggle_task(workflow, category_index, task_index, done)

        try:
            if not order.is_virtual:
                self.store.update(ORDERS_COLLECTION, order.id, {"workflow": workflow_to_list(updated)})
                order.workflow = updated

            contracts = contracts if contracts is not None else self.load_contracts()
            target_contract_id = order.contract_id
            if not target_contract_id and order.customer_email:
                matched = contracts.find_by_email(order.customer_email)
                if matched is not None:
                    target_contract_id = matched.id

            if target_contract_id:
                payload = self.store.get(CONTRACTS_COLLECTION, target_contract_id)
                if payload is not None:
                    contract = Contract.from_dict(payload)
                    names = product_names(display_items(order, contract))
                    merged = merge_delivery_progress(contract.workflow, updated, names)
                    self.store.update(CONTRACTS_COLLECTION, contract.id, {"workflow": workflow_to_list(merged)})
                    contract.workflow = merged
                    contracts.replace(contract)
        except Exception as exc:
            logger.warning("Error persisting workflow change for order %s: %s", order.id, exc)

        return updated

    def toggle_order_task(
        self,
        order_id: str,
        category_index: int,
        task_index: int,
        done: bool,
        workflow: Optional[Sequence[Category]] = None,
    ) -> Tuple[Order, List[Category]]:
        """Apply a toggle against ``workflow`` or, when omitted, the freshly opened checklist."""
        contracts = self.load_contracts()
        order, opened = self.open_workflow(order_id, contracts)
        base = list(workflow) if workflow is not None else opened
        updated = self.persist_task_change(order, base, category_index, task_index, done, contracts)
        order.workflow = updated
        return order, updated

    def apply_template_to_order(self, order_id: str, template_id: str) -> List[Category]:
        order = self.get_order(order_id)
        template = find_workflow_template(self.store, template_id)
        workflow = apply_template(template)
        if not order.is_virtual:
            self.store.update(ORDERS_COLLECTION, order.id, {"workflow": workflow_to_list(workflow)})
        return workflow

    # ------------------------------------------------------------------
    # Order maintenance
    # ------------------------------------------------------------------
    def update_status(self, order_id: str, status: str) -> None:
        if status not in ORDER_STATUSES:
            raise ValueError(f"Unknown order status '{status}'")
        try:
            self.store.update(ORDERS_COLLECTION, order_id, {"status": status})
        except DocumentNotFoundError as exc:
            raise OrderNotFoundError(f"Order {order_id} not found") from exc

    def delete_order(self, order_id: str) -> None:
        if self.store.get(ORDERS_COLLECTION, order_id) is None:
            raise OrderNotFoundError(f"Order {order_id} not found")
        self.store.delete(ORDERS_COLLECTION, order_id)

    def link_orders(self) -> int:
        """Store ``contractId`` on unlinked orders whose email matches a contract."""
        contracts = self.load_contracts()
        linked = 0
        for order in self.load_orders():
            if order.contract_id:
                continue
            contract = contracts.find_by_email(order.customer_email)
            if contract is None:
                continue
            self.store.update(ORDERS_COLLECTION, order.id, {"contractId": contract.id})
            linked += 1
        if linked:
            logger.info("Linked %d orders to contracts", linked)
        return linked


__all__ = [
    "CONTRACTS_COLLECTION",
    "DEFAULT_DUE_DAYS",
    "ORDERS_COLLECTION",
    "OrderNotFoundError",
    "OrderWorkflowService",
    "STATUS_FILTER_ALL",
    "due_date_label",
]
