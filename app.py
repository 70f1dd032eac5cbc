import os
import socket
import sys
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

from database import get_db_connection, init_db
from services.documents import DocumentStore
from services.models import coerce_bool, workflow_from_list, workflow_to_list
from services.orders import DEFAULT_DUE_DAYS, OrderNotFoundError, OrderWorkflowService
from services.templates import TemplateNotFoundError, get_workflow_templates
from services.workflow import WorkflowIndexError, derived_status, resolve_contract

# --- App Initialization ---
app = Flask(__name__)
app.config['JSON_SORT_KEYS'] = False

_db_bootstrapped = False


def _resolve_timezone_setting() -> str:
    return (os.environ.get('ORDERS_TIMEZONE') or 'UTC').strip() or 'UTC'


def _resolve_due_days_setting() -> int:
    raw_value = os.environ.get('ORDER_DUE_DAYS')
    if not raw_value:
        return DEFAULT_DUE_DAYS
    try:
        return int(raw_value)
    except ValueError:
        app.logger.warning("Ignoring non-numeric ORDER_DUE_DAYS value %r", raw_value)
        return DEFAULT_DUE_DAYS


@app.before_request
def _ensure_database_initialized():
    """Guarantee the SQLite schema exists before serving any request."""
    global _db_bootstrapped
    if _db_bootstrapped:
        return
    try:
        init_db()
        _db_bootstrapped = True
    except Exception as exc:  # pragma: no cover - startup logging
        app.logger.exception("Failed to initialize database before request: %s", exc)


def _open_service(conn) -> OrderWorkflowService:
    return OrderWorkflowService(
        DocumentStore(conn),
        timezone_name=_resolve_timezone_setting(),
        due_days=_resolve_due_days_setting(),
    )


def _error(message: str, status_code: int):
    return jsonify({"status": "error", "message": message}), status_code


def _parse_index(payload: Dict[str, Any], key: str) -> Optional[int]:
    value = payload.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@app.route('/api/orders', methods=['GET'])
def get_orders():
    status_filter = (request.args.get('status') or 'all').strip().lower()
    search = request.args.get('search') or ''
    conn = get_db_connection()
    try:
        service = _open_service(conn)
        rows = service.list_orders(status=status_filter, search=search)
        counts = service.status_counts()
        return jsonify({"orders": rows, "counts": counts})
    except ValueError as exc:
        return _error(str(exc), 400)
    finally:
        conn.close()


@app.route('/api/orders/link', methods=['POST'])
def link_orders_to_contracts():
    conn = get_db_connection()
    try:
        linked = _open_service(conn).link_orders()
        return jsonify({"linked": linked})
    finally:
        conn.close()


@app.route('/api/orders/<string:order_id>', methods=['GET'])
def get_order(order_id):
    conn = get_db_connection()
    try:
        service = _open_service(conn)
        contracts = service.load_contracts()
        order, workflow = service.open_workflow(order_id, contracts)
        return jsonify({
            "order": service.build_row(order, contracts),
            "workflow": workflow_to_list(workflow),
        })
    except OrderNotFoundError:
        return _error("Order not found", 404)
    finally:
        conn.close()


@app.route('/api/orders/<string:order_id>', methods=['DELETE'])
def delete_order(order_id):
    conn = get_db_connection()
    try:
        _open_service(conn).delete_order(order_id)
        app.logger.info("Order %s deleted", order_id)
        return jsonify({"status": "success"})
    except OrderNotFoundError:
        return _error("Order not found", 404)
    finally:
        conn.close()


@app.route('/api/orders/<string:order_id>/status', methods=['PUT'])
def update_order_status(order_id):
    payload = request.get_json(force=True, silent=True) or {}
    status = str(payload.get('status') or '').strip().lower()
    conn = get_db_connection()
    try:
        _open_service(conn).update_status(order_id, status)
        return jsonify({"status": "success", "orderStatus": status})
    except ValueError as exc:
        return _error(str(exc), 400)
    except OrderNotFoundError:
        return _error("Order not found", 404)
    finally:
        conn.close()


@app.route('/api/orders/<string:order_id>/workflow/tasks', methods=['POST'])
def toggle_order_task(order_id):
    payload = request.get_json(force=True, silent=True) or {}
    category_index = _parse_index(payload, 'category_index')
    task_index = _parse_index(payload, 'task_index')
    if category_index is None or task_index is None:
        return _error("category_index and task_index must be integers", 400)
    done = coerce_bool(payload.get('done'))
    workflow = None
    if isinstance(payload.get('workflow'), list):
        workflow = workflow_from_list(payload['workflow'])

    conn = get_db_connection()
    try:
        service = _open_service(conn)
        order, updated = service.toggle_order_task(order_id, category_index, task_index, done, workflow)
        contract = resolve_contract(order, service.load_contracts())
        return jsonify({
            "workflow": workflow_to_list(updated),
            "derived_status": derived_status(order, contract),
        })
    except OrderNotFoundError:
        return _error("Order not found", 404)
    except WorkflowIndexError as exc:
        return _error(str(exc), 400)
    finally:
        conn.close()


@app.route('/api/orders/<string:order_id>/workflow/template', methods=['POST'])
def apply_order_template(order_id):
    payload = request.get_json(force=True, silent=True) or {}
    template_id = str(payload.get('template_id') or '').strip()
    if not template_id:
        return _error("template_id is required", 400)
    conn = get_db_connection()
    try:
        workflow = _open_service(conn).apply_template_to_order(order_id, template_id)
        return jsonify({"workflow": workflow_to_list(workflow)})
    except OrderNotFoundError:
        return _error("Order not found", 404)
    except TemplateNotFoundError:
        return _error("Workflow template not found", 404)
    finally:
        conn.close()


@app.route('/api/workflow-templates', methods=['GET'])
def list_workflow_templates():
    conn = get_db_connection()
    try:
        templates: List[Dict[str, Any]] = [
            template.to_dict() for template in get_workflow_templates(DocumentStore(conn))
        ]
        return jsonify({"templates": templates})
    finally:
        conn.close()


def is_port_in_use(port):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex(('127.0.0.1', port)) == 0


def main():
    port = int(os.environ.get('ORDERS_PORT') or 5002)
    if is_port_in_use(port):
        print(f"Port {port} is already in use.")
        sys.exit(1)
    print(f"Port {port} is free. Starting new server.")
    app.run(host='0.0.0.0', port=port, debug=False)


if __name__ == '__main__':
    init_db()
    main()
