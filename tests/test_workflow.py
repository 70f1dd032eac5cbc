import itertools
import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from services.models import Category, Contract, Order, Task, WorkflowTemplate
from services.workflow import (
    DELIVERY_CATEGORY_NAME,
    ContractDirectory,
    WorkflowIndexError,
    apply_template,
    category_progress,
    derived_status,
    display_items,
    ensure_delivery_tasks,
    merge_delivery_progress,
    normalize,
    resolve_contract,
    resolve_workflow,
    toggle_task,
)


def _ids():
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


def _order(**overrides):
    payload = {
        "id": "order-1",
        "customer_name": "Ana Pérez",
        "customer_email": "a@x.com",
        "items": [{"name": "Album"}],
        "workflow": [],
    }
    payload.update(overrides)
    return Order.from_dict(payload)


def _delivery(*tasks):
    return Category(id="cat-delivery", name="Entrega", tasks=list(tasks))


def test_normalize_ignores_accents_case_and_padding():
    assert normalize("Entregar Álbum") == normalize("entregar album")
    assert normalize("  ÉNTREGA de Productos ") == "entrega de productos"
    assert normalize(None) == ""


def test_normalize_drops_spacing_accents():
    assert normalize("Album\u00b4") == "album"
    assert normalize("Entregar ^Print`") == "entregar print"
    assert normalize("Entregar Álbum¨") == normalize("entregar album")


def test_resolve_contract_prefers_explicit_id():
    by_id = Contract(id="c-1", client_email="other@x.com")
    by_email = Contract(id="c-2", client_email="a@x.com")
    contracts = ContractDirectory([by_id, by_email])

    assert resolve_contract(_order(contractId="c-1"), contracts) is by_id
    assert resolve_contract(_order(), contracts) is by_email


def test_resolve_contract_falls_back_to_email_when_id_misses():
    contract = Contract(id="c-2", client_email="  A@X.com ")
    contracts = ContractDirectory([contract])

    assert resolve_contract(_order(contractId="missing"), contracts) is contract
    assert resolve_contract(_order(customer_email=""), contracts) is None
    assert resolve_contract(_order(customer_email="b@x.com"), ContractDirectory()) is None


def test_contract_directory_scans_when_index_slot_was_replaced():
    first = Contract(id="c-1", client_email="a@x.com")
    second = Contract(id="c-2", client_email="a@x.com")
    contracts = ContractDirectory([first, second])
    contracts.replace(Contract(id="c-1", client_email="moved@x.com"))

    assert contracts.find_by_email("a@x.com") is second
    assert contracts.find_by_email("moved@x.com").id == "c-1"


def test_display_items_filters_by_contract_store_items():
    order = _order(items=[{"name": "Album"}, {"name": "Print"}])
    contract = Contract.from_dict({"id": "c-1", "storeItems": [{"name": "print"}]})

    items = display_items(order, contract)

    assert [item.to_dict() for item in items] == [{"name": "Print"}]


def test_display_items_uses_product_id_synonyms():
    order = _order(items=[{"product_id": "Álbum"}, {"productId": "Frame"}, {"name": ""}])
    contract = Contract.from_dict({"id": "c-1", "storeItems": [{"name": "album"}, {"name": "frame"}]})

    names = [item.display_name for item in display_items(order, contract)]

    assert names == ["Álbum", "Frame"]


def test_display_items_unfiltered_without_store_items():
    order = _order(items=[{"name": "Album"}, {"name": "Print"}])

    assert len(display_items(order, None)) == 2
    assert len(display_items(order, Contract(id="c-1"))) == 2


def test_resolve_workflow_prefers_order_then_contract():
    contract_workflow = [Category(id="c", name="Edición", tasks=[])]
    contract = Contract(id="c-1", workflow=contract_workflow)
    own = _order(workflow=[{"id": "o", "name": "Sesión", "tasks": []}])

    assert resolve_workflow(own, contract)[0].name == "Sesión"
    assert resolve_workflow(_order(), contract) is contract_workflow
    assert resolve_workflow(_order(), None) == []


def test_ensure_delivery_tasks_appends_category_and_tasks():
    base = [Category(id="shoot", name="Sesión", tasks=[Task(id="t1", title="Confirmar fecha", done=True)])]

    result = ensure_delivery_tasks(base, ["Album", "Print"], _ids())

    assert [category.name for category in result] == ["Sesión", DELIVERY_CATEGORY_NAME]
    assert [task.title for task in result[1].tasks] == ["Entregar Album", "Entregar Print"]
    assert all(task.done is False for task in result[1].tasks)
    assert len(base) == 1


def test_ensure_delivery_tasks_is_idempotent_and_keeps_existing_tasks():
    base = [_delivery(Task(id="t1", title="entregar álbum", done=True), Task(id="t2", title="Llamar", done=False))]

    once = ensure_delivery_tasks(base, ["Álbum", "Print", "Print"], _ids())
    twice = ensure_delivery_tasks(once, ["Álbum", "Print", "Print"], _ids())

    titles_once = [(task.title, task.done) for task in once[0].tasks]
    titles_twice = [(task.title, task.done) for task in twice[0].tasks]
    assert titles_once == titles_twice
    assert titles_once == [("entregar álbum", True), ("Llamar", False), ("Entregar Print", False)]
    assert len(once) == 1


def test_ensure_delivery_tasks_does_not_mutate_input():
    base = [_delivery()]

    ensure_delivery_tasks(base, ["Album"], _ids())

    assert base[0].tasks == []


def test_derived_status_for_order_without_contract_is_pending():
    order = _order()

    assert derived_status(order, None) == "pending"
    assert [item.to_dict() for item in display_items(order, None)] == [{"name": "Album"}]


def test_derived_status_processing_when_any_task_done():
    order = _order(workflow=[
        {"id": "a", "name": "Sesión", "tasks": [{"id": "t1", "title": "Confirmar", "done": True}]},
    ])

    assert derived_status(order, None) == "processing"


def test_derived_status_completed_requires_every_delivery_task():
    workflow = [
        {
            "id": "d",
            "name": "Entrega de productos",
            "tasks": [
                {"id": "t1", "title": "Entregar Album", "done": True},
                {"id": "t2", "title": "Entregar Print", "done": True},
            ],
        }
    ]
    order = _order(items=[{"name": "Album"}, {"name": "Print"}], workflow=workflow)
    assert derived_status(order, None) == "completed"

    workflow[0]["tasks"][1]["done"] = False
    order = _order(items=[{"name": "Album"}, {"name": "Print"}], workflow=workflow)
    assert derived_status(order, None) == "processing"


def test_derived_status_uses_contract_workflow_and_filtered_items():
    contract = Contract.from_dict({
        "id": "c-1",
        "clientEmail": "a@x.com",
        "storeItems": [{"name": "Print"}],
        "workflow": [
            {"id": "d", "name": "Entrega", "tasks": [{"id": "t", "title": "Entregar Print", "done": True}]},
        ],
    })
    order = _order(items=[{"name": "Album"}, {"name": "Print"}])

    assert derived_status(order, contract) == "completed"


def test_derived_status_not_completed_without_display_items():
    order = _order(items=[], workflow=[
        {"id": "d", "name": "Entrega", "tasks": [{"id": "t", "title": "Entregar Album", "done": True}]},
    ])

    assert derived_status(order, None) == "processing"


def test_toggle_task_changes_only_target():
    workflow = [_delivery(Task(id="t1", title="Entregar Album"), Task(id="t2", title="Entregar Print"))]

    updated = toggle_task(workflow, 0, 1, True)

    assert [task.done for task in updated[0].tasks] == [False, True]
    assert [task.done for task in workflow[0].tasks] == [False, False]
    with pytest.raises(WorkflowIndexError):
        toggle_task(workflow, 3, 0, True)
    with pytest.raises(WorkflowIndexError):
        toggle_task(workflow, 0, 5, True)


def test_merge_delivery_progress_copies_flags_by_title():
    contract_workflow = [
        Category(id="e", name="Edición", tasks=[Task(id="x", title="Retocar", done=True)]),
        _delivery(Task(id="c1", title="ENTREGAR album", done=False), Task(id="c2", title="Entregar Marco", done=True)),
    ]
    order_workflow = [_delivery(Task(id="o1", title="Entregar Álbum", done=True))]

    merged = merge_delivery_progress(contract_workflow, order_workflow, ["Album", "Print"], _ids())

    delivery = merged[1]
    assert [(task.title, task.done) for task in delivery.tasks] == [
        ("ENTREGAR album", True),
        ("Entregar Marco", True),
        ("Entregar Print", False),
    ]
    assert merged[0].tasks[0].done is True
    assert contract_workflow[1].tasks[0].done is False


def test_apply_template_resets_done_and_fills_missing_ids():
    template = WorkflowTemplate.from_dict({
        "id": "tpl",
        "categories": [
            {"id": "", "name": "Sesión", "tasks": [{"title": "Confirmar", "done": True}]},
            {"id": "keep", "name": "Entrega", "tasks": [{"id": "t", "title": "Entregar Album", "done": True}]},
        ],
    })

    workflow = apply_template(template, _ids())

    assert [category.id for category in workflow] == ["id-1", "keep"]
    assert workflow[0].tasks[0].id == "id-2"
    assert all(not task.done for category in workflow for task in category.tasks)
    assert template.categories[0].tasks[0].done is True


def test_category_progress_rounds_percentages():
    workflow = [
        Category(id="a", name="A", tasks=[Task(id="1", title="x", done=True), Task(id="2", title="y"), Task(id="3", title="z")]),
        Category(id="b", name="B", tasks=[]),
    ]

    assert category_progress(workflow) == [33, 0]
