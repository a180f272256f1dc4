"""
Shared fixtures for the workflow engine tests.

Each test gets its own SQLite file with the full schema bootstrapped, a small
in-memory catalog and a synchronous notification fanout that records every
event it delivers.
"""

from typing import Dict, List, Optional

import pytest

from db.workflow_store import WorkflowStore
from workflow.catalog import WorkflowDefinitionCatalog
from workflow.departments import build_engine
from workflow.notifications import NotificationFanout

TEST_SEQUENCES = {
    "Offset": [
        {"name": "Design Review", "department": "Prepress"},
        {"name": "Pre-Press Setup", "department": "Prepress", "compulsory": False},
        {"name": "Plate Making", "department": "Prepress"},
        {"name": "Paper Cutting", "department": "Cutting"},
        {"name": "Color Matching", "department": "Production", "compulsory": False},
        {"name": "Offset Printing", "department": "Offset Printing"},
        {"name": "Lamination", "department": "Finishing", "compulsory": False},
        {"name": "Die Cutting", "department": "Cutting"},
        {"name": "Packaging", "department": "Logistics"},
    ],
    "Digital": [
        {"name": "File Preparation", "department": "Prepress"},
        {"name": "Digital Printing", "department": "Digital Printing"},
        {"name": "Finishing", "department": "Finishing"},
    ],
    "Screen": [
        {"name": "Screen Preparation", "department": "Production"},
        {"name": "Production Run", "department": "Production"},
        {"name": "Packaging", "department": "Logistics"},
    ],
}


class EventRecorder:
    """Global fanout listener remembering every delivered event."""

    def __init__(self):
        self.events: List[tuple] = []

    def __call__(self, event_name: str, payload: Dict) -> None:
        self.events.append((event_name, payload))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def payloads(self, event_name: str) -> List[Dict]:
        return [payload for name, payload in self.events if name == event_name]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def db_path(tmp_path):
    """Create an empty job card database with the current schema."""
    path = tmp_path / "jobcards.db"
    with WorkflowStore(str(path), create=True) as store:
        store.commit()
    return str(path)


@pytest.fixture
def catalog():
    return WorkflowDefinitionCatalog(TEST_SEQUENCES)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def fanout(recorder):
    fanout = NotificationFanout(async_delivery=False)
    fanout.subscribe(recorder)
    yield fanout
    fanout.shutdown()


@pytest.fixture
def make_job(db_path):
    """Factory inserting a product and a job; returns the job id."""

    def _make_job(
        product_type: str = "Offset",
        selected_steps=(),
        job_number: Optional[str] = None,
        priority: Optional[str] = None,
        due_date: Optional[str] = None,
        quantity: int = 1000,
        with_product: bool = True,
    ) -> int:
        with WorkflowStore(db_path) as store:
            product_id = None
            if with_product:
                product_id = store.insert_product(f"{product_type} product", product_type)
                for step_name in selected_steps:
                    store.set_step_selection(product_id, step_name, True)
            job_id = store.insert_job(
                job_number=job_number,
                product_id=product_id,
                product_type=product_type,
                quantity=quantity,
                priority=priority,
                due_date=due_date,
            )
            store.commit()
        return job_id

    return _make_job


@pytest.fixture
def engine_for(catalog, db_path, fanout):
    """Factory building the progression engine for a department."""

    def _engine_for(department, default_product_type: Optional[str] = None):
        return build_engine(
            department,
            catalog,
            db_path=db_path,
            fanout=fanout,
            default_product_type=default_product_type,
        )

    return _engine_for
