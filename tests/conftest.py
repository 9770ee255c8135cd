"""
Pytest configuration and shared fixtures for the back office test suite.
"""
import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="buildlite_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> "Config":
    """Provide a test configuration with isolated directories and no SMTP."""
    from config import Config

    config = Config(
        storage_backend="sqlite",
        db_path=temp_dir / "data" / "buildlite.db",
        data_dir=temp_dir / "data",
        config_dir=temp_dir / "config",
        backup_dir=temp_dir / "backups",
        active_client="default",
        default_vat_rate=0.2,
        allow_credit_lines=False,
        cost_codes_path=None,
        smtp_host="",
        smtp_user="",
        from_email="po@buildlite.test",
        approver_emails=["approvals@buildlite.test"],
    )
    config.ensure_dirs()
    return config


@pytest.fixture
def sqlite_store(test_config):
    from procurement.database import Database
    return Database(test_config.db_path)


@pytest.fixture
def json_store(test_config):
    from procurement.json_store import JsonFileStore
    return JsonFileStore(test_config.data_dir)


@pytest.fixture(params=["sqlite", "json"])
def store(request, test_config):
    """Each test using this fixture runs once per storage backend."""
    test_config.storage_backend = request.param
    from procurement.storage import open_store
    return open_store(test_config)


class RecordingNotifier:
    """Stands in for EmailNotifier; records what would have been sent."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def approval_requested(self, po, note=""):
        self.sent.append(("approval_requested", po.po_number, note))

    def decision_made(self, po):
        self.sent.append(("decision_made", po.po_number, po.status.value))


class FailingNotifier:
    def approval_requested(self, po, note=""):
        from procurement.errors import DeliveryFailed
        raise DeliveryFailed("SMTP_HOST is not configured")

    def decision_made(self, po):
        from procurement.errors import DeliveryFailed
        raise DeliveryFailed("connection refused")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


@pytest.fixture
def service(store, notifier):
    """A PurchaseOrderService over a fresh store with a recording notifier."""
    from procurement.lifecycle import PurchaseOrderService
    return PurchaseOrderService(store, notifier=notifier)


@pytest.fixture
def requester():
    from procurement.lifecycle import CallerContext, Role
    return CallerContext(name="Sam Site", email="sam@buildlite.test", role=Role.REQUESTER)


@pytest.fixture
def approver():
    from procurement.lifecycle import CallerContext, Role
    return CallerContext(name="Alex Approver", email="alex@buildlite.test", role=Role.APPROVER)


@pytest.fixture
def sample_payload() -> dict:
    """A valid Materials PO: net 300.00, VAT 60.00, gross 360.00."""
    return {
        "type": "Materials",
        "supplier_name": "Acme Aggregates Ltd",
        "cost_code": "2.01",
        "element": "Excavation",
        "title": "Sub-base for car park",
        "notes": "Deliver before 8am",
        "lines": [
            {"description": "Type 1 sub-base", "unit": "t", "quantity": 10, "rate": 25.5},
            {"description": "Delivery charge", "amount": 45},
        ],
    }


@pytest.fixture
def sample_cost_codes_csv(temp_dir: Path) -> Path:
    """Cost code export with title-case headers, a repeated header row and a duplicate."""
    csv_path = temp_dir / "cost_codes.csv"
    content = """Cost Code,Trade,Element,Sub-Heading
2.10,Groundworks,Drainage,External works
2.9,Groundworks,Kerbs,External works
Cost Code,Trade,Element,Sub-Heading
1.01,Preliminaries,Site set-up,
2.9,Groundworks,Duplicate row,
,,,
3.01,Brickwork,,Superstructure"""
    csv_path.write_text(content, encoding="utf-8")
    return csv_path


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
    config.addinivalue_line("markers", "slow: Slow tests")
