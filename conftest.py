import os
from dotenv import load_dotenv
import pytest

from greenpoints.schemas.voucher import VoucherCreate
from greenpoints.storage.local_backend import LocalStorageBackend
from greenpoints.storage.sql_backend import SqlStorageBackend

# Load environment so TEST_DATABASE_URL can be read from .env
load_dotenv()

# Postgres when configured, otherwise a throwaway sqlite file per test
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest.fixture(params=["sql", "local"])
def storage(request, tmp_path):
    """Fresh store for each test, once per backend implementation."""
    if request.param == "sql":
        backend = SqlStorageBackend(TEST_DATABASE_URL or f"sqlite:///{tmp_path / 'greenpoints.db'}")
        backend.drop_schema()
        backend.init_schema()
        yield backend
        backend.drop_schema()
        backend.close()
    else:
        yield LocalStorageBackend(str(tmp_path / "store.json"))


@pytest.fixture
def make_voucher(storage):
    def _make(voucher_id="amazon-50", points_required=500, stock=1, validity_days=30, **overrides):
        data = dict(
            id=voucher_id,
            category="shopping",
            brand="Amazon",
            title="₹50 OFF on Amazon",
            description="₹50 off on any order above ₹500",
            points_required=points_required,
            original_value=50,
            discount_type="fixed",
            discount_value=50,
            validity_days=validity_days,
            stock_limit=stock,
            current_stock=stock,
        )
        data.update(overrides)
        return storage.upsert_voucher(VoucherCreate(**data))

    return _make
