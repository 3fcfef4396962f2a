import gc
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import patch

import pytest

from greenpoints.errors import (
    InsufficientPoints,
    RedemptionNotActive,
    RedemptionNotFound,
    StorageUnavailable,
    UniquenessConflict,
    Unexpected,
    VoucherNotFound,
    VoucherOutOfStock,
)
from greenpoints.services.redemption_service import RedemptionService
from greenpoints.timeutil import utcnow


@pytest.fixture
def service(storage):
    return RedemptionService(storage)


def fund(service, user_id, points):
    service.award_points(user_id, points, "Classified recyclable waste")


def test_redeem_last_unit_spends_all_points(service, make_voucher):
    """Scenario A: 500 points, voucher costs 500 with one unit left"""
    make_voucher(points_required=500, stock=1)
    fund(service, "alice", 500)

    redemption = service.redeem("amazon-50", "alice")

    assert redemption.status == "active"
    assert redemption.points_used == 500
    assert redemption.voucher.id == "amazon-50"
    assert redemption.voucher.current_stock == 0
    assert service.ledger.get_balance("alice") == 0
    assert service.catalog.get_by_id("amazon-50").current_stock == 0


def test_retry_after_sold_out_keeps_balance(service, make_voucher):
    """Scenario B: the same user tries again once stock is gone"""
    make_voucher(points_required=500, stock=1)
    fund(service, "alice", 500)
    service.redeem("amazon-50", "alice")

    with pytest.raises(VoucherOutOfStock):
        service.redeem("amazon-50", "alice")
    assert service.ledger.get_balance("alice") == 0
    assert len(service.list_redemptions("alice")) == 1


def test_insufficient_points_changes_nothing(service, make_voucher):
    """Scenario C"""
    make_voucher(points_required=500, stock=5)
    fund(service, "bob", 100)

    with pytest.raises(InsufficientPoints) as excinfo:
        service.redeem("amazon-50", "bob")

    assert excinfo.value.required == 500
    assert excinfo.value.available == 100
    assert service.ledger.get_balance("bob") == 100
    assert service.catalog.get_by_id("amazon-50").current_stock == 5
    assert service.list_redemptions("bob") == []
    assert [t.type for t in service.log.list_for_user("bob")] == ["earned"]


def test_concurrent_redemptions_never_oversell(service, make_voucher):
    """Scenario D: three units, four simultaneous buyers"""
    make_voucher(points_required=100, stock=3)
    users = ["u1", "u2", "u3", "u4"]
    for user in users:
        fund(service, user, 300)

    barrier = threading.Barrier(len(users))

    def attempt(user):
        barrier.wait()
        try:
            return service.redeem("amazon-50", user)
        except VoucherOutOfStock as exc:
            return exc

    with ThreadPoolExecutor(max_workers=len(users)) as pool:
        results = list(pool.map(attempt, users))

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, VoucherOutOfStock)]
    assert len(successes) == 3
    assert len(failures) == 1
    assert service.catalog.get_by_id("amazon-50").current_stock == 0

    balances = sorted(service.ledger.get_balance(u) for u in users)
    assert balances == [200, 200, 200, 300]


def test_concurrent_redemptions_by_one_user_cannot_double_spend(service, make_voucher):
    make_voucher(points_required=100, stock=10)
    fund(service, "carol", 150)
    barrier = threading.Barrier(4)

    def attempt(_):
        barrier.wait()
        try:
            return service.redeem("amazon-50", "carol")
        except InsufficientPoints as exc:
            return exc

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(attempt, range(4)))

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert service.ledger.get_balance("carol") == 50
    assert service.catalog.get_by_id("amazon-50").current_stock == 9


def test_stock_failure_refunds_points(service, storage, make_voucher):
    """Scenario E: storage dies while decrementing stock"""
    make_voucher(points_required=200, stock=4)
    fund(service, "dave", 500)

    with patch.object(storage, "decrement_stock", side_effect=StorageUnavailable("db down")):
        with pytest.raises(StorageUnavailable):
            service.redeem("amazon-50", "dave")

    assert service.ledger.get_balance("dave") == 500
    assert service.list_redemptions("dave") == []
    assert service.catalog.get_by_id("amazon-50").current_stock == 4


def test_persist_failure_restores_stock_and_points(service, storage, make_voucher):
    make_voucher(points_required=200, stock=4)
    fund(service, "erin", 500)

    with patch.object(storage, "insert_redemption", side_effect=StorageUnavailable("db down")):
        with pytest.raises(StorageUnavailable):
            service.redeem("amazon-50", "erin")

    assert service.ledger.get_balance("erin") == 500
    assert service.catalog.get_by_id("amazon-50").current_stock == 4
    assert service.list_redemptions("erin") == []


def test_unexpected_error_is_wrapped_after_compensation(service, storage, make_voucher):
    make_voucher(points_required=200, stock=4)
    fund(service, "erin", 500)

    with patch.object(storage, "insert_redemption", side_effect=KeyError("boom")):
        with pytest.raises(Unexpected):
            service.redeem("amazon-50", "erin")

    assert service.ledger.get_balance("erin") == 500
    assert service.catalog.get_by_id("amazon-50").current_stock == 4


def test_transaction_log_failure_keeps_redemption(service, storage, make_voucher):
    make_voucher(points_required=200, stock=4)
    fund(service, "frank", 500)

    with patch.object(storage, "append_transaction", side_effect=StorageUnavailable("log down")):
        redemption = service.redeem("amazon-50", "frank")

    assert redemption.status == "active"
    assert service.ledger.get_balance("frank") == 300
    # the documented gap: the log no longer explains the balance
    assert service.log.audit("frank", service.ledger).consistent is False


def test_unknown_and_inactive_vouchers_are_not_found(service, make_voucher):
    make_voucher(voucher_id="retired-1", is_active=False)
    fund(service, "gina", 1000)

    with pytest.raises(VoucherNotFound):
        service.redeem("does-not-exist", "gina")
    with pytest.raises(VoucherNotFound):
        service.redeem("retired-1", "gina")
    assert service.ledger.get_balance("gina") == 1000


def test_unlimited_voucher_has_no_stock_to_decrement(service, make_voucher):
    make_voucher(voucher_id="eco-bags", points_required=100, stock=None)
    fund(service, "hank", 300)

    service.redeem("eco-bags", "hank")
    service.redeem("eco-bags", "hank")

    voucher = service.catalog.get_by_id("eco-bags")
    assert voucher.current_stock is None
    assert service.ledger.get_balance("hank") == 100


def test_expiry_matches_validity_days(service, make_voucher):
    make_voucher(points_required=100, stock=3, validity_days=21)
    fund(service, "ivy", 100)

    before = utcnow()
    redemption = service.redeem("amazon-50", "ivy")

    assert redemption.status == "active"
    assert abs((redemption.redeemed_at - before).total_seconds()) <= 1
    delta = redemption.expires_at - redemption.redeemed_at
    assert abs(delta.total_seconds() - timedelta(days=21).total_seconds()) <= 1

    stored = service.get_redemption(redemption.id)
    assert abs((stored.expires_at - stored.redeemed_at - timedelta(days=21)).total_seconds()) <= 1


def test_codes_are_unique_and_prefixed(service, make_voucher):
    make_voucher(points_required=10, stock=None)
    fund(service, "jack", 200)

    codes = [service.redeem("amazon-50", "jack").voucher_code for _ in range(20)]

    assert len(set(codes)) == 20
    assert all(re.fullmatch(r"AMA\d{6}[A-Z0-9]{4}", c) for c in codes)


def test_code_collision_at_insert_is_retried(service, storage, make_voucher):
    make_voucher(points_required=100, stock=2)
    fund(service, "kate", 100)
    real_insert = storage.insert_redemption
    attempted = []

    def flaky_insert(redemption):
        attempted.append(redemption.voucher_code)
        if len(attempted) == 1:
            raise UniquenessConflict("taken")
        return real_insert(redemption)

    with patch.object(storage, "insert_redemption", side_effect=flaky_insert):
        redemption = service.redeem("amazon-50", "kate")

    assert len(attempted) == 2
    assert redemption.voucher_code == attempted[1]
    assert service.ledger.get_balance("kate") == 0


def test_code_space_exhausted_fails_cleanly(service, storage, make_voucher):
    make_voucher(points_required=100, stock=2)
    fund(service, "liam", 100)

    with patch.object(storage, "voucher_code_exists", return_value=True):
        with pytest.raises(UniquenessConflict):
            service.redeem("amazon-50", "liam")

    with patch.object(storage, "insert_redemption", side_effect=UniquenessConflict("taken")):
        with pytest.raises(UniquenessConflict):
            service.redeem("amazon-50", "liam")

    assert service.ledger.get_balance("liam") == 100
    assert service.catalog.get_by_id("amazon-50").current_stock == 2


def test_balance_matches_transaction_log(service, make_voucher):
    make_voucher(voucher_id="amazon-50", points_required=150, stock=10)
    make_voucher(voucher_id="ccd-free-coffee", points_required=120, stock=None)
    service.award_points("mia", 300, "Classified recyclable waste")
    service.award_points("mia", 50, "Weekly streak", type="bonus")
    service.redeem("amazon-50", "mia")
    service.redeem("ccd-free-coffee", "mia")
    with pytest.raises(InsufficientPoints):
        service.redeem("amazon-50", "mia")

    report = service.log.audit("mia", service.ledger)
    assert report.consistent
    assert report.ledger_balance == 80

    history = service.log.list_for_user("mia")
    assert [t.type for t in history[:2]] == ["redeemed", "redeemed"]
    assert history[0].metadata["voucher_id"] == "ccd-free-coffee"
    assert history[0].points == -120


def test_mark_used_is_terminal(service, make_voucher):
    make_voucher(points_required=100, stock=3)
    fund(service, "nina", 100)
    redemption = service.redeem("amazon-50", "nina")

    used = service.mark_used(redemption.id)
    assert used.status == "used"
    assert used.used_at is not None

    with pytest.raises(RedemptionNotActive):
        service.mark_used(redemption.id)
    assert service.validate_code(redemption.voucher_code) is None
    with pytest.raises(RedemptionNotFound):
        service.mark_used("missing-id")


def test_redemptions_expire_lazily(storage, make_voucher):
    now = [utcnow()]
    service = RedemptionService(storage, clock=lambda: now[0])
    make_voucher(points_required=100, stock=3, validity_days=15)
    fund(service, "omar", 100)
    redemption = service.redeem("amazon-50", "omar")

    assert service.validate_code(redemption.voucher_code).id == redemption.id

    now[0] = now[0] + timedelta(days=15, seconds=1)
    assert service.validate_code(redemption.voucher_code) is None
    assert service.get_redemption(redemption.id).status == "expired"
    assert [r.status for r in service.list_redemptions("omar")] == ["expired"]
    with pytest.raises(RedemptionNotActive):
        service.mark_used(redemption.id)


def test_available_vouchers_follow_balance_and_stock(service, make_voucher):
    make_voucher(voucher_id="cheap", points_required=100, stock=1)
    make_voucher(voucher_id="sold-out", points_required=100, stock=0)
    make_voucher(voucher_id="pricey", points_required=900, stock=5)
    fund(service, "pia", 200)

    assert [v.id for v in service.available_vouchers("pia")] == ["cheap"]


def test_award_rejects_non_positive_or_redeemed(service):
    with pytest.raises(ValueError):
        service.award_points("quinn", 0, "nothing")
    with pytest.raises(ValueError):
        service.award_points("quinn", 10, "sneaky", type="redeemed")
    assert service.ledger.get_balance("quinn") == 0


def test_returned_voucher_shows_stock_after_redemption(service, make_voucher):
    make_voucher(points_required=100, stock=85)
    fund(service, "rosa", 100)

    redemption = service.redeem("amazon-50", "rosa")

    assert redemption.voucher.current_stock == 84
    assert service.catalog.get_by_id("amazon-50").current_stock == 84


def test_user_locks_are_dropped_when_idle(service):
    for i in range(200):
        fund(service, f"user-{i}", 10)
    gc.collect()

    assert len(service._locks) == 0
    assert service.ledger.get_balance("user-199") == 10
