import logging
from typing import List

from greenpoints.schemas.voucher import VoucherCreate
from greenpoints.services.voucher_catalog import VoucherCatalog

logger = logging.getLogger(__name__)

DEFAULT_VOUCHERS: List[VoucherCreate] = [
    # Shopping
    VoucherCreate(
        id="amazon-50", category="shopping", brand="Amazon",
        title="₹50 OFF on Amazon", description="₹50 off on any order above ₹500",
        points_required=500, original_value=50, discount_type="fixed", discount_value=50,
        validity_days=30, stock_limit=100, current_stock=85,
        terms_and_conditions=[
            "Valid on orders above ₹500",
            "Cannot be combined with other offers",
            "Applicable on all categories except gift cards",
        ],
    ),
    VoucherCreate(
        id="flipkart-10percent", category="shopping", brand="Flipkart",
        title="10% OFF on Flipkart", description="10% discount up to ₹200 on any order",
        points_required=400, original_value=200, discount_type="percentage", discount_value=10,
        validity_days=45, stock_limit=150, current_stock=120,
        terms_and_conditions=["Maximum discount ₹200", "Cannot be clubbed with ongoing offers"],
    ),
    VoucherCreate(
        id="myntra-5percent", category="shopping", brand="Myntra",
        title="5% OFF on Myntra", description="5% discount on fashion and lifestyle",
        points_required=300, original_value=150, discount_type="percentage", discount_value=5,
        validity_days=60, stock_limit=200, current_stock=180,
        terms_and_conditions=["Minimum order value ₹999", "Excludes sale items"],
    ),
    # Food & beverages
    VoucherCreate(
        id="dominos-free-pizza", category="food", brand="Domino's",
        title="Free Domino's Pizza", description="Get a free regular pizza of your choice",
        points_required=1000, original_value=299, discount_type="free", discount_value=299,
        validity_days=15, stock_limit=50, current_stock=32,
        terms_and_conditions=["Valid on regular size pizzas only", "Dine-in and takeaway only"],
    ),
    VoucherCreate(
        id="swiggy-20percent", category="food", brand="Swiggy",
        title="20% OFF on Swiggy", description="20% discount up to ₹100 on food orders",
        points_required=600, original_value=100, discount_type="percentage", discount_value=20,
        validity_days=30, stock_limit=200, current_stock=165,
        terms_and_conditions=["Maximum discount ₹100", "Minimum order value ₹199"],
    ),
    VoucherCreate(
        id="ccd-free-coffee", category="food", brand="Café Coffee Day",
        title="Free Coffee at CCD", description="Get a free regular coffee of your choice",
        points_required=350, original_value=120, discount_type="free", discount_value=120,
        validity_days=21, stock_limit=150, current_stock=98,
        terms_and_conditions=["One voucher per visit", "Valid at all CCD outlets"],
    ),
    # Travel & transport
    VoucherCreate(
        id="uber-100-discount", category="travel", brand="Uber",
        title="₹100 Uber Ride Discount", description="₹100 off on your next Uber ride",
        points_required=800, original_value=100, discount_type="fixed", discount_value=100,
        validity_days=30, stock_limit=100, current_stock=73,
        terms_and_conditions=["Valid on UberGo and UberX", "Maximum one voucher per ride"],
    ),
    VoucherCreate(
        id="ola-coupons", category="travel", brand="Ola",
        title="Ola Ride Coupons", description="₹75 off on Ola rides (Pack of 2)",
        points_required=500, original_value=150, discount_type="fixed", discount_value=75,
        validity_days=45, stock_limit=80, current_stock=54,
        terms_and_conditions=["Pack contains 2 coupons of ₹75 each"],
    ),
    # Eco-friendly stores
    VoucherCreate(
        id="green-store-bottles", category="eco-friendly", brand="Green Store",
        title="15% OFF Reusable Bottles", description="15% discount on eco-friendly reusable bottles",
        points_required=450, original_value=200, discount_type="percentage", discount_value=15,
        validity_days=60, stock_limit=120, current_stock=89,
        terms_and_conditions=["Minimum purchase ₹500"],
    ),
    VoucherCreate(
        id="eco-bags-discount", category="eco-friendly", brand="EcoLife",
        title="Eco-friendly Bags Discount", description="Discount on cloth bags & bamboo products",
        points_required=350, original_value=150, discount_type="fixed", discount_value=100,
        validity_days=90, stock_limit=200, current_stock=156,
        terms_and_conditions=["Minimum purchase ₹300"],
    ),
]


def seed_catalog(catalog: VoucherCatalog, vouchers: List[VoucherCreate] = DEFAULT_VOUCHERS) -> int:
    """Insert the default vouchers that are not in the catalog yet."""
    added = 0
    for voucher in vouchers:
        if catalog.storage.get_voucher(voucher.id) is None:
            catalog.save(voucher)
            added += 1
    if added:
        logger.info("Seeded %d vouchers", added)
    return added
