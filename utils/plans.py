# utils/plans.py
from decimal import Decimal, InvalidOperation
import re

from api.exception import ApiError

# Prices are quoted in Ghana cedis (GH₵)
PRICING_PACKAGES = [
    {
        "name": "Startup Identity",
        "price": "2,500",
        "description": "Perfect for emerging businesses needing a digital footprint.",
        "features": [
            "Responsive Landing Page",
            "Basic SEO Setup",
            "Contact Form Integration",
            "1 Month Support",
            "Domain Setup",
        ],
        "recommended": False,
    },
    {
        "name": "Enterprise Growth",
        "price": "6,500",
        "description": "Comprehensive solution for scaling companies.",
        "features": [
            "Multi-page CMS Website",
            "Admin Dashboard",
            "Google Analytics",
            "Blog/News Section",
            "Social Media Integration",
            "3 Months Support",
        ],
        "recommended": True,
    },
    {
        "name": "Premium Commerce",
        "price": "12,000+",
        "description": "Full-scale custom architecture for high-volume trade.",
        "features": [
            "Custom E-commerce / POS",
            "User Authentication",
            "Payment Gateway (Paystack)",
            "Inventory Management",
            "Custom API Development",
            "6 Months Priority Support",
        ],
        "recommended": False,
    },
]


def parse_amount(value):
    """Turn '12,000+' or 'GH₵ 2,500.50' into a Decimal, ignoring everything but digits and dots."""
    if value is None:
        return Decimal("0")
    cleaned = re.sub(r"[^0-9.]", "", str(value))
    try:
        return Decimal(cleaned) if cleaned else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def find_plan(name):
    for package in PRICING_PACKAGES:
        if package["name"].lower() == (name or "").strip().lower():
            return package
    return None


def plan_price(name):
    package = find_plan(name)
    if package is None:
        raise ApiError(f"Unknown plan: {name}", 400)
    return parse_amount(package["price"]).quantize(Decimal("0.01"))
