"""
Pricing catalog reader: active Stripe products with their active prices, for display.
"""
from app.services.stripe_service import StripeService


def list_pricing(stripe_service: StripeService) -> list[dict]:
    products = stripe_service.list_products()
    return [
        {**product, "prices": stripe_service.list_prices(product["id"])}
        for product in products
    ]
