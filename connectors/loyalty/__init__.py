"""Loyalty platform connectors: product catalog, departments, card data."""

from connectors.loyalty.client import (
    LoyaltyApiClient,
    PRODUCT_LOOKUP_POLICY,
    extract_product_payload,
)
from connectors.loyalty.card_data import (
    CardDataClient,
    CARD_LOOKUP_POLICY,
    parse_card_data,
    card_serials_by_material,
    issuing_partner_for,
)

__all__ = [
    "LoyaltyApiClient",
    "PRODUCT_LOOKUP_POLICY",
    "extract_product_payload",
    "CardDataClient",
    "CARD_LOOKUP_POLICY",
    "parse_card_data",
    "card_serials_by_material",
    "issuing_partner_for",
]
