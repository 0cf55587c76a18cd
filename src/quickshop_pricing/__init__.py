"""
QuickShop Pricing Package

Discount calculation engine for QuickShop storefronts.
Prices a cart against automatic and coupon discounts: eligibility, per-kind
effects, stacking and exclusivity, all in integer minor units.
"""

__version__ = "1.0.0"
