"""
StoreSight analytics backend.

Shop/session bookkeeping, notifications, competitor suggestions and
privacy audit logging for Shopify merchants.
"""
