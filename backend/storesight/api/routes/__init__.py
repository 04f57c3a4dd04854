# API routes
from storesight.api.routes import shopify_auth
from storesight.api.routes import sessions
from storesight.api.routes import analytics
from storesight.api.routes import competitors
from storesight.api.routes import health

__all__ = ["shopify_auth", "sessions", "analytics", "competitors", "health"]
