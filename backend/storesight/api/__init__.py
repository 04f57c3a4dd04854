"""HTTP API: FastAPI routers and shared dependencies."""
