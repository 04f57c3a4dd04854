"""
Platform utilities shared by services and routes.

- redis_cache: Redis client with graceful degradation and in-memory fallback
- request_context: client IP / user agent / session id extraction
"""
