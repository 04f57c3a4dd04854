"""
Client-side state for the dashboard SPA.

Python models of the browser's auth and service-status contexts, driven
over httpx against the StoreSight API. `storage` arguments stand in for
the browser's session storage and accept any mutable mapping of str to str.
"""

from storesight.client.auth_client import AuthClient
from storesight.client.dashboard_cache import DashboardCache
from storesight.client.service_status import ServiceStatusMonitor

__all__ = ["AuthClient", "DashboardCache", "ServiceStatusMonitor"]
