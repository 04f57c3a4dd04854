"""
Data privacy service.

Handles data minimisation for Shopify payloads, purpose validation, the
privacy audit trail and the compliance report shown to merchants.

Audit writes are best-effort: a failed insert is rolled back and written to
the application log instead, so data access is never blocked by auditing.
"""

import logging
from collections import Counter
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session
from starlette.requests import Request

from storesight.config.retention_policy import AuditPolicy, get_retention_policy
from storesight.models.audit_log import AuditLog
from storesight.models.base import as_utc, utcnow
from storesight.platform.redis_cache import get_cache
from storesight.platform.request_context import extract_client_info
from storesight.repositories.audit_log_repo import AuditLogRepository
from storesight.repositories.shop_repo import ShopRepository, ShopSessionRepository

logger = logging.getLogger(__name__)

ORDER_DATA_RETENTION_DAYS = 60
ANALYTICS_DATA_RETENTION_DAYS = 90
AUDIT_LOG_RETENTION_DAYS = 365

VALID_PURPOSES = frozenset({
    "ANALYTICS",
    "REVENUE_REPORTING",
    "CONVERSION_TRACKING",
    "BUSINESS_INTELLIGENCE",
    "INVENTORY_MANAGEMENT",
})

DATA_ACCESS_MARKERS = (
    "DATA_REQUEST",
    "DATA_ACCESS",
    "REVENUE_DATA",
    "ORDER_DATA",
    "STORE_STATS",
    "DATA_EXPORT",
    "ANALYTICS",
)

ORDER_FIELDS = (
    "id",
    "total_price",
    "currency",
    "created_at",
    "financial_status",
    "fulfillment_status",
)


def is_data_access_action(action: Optional[str]) -> bool:
    """True for audit actions that represent access to merchant data."""
    if not action:
        return False
    return any(marker in action for marker in DATA_ACCESS_MARKERS)


class DataPrivacyService:
    """Privacy compliance and audit logging for shop data access."""

    def __init__(self, db_session: Session, policy: Optional[AuditPolicy] = None, cache=None):
        self.db = db_session
        self.policy = policy or get_retention_policy().audit
        self.cache = cache if cache is not None else get_cache()
        self.audit_repo = AuditLogRepository(db_session)
        self.shop_repo = ShopRepository(db_session)
        self.session_repo = ShopSessionRepository(db_session)

    @property
    def audit_log_retention_days(self) -> int:
        return self.policy.retention_days

    # ------------------------------------------------------------------
    # Minimisation and purpose limitation
    # ------------------------------------------------------------------

    def minimize_order_data(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """Keep only the order fields analytics needs; customer is reduced to its id."""
        minimized = {key: order.get(key) for key in ORDER_FIELDS}
        customer = order.get("customer")
        if isinstance(customer, dict):
            minimized["customer"] = {"id": customer.get("id")}
        return minimized

    def is_processing_purpose_valid(self, purpose: Optional[str]) -> bool:
        valid = bool(purpose) and purpose.upper() in VALID_PURPOSES
        logger.debug(
            "Processing purpose checked",
            extra={"purpose": purpose, "approved": valid},
        )
        return valid

    def validate_privacy_compliance(
        self, purpose: str, data_type: str, shop_domain: Optional[str] = None
    ) -> bool:
        """Check the purpose and record the decision in the audit trail."""
        valid = self.is_processing_purpose_valid(purpose)
        outcome = "APPROVED" if valid else "REJECTED"
        self.log_data_access(
            "PRIVACY_COMPLIANCE_CHECK",
            f"{data_type} for {purpose} - {outcome}",
            shop_domain,
        )
        return valid

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def log_data_access(
        self,
        action: str,
        details: Optional[str] = None,
        shop_domain: Optional[str] = None,
        request: Optional[Request] = None,
    ) -> Optional[AuditLog]:
        """
        Append an audit record.

        Returns the saved record, or None when the write failed and the
        fallback log line was used instead.
        """
        try:
            shop_id = None
            if shop_domain:
                shop = self.shop_repo.get_by_domain(shop_domain)
                if shop is not None:
                    shop_id = shop.id
                else:
                    logger.warning("No shop found for audit log", extra={"shop": shop_domain})

            ip_address, user_agent = extract_client_info(request)
            audit_log = AuditLog(
                shop_id=shop_id,
                action=action,
                details=details,
                user_agent=user_agent,
                ip_address=ip_address,
            )
            self.audit_repo.add(audit_log)
            self.db.commit()

            logger.info(
                "Data Privacy Audit",
                extra={"action": action, "details": details, "shop_id": shop_id},
            )
            return audit_log

        except Exception as e:
            self.db.rollback()
            logger.error("Failed to save audit log", extra={"error": str(e)}, exc_info=True)
            logger.warning(
                "Audit log fallback",
                extra={"action": action, "details": details, "shop": shop_domain},
            )
            return None

    def cleanup_old_audit_logs(self) -> int:
        """Delete audit records older than the configured retention period."""
        cutoff = utcnow() - timedelta(days=self.audit_log_retention_days)
        deleted = self.audit_repo.delete_older_than(cutoff)
        self.db.commit()
        logger.info(
            "Audit log cleanup completed",
            extra={"deleted": deleted, "retention_days": self.audit_log_retention_days},
        )
        return deleted

    def get_audit_logs_for_shop(
        self, shop_domain: str, page: int = 0, size: int = 50, action: Optional[str] = None
    ) -> List[AuditLog]:
        shop = self.shop_repo.get_by_domain(shop_domain)
        if shop is None:
            return []
        return self.audit_repo.list_for_shop(shop.id, page, size, action)

    def count_audit_logs_for_shop(self, shop_domain: str, action: Optional[str] = None) -> int:
        shop = self.shop_repo.get_by_domain(shop_domain)
        if shop is None:
            return 0
        return self.audit_repo.count_for_shop(shop.id, action)

    def get_audit_logs_from_deleted_shops(self, page: int = 0, size: int = 50) -> List[AuditLog]:
        return self.audit_repo.list_from_deleted_shops(page, size)

    def get_audit_logs_from_active_shops(self, page: int = 0, size: int = 50) -> List[AuditLog]:
        return self.audit_repo.list_from_active_shops(page, size)

    def get_all_audit_logs(self, page: int = 0, size: int = 50) -> List[AuditLog]:
        return self.audit_repo.list_all(page, size)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def generate_compliance_report(self, shop_domain: Optional[str]) -> Dict[str, Any]:
        """Build the merchant-facing compliance summary for a shop."""
        report: Dict[str, Any] = {
            "data_minimization": "Only essential fields processed for analytics",
            "purpose_limitation": "Processing limited to stated business purposes",
            "retention_policy": f"{ORDER_DATA_RETENTION_DAYS} days for order data",
            "encryption": "Data encrypted at rest and in transit",
            "consent_tracking": "Customer consent recorded and respected",
            "audit_logs_today": 0,
            "recent_audit_activity": 0,
            "weekly_action_breakdown": {},
            "total_weekly_access_events": 0,
        }

        shop = self.shop_repo.get_by_domain(shop_domain) if shop_domain else None
        if shop is not None:
            now = utcnow()
            start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)

            today = self.audit_repo.list_for_shop_between(
                shop.id, start_of_today, start_of_today + timedelta(days=1)
            )
            report["audit_logs_today"] = sum(1 for log in today if is_data_access_action(log.action))

            recent = self.audit_repo.list_recent_for_shop(shop.id, now - timedelta(days=30))
            report["recent_audit_activity"] = sum(
                1 for log in recent if is_data_access_action(log.action)
            )

            weekly = self.audit_repo.list_for_shop_between(shop.id, now - timedelta(days=7), now)
            breakdown = Counter(log.action for log in weekly if is_data_access_action(log.action))
            report["weekly_action_breakdown"] = dict(breakdown)
            report["total_weekly_access_events"] = sum(breakdown.values())

        report["compliance_status"] = "COMPLIANT"
        report["last_updated"] = utcnow().isoformat()
        return report

    def get_active_shops(self) -> List[Dict[str, Any]]:
        """
        Shops with activity in the last 24 hours.

        Merges shops seen in recent audit logs with shops holding active
        sessions. A shop found in both is reported once with source
        "audit_and_sessions". Sorted by last activity, newest first.
        """
        active: Dict[str, Dict[str, Any]] = {}

        for log in self.audit_repo.list_recent(utcnow() - timedelta(days=1)):
            if log.shop_id is None:
                continue
            shop = self.shop_repo.get_by_id(log.shop_id)
            if shop is None or shop.shopify_domain in active:
                continue
            active[shop.shopify_domain] = {
                "shopDomain": shop.shopify_domain,
                "lastActivity": as_utc(log.created_at).isoformat(),
                "ipAddress": log.ip_address,
                "userAgent": log.user_agent,
                "sessionId": f"audit_{log.id}",
                "isActive": True,
                "source": "audit_logs",
            }

        for shop in self.shop_repo.list_all():
            domain = shop.shopify_domain
            sessions = self.session_repo.list_active_for_shop(shop.id)
            if sessions:
                latest = sessions[0]
                if domain in active:
                    active[domain].update({
                        "activeSessionCount": len(sessions),
                        "databaseSessionId": latest.session_id,
                        "sessionCreatedAt": as_utc(latest.created_at).isoformat(),
                        "source": "audit_and_sessions",
                    })
                else:
                    active[domain] = {
                        "shopDomain": domain,
                        "lastActivity": as_utc(latest.last_accessed_at).isoformat(),
                        "ipAddress": latest.ip_address,
                        "userAgent": latest.user_agent,
                        "sessionId": latest.session_id,
                        "isActive": True,
                        "source": "database_sessions",
                        "activeSessionCount": len(sessions),
                        "sessionCreatedAt": as_utc(latest.created_at).isoformat(),
                    }
            elif domain not in active and self.cache.get(f"shop_token:{domain}"):
                active[domain] = {
                    "shopDomain": domain,
                    "lastActivity": as_utc(shop.updated_at).isoformat() if shop.updated_at else None,
                    "ipAddress": None,
                    "userAgent": None,
                    "sessionId": f"legacy_{shop.id}",
                    "isActive": True,
                    "source": "cache_fallback",
                    "activeSessionCount": 0,
                }

        return sorted(
            active.values(),
            key=lambda info: info.get("lastActivity") or "",
            reverse=True,
        )

    def build_data_export(self, shop_domain: str) -> Dict[str, Any]:
        """
        Everything the app holds about a shop, for the merchant's data
        portability request.
        """
        logs = self.get_audit_logs_for_shop(shop_domain, 0, 100)
        return {
            "export_timestamp": utcnow().isoformat(),
            "shop": shop_domain,
            "export_type": "COMPLETE_USER_DATA",
            "shop_information": {
                "shop_domain": shop_domain,
                "app_installed": "StoreSight Analytics",
            },
            "privacy_compliance": self.generate_compliance_report(shop_domain),
            "data_processing_summary": {
                "data_types_collected": [
                    "Order totals and dates",
                    "Product information",
                    "Shop configuration",
                    "Analytics metrics (aggregated)",
                ],
                "purposes": [
                    "Revenue analytics",
                    "Business intelligence",
                    "Conversion tracking",
                    "Inventory management",
                ],
                "retention_periods": {
                    "order_data": f"{ORDER_DATA_RETENTION_DAYS} days maximum",
                    "analytics_data": f"{ANALYTICS_DATA_RETENTION_DAYS} days maximum",
                    "audit_logs": f"{self.audit_log_retention_days} days",
                },
            },
            "recent_audit_logs": [
                f"{as_utc(log.created_at).isoformat()} - {log.action} - {log.details}"
                for log in logs
            ],
            "user_rights": {
                "right_to_access": "Available via data export",
                "right_to_deletion": "Available via profile settings",
                "right_to_portability": "Data provided in JSON format",
                "right_to_opt_out": "Available by disconnecting app",
            },
        }
