"""
Apply due expiry and browse-window corrections to every subscription.

Reads stay authoritative; this only catches up records of users who have
stopped making requests.
Run: python -m scripts.sweep_subscriptions
"""
import logging
import sys

from entitlements.core.logging_config import setup_logging
from entitlements.main import build_services, build_sql_store

logger = logging.getLogger(__name__)


def sweep_subscriptions(database_url: str = None):
    """Run one sweep against the configured database and return the report."""
    services = build_services(build_sql_store(database_url))
    try:
        return services.lifecycle.sweep()
    finally:
        services.close()


if __name__ == "__main__":
    setup_logging()
    database_url = sys.argv[1] if len(sys.argv) > 1 else None

    try:
        report = sweep_subscriptions(database_url)
    except Exception as e:
        logger.error(f"Subscription sweep failed: {e}", exc_info=True)
        sys.exit(1)

    print(
        f"\n[SUCCESS] Examined {report.examined} subscriptions: "
        f"{report.expired} expired, {report.browse_resets} browse resets, {report.conflicts} skipped"
    )
    if report.conflicts:
        sys.exit(2)
