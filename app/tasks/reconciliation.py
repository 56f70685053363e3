import logging
from datetime import date, datetime, timedelta

from app.celery_app import celery_app
from app.config import settings
from app.db import SessionLocal
from app.models.reconciliation import ReconciliationStatus
from app.models.tenant import Tenant, TenantIntegration
from app.services.payments import reconciliation_sweeper
from app.services.payments.adapters.base import KENYA_TZ

logger = logging.getLogger(__name__)


def lookback_window(today: date | None = None) -> tuple[date, date]:
    """Closed window of whole days ending yesterday (Nairobi calendar)."""
    today = today or datetime.now(KENYA_TZ).date()
    days = max(settings.reconciliation_lookback_days, 1)
    to_date = today - timedelta(days=1)
    return to_date - timedelta(days=days - 1), to_date


@celery_app.task(name="app.tasks.reconciliation.reconcile_integration")
def reconcile_integration(run_id: str):
    session = SessionLocal()
    try:
        run = reconciliation_sweeper.run(session, run_id)
        return {"run_id": str(run.id), "status": run.status.value}
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="app.tasks.reconciliation.sweep_bank_integrations")
def sweep_bank_integrations():
    session = SessionLocal()
    try:
        from_date, to_date = lookback_window()
        integrations = (
            session.query(TenantIntegration)
            .join(Tenant, Tenant.id == TenantIntegration.tenant_id)
            .filter(TenantIntegration.is_enabled.is_(True))
            .filter(TenantIntegration.is_active.is_(True))
            .filter(Tenant.is_active.is_(True))
            .all()
        )
        summary = {"started": 0, "completed": 0, "failed": 0}
        for integration in integrations:
            run = reconciliation_sweeper.start(
                session,
                integration.tenant,
                integration.provider.value,
                from_date,
                to_date,
            )
            summary["started"] += 1
            try:
                run = reconciliation_sweeper.run(session, run.id)
            except Exception as exc:
                # the run row already records the failure; keep sweeping
                summary["failed"] += 1
                logger.warning(
                    "reconciliation_sweep_integration_failed tenant_id=%s provider=%s error=%s",
                    integration.tenant_id,
                    integration.provider.value,
                    exc,
                )
                continue
            if run.status == ReconciliationStatus.completed:
                summary["completed"] += 1
        logger.info(
            "reconciliation_sweep_finished from=%s to=%s started=%s completed=%s failed=%s",
            from_date,
            to_date,
            summary["started"],
            summary["completed"],
            summary["failed"],
        )
        return summary
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

