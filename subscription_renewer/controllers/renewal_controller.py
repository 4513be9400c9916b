import threading
from datetime import datetime, timezone

from flask import current_app

from subscription_renewer.models.subscription_model import (
    RenewalResult,
    RenewalSummary,
    SubscriptionRecord,
)
from subscription_renewer.services.elastic_service import ConnectionRecordStore
from subscription_renewer.services.microsoft_graph import MicrosoftGraphService


class SubscriptionRenewer:
    """
    Renews expired OneDrive subscriptions for every stored connection record.
    One call to ``run`` is one tick; overlapping ticks are skipped.
    """

    def __init__(self, store: ConnectionRecordStore, graph: MicrosoftGraphService):
        self.store = store
        self.graph = graph
        self._lock = threading.Lock()
        self.last_summary = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def renew_record(self, record: SubscriptionRecord) -> RenewalResult:
        result = RenewalResult(record.index_name, record.doc_id, record.user_name)

        token = self.graph.get_access_token(
            record.tenant_id, record.client_id, record.client_secret
        )
        subscription = self.graph.create_subscription(token, record.user_name)
        current_app.logger.info("🔁 OneDrive subscription recreated for user: %s", record.user_name)

        new_expiration = subscription["expirationDateTime"]
        self.store.apply_renewal(record.index_name, record.doc_id, new_expiration)

        result.renewed = True
        result.expiration = new_expiration
        return result

    def _process(self, summary: RenewalSummary) -> None:
        records = self.store.list_expiring_records()
        current_app.logger.info("📋 %d subscription(s) to renew", len(records))

        for record in records:
            try:
                summary.results.append(self.renew_record(record))
            except Exception as e:
                # one bad connection must not hold up the others
                current_app.logger.error(
                    "❌ Renewal failed for user %s (doc %s in %s): %s",
                    record.user_name, record.doc_id, record.index_name, e
                )
                summary.results.append(RenewalResult(
                    record.index_name, record.doc_id, record.user_name, error=str(e)
                ))

    def run(self) -> RenewalSummary:
        summary = RenewalSummary(started_at=datetime.now(timezone.utc))

        if not self._lock.acquire(blocking=False):
            current_app.logger.warning("⏭️ Previous renewal run still active; skipping this tick")
            summary.skipped = True
            summary.finished_at = datetime.now(timezone.utc)
            return summary

        try:
            current_app.logger.info("🚀 Starting OneDrive subscription re-creation job...")
            self._process(summary)
            current_app.logger.info(
                "✔️ Subscription job done: renewed %d, failed %d",
                summary.renewed_count, summary.failed_count
            )
        except Exception as e:
            current_app.logger.error("🚨 Error executing OneDrive subscription re-creation job: %s", e)
            summary.error = str(e)
        finally:
            summary.finished_at = datetime.now(timezone.utc)
            self.last_summary = summary
            self._lock.release()

        return summary


def build_renewer(cfg) -> SubscriptionRenewer:
    return SubscriptionRenewer(
        ConnectionRecordStore.from_config(cfg),
        MicrosoftGraphService.from_config(cfg),
    )


def get_renewer() -> SubscriptionRenewer:
    return current_app.extensions["subscription_renewer"]
