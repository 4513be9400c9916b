from datetime import datetime, timezone
from typing import List

from flask import current_app
from elasticsearch import Elasticsearch

from subscription_renewer.models.subscription_model import SubscriptionRecord
from subscription_renewer.services.microsoft_graph import RenewalServiceError, isoformat_utc


class RecordFetchError(RenewalServiceError):
    """Raised when connection records cannot be listed or searched."""
    pass


class RecordUpdateError(RenewalServiceError):
    """Raised when a renewed expiration cannot be written back."""
    pass


def get_es(cfg) -> Elasticsearch:
    """Return a configured Elasticsearch client."""
    username = cfg.get("ELASTICSEARCH_USERNAME")
    password = cfg.get("ELASTICSEARCH_PASSWORD")
    return Elasticsearch(
        cfg.get("ELASTICSEARCH_URL", "http://localhost:9200"),
        basic_auth=(username, password) if username else None,
        verify_certs=False
    )


class ConnectionRecordStore:
    """
    Reads and updates OneDrive connection records. Each connected source
    lives in its own index named ``<prefix><source id>``.
    """

    def __init__(
            self,
            client: Elasticsearch,
            index_prefix: str = "datasource_onedrive_connection_",
            lookahead: str = "now",
            fetch_size: int = 1000
    ):
        self.client = client
        self.index_prefix = index_prefix
        self.lookahead = lookahead
        self.fetch_size = fetch_size

    @classmethod
    def from_config(cls, cfg) -> "ConnectionRecordStore":
        return cls(
            get_es(cfg),
            index_prefix=cfg["CONNECTION_INDEX_PREFIX"],
            lookahead=cfg["RENEWAL_LOOKAHEAD"],
            fetch_size=cfg["RECORD_FETCH_SIZE"],
        )

    def list_connection_indices(self) -> List[str]:
        rows = self.client.cat.indices(index=f"{self.index_prefix}*", format="json")
        names = [row["index"] for row in rows]
        return sorted(n for n in names if n.startswith(self.index_prefix))

    def expiring_query(self) -> dict:
        return {
            "range": {
                "expirationDateTime": {
                    "lt": self.lookahead
                }
            }
        }

    def list_expiring_records(self) -> List[SubscriptionRecord]:
        """
        Collect records whose subscription has expired (or expires before
        the lookahead) across every connection index, in index order.
        """
        try:
            indices = self.list_connection_indices()
            current_app.logger.info("🔍 Found indices: %s", indices)

            records = []
            for index in indices:
                resp = self.client.search(
                    index=index,
                    query=self.expiring_query(),
                    sort=[{"expirationDateTime": {"order": "asc", "unmapped_type": "date"}}],
                    size=self.fetch_size
                )
                hits = resp.get("hits", {}).get("hits", [])
                total = resp.get("hits", {}).get("total", 0)
                if isinstance(total, dict):
                    total = total.get("value", 0)
                if total > len(hits):
                    current_app.logger.warning(
                        "⚠️ %s has %d expiring records, only %d fetched this tick",
                        index, total, len(hits)
                    )
                current_app.logger.debug("%d expiring records in %s", len(hits), index)
                records.extend(SubscriptionRecord.from_hit(hit, index) for hit in hits)

            if self.lookahead != "now":
                early = sum(1 for r in records if not r.is_expired())
                if early:
                    current_app.logger.info(
                        "⏩ %d record(s) still valid but within lookahead %s", early, self.lookahead
                    )
            return records
        except Exception as e:
            current_app.logger.error(
                "❌ Error fetching stored credentials from Elasticsearch: %s", e
            )
            raise RecordFetchError("Failed to fetch stored credentials") from e

    def apply_renewal(self, index_name: str, doc_id: str, new_expiration: str) -> None:
        """Write the new expiration onto the record, leaving other fields as they are."""
        try:
            self.client.update(
                index=index_name,
                id=doc_id,
                doc={
                    "expirationDateTime": new_expiration,
                    "updatedAt": isoformat_utc(datetime.now(timezone.utc)),
                }
            )
            current_app.logger.info(
                "✅ Updated expirationDateTime for docId %s in index %s", doc_id, index_name
            )
        except Exception as e:
            current_app.logger.error(
                "❌ Error updating expirationDateTime for docId %s: %s", doc_id, e
            )
            raise RecordUpdateError("Failed to update expirationDateTime in Elasticsearch") from e
