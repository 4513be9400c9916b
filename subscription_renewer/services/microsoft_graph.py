import time
from datetime import datetime, timedelta, timezone

import requests
from flask import current_app
from msal import ConfidentialClientApplication


class RenewalServiceError(Exception):
    """Base class for failures raised while renewing subscriptions."""
    pass


class CredentialExchangeError(RenewalServiceError):
    """Raised when the client-credentials grant does not yield a token."""
    pass


class SubscriptionRenewalError(RenewalServiceError):
    """Raised when Graph rejects a subscription request."""

    def __init__(self, message, status_code=None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


# HTTP statuses worth another attempt
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}

# Token endpoint error codes worth another attempt
RETRYABLE_TOKEN_ERRORS = {"temporarily_unavailable", "server_error", "slow_down"}


def isoformat_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class MicrosoftGraphService:
    BASE_URL = "https://graph.microsoft.com/v1.0"
    AUTHORITY_HOST = "https://login.microsoftonline.com"
    SCOPE = "https://graph.microsoft.com/.default"

    def __init__(
            self,
            notification_url: str,
            client_state: str,
            change_type: str = "created,updated,deleted",
            lifetime_minutes: int = 60,
            base_url: str = None,
            authority_host: str = None,
            scope: str = None,
            timeout: float = 30,
            max_retries: int = 3,
            retry_delay: float = 1.0
    ):
        self.notification_url = notification_url
        self.client_state = client_state
        self.change_type = change_type
        self.lifetime = timedelta(minutes=lifetime_minutes)
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.authority_host = (authority_host or self.AUTHORITY_HOST).rstrip("/")
        self.scope = scope or self.SCOPE
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

    @classmethod
    def from_config(cls, cfg) -> "MicrosoftGraphService":
        return cls(
            notification_url=cfg["NOTIFICATION_URL"],
            client_state=cfg["SUBSCRIPTION_CLIENT_STATE"],
            change_type=cfg["SUBSCRIPTION_CHANGE_TYPE"],
            lifetime_minutes=cfg["SUBSCRIPTION_LIFETIME_MINUTES"],
            base_url=cfg["GRAPH_BASE_URL"],
            authority_host=cfg["GRAPH_AUTHORITY_HOST"],
            scope=cfg["GRAPH_SCOPE"],
            timeout=cfg["GRAPH_REQUEST_TIMEOUT"],
            max_retries=cfg["GRAPH_MAX_RETRIES"],
            retry_delay=cfg["GRAPH_RETRY_DELAY"],
        )

    def _backoff(self, attempt: int) -> None:
        delay = self.retry_delay * (2 ** attempt)
        if delay > 0:
            time.sleep(delay)

    def get_access_token(self, tenant_id: str, client_id: str, client_secret: str) -> str:
        """
        Exchange tenant/client credentials for an app-only Graph token.
        Network errors and transient token-endpoint errors are retried.
        """
        authority = f"{self.authority_host}/{tenant_id}"
        attempt = 0
        while True:
            try:
                app = ConfidentialClientApplication(
                    client_id=client_id,
                    client_credential=client_secret,
                    authority=authority
                )
                result = app.acquire_token_for_client(scopes=[self.scope])
            except requests.exceptions.RequestException as e:
                attempt += 1
                current_app.logger.warning(
                    "⚠️ Token request for tenant %s failed (attempt %d/%d): %s",
                    tenant_id, attempt, self.max_retries, e
                )
                if attempt >= self.max_retries:
                    current_app.logger.error("❌ Error getting access token: %s", e)
                    raise CredentialExchangeError("Error getting access token") from e
                self._backoff(attempt - 1)
                continue
            except ValueError as e:
                current_app.logger.error("❌ Error getting access token: %s", e)
                raise CredentialExchangeError("Error getting access token") from e

            error = (result or {}).get("error")
            if error in RETRYABLE_TOKEN_ERRORS:
                attempt += 1
                current_app.logger.warning(
                    "⚠️ Token endpoint answered %s for tenant %s (attempt %d/%d)",
                    error, tenant_id, attempt, self.max_retries
                )
                if attempt < self.max_retries:
                    self._backoff(attempt - 1)
                    continue
            break

        if not result or "access_token" not in result:
            current_app.logger.error(
                "❌ Error getting access token: %s",
                (result or {}).get("error_description") or (result or {}).get("error")
            )
            raise CredentialExchangeError("Error getting access token")

        current_app.logger.debug("🔑 Token acquired for client %s", client_id)
        return result["access_token"]

    def build_subscription(self, user_name: str, now: datetime = None) -> dict:
        now = now or datetime.now(timezone.utc)
        return {
            "changeType":         self.change_type,
            "notificationUrl":    self.notification_url,
            "resource":           f"/users/{user_name}/drive/root",
            "expirationDateTime": isoformat_utc(now + self.lifetime),
            "clientState":        self.client_state
        }

    def create_subscription(self, access_token: str, user_name: str) -> dict:
        """
        Create a drive-root change-notification subscription for a user.
        """
        url = f"{self.base_url}/subscriptions"
        body = self.build_subscription(user_name)
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type":  "application/json"
        }

        attempt = 0
        while True:
            attempt += 1
            try:
                resp = requests.post(url, json=body, headers=headers, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                current_app.logger.warning(
                    "⚠️ Subscription request for %s failed (attempt %d/%d): %s",
                    user_name, attempt, self.max_retries, e
                )
                if attempt >= self.max_retries:
                    current_app.logger.error("❌ Error creating OneDrive subscription: %s", e)
                    raise SubscriptionRenewalError(
                        "Error creating OneDrive subscription"
                    ) from e
                self._backoff(attempt - 1)
                continue

            if resp.status_code in (200, 201):
                break

            if resp.status_code in RETRYABLE_STATUSES and attempt < self.max_retries:
                current_app.logger.warning(
                    "⚠️ Graph answered %s for %s (attempt %d/%d), retrying",
                    resp.status_code, user_name, attempt, self.max_retries
                )
                self._backoff(attempt - 1)
                continue

            current_app.logger.error(
                "❌ Error creating OneDrive subscription [%s]: %s",
                resp.status_code, resp.text
            )
            raise SubscriptionRenewalError(
                f"Error creating OneDrive subscription [{resp.status_code}]: {resp.text}",
                status_code=resp.status_code,
                body=resp.text
            )

        try:
            subscription = resp.json()
        except ValueError as e:
            current_app.logger.error("❌ Unreadable subscription response [%s]: %s", resp.status_code, resp.text)
            raise SubscriptionRenewalError(
                "Error creating OneDrive subscription: unreadable response",
                status_code=resp.status_code,
                body=resp.text
            ) from e
        if not subscription.get("expirationDateTime"):
            subscription["expirationDateTime"] = body["expirationDateTime"]
        return subscription
