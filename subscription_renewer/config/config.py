import os
from dotenv import load_dotenv

load_dotenv()


def _bool_env(name, default="false"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class BaseConfig:
    FLASK_ENV = os.getenv("FLASK_ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Elasticsearch setup (plain HTTP, without TLS options)
    ELASTICSEARCH_URL = os.getenv("ELASTICSEARCH_URL", "http://localhost:9200")
    ELASTICSEARCH_USERNAME = os.getenv("ELASTICSEARCH_USERNAME")
    ELASTICSEARCH_PASSWORD = os.getenv("ELASTICSEARCH_PASSWORD")

    # Connection records, one index per connected OneDrive source
    CONNECTION_INDEX_PREFIX = os.getenv("CONNECTION_INDEX_PREFIX", "datasource_onedrive_connection_")
    RECORD_FETCH_SIZE = int(os.getenv("RECORD_FETCH_SIZE", "1000"))
    # Date-math upper bound for "expiring" records, e.g. "now+10m"
    RENEWAL_LOOKAHEAD = os.getenv("RENEWAL_LOOKAHEAD", "now")

    # Microsoft Graph
    GRAPH_AUTHORITY_HOST = os.getenv("GRAPH_AUTHORITY_HOST", "https://login.microsoftonline.com")
    GRAPH_SCOPE = os.getenv("GRAPH_SCOPE", "https://graph.microsoft.com/.default")
    GRAPH_BASE_URL = os.getenv("GRAPH_BASE_URL", "https://graph.microsoft.com/v1.0")
    GRAPH_REQUEST_TIMEOUT = float(os.getenv("GRAPH_REQUEST_TIMEOUT", "30"))
    GRAPH_MAX_RETRIES = int(os.getenv("GRAPH_MAX_RETRIES", "3"))
    GRAPH_RETRY_DELAY = float(os.getenv("GRAPH_RETRY_DELAY", "1.0"))

    # Webhook subscription settings
    NOTIFICATION_URL = os.getenv("NOTIFICATION_URL")
    SUBSCRIPTION_CHANGE_TYPE = "created,updated,deleted"
    SUBSCRIPTION_CLIENT_STATE = os.getenv("SUBSCRIPTION_CLIENT_STATE", "secretClientValue")
    SUBSCRIPTION_LIFETIME_MINUTES = int(os.getenv("SUBSCRIPTION_LIFETIME_MINUTES", "60"))

    # Scheduler
    SCHEDULER_ENABLED = _bool_env("SCHEDULER_ENABLED", "true")
    RENEWAL_INTERVAL_MINUTES = float(os.getenv("RENEWAL_INTERVAL_MINUTES", "5"))
    RUN_ON_STARTUP = _bool_env("RUN_ON_STARTUP", "false")

    # Server configuration
    SERVER_HOST = os.getenv("SERVER_HOST", "localhost")
    SERVER_PORT = int(os.getenv("SERVER_PORT", "5000"))
