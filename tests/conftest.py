import re
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app import create_app
from subscription_renewer.config.config import BaseConfig
from subscription_renewer.controllers.renewal_controller import SubscriptionRenewer
from subscription_renewer.models.subscription_model import parse_expiration
from subscription_renewer.services import microsoft_graph
from subscription_renewer.services.elastic_service import ConnectionRecordStore
from subscription_renewer.services.microsoft_graph import MicrosoftGraphService, isoformat_utc

PREFIX = "datasource_onedrive_connection_"

DATE_MATH = re.compile(r"^now(?:([+-])(\d+)([smhd]))?$")
DATE_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


class SuiteConfig(BaseConfig):
    TESTING = True
    LOG_LEVEL = "DEBUG"
    NOTIFICATION_URL = "https://hooks.example.com/onedrive"
    SUBSCRIPTION_CLIENT_STATE = "secretClientValue"
    GRAPH_MAX_RETRIES = 3
    GRAPH_RETRY_DELAY = 0
    SCHEDULER_ENABLED = False


def resolve_date_math(expr):
    """Evaluate the small subset of ES date math we use: now, now+10m, now-1h."""
    match = DATE_MATH.match(expr)
    assert match, f"unsupported date math {expr!r}"
    now = datetime.now(timezone.utc)
    sign, amount, unit = match.groups()
    if not sign:
        return now
    delta = timedelta(**{DATE_UNITS[unit]: int(amount)})
    return now + delta if sign == "+" else now - delta


def iso_from_now(**delta):
    return isoformat_utc(datetime.now(timezone.utc) + timedelta(**delta))


def connection_doc(user_name, expiration, tenant="tenant-1", client="client-1"):
    return {
        "tenantId": tenant,
        "clientId": client,
        "clientSecret": f"secret-{client}",
        "userName": user_name,
        "expirationDateTime": expiration,
        "displayName": f"{user_name} drive",
    }


class FakeElasticsearch:
    """In-memory stand-in for the handful of Elasticsearch calls we make."""

    def __init__(self, indices=None):
        # {index name: {doc id: source}}
        self.indices = indices or {}
        self.search_calls = []
        self.update_calls = []
        self.fail_search = False
        self.fail_update_ids = set()
        self.cat = SimpleNamespace(indices=self._cat_indices)

    def _cat_indices(self, index=None, format=None):
        # Return every index so the prefix check in the store is exercised
        return [{"index": name, "health": "green"} for name in self.indices]

    def search(self, index, query, sort=None, size=10):
        self.search_calls.append({"index": index, "query": query, "size": size})
        if self.fail_search:
            raise ConnectionError("cluster unavailable")

        bound = resolve_date_math(query["range"]["expirationDateTime"]["lt"])

        hits = []
        for doc_id, source in self.indices[index].items():
            expires = parse_expiration(source.get("expirationDateTime"))
            if expires is not None and expires < bound:
                hits.append({"_index": index, "_id": doc_id, "_source": dict(source)})
        hits.sort(key=lambda h: h["_source"]["expirationDateTime"])
        return {"hits": {"total": {"value": len(hits), "relation": "eq"}, "hits": hits[:size]}}

    def update(self, index, id, doc):
        self.update_calls.append({"index": index, "id": id, "doc": dict(doc)})
        if id in self.fail_update_ids:
            raise ConnectionError("update rejected")
        self.indices[index][id].update(doc)
        return {"result": "updated"}


class FakeConfidentialClientApplication:
    instances = []
    failing_clients = set()
    unreachable_clients = set()
    # client id -> number of transient error answers still to give
    transient_errors = {}

    def __init__(self, client_id, client_credential=None, authority=None):
        self.client_id = client_id
        self.client_credential = client_credential
        self.authority = authority
        self.scopes = None
        FakeConfidentialClientApplication.instances.append(self)

    def acquire_token_for_client(self, scopes):
        self.scopes = scopes
        if self.client_id in self.unreachable_clients:
            raise microsoft_graph.requests.exceptions.ConnectionError("login unreachable")
        if self.transient_errors.get(self.client_id):
            self.transient_errors[self.client_id] -= 1
            return {"error": "temporarily_unavailable", "error_description": "AADSTS90033: try again"}
        if self.client_id in self.failing_clients:
            return {"error": "invalid_client", "error_description": "AADSTS7000215: Invalid client secret"}
        return {"access_token": f"token-{self.client_id}", "expires_in": 3599}


class FakeResponse:
    def __init__(self, status_code, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else str(payload or "")

    def json(self):
        if self._payload is None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


class FakeGraphPost:
    """Replaces requests.post; answers per user or from a queue of canned responses."""

    def __init__(self):
        self.calls = []
        self.queue = []
        self.fail_users = {}

    def __call__(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.queue:
            nxt = self.queue.pop(0)
            if isinstance(nxt, Exception):
                raise nxt
            return nxt
        for user, status in self.fail_users.items():
            if f"/users/{user}/" in json["resource"]:
                return FakeResponse(status, {"error": {"code": "InvalidRequest"}},
                                    text='{"error": {"code": "InvalidRequest"}}')
        return FakeResponse(201, {
            "id": f"sub-{len(self.calls)}",
            "resource": json["resource"],
            "expirationDateTime": json["expirationDateTime"],
            "clientState": json["clientState"],
        })


@pytest.fixture
def fake_msal(monkeypatch):
    FakeConfidentialClientApplication.instances = []
    FakeConfidentialClientApplication.failing_clients = set()
    FakeConfidentialClientApplication.unreachable_clients = set()
    FakeConfidentialClientApplication.transient_errors = {}
    monkeypatch.setattr(microsoft_graph, "ConfidentialClientApplication", FakeConfidentialClientApplication)
    return FakeConfidentialClientApplication


@pytest.fixture
def graph_post(monkeypatch):
    fake = FakeGraphPost()
    monkeypatch.setattr(microsoft_graph.requests, "post", fake)
    return fake


@pytest.fixture
def es():
    return FakeElasticsearch()


@pytest.fixture
def graph():
    return MicrosoftGraphService.from_config(vars_of(SuiteConfig))


@pytest.fixture
def store(es):
    return ConnectionRecordStore(es, index_prefix=PREFIX)


@pytest.fixture
def renewer(store, graph):
    return SubscriptionRenewer(store, graph)


@pytest.fixture
def app(renewer):
    app = create_app(SuiteConfig, renewer=renewer)
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def vars_of(config_cls):
    return {name: getattr(config_cls, name) for name in dir(config_cls) if name.isupper()}
