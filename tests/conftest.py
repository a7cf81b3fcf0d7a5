# tests/conftest.py
"""Shared fixtures: a local account, remote accounts and a fake fediverse."""

import json
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Tuple

import httpx
import pytest

from ono.activitypub.actor import Account
from ono.activitypub.signatures import sign_request
from ono.config import NodeConfig
from ono.node import Node

LOCAL_DOMAIN = "local.example"


class FakeFediverse:
    """
    Remote servers behind an httpx.MockTransport.

    Serves registered documents (actors, notes, outboxes) by URL, answers
    webfinger for registered accounts, and records every inbox POST.
    """

    def __init__(self):
        self.documents: Dict[str, Any] = {}
        self.webfingers: Dict[str, Any] = {}
        self.failures: Dict[str, int] = {}
        self.requests: List[httpx.Request] = []
        self.deliveries: List[Tuple[str, Dict[str, Any], Dict[str, str]]] = []

    def add_account(self, account: Account) -> Dict[str, Any]:
        document = account.to_activitypub()
        self.documents[account.id] = document
        self.webfingers[account.handle] = account.webfinger()
        return document

    def add(self, document: Dict[str, Any]) -> Dict[str, Any]:
        self.documents[document["id"]] = document
        return document

    def fail(self, url: str, status: int = 500):
        self.failures[url] = status

    def delivered_to(self, inbox: str) -> List[Dict[str, Any]]:
        return [body for url, body, _ in self.deliveries if url == inbox]

    def requested(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self.failures:
            return httpx.Response(self.failures[url])
        if request.method == "POST":
            self.deliveries.append((url, json.loads(request.content), dict(request.headers)))
            return httpx.Response(202)
        if request.url.path == "/.well-known/webfinger":
            handle = request.url.params.get("resource", "").replace("acct:", "", 1)
            if handle in self.webfingers:
                return httpx.Response(200, json=self.webfingers[handle])
            return httpx.Response(404)
        if url in self.documents:
            return httpx.Response(200, json=self.documents[url])
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def _signed_post(sender: Account, message: Dict[str, Any], path: str = "/api/inbox") -> Tuple[Dict[str, str], bytes]:
    """Headers and body of an inbox delivery from sender to the local node."""
    body = json.dumps(message).encode("utf-8")
    signed = sign_request("post", f"https://{LOCAL_DOMAIN}{path}", sender.private_key, sender.key_id, body=body)
    headers = signed.as_dict()
    headers["Content-Type"] = "application/activity+json"
    return headers, body


@pytest.fixture
def signed_post():
    """Signs inbox deliveries: signed_post(sender, message, path) -> (headers, body)."""
    return _signed_post


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(scope="session")
def account():
    """The local account (key generation is slow, so shared)."""
    return Account.create("alice", LOCAL_DOMAIN, display_name="Alice")


@pytest.fixture(scope="session")
def bob():
    return Account.create("bob", "bob.example")


@pytest.fixture(scope="session")
def carol():
    return Account.create("carol", "carol.example")


@pytest.fixture
def fediverse(bob, carol):
    """Remote servers that know bob and carol."""
    fake = FakeFediverse()
    fake.add_account(bob)
    fake.add_account(carol)
    return fake


@pytest.fixture
def config(data_dir):
    return NodeConfig(username="alice", domain=LOCAL_DOMAIN, data_dir=data_dir, queue_interval=0)


@pytest.fixture
def node(config, account, fediverse):
    """A node whose HTTP traffic goes to the fake fediverse."""
    return Node(config, http=fediverse.client(), account=account)
