import json
import os
import sys

import httpx
import pytest
from fastapi.testclient import TestClient

# Add the backend to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "film_suite_backend"))

from film_suite import app as app_module
from film_suite.payments import checkout_mode


class FakeChat:
    """Returns queued replies in order; a queued exception is raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def complete(self, system, prompt, model=None, json_mode=True):
        self.calls.append({"system": system, "prompt": prompt, "model": model})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)


class FakeImages:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def queue(self, *results):
        self.results.extend(results)

    def generate(self, prompt, size="1024x1024", **options):
        self.calls.append({"prompt": prompt, "size": size, **options})
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeReplicate:
    def __init__(self):
        self.predictions = []
        self.image_urls = ["https://replicate.delivery/out-0.png"]

    async def create_prediction(self, input, selector, webhook=None):
        self.predictions.append({"input": input, "selector": selector, "webhook": webhook})
        return {"id": f"pred-{len(self.predictions)}", "status": "starting"}

    async def create_and_wait_images(self, input, selector=None):
        self.predictions.append({"input": input, "selector": selector, "webhook": None})
        return list(self.image_urls)


class FakeCheckout:
    def __init__(self):
        self.calls = []

    async def create_session(self, price_id, user_id=None):
        self.calls.append({"price_id": price_id, "user_id": user_id})
        return {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1", "mode": checkout_mode(price_id)}


class FakeStore:
    def __init__(self):
        self.sound_assets = []
        self.users = {}
        self.ok = True

    async def add_sound_asset(self, record):
        self.sound_assets.append(record)
        return self.ok

    async def mark_user_subscribed(self, user_id, customer_id, subscription_type):
        self.users[user_id] = {"stripeCustomerId": customer_id, "subscriptionType": subscription_type}
        return self.ok


class AssetServer:
    """Maps URL -> (status, body) for archive downloads; an Exception entry is raised."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        entry = self.routes.get(url, (404, b"not found"))
        if isinstance(entry, Exception):
            raise entry
        status, body = entry
        return httpx.Response(status, content=body)


@pytest.fixture
def chat():
    return FakeChat()


@pytest.fixture
def images():
    return FakeImages()


@pytest.fixture
def replicate():
    return FakeReplicate()


@pytest.fixture
def checkout():
    return FakeCheckout()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def assets():
    return AssetServer()


@pytest.fixture
def token_verifier():
    tokens = {"good-token": "uid-123"}

    def verify(token):
        from film_suite.errors import AuthError
        if token not in tokens:
            raise AuthError("Invalid Firebase token")
        return tokens[token]

    return verify


@pytest.fixture
def client(chat, images, replicate, checkout, store, assets, token_verifier):
    app = app_module.app

    async def http_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(assets.handler)) as c:
            yield c

    app.dependency_overrides.update({
        app_module.get_chat_client: lambda: chat,
        app_module.get_image_client: lambda: images,
        app_module.get_replicate_client: lambda: replicate,
        app_module.get_checkout_client: lambda: checkout,
        app_module.get_store: lambda: store,
        app_module.get_token_verifier: lambda: token_verifier,
        app_module.get_http_client: http_client,
    })
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
