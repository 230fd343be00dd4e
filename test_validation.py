import pytest

PROVIDER_ROUTES = [
    ("/budget", {"scriptLength": "5 min"}, "movieGenre is required."),
    ("/budget", {"movieGenre": "   ", "scriptLength": "5 min"}, "movieGenre is required."),
    ("/locations", {"script": "INT. KITCHEN - DAY"}, "genre is required."),
    ("/schedule", {"script": "INT. KITCHEN - DAY"}, "scriptLength is required."),
    ("/sound", {"movieIdea": "A heist on the moon"}, "movieGenre is required."),
    ("/sound", {"genre": "noir"}, "script is required."),
    ("/characters", {"step": "generate-characters", "genre": "drama"}, "scriptContent is required."),
    ("/characters", {"step": "generate-portrait", "character": {"name": "Ada"}}, "character.description is required."),
    ("/characters", {"step": "summon-cast"}, "Invalid step."),
    ("/characters", {"scriptContent": "x", "genre": "y"}, "Invalid step."),
    ("/storyboard", {"step": "generate-frame-image"}, "imagePrompt is required."),
    ("/storyboard", {"step": "generate-shots", "scene": "A chase", "genre": "action", "shotCount": 0},
     "shotCount: Input should be greater than or equal to 1"),
    ("/generate", {"movieIdea": "x", "movieGenre": "comedy"}, "scriptLength is required."),
    ("/stable-diffusion", {"prompt": ""}, "prompt is required."),
    ("/concept", {"movieGenre": "noir"}, "script is required."),
    ("/openai-image", {}, "prompt is required."),
    ("/create-checkout-session", {}, "priceId is required."),
]


@pytest.mark.parametrize("path,body,message", PROVIDER_ROUTES)
def test_invalid_body_is_rejected_before_any_provider_call(client, chat, images, replicate, checkout,
                                                          path, body, message):
    resp = client.post(path, json=body)
    assert resp.status_code == 400
    assert resp.json()["error"] == message
    assert chat.calls == []
    assert images.calls == []
    assert replicate.predictions == []
    assert checkout.calls == []


@pytest.mark.parametrize("path,body", [
    ("/download-characters", {"characters": []}),
    ("/download-sound", {"soundAssets": []}),
    ("/download-storyboard", {"storyboard": []}),
    ("/export", {"selectedOptions": [], "filmPackage": {}}),
])
def test_empty_download_lists_are_rejected(client, assets, path, body):
    resp = client.post(path, json=body)
    assert resp.status_code == 400
    assert "at least one item" in resp.json()["error"]
    assert assets.requests == []


def test_unknown_export_option(client):
    resp = client.post("/export", json={"selectedOptions": ["poster"], "filmPackage": {}})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid value for selectedOptions.0."


def test_malformed_json_body(client, chat):
    resp = client.post("/budget", content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid JSON body."
    assert chat.calls == []


def test_non_object_body_for_union_route(client):
    resp = client.post("/characters", json=["generate-characters"])
    assert resp.status_code == 400
    assert resp.json()["error"] == "Request body must be a JSON object."


def test_error_payload_carries_request_id_and_no_store(client):
    resp = client.post("/budget", json={})
    assert resp.status_code == 400
    rid = resp.json()["requestId"]
    assert len(rid) == 8
    assert resp.headers["X-Request-ID"] == rid
    assert resp.headers["Cache-Control"] == "no-store"


def test_each_request_gets_its_own_id(client):
    first = client.post("/budget", json={}).json()["requestId"]
    second = client.post("/budget", json={}).json()["requestId"]
    assert first != second
