import io
import json
import zipfile

import httpx
from PIL import Image

from film_suite.archive import safe_filename


def _zip(resp):
    assert resp.headers["content-type"] == "application/zip"
    return zipfile.ZipFile(io.BytesIO(resp.content))


def _image_bytes(fmt):
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), (200, 30, 30)).save(buf, format=fmt)
    return buf.getvalue()


def test_safe_filename():
    assert safe_filename("Dr. Mara O'Neil") == "dr_mara_o_neil"
    assert safe_filename("!!!") == "untitled"
    assert safe_filename("") == "untitled"


def test_sound_archive_skips_failed_downloads(client, assets):
    assets.routes["https://cdn.example/foghorn.mp3"] = (404, b"")
    assets.routes["https://cdn.example/wind.wav"] = httpx.ConnectError("connection refused")
    assets.routes["https://cdn.example/theme.mp3"] = (200, b"ID3-theme")
    resp = client.post("/download-sound", json={"soundAssets": [
        {"name": "Foghorn", "type": "sfx", "audioUrl": "https://cdn.example/foghorn.mp3"},
        {"name": "Wind", "type": "ambient", "audioUrl": "https://cdn.example/wind.wav"},
        {"name": "Main Theme", "type": "music", "audioUrl": "https://cdn.example/theme.mp3"},
    ]})
    assert resp.status_code == 200
    archive = _zip(resp)
    assert sorted(archive.namelist()) == ["audio_files/3_main_theme.mp3", "sound_design.json"]
    assert archive.read("audio_files/3_main_theme.mp3") == b"ID3-theme"
    manifest = json.loads(archive.read("sound_design.json"))
    assert manifest["totalAssets"] == 3
    assert manifest["breakdown"] == {"music": 1, "sfx": 1, "dialogue": 0, "ambient": 1}
    assert len(resp.headers["X-Request-ID"]) == 8


def test_sound_archive_with_no_audio_is_400(client, assets):
    resp = client.post("/download-sound", json={"soundAssets": [
        {"name": "Foghorn", "audioUrl": "https://cdn.example/missing.mp3"},
        {"name": "Silence"},
    ]})
    assert resp.status_code == 400
    assert "No audio files" in resp.json()["error"]


def test_character_archive_without_portraits_still_succeeds(client, assets):
    resp = client.post("/download-characters", json={"characters": [
        {"name": "Mara", "role": "Lead", "imageUrl": "https://cdn.example/gone.png"},
        {"name": "Stranger"},
    ]})
    assert resp.status_code == 200
    archive = _zip(resp)
    assert archive.namelist() == ["characters.json"]
    manifest = json.loads(archive.read("characters.json"))
    assert manifest["totalCharacters"] == 2
    assert [c["name"] for c in manifest["characters"]] == ["Mara", "Stranger"]


def test_character_portraits_are_stored_as_png(client, assets):
    assets.routes["https://cdn.example/mara.webp"] = (200, _image_bytes("WEBP"))
    resp = client.post("/download-characters", json={"characters": [
        {"name": "Mara", "imageUrl": "https://cdn.example/mara.webp"},
    ]})
    data = _zip(resp).read("character_images/mara_portrait.png")
    assert data.startswith(b"\x89PNG")


def test_duplicate_names_get_suffix(client, assets):
    assets.routes["https://cdn.example/a.png"] = (200, _image_bytes("PNG"))
    assets.routes["https://cdn.example/b.png"] = (200, _image_bytes("PNG"))
    resp = client.post("/download-characters", json={"characters": [
        {"name": "Guard", "imageUrl": "https://cdn.example/a.png"},
        {"name": "Guard", "imageUrl": "https://cdn.example/b.png"},
    ]})
    names = _zip(resp).namelist()
    assert "character_images/guard_portrait.png" in names
    assert "character_images/guard_portrait_2.png" in names


def test_storyboard_archive(client, assets):
    assets.routes["https://cdn.example/1a.png"] = (200, b"main")
    assets.routes["https://cdn.example/1b.png"] = (200, b"coverage")
    resp = client.post("/download-storyboard", json={"storyboard": [
        {
            "shotNumber": "1A",
            "description": "Lighthouse in the storm",
            "imageUrl": "https://cdn.example/1a.png",
            "coverageShots": [{"shotNumber": "1B", "imageUrl": "https://cdn.example/1b.png"}],
        },
        {"description": "No image yet"},
    ]})
    archive = _zip(resp)
    assert sorted(archive.namelist()) == [
        "storyboard.json",
        "storyboard_images/frame_1A_main.png",
        "storyboard_images/frame_1B.png",
    ]
    manifest = json.loads(archive.read("storyboard.json"))
    assert manifest["totalFrames"] == 2
    assert manifest["totalCoverageShots"] == 1
    assert manifest["frames"][1]["shotNumber"] == "2"


def test_export_selected_options(client, assets):
    package = {
        "script": "FADE IN:",
        "budget": [{"name": "Cast", "amount": 500}],
        "characters": [{"name": "Mara"}],
    }
    resp = client.post("/export", json={"selectedOptions": ["script", "budget"], "filmPackage": package})
    archive = _zip(resp)
    assert sorted(archive.namelist()) == ["budget.json", "export_summary.txt", "script.txt"]
    assert archive.read("script.txt") == b"FADE IN:"
    assert json.loads(archive.read("budget.json")) == package["budget"]
    summary = archive.read("export_summary.txt").decode()
    assert "Budget:" in summary
    assert assets.requests == []


def test_export_complete_includes_images(client, assets):
    assets.routes["https://cdn.example/mara.png"] = (200, _image_bytes("PNG"))
    package = {"characters": [{"name": "Mara", "imageUrl": "https://cdn.example/mara.png"}], "storyboard": []}
    resp = client.post("/export", json={"selectedOptions": ["complete"], "filmPackage": package})
    names = _zip(resp).namelist()
    assert "complete_package.json" in names
    assert "images/character_mara.png" in names


def test_sound_archive_where_every_download_fails_is_400(client, assets):
    assets.routes["https://cdn.example/foghorn.mp3"] = (500, b"")
    assets.routes["https://cdn.example/wind.wav"] = httpx.ConnectError("connection refused")
    assets.routes["https://cdn.example/theme.mp3"] = (404, b"")
    resp = client.post("/download-sound", json={"soundAssets": [
        {"name": "Foghorn", "type": "sfx", "audioUrl": "https://cdn.example/foghorn.mp3"},
        {"name": "Wind", "type": "ambient", "audioUrl": "https://cdn.example/wind.wav"},
        {"name": "Main Theme", "type": "music", "audioUrl": "https://cdn.example/theme.mp3"},
    ]})
    assert resp.status_code == 400
    assert "No audio files" in resp.json()["error"]
    assert len(assets.requests) == 3
    assert resp.headers["content-type"].startswith("application/json")
