import pytest
from pydantic import ValidationError

from film_suite.session import (
    FilmSession,
    attach_audio,
    attach_frame_image,
    attach_portrait,
    clear_storyboard,
    with_budget,
    with_characters,
    with_package,
    with_sound_assets,
    with_storyboard_scene,
)


@pytest.fixture
def session():
    s = with_package(FilmSession(), {
        "idea": "A keeper hides a stranger",
        "genre": "thriller",
        "length": "5 min",
        "script": "FADE IN:",
        "shortScript": [
            {"scene": "Lamp room", "shotNumber": "1A", "description": "Mara trims the lamp."},
            {"scene": "Shore", "shotNumber": "2A"},
        ],
        "characters": [{"name": "Mara"}, {"name": "Stranger"}],
    }, request_id="abcd1234")
    return s


def test_with_package_reads_generate_result(session):
    assert [s.description for s in session.package.short_script] == ["Mara trims the lamp.", ""]
    assert [c.name for c in session.package.characters] == ["Mara", "Stranger"]
    assert session.last_request_id == "abcd1234"


def test_updates_return_new_sessions(session):
    updated = attach_portrait(session, "Mara", "https://img.example/mara.png", "Weathered keeper")
    assert updated is not session
    assert session.package.characters[0].image_url == ""
    assert updated.package.characters[0].image_url == "https://img.example/mara.png"
    assert updated.package.characters[0].visual_description == "Weathered keeper"
    assert updated.package.characters[1].image_url == ""


def test_sessions_are_frozen(session):
    with pytest.raises(ValidationError):
        session.last_request_id = "zzz"
    with pytest.raises(ValidationError):
        session.package.script = "rewritten"


def test_unknown_name_is_a_noop(session):
    updated = attach_portrait(session, "Nobody", "https://img.example/x.png")
    assert updated.package.characters == session.package.characters


def test_new_package_drops_earlier_results(session):
    s = with_budget(session, [{"name": "Cast", "amount": 100}])
    s = with_package(s, {"idea": "Something else", "script": "FADE IN:"})
    assert s.package.budget == []
    assert s.package.characters == []


def test_characters_and_audio(session):
    s = with_characters(session, [{"name": "Ada", "traits": ["calm", 3]}], request_id="ffff0000")
    assert s.package.characters[0].traits == ["calm", "3"]
    assert s.last_request_id == "ffff0000"
    s = with_sound_assets(s, [{"name": "Foghorn", "type": "sfx"}])
    s = attach_audio(s, "Foghorn", "https://cdn.example/foghorn.wav")
    assert s.package.sound_assets[0].audio_url == "https://cdn.example/foghorn.wav"


def test_package_seeds_storyboard_from_short_script(session):
    assert sorted(session.storyboard) == [0, 1]
    assert [s.shot_number for s in session.storyboard[0]] == ["1A"]
    assert [s.shot_number for s in session.storyboard[1]] == ["2A"]
    s = attach_frame_image(session, 1, "2A", "https://img.example/shore.png")
    assert s.export_payload()["storyboard"][1]["imageUrl"] == "https://img.example/shore.png"


def test_storyboard_scenes_export_in_order(session):
    s = with_storyboard_scene(clear_storyboard(session), 2, [{"shotNumber": "2A"}])
    s = with_storyboard_scene(s, 0, [{"shotNumber": "1"}, {"shotNumber": "2"}])
    s = attach_frame_image(s, 0, 2, "https://img.example/f2.png")
    payload = s.export_payload()
    assert [f["shotNumber"] for f in payload["storyboard"]] == ["1", "2", "2A"]
    assert payload["storyboard"][1]["imageUrl"] == "https://img.example/f2.png"
    assert payload["shortScript"][0]["description"] == "Mara trims the lamp."
    assert sorted(session.storyboard) == [0, 1]
    assert clear_storyboard(s).storyboard == {}
