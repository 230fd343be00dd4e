"""
Caller-owned film session.

The consuming app keeps one ``FilmSession`` per working film and threads it
through these update functions; each returns a new session and leaves the
old one untouched, so there is no shared module-level state to reset.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .normalize import BudgetCategory, Character, Location, SoundAsset, SoundPlan, StoryboardShot


class FilmPackage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    idea: str = ""
    genre: str = ""
    length: str = ""
    logline: str = ""
    synopsis: str = ""
    script: str = ""
    short_script: List[StoryboardShot] = []
    themes: List[str] = []
    characters: List[Character] = []
    budget: List[BudgetCategory] = []
    schedule: List[dict] = []
    locations: List[Location] = []
    sound_plan: Optional[SoundPlan] = None
    sound_assets: List[SoundAsset] = []


class FilmSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    package: FilmPackage = Field(default_factory=FilmPackage)
    storyboard: Dict[int, List[StoryboardShot]] = {}
    last_request_id: str = ""

    def export_payload(self) -> dict:
        """The filmPackage body expected by /export, storyboard flattened in scene order."""
        payload = self.package.model_dump(by_alias=True)
        payload["storyboard"] = [
            shot.dump() for scene in sorted(self.storyboard) for shot in self.storyboard[scene]
        ]
        return payload


def _with_package(session: FilmSession, request_id: str = None, **changes) -> FilmSession:
    package = session.package.model_copy(update=changes)
    return session.model_copy(update={
        "package": package,
        "last_request_id": request_id or session.last_request_id,
    })


def scenes_from_shots(shots: List[StoryboardShot]) -> Dict[int, List[StoryboardShot]]:
    """Group shots into scenes, numbered by the order each scene first appears."""
    storyboard: Dict[int, List[StoryboardShot]] = {}
    order: Dict[str, int] = {}
    for shot in shots:
        index = order.setdefault(shot.scene, len(order))
        storyboard.setdefault(index, []).append(shot)
    return storyboard


def with_package(session: FilmSession, result: dict, request_id: str = None) -> FilmSession:
    """Replace the package with a /generate result. Earlier partial results are dropped.

    The storyboard starts from the package's short script.
    """
    package = FilmPackage.model_validate(result)
    return FilmSession(
        package=package,
        storyboard=scenes_from_shots(package.short_script),
        last_request_id=request_id or session.last_request_id,
    )


def with_characters(session: FilmSession, characters: List[dict], request_id: str = None) -> FilmSession:
    return _with_package(session, request_id,
                         characters=[Character.model_validate(c) for c in characters])


def with_budget(session: FilmSession, categories: List[dict], request_id: str = None) -> FilmSession:
    return _with_package(session, request_id,
                         budget=[BudgetCategory.model_validate(c) for c in categories])


def with_schedule(session: FilmSession, schedule: List[dict], request_id: str = None) -> FilmSession:
    return _with_package(session, request_id, schedule=list(schedule))


def with_locations(session: FilmSession, locations: List[dict], request_id: str = None) -> FilmSession:
    return _with_package(session, request_id,
                         locations=[Location.model_validate(l) for l in locations])


def with_sound_plan(session: FilmSession, plan: dict, request_id: str = None) -> FilmSession:
    return _with_package(session, request_id, sound_plan=SoundPlan.model_validate(plan))


def with_sound_assets(session: FilmSession, assets: List[dict], request_id: str = None) -> FilmSession:
    return _with_package(session, request_id,
                         sound_assets=[SoundAsset.model_validate(a) for a in assets])


def attach_portrait(session: FilmSession, name: str, image_url: str,
                    visual_description: str = "") -> FilmSession:
    """Second pass for one character; unknown names leave the session unchanged."""
    characters = []
    for c in session.package.characters:
        if c.name == name:
            update = {"image_url": image_url}
            if visual_description:
                update["visual_description"] = visual_description
            c = c.model_copy(update=update)
        characters.append(c)
    return _with_package(session, characters=characters)


def attach_audio(session: FilmSession, name: str, audio_url: str) -> FilmSession:
    assets = [
        a.model_copy(update={"audio_url": audio_url}) if a.name == name else a
        for a in session.package.sound_assets
    ]
    return _with_package(session, sound_assets=assets)


def with_storyboard_scene(session: FilmSession, scene_index: int, shots: List[dict]) -> FilmSession:
    storyboard = dict(session.storyboard)
    storyboard[scene_index] = [StoryboardShot.model_validate(s) for s in shots]
    return session.model_copy(update={"storyboard": storyboard})


def attach_frame_image(session: FilmSession, scene_index: int, shot_number: str, image_url: str) -> FilmSession:
    shots = session.storyboard.get(scene_index)
    if not shots:
        return session
    updated = [
        s.model_copy(update={"image_url": image_url}) if s.shot_number == str(shot_number) else s
        for s in shots
    ]
    storyboard = dict(session.storyboard)
    storyboard[scene_index] = updated
    return session.model_copy(update={"storyboard": storyboard})


def clear_storyboard(session: FilmSession) -> FilmSession:
    return session.model_copy(update={"storyboard": {}})
