"""
Turns untrusted provider output into fully populated, typed payloads.

Provider text is parsed once here (``extract_json``) and every entity is
validated into a model whose fields always exist: numbers default to 0,
sequences to [], strings to "". Responses whose primary collection is empty
(or, for locations, nothing but template names) are rejected instead of
being passed on as a success.
"""
import json
import logging
import math
import re
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from .errors import EmptyResultError, MalformedResponseError

logger = logging.getLogger(__name__)

Number = Union[int, float]

SOUND_TYPES = ("music", "sfx", "dialogue", "ambient")

PLACEHOLDER_LOCATION_PATTERNS = ("primary location", "secondary location", "climax location")
PLACEHOLDER_LOCATION_NAMES = ("location", "unknown location")

_FENCE_OPEN = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")
_DURATION = re.compile(r"^\s*(\d+)(?::(\d{1,2}))?\s*$")

MIN_SOUND_DURATION = "00:10"
FEATURE_MIN_SOUND_DURATION = "00:30"


def strip_code_fences(text: str) -> str:
    t = (text or "").strip()
    t = _FENCE_OPEN.sub("", t)
    t = _FENCE_CLOSE.sub("", t)
    return t.strip()


def looks_truncated(text: str) -> bool:
    t = (text or "").strip()
    if not t:
        return False
    if t.startswith("{") and not t.endswith("}"):
        return True
    if t.startswith("[") and not t.endswith("]"):
        return True
    return t.count("{") > t.count("}") or t.count("[") > t.count("]")


def extract_json(text: str, tag: str = "json") -> Any:
    """Parse provider text that may be wrapped in fences or surrounded by prose."""
    cleaned = strip_code_fences(text)
    if not cleaned:
        logger.error(f"Empty provider response [{tag}]")
        raise MalformedResponseError()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    # Brace counting ignores string quoting, so it is only a hint once parsing has failed.
    if looks_truncated(cleaned):
        logger.error(f"Provider JSON looks truncated [{tag}] len={len(cleaned)}: {cleaned[-500:]}")
        raise MalformedResponseError()
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if 0 <= start < end:
        try:
            return json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError:
            pass
    logger.error(f"Could not parse provider JSON [{tag}] len={len(cleaned)}: {cleaned[:2000]}")
    raise MalformedResponseError()


# --- field coercion ---------------------------------------------------------

def as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def as_label(value: Any) -> str:
    # Shot and scene numbers arrive as either 3 or "3A".
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    return as_str(value)


def as_number(value: Any) -> Number:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return 0
        return parsed if math.isfinite(parsed) else 0
    return 0


def as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        if isinstance(item, str):
            out.append(item)
        elif isinstance(item, (int, float)) and not isinstance(item, bool):
            out.append(str(item))
    return out


def format_duration(seconds: Number) -> str:
    total = max(int(seconds), 0)
    return f"{total // 60:02d}:{total % 60:02d}"


def duration_seconds(value: str) -> Optional[int]:
    """Seconds in an "MM:SS" (or bare seconds) duration, None when unreadable."""
    m = _DURATION.match(value or "")
    if not m:
        return None
    if m.group(2) is None:
        return int(m.group(1))
    return int(m.group(1)) * 60 + int(m.group(2))


def as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def as_dict_list(value: Any) -> List[dict]:
    return [item for item in as_list(value) if isinstance(item, dict)]


class Normalized(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def dump(self) -> dict:
        return self.model_dump(by_alias=True)


class BudgetCategory(Normalized):
    name: str = ""
    amount: Number = 0
    percentage: Number = 0
    items: List[str] = []
    tips: List[str] = []
    alternatives: List[str] = []

    @field_validator("name", mode="before")
    @classmethod
    def coerce_strings(cls, value):
        return as_str(value)

    @field_validator("amount", "percentage", mode="before")
    @classmethod
    def coerce_numbers(cls, value):
        return as_number(value)

    @field_validator("items", "tips", "alternatives", mode="before")
    @classmethod
    def coerce_lists(cls, value):
        return as_str_list(value)


class Location(Normalized):
    name: str = ""
    type: str = ""
    description: str = ""
    mood: str = ""
    color_palette: str = ""
    props_or_features: List[str] = []
    scenes: List[Any] = []
    rating: Number = 0
    low_budget_tips: str = ""
    high_budget_opportunities: str = ""

    @field_validator(
        "name", "type", "description", "mood", "color_palette",
        "low_budget_tips", "high_budget_opportunities", mode="before",
    )
    @classmethod
    def coerce_strings(cls, value):
        return as_str(value)

    @field_validator("props_or_features", mode="before")
    @classmethod
    def coerce_features(cls, value):
        return as_str_list(value)

    @field_validator("scenes", mode="before")
    @classmethod
    def coerce_scenes(cls, value):
        return as_list(value)

    @field_validator("rating", mode="before")
    @classmethod
    def coerce_rating(cls, value):
        return as_number(value)


class Character(Normalized):
    name: str = ""
    role: str = ""
    description: str = ""
    traits: List[str] = []
    skin_color: str = ""
    hair_color: str = ""
    clothing_color: str = ""
    mood: str = ""
    image_url: str = ""
    visual_description: str = ""

    @field_validator(
        "name", "role", "description", "skin_color", "hair_color",
        "clothing_color", "mood", "image_url", "visual_description", mode="before",
    )
    @classmethod
    def coerce_strings(cls, value):
        return as_str(value)

    @field_validator("traits", mode="before")
    @classmethod
    def coerce_traits(cls, value):
        return as_str_list(value)


class SoundAsset(Normalized):
    name: str = ""
    type: Literal["music", "sfx", "dialogue", "ambient"] = "sfx"
    duration: str = ""
    description: str = ""
    scenes: List[Any] = []
    audio_url: str = ""

    @field_validator("name", "description", "audio_url", mode="before")
    @classmethod
    def coerce_strings(cls, value):
        return as_str(value)

    @field_validator("duration", mode="before")
    @classmethod
    def coerce_duration(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return format_duration(as_number(value))
        return as_str(value)

    @field_validator("scenes", mode="before")
    @classmethod
    def coerce_scenes(cls, value):
        return as_list(value)

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, value):
        kind = as_str(value).strip().lower()
        return kind if kind in SOUND_TYPES else "sfx"


class NotableMoment(Normalized):
    scene: str = ""
    sound_design: str = ""

    @field_validator("scene", "sound_design", mode="before")
    @classmethod
    def coerce_strings(cls, value):
        return as_str(value)


class SoundPlan(Normalized):
    overall_style: str = ""
    music_genres: List[str] = []
    key_effects: List[str] = []
    notable_moments: List[NotableMoment] = []

    @field_validator("overall_style", mode="before")
    @classmethod
    def coerce_style(cls, value):
        return as_str(value)

    @field_validator("music_genres", mode="before")
    @classmethod
    def unique_genres(cls, value):
        seen = []
        for genre in as_str_list(value):
            if genre not in seen:
                seen.append(genre)
        return seen

    @field_validator("key_effects", mode="before")
    @classmethod
    def coerce_effects(cls, value):
        return as_str_list(value)

    @field_validator("notable_moments", mode="before")
    @classmethod
    def coerce_moments(cls, value):
        return as_dict_list(value)


class StoryboardShot(Normalized):
    scene: str = ""
    shot_number: str = ""
    description: str = ""
    camera_angle: str = ""
    camera_movement: str = ""
    lens: str = ""
    lighting: str = ""
    duration: str = ""
    dialogue: str = ""
    sound_effects: str = ""
    notes: str = ""
    image_prompt: str = ""
    image_url: str = ""
    coverage_shots: List["StoryboardShot"] = []

    @field_validator("scene", "shot_number", mode="before")
    @classmethod
    def coerce_labels(cls, value):
        return as_label(value)

    @field_validator(
        "description", "camera_angle", "camera_movement", "lens", "lighting", "duration",
        "dialogue", "sound_effects", "notes", "image_prompt", "image_url", mode="before",
    )
    @classmethod
    def coerce_strings(cls, value):
        return as_str(value)

    @field_validator("coverage_shots", mode="before")
    @classmethod
    def coerce_coverage(cls, value):
        return as_dict_list(value)


class ScriptPackage(Normalized):
    logline: str = ""
    synopsis: str = ""
    script: str = ""
    short_script: List[StoryboardShot] = []
    themes: List[str] = []

    @field_validator("logline", "synopsis", "script", mode="before")
    @classmethod
    def coerce_strings(cls, value):
        return as_str(value)

    @field_validator("short_script", mode="before")
    @classmethod
    def coerce_shots(cls, value):
        return as_dict_list(value)

    @field_validator("themes", mode="before")
    @classmethod
    def coerce_themes(cls, value):
        if isinstance(value, str):
            return [t.strip() for t in value.split(",") if t.strip()]
        return as_str_list(value)


class VisualReference(Normalized):
    description: str = ""
    image_url: str = ""

    @field_validator("description", "image_url", mode="before")
    @classmethod
    def coerce_strings(cls, value):
        return as_str(value)


class Concept(Normalized):
    visual_style: str = ""
    color_palette: str = ""
    camera_techniques: str = ""
    lighting_approach: str = ""
    thematic_symbolism: str = ""
    production_values: str = ""

    @field_validator(
        "visual_style", "color_palette", "camera_techniques", "lighting_approach",
        "thematic_symbolism", "production_values", mode="before",
    )
    @classmethod
    def coerce_strings(cls, value):
        return as_str(value)


class ConceptPackage(Normalized):
    concept: Concept = Concept()
    visual_references: List[VisualReference] = []

    @field_validator("concept", mode="before")
    @classmethod
    def coerce_concept(cls, value):
        return value if isinstance(value, dict) else {}

    @field_validator("visual_references", mode="before")
    @classmethod
    def coerce_references(cls, value):
        # Bare strings are descriptions without a picture.
        refs = []
        for item in as_list(value):
            if isinstance(item, str):
                refs.append({"description": item})
            elif isinstance(item, dict):
                if "imageUrl" not in item and "url" in item:
                    item = {**item, "imageUrl": item["url"]}
                refs.append(item)
        return refs


# --- per-task normalisers ---------------------------------------------------

def _collection(data: Any, *keys: str) -> List[dict]:
    """Find the primary collection whether the provider wrapped it in an object or not."""
    if isinstance(data, list):
        return as_dict_list(data)
    if not isinstance(data, dict):
        raise MalformedResponseError("AI returned unexpected JSON structure.")
    for key in keys:
        if key in data:
            return as_dict_list(data[key])
    return []


def is_placeholder_location(name: str) -> bool:
    n = (name or "").strip().lower()
    return any(p in n for p in PLACEHOLDER_LOCATION_PATTERNS) or n in PLACEHOLDER_LOCATION_NAMES


def normalize_budget(data: Any) -> List[BudgetCategory]:
    categories = [BudgetCategory.model_validate(c) for c in _collection(data, "categories")]
    if not categories:
        raise EmptyResultError("AI returned no budget categories.")
    return categories


def normalize_locations(data: Any) -> List[Location]:
    raw = _collection(data, "locations")
    if not raw:
        raise EmptyResultError("AI returned no locations.")
    locations = [Location.model_validate(loc) for loc in raw]
    # Nameless rows are useless to the UI.
    locations = [loc for loc in locations if loc.name.strip()]
    if not locations:
        raise EmptyResultError("AI returned invalid locations after normalization.")
    if all(is_placeholder_location(loc.name) for loc in locations):
        raise EmptyResultError(
            "AI returned only placeholder locations. The script may be too short or vague to suggest real places."
        )
    return locations


def normalize_schedule(data: Any) -> list:
    if isinstance(data, dict):
        schedule = data.get("schedule")
    else:
        schedule = data
    if not isinstance(schedule, list) or not schedule:
        raise EmptyResultError("AI returned an empty shooting schedule.")
    return schedule


def normalize_characters(data: Any) -> List[Character]:
    characters = [Character.model_validate(c) for c in _collection(data, "characters")]
    characters = [c for c in characters if c.name.strip()]
    if not characters:
        raise EmptyResultError("AI returned no characters. The script may not contain named roles.")
    return characters


def normalize_sound_plan(data: Any) -> SoundPlan:
    if not isinstance(data, dict) or not isinstance(data.get("soundPlan"), dict):
        raise MalformedResponseError("AI returned unexpected JSON structure.")
    return SoundPlan.model_validate(data["soundPlan"])


def clamp_duration(duration: str, minimum: str = MIN_SOUND_DURATION) -> str:
    seconds = duration_seconds(duration)
    if seconds is None or seconds < duration_seconds(minimum):
        return minimum
    return format_duration(seconds)


def normalize_sound_assets(data: Any, min_duration: str = MIN_SOUND_DURATION) -> List[SoundAsset]:
    assets = [SoundAsset.model_validate(a) for a in _collection(data, "soundAssets", "assets")]
    if not assets:
        raise EmptyResultError("AI returned no sound assets.")
    return [a.model_copy(update={"duration": clamp_duration(a.duration, min_duration)}) for a in assets]


def normalize_shots(data: Any) -> List[StoryboardShot]:
    shots = [StoryboardShot.model_validate(s) for s in _collection(data, "shots", "storyboard")]
    if not shots:
        raise EmptyResultError("AI returned no storyboard shots.")
    return shots


def normalize_concept(data: Any) -> ConceptPackage:
    if not isinstance(data, dict):
        raise MalformedResponseError("AI returned unexpected JSON structure.")
    package = ConceptPackage.model_validate(data)
    if not any(v.strip() for v in package.concept.model_dump().values()):
        raise EmptyResultError("AI returned an empty concept.")
    return package


def normalize_script(data: Any) -> ScriptPackage:
    if not isinstance(data, dict):
        raise MalformedResponseError("AI returned unexpected JSON structure.")
    package = ScriptPackage.model_validate(data)
    if not package.script.strip():
        raise EmptyResultError("AI returned an empty script.")
    return package
