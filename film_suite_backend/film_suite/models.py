from pydantic import BaseModel, ConfigDict, Discriminator, Field, StringConstraints, Tag, TypeAdapter
from pydantic.alias_generators import to_camel
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

# Required free-text fields: whitespace-only counts as missing.
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BudgetRequest(RequestModel):
    movie_genre: NonEmptyStr
    script_length: NonEmptyStr
    low_budget_mode: bool = False


class GenerateCharactersRequest(RequestModel):
    step: Literal["generate-characters"]
    script_content: NonEmptyStr
    genre: NonEmptyStr


class CharacterSketch(RequestModel):
    """The subset of a character the portrait prompt is built from."""
    name: NonEmptyStr
    description: NonEmptyStr
    role: str = ""
    mood: str = ""
    skin_color: str = ""
    hair_color: str = ""
    clothing_color: str = ""


class GeneratePortraitRequest(RequestModel):
    step: Literal["generate-portrait"]
    character: CharacterSketch


CharactersRequest = Annotated[
    Union[GenerateCharactersRequest, GeneratePortraitRequest],
    Field(discriminator="step"),
]


class LocationsRequest(RequestModel):
    script: NonEmptyStr
    genre: NonEmptyStr


class ScheduleRequest(RequestModel):
    script: NonEmptyStr
    script_length: NonEmptyStr


class SoundPlanRequest(RequestModel):
    movie_idea: NonEmptyStr
    movie_genre: NonEmptyStr


class SoundAssetsRequest(RequestModel):
    script: NonEmptyStr
    genre: NonEmptyStr
    generate_audio: bool = False
    script_length: str = ""


def _sound_variant(value: Any) -> str:
    if isinstance(value, dict):
        return "plan" if ("movieIdea" in value or "movieGenre" in value) else "assets"
    return "plan" if isinstance(value, SoundPlanRequest) else "assets"


SoundRequest = Annotated[
    Union[Annotated[SoundPlanRequest, Tag("plan")], Annotated[SoundAssetsRequest, Tag("assets")]],
    Discriminator(_sound_variant),
]


class FrameImageRequest(RequestModel):
    step: Literal["generate-frame-image"]
    image_prompt: NonEmptyStr
    shot_number: Union[str, int] = ""


class ShotListRequest(RequestModel):
    step: Literal["generate-shots"]
    scene: NonEmptyStr
    genre: NonEmptyStr
    shot_count: int = Field(3, ge=1, le=8)


StoryboardRequest = Annotated[
    Union[FrameImageRequest, ShotListRequest],
    Field(discriminator="step"),
]


class DownloadCharactersRequest(RequestModel):
    characters: List[Dict[str, Any]] = Field(min_length=1)


class DownloadSoundRequest(RequestModel):
    sound_assets: List[Dict[str, Any]] = Field(min_length=1)


class DownloadStoryboardRequest(RequestModel):
    storyboard: List[Dict[str, Any]] = Field(min_length=1)


ExportOption = Literal["script", "storyboard", "budget", "schedule", "characters", "locations", "complete"]


class ExportRequest(RequestModel):
    selected_options: List[ExportOption] = Field(min_length=1)
    film_package: Dict[str, Any]


class CheckoutRequest(RequestModel):
    price_id: NonEmptyStr


class GenerateRequest(RequestModel):
    movie_idea: NonEmptyStr
    movie_genre: NonEmptyStr
    script_length: NonEmptyStr


class ConceptRequest(RequestModel):
    script: NonEmptyStr
    movie_genre: str = ""


class StableDiffusionRequest(RequestModel):
    prompt: NonEmptyStr
    width: int = Field(512, ge=64, le=2048)
    height: int = Field(512, ge=64, le=2048)
    num_outputs: int = Field(1, ge=1, le=4)
    seed: Optional[int] = None


class ImagePromptRequest(RequestModel):
    prompt: NonEmptyStr


CHARACTERS_REQUEST = TypeAdapter(CharactersRequest)
SOUND_REQUEST = TypeAdapter(SoundRequest)
STORYBOARD_REQUEST = TypeAdapter(StoryboardRequest)
