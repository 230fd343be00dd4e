"""
One function per feature: build the prompt, call the provider, normalise.

Handlers take already-validated request models and explicit provider
clients, and raise ``FilmSuiteError`` subclasses; turning those into HTTP
responses is the app's job.
"""
import json
import logging
import math
import os
import re
import time
from typing import Any, Optional

from .errors import ConfigurationError, ContentPolicyError, ProviderError, ValidationError
from .llm import ChatClient, ImageClient
from .models import (
    BudgetRequest,
    ConceptRequest,
    FrameImageRequest,
    GenerateCharactersRequest,
    GeneratePortraitRequest,
    ImagePromptRequest,
    LocationsRequest,
    ScheduleRequest,
    ShotListRequest,
    SoundAssetsRequest,
    SoundPlanRequest,
    StableDiffusionRequest,
)
from .normalize import (
    FEATURE_MIN_SOUND_DURATION,
    MIN_SOUND_DURATION,
    extract_json,
    normalize_budget,
    normalize_characters,
    normalize_concept,
    normalize_locations,
    normalize_schedule,
    normalize_script,
    normalize_shots,
    normalize_sound_assets,
    normalize_sound_plan,
)
from .payments import CheckoutClient
from .prompts import (
    BUDGET_SYSTEM,
    CHARACTERS_SYSTEM,
    CONCEPT_SYSTEM,
    LOCATIONS_SYSTEM,
    SCHEDULE_SYSTEM,
    SCRIPT_SYSTEM,
    SOUND_SYSTEM,
    STORYBOARD_SYSTEM,
    build_budget_prompt,
    build_characters_prompt,
    build_concept_prompt,
    build_fallback_frame_prompt,
    build_frame_prompt,
    build_locations_prompt,
    build_portrait_prompt,
    build_schedule_prompt,
    build_script_prompt,
    build_shots_prompt,
    build_sound_assets_prompt,
    build_sound_plan_prompt,
    build_visual_description,
    normalize_script_length,
    truncate_prompt,
)
from .replicate_client import ReplicateClient, audio_model_selector, output_urls
from .settings import APP_ENV, OPENAI_MODEL_SCRIPT, get_secret
from .store import DocumentStore

logger = logging.getLogger(__name__)

PORTRAIT_SIZE = "1024x1792"
FRAME_SIZE = "1792x1024"
AUDIO_CLIP_SECONDS = 8


def _complete_json(chat: ChatClient, system: str, prompt: str, tag: str, request_id: str,
                   model: str = None) -> Any:
    logger.info(f"[{request_id}] Calling chat provider for {tag}")
    text = chat.complete(system, prompt, model=model)
    logger.info(f"[{request_id}] {tag} raw response: {len(text)} chars")
    return extract_json(text, tag=f"{request_id}:{tag}")


def generate_script(idea: str, genre: str, length: str, chat: ChatClient, request_id: str) -> dict:
    length = normalize_script_length(length)
    prompt = build_script_prompt(idea, genre, length)
    data = _complete_json(chat, SCRIPT_SYSTEM, prompt, "script", request_id, model=OPENAI_MODEL_SCRIPT)
    package = normalize_script(data)
    logger.info(f"[{request_id}] Script generated: {len(package.script)} chars, "
                f"{len(package.short_script)} storyboard shots, themes={package.themes}")
    return package.dump()


def generate_budget(req: BudgetRequest, chat: ChatClient, request_id: str) -> dict:
    prompt = build_budget_prompt(req.movie_genre, req.script_length, req.low_budget_mode)
    categories = normalize_budget(_complete_json(chat, BUDGET_SYSTEM, prompt, "budget", request_id))
    if req.low_budget_mode:
        # Halves round up.
        categories = [c.model_copy(update={"amount": math.floor(c.amount * 0.5 + 0.5)}) for c in categories]
        logger.info(f"[{request_id}] Low-budget mode: amounts halved")
    logger.info(f"[{request_id}] Budget categories: {[c.name for c in categories]}")
    return {"categories": [c.dump() for c in categories]}


def generate_characters(req: GenerateCharactersRequest, chat: ChatClient, request_id: str) -> dict:
    prompt = build_characters_prompt(req.script_content, req.genre)
    characters = normalize_characters(_complete_json(chat, CHARACTERS_SYSTEM, prompt, "characters", request_id))
    logger.info(f"[{request_id}] Characters: {[c.name for c in characters]}")
    return {"characters": [c.dump() for c in characters]}


def generate_portrait(req: GeneratePortraitRequest, images: ImageClient, request_id: str) -> dict:
    visual = build_visual_description(req.character)
    logger.info(f"[{request_id}] Generating portrait for {req.character.name}")
    url = images.generate(build_portrait_prompt(visual), size=PORTRAIT_SIZE)
    return {"imageUrl": url, "visualDescription": visual}


def generate_locations(req: LocationsRequest, chat: ChatClient, request_id: str) -> dict:
    prompt = build_locations_prompt(req.script, req.genre)
    locations = normalize_locations(_complete_json(chat, LOCATIONS_SYSTEM, prompt, "locations", request_id))
    preview = [{"name": l.name, "type": l.type, "rating": l.rating} for l in locations[:6]]
    logger.info(f"[{request_id}] Locations ({len(locations)}): {preview}")
    return {"locations": [l.dump() for l in locations]}


def generate_schedule(req: ScheduleRequest, chat: ChatClient, request_id: str) -> dict:
    prompt = build_schedule_prompt(req.script, req.script_length)
    schedule = normalize_schedule(_complete_json(chat, SCHEDULE_SYSTEM, prompt, "schedule", request_id))
    logger.info(f"[{request_id}] Schedule: {len(schedule)} entries")
    return {"schedule": schedule}


def generate_sound_plan(req: SoundPlanRequest, chat: ChatClient, request_id: str) -> dict:
    prompt = build_sound_plan_prompt(req.movie_idea, req.movie_genre)
    plan = normalize_sound_plan(_complete_json(chat, SOUND_SYSTEM, prompt, "sound-plan", request_id))
    logger.info(f"[{request_id}] Sound plan: style={plan.overall_style!r}, moments={len(plan.notable_moments)}")
    return {"soundPlan": plan.dump()}


def sound_min_duration(script_length: str) -> str:
    """Feature-length scripts (60 min and up) get longer minimum clips."""
    m = re.match(r"\s*(\d+)", script_length or "")
    if m and int(m.group(1)) >= 60:
        return FEATURE_MIN_SOUND_DURATION
    return MIN_SOUND_DURATION


def generate_sound_assets(req: SoundAssetsRequest, chat: ChatClient, request_id: str) -> list:
    prompt = build_sound_assets_prompt(req.script, req.genre)
    data = _complete_json(chat, SOUND_SYSTEM, prompt, "sound-assets", request_id)
    assets = normalize_sound_assets(data, min_duration=sound_min_duration(req.script_length))
    logger.info(f"[{request_id}] Sound assets: {len(assets)}")
    return assets


async def start_audio_jobs(assets: list, replicate: ReplicateClient, request_id: str) -> list:
    """Queue one Replicate audio job per asset; results arrive on /webhook-replicate."""
    app_url = get_secret("APP_URL").rstrip("/")
    if not app_url:
        raise ConfigurationError("APP_URL is not set; please configure your .env")
    if not get_secret("REPLICATE_API_TOKEN"):
        raise ConfigurationError("REPLICATE_API_TOKEN is not set; please configure your .env")
    webhook = f"{app_url}/webhook-replicate"
    out = []
    for asset in assets:
        record = asset.dump()
        try:
            pred = await replicate.create_prediction(
                {
                    "prompt": asset.description or asset.name,
                    "duration": AUDIO_CLIP_SECONDS,
                    "type": asset.type,
                    "description": asset.description,
                    "scenes": asset.scenes,
                },
                audio_model_selector(),
                webhook=webhook,
            )
            record["predictionId"] = pred.get("id", "")
        except ProviderError as e:
            logger.warning(f"[{request_id}] Audio job for {asset.name!r} not started: {e}")
            record["predictionId"] = ""
        out.append(record)
    return out


def generate_concept(req: ConceptRequest, chat: ChatClient, request_id: str) -> dict:
    prompt = build_concept_prompt(req.script, req.movie_genre)
    package = normalize_concept(_complete_json(chat, CONCEPT_SYSTEM, prompt, "concept", request_id))
    logger.info(f"[{request_id}] Concept: style={package.concept.visual_style[:60]!r}, "
                f"references={len(package.visual_references)}")
    return package.dump()


def generate_image(req: ImagePromptRequest, images: ImageClient, request_id: str) -> dict:
    logger.info(f"[{request_id}] Generating image: {req.prompt[:100]}")
    return {"images": [images.generate(truncate_prompt(req.prompt))]}


def generate_frame_image(req: FrameImageRequest, images: ImageClient, request_id: str) -> dict:
    prompt = build_frame_prompt(req.image_prompt)
    options = {"size": FRAME_SIZE, "quality": "standard", "style": "natural"}
    try:
        url = images.generate(prompt, **options)
    except ContentPolicyError:
        logger.warning(f"[{request_id}] Content policy on attempt 1, retrying with fallback prompt")
        try:
            url = images.generate(build_fallback_frame_prompt(prompt), **options)
        except ContentPolicyError as e:
            raise ContentPolicyError(
                "Image was blocked by content policy after retry. Try regenerating this frame."
            ) from e
    return {"imageUrl": url, "shotNumber": req.shot_number}


def generate_shots(req: ShotListRequest, chat: ChatClient, request_id: str) -> dict:
    prompt = build_shots_prompt(req.scene, req.genre, req.shot_count)
    shots = normalize_shots(_complete_json(chat, STORYBOARD_SYSTEM, prompt, "shots", request_id))
    if len(shots) != req.shot_count:
        logger.warning(f"[{request_id}] Asked for {req.shot_count} shots, got {len(shots)}")
    return {"shots": [s.dump() for s in shots]}


async def generate_sd_images(req: StableDiffusionRequest, replicate: ReplicateClient, request_id: str) -> dict:
    payload = {
        "prompt": req.prompt,
        "width": req.width,
        "height": req.height,
        "num_outputs": req.num_outputs,
    }
    if req.seed is not None:
        payload["seed"] = req.seed
    logger.info(f"[{request_id}] Sending prompt to Replicate: {req.prompt[:100]}")
    urls = await replicate.create_and_wait_images(payload)
    if not urls:
        logger.warning(f"[{request_id}] No images returned from Replicate")
        raise ProviderError("Stable Diffusion returned no images.")
    return {"images": urls, "provider": "replicate"}


async def create_checkout(price_id: str, user_id: Optional[str], checkout: CheckoutClient, request_id: str) -> dict:
    session = await checkout.create_session(price_id, user_id=user_id)
    logger.info(f"[{request_id}] Checkout session {session['id']} mode={session['mode']}")
    return {"url": session["url"]}


def _parse_event(body: bytes) -> dict:
    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError("Invalid JSON body.") from e
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON body.")
    return payload


async def record_replicate_event(body: bytes, store: DocumentStore, request_id: str) -> bool:
    """Persist a finished audio job. Returns whether a write was attempted."""
    payload = _parse_event(body)
    urls = output_urls(payload.get("output"))
    output_url = urls[0] if urls else None
    status = payload.get("status")
    inputs = payload.get("input") if isinstance(payload.get("input"), dict) else {}
    logger.info(f"[{request_id}] Replicate webhook: status={status} output={output_url}")

    if status != "succeeded" or not output_url:
        return False
    record = {
        "name": inputs.get("prompt") or "Untitled",
        "type": inputs.get("type") or "unknown",
        "audioUrl": output_url,
        "description": inputs.get("description") or "",
        "scenes": inputs.get("scenes") or [],
        "createdAt": int(time.time() * 1000),
    }
    # A failed write is logged by the store; Replicate is still told success
    # so it does not redeliver a job that already finished.
    if not await store.add_sound_asset(record):
        logger.error(f"[{request_id}] Audio asset {output_url} was not persisted")
    return True


PAID_EVENTS = ("checkout.session.completed", "invoice.payment_succeeded")


async def record_stripe_event(body: bytes, store: DocumentStore, request_id: str) -> bool:
    event = _parse_event(body)
    if event.get("type") not in PAID_EVENTS:
        return False
    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    obj = data.get("object") if isinstance(data.get("object"), dict) else {}
    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    user_id = metadata.get("userId")
    if not user_id:
        logger.warning(f"[{request_id}] Missing userId in {event.get('type')} metadata")
        return False
    subscription_type = "subscription" if obj.get("mode") == "subscription" else "lifetime"
    await store.mark_user_subscribed(user_id, obj.get("customer"), subscription_type)
    return True


def debug_info() -> dict:
    key = get_secret("OPENAI_API_KEY")
    return {
        "hasServerApiKey": bool(key),
        "serverKeyLength": len(key),
        "serverKeyPrefix": key[:7] if key else "none",
        "allEnvKeys": sorted(k for k in os.environ if "OPENAI" in k),
        "environment": APP_ENV,
    }
