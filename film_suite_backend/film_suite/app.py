import logging
import uuid
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

# Ensure .env is loaded before importing modules that read credentials
from .settings import ALLOWED_ORIGINS, ASSET_FETCH_TIMEOUT_S, get_secret, missing_keys
from . import handlers
from .archive import build_archive, build_export_archive
from .errors import FilmSuiteError
from .firebase import verify_user_token
from .llm import ChatClient, ImageClient
from .models import (
    CHARACTERS_REQUEST,
    SOUND_REQUEST,
    STORYBOARD_REQUEST,
    BudgetRequest,
    CheckoutRequest,
    ConceptRequest,
    DownloadCharactersRequest,
    DownloadSoundRequest,
    DownloadStoryboardRequest,
    ExportRequest,
    FrameImageRequest,
    GenerateCharactersRequest,
    GenerateRequest,
    ImagePromptRequest,
    LocationsRequest,
    ScheduleRequest,
    SoundPlanRequest,
    StableDiffusionRequest,
)
from .orchestrator import run_pipeline
from .payments import CheckoutClient
from .replicate_client import ReplicateClient
from .store import DocumentStore
from .webhooks import verify_replicate_signature, verify_stripe_signature

logger = logging.getLogger(__name__)

app = FastAPI(title="Film Suite Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request.state.request_id = uuid.uuid4().hex[:8]
    response = await call_next(request)
    response.headers["Cache-Control"] = "no-store"
    response.headers["X-Request-ID"] = request.state.request_id
    return response


def request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    if not rid:
        rid = request.state.request_id = uuid.uuid4().hex[:8]
    return rid


def _error(request: Request, status_code: int, message: str) -> JSONResponse:
    rid = request_id(request)
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "requestId": rid},
        headers={"Cache-Control": "no-store", "X-Request-ID": rid},
    )


# --- Error mapping ---

UNION_TAGS = {"generate-characters", "generate-portrait", "generate-frame-image", "generate-shots", "plan", "assets"}


def describe_validation_error(errors) -> str:
    """Turn the first pydantic error into a short message naming the field."""
    if not errors:
        return "Invalid request."
    err = errors[0]
    kind = err.get("type", "")
    path = [str(p) for p in err.get("loc", ()) if p != "body" and p not in UNION_TAGS]
    field = ".".join(path)

    if kind == "json_invalid":
        return "Invalid JSON body."
    if kind in ("union_tag_invalid", "union_tag_not_found") or field == "step":
        return "Invalid step."
    if not field:
        if kind == "missing":
            return "Request body is required."
        return "Request body must be a JSON object."
    if kind in ("missing", "string_too_short"):
        return f"{field} is required."
    if kind == "too_short":
        return f"{field} must contain at least one item."
    if kind == "literal_error":
        return f"Invalid value for {field}."
    return f"{field}: {err.get('msg', 'invalid value')}"


@app.exception_handler(RequestValidationError)
async def on_validation_error(request: Request, exc: RequestValidationError):
    message = describe_validation_error(exc.errors())
    logger.info(f"[{request_id(request)}] Rejected request to {request.url.path}: {message}")
    return _error(request, 400, message)


@app.exception_handler(FilmSuiteError)
async def on_film_suite_error(request: Request, exc: FilmSuiteError):
    rid = request_id(request)
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, f"[{rid}] {type(exc).__name__} on {request.url.path}: {exc.message}")
    return _error(request, exc.status_code, exc.message)


@app.exception_handler(Exception)
async def on_unexpected_error(request: Request, exc: Exception):
    logger.exception(f"[{request_id(request)}] Unhandled error on {request.url.path}")
    return _error(request, 500, "Internal Server Error")


def _parse(adapter, payload: Any):
    try:
        return adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors()) from e


def _ok(request: Request, payload: Dict[str, Any]) -> dict:
    return {**payload, "requestId": request_id(request)}


def _zip(request: Request, data: bytes, filename: str) -> Response:
    return Response(
        content=data,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Request-ID": request_id(request),
        },
    )


# --- Provider dependencies (overridden in tests) ---

def get_chat_client() -> ChatClient:
    return ChatClient()


def get_image_client() -> ImageClient:
    return ImageClient()


def get_replicate_client() -> ReplicateClient:
    return ReplicateClient()


def get_checkout_client() -> CheckoutClient:
    return CheckoutClient()


@lru_cache(maxsize=1)
def get_store() -> DocumentStore:
    return DocumentStore()


def get_token_verifier() -> Callable[[str], str]:
    return verify_user_token


async def get_http_client():
    async with httpx.AsyncClient(timeout=ASSET_FETCH_TIMEOUT_S, follow_redirects=True) as client:
        yield client


# --- Routes ---

@app.get("/health")
def health():
    missing = missing_keys()
    logger.info(f"Health check: API keys present = {not missing}")
    return {"ok": True, "hasKeys": not missing, "missing": missing}


@app.get("/debug")
def debug(request: Request):
    return _ok(request, handlers.debug_info())


@app.post("/budget")
def budget(req: BudgetRequest, request: Request, chat: ChatClient = Depends(get_chat_client)):
    return _ok(request, handlers.generate_budget(req, chat, request_id(request)))


@app.post("/characters")
def characters(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    chat: ChatClient = Depends(get_chat_client),
    images: ImageClient = Depends(get_image_client),
):
    req = _parse(CHARACTERS_REQUEST, payload)
    rid = request_id(request)
    if isinstance(req, GenerateCharactersRequest):
        return _ok(request, handlers.generate_characters(req, chat, rid))
    return _ok(request, handlers.generate_portrait(req, images, rid))


@app.post("/locations")
def locations(req: LocationsRequest, request: Request, chat: ChatClient = Depends(get_chat_client)):
    return _ok(request, handlers.generate_locations(req, chat, request_id(request)))


@app.post("/schedule")
def schedule(req: ScheduleRequest, request: Request, chat: ChatClient = Depends(get_chat_client)):
    return _ok(request, handlers.generate_schedule(req, chat, request_id(request)))


@app.post("/sound")
async def sound(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    chat: ChatClient = Depends(get_chat_client),
    replicate: ReplicateClient = Depends(get_replicate_client),
):
    req = _parse(SOUND_REQUEST, payload)
    rid = request_id(request)
    if isinstance(req, SoundPlanRequest):
        return _ok(request, await run_in_threadpool(handlers.generate_sound_plan, req, chat, rid))

    assets = await run_in_threadpool(handlers.generate_sound_assets, req, chat, rid)
    if req.generate_audio:
        records = await handlers.start_audio_jobs(assets, replicate, rid)
        message = "Sound assets generated; audio is being rendered"
    else:
        records = [a.dump() for a in assets]
        message = "Sound assets generated"
    return _ok(request, {"success": True, "message": message, "soundAssets": records})


@app.post("/storyboard")
def storyboard(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    chat: ChatClient = Depends(get_chat_client),
    images: ImageClient = Depends(get_image_client),
):
    req = _parse(STORYBOARD_REQUEST, payload)
    rid = request_id(request)
    if isinstance(req, FrameImageRequest):
        return _ok(request, handlers.generate_frame_image(req, images, rid))
    return _ok(request, handlers.generate_shots(req, chat, rid))


@app.post("/generate")
def generate(req: GenerateRequest, request: Request, chat: ChatClient = Depends(get_chat_client)):
    return _ok(request, run_pipeline(req, chat, request_id(request)))


@app.post("/concept")
def concept(req: ConceptRequest, request: Request, chat: ChatClient = Depends(get_chat_client)):
    return _ok(request, handlers.generate_concept(req, chat, request_id(request)))


@app.post("/openai-image")
def openai_image(req: ImagePromptRequest, request: Request, images: ImageClient = Depends(get_image_client)):
    return _ok(request, handlers.generate_image(req, images, request_id(request)))


@app.post("/stable-diffusion")
async def stable_diffusion(
    req: StableDiffusionRequest,
    request: Request,
    replicate: ReplicateClient = Depends(get_replicate_client),
):
    return _ok(request, await handlers.generate_sd_images(req, replicate, request_id(request)))


@app.post("/download-characters")
async def download_characters(
    req: DownloadCharactersRequest,
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
):
    logger.info(f"[{request_id(request)}] Packaging {len(req.characters)} characters")
    return _zip(request, await build_archive("characters", req.characters, client), "characters.zip")


@app.post("/download-sound")
async def download_sound(
    req: DownloadSoundRequest,
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
):
    logger.info(f"[{request_id(request)}] Packaging {len(req.sound_assets)} sound assets")
    return _zip(request, await build_archive("sound", req.sound_assets, client), "sound-design.zip")


@app.post("/download-storyboard")
async def download_storyboard(
    req: DownloadStoryboardRequest,
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
):
    logger.info(f"[{request_id(request)}] Packaging {len(req.storyboard)} storyboard frames")
    return _zip(request, await build_archive("storyboard", req.storyboard, client), "storyboard.zip")


@app.post("/export")
async def export(
    req: ExportRequest,
    request: Request,
    client: httpx.AsyncClient = Depends(get_http_client),
):
    logger.info(f"[{request_id(request)}] Exporting {req.selected_options}")
    data = await build_export_archive(req.selected_options, req.film_package, client)
    return _zip(request, data, "film-package.zip")


@app.post("/create-checkout-session")
async def create_checkout_session(
    req: CheckoutRequest,
    request: Request,
    authorization: Optional[str] = Header(None),
    checkout: CheckoutClient = Depends(get_checkout_client),
    verify_token: Callable[[str], str] = Depends(get_token_verifier),
):
    user_id = None
    if authorization and authorization.startswith("Bearer "):
        user_id = await run_in_threadpool(verify_token, authorization[len("Bearer "):].strip())
    return _ok(request, await handlers.create_checkout(req.price_id, user_id, checkout, request_id(request)))


@app.post("/webhook-replicate")
async def webhook_replicate(request: Request, store: DocumentStore = Depends(get_store)):
    body = await request.body()
    verify_replicate_signature(
        body, request.headers.get("replicate-signature"), get_secret("REPLICATE_WEBHOOK_SECRET")
    )
    await handlers.record_replicate_event(body, store, request_id(request))
    return _ok(request, {"success": True})


@app.post("/stripe-webhook")
async def stripe_webhook(request: Request, store: DocumentStore = Depends(get_store)):
    body = await request.body()
    verify_stripe_signature(
        body, request.headers.get("stripe-signature"), get_secret("STRIPE_WEBHOOK_SECRET")
    )
    await handlers.record_stripe_event(body, store, request_id(request))
    return _ok(request, {"received": True})
