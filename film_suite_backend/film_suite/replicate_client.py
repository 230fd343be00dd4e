import time, httpx, asyncio, logging
from typing import List, Optional

from .errors import ConfigurationError, ProviderError
from .settings import (
    REPLICATE_AUDIO_MODEL,
    REPLICATE_MODEL_VERSION,
    REPLICATE_POLL_INTERVAL_MS,
    REPLICATE_POLL_TIMEOUT_S,
    get_secret,
)

logger = logging.getLogger(__name__)

API_ROOT = "https://api.replicate.com/v1"


def _headers():
    token = get_secret("REPLICATE_API_TOKEN")
    if not token:
        raise ConfigurationError("REPLICATE_API_TOKEN is not set; please configure your .env")
    return {"Authorization": f"Token {token}", "Content-Type": "application/json"}


def image_model_selector() -> str:
    # Prefer explicit version from env for stability; fall back to a public model alias (latest).
    return REPLICATE_MODEL_VERSION or "stability-ai/sdxl"


def audio_model_selector() -> str:
    return REPLICATE_AUDIO_MODEL


def _parse_selector(selector: str):
    # Returns a tuple (mode, data)
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    if "/" in selector:
        owner_name, _, _version_alias = selector.partition(":")
        if "/" in owner_name:
            owner, name = owner_name.split("/", 1)
            return "model", {"owner": owner, "name": name}
    return "version", {"version": selector}


def output_urls(output) -> List[str]:
    """Replicate models return a URL, a list of URLs, or {"output": [...]}."""
    if isinstance(output, str):
        return [output]
    if isinstance(output, list):
        return [o for o in output if isinstance(o, str)]
    if isinstance(output, dict):
        return output_urls(output.get("output"))
    return []


class ReplicateClient:
    def __init__(self, http: Optional[httpx.AsyncClient] = None):
        self._http = http

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = _headers()
        try:
            if self._http is not None:
                return await self._http.request(method, url, headers=headers, **kwargs)
            async with httpx.AsyncClient(timeout=30) as client:
                return await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Replicate transport failure for {url}: {e}")
            raise ProviderError("Could not reach the image provider. Please try again later.") from e

    async def create_prediction(self, input: dict, selector: str, webhook: str = None) -> dict:
        body = {"input": input}
        if webhook:
            body["webhook"] = webhook
            body["webhook_events_filter"] = ["completed"]
        mode, data = _parse_selector(selector)
        if mode == "version":
            body["version"] = data["version"]
            url = f"{API_ROOT}/predictions"
        else:
            url = f"{API_ROOT}/models/{data['owner']}/{data['name']}/predictions"

        logger.info(f"Sending request to Replicate: {url}")
        r = await self._request("POST", url, json=body)
        if r.status_code == 404 and mode == "model":
            # Some community models only accept versioned predictions.
            logger.info("Falling back to latest version resolution for model")
            model_resp = await self._request("GET", f"{API_ROOT}/models/{data['owner']}/{data['name']}")
            version_id = None
            if model_resp.status_code < 400:
                version_id = (model_resp.json().get("latest_version") or {}).get("id")
            if not version_id:
                logger.error(f"Could not resolve latest version for {selector}: {model_resp.text}")
                raise ProviderError()
            logger.info(f"Resolved latest version: {version_id}")
            r = await self._request("POST", f"{API_ROOT}/predictions", json={**body, "version": version_id})
        if r.status_code >= 400:
            logger.error(f"Replicate create failed {r.status_code}: {r.text}")
            raise ProviderError(client_error=r.status_code == 422)
        pred = r.json()
        logger.info(f"Replicate prediction created with ID: {pred.get('id')}")
        return pred

    async def create_and_wait_images(self, input: dict, selector: str = None) -> List[str]:
        pred = await self.create_prediction(input, selector or image_model_selector())
        pred_id = pred["id"]

        start = time.time()
        while True:
            s = await self._request("GET", f"{API_ROOT}/predictions/{pred_id}")
            if s.status_code >= 400:
                logger.error(f"Replicate status failed {s.status_code}: {s.text}")
                raise ProviderError()
            body = s.json()
            status = body.get("status")
            logger.info(f"Replicate prediction {pred_id} status: {status}")

            if status in ("succeeded", "failed", "canceled"):
                if status != "succeeded":
                    logger.error(f"Replicate failed: {status}. logs={body.get('logs')} error={body.get('error')}")
                    raise ProviderError()
                return output_urls(body.get("output"))
            if time.time() - start > REPLICATE_POLL_TIMEOUT_S:
                logger.error("Replicate polling timeout")
                raise ProviderError("Image generation timed out. Please try again.")
            await asyncio.sleep(REPLICATE_POLL_INTERVAL_MS / 1000.0)
