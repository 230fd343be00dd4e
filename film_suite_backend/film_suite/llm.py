import logging
import openai

from .errors import ConfigurationError, ContentPolicyError, ProviderError
from .settings import OPENAI_IMAGE_MODEL, OPENAI_MODEL_JSON, OPENAI_TIMEOUT_S, get_secret

logger = logging.getLogger(__name__)

_client = None


def _get_client():
    global _client
    if _client is None:
        api_key = get_secret("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set; please configure your .env")
        _client = openai.OpenAI(api_key=api_key, timeout=OPENAI_TIMEOUT_S, max_retries=0)
    return _client


def is_content_policy_error(err: Exception) -> bool:
    if getattr(err, "code", None) == "content_policy_violation":
        return True
    msg = str(err).lower()
    return "content_policy" in msg or "safety" in msg


def _translate(err: Exception, what: str) -> ProviderError:
    if isinstance(err, openai.BadRequestError) and is_content_policy_error(err):
        logger.warning(f"{what} blocked by content policy: {err}")
        return ContentPolicyError()
    if isinstance(err, openai.APIConnectionError):
        logger.error(f"{what} transport failure: {err}")
        return ProviderError("Could not reach the AI provider. Please try again later.")
    logger.error(f"{what} failed: {err}")
    return ProviderError()


class ChatClient:
    """Chat completions that are expected to come back as JSON text."""

    def __init__(self, model: str = OPENAI_MODEL_JSON):
        self.model = model

    def complete(self, system: str, prompt: str, model: str = None, json_mode: bool = True) -> str:
        client = _get_client()
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            resp = client.chat.completions.create(
                model=model or self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                **kwargs,
            )
        except openai.OpenAIError as e:
            raise _translate(e, "Chat completion") from e
        choice = resp.choices[0]
        if choice.finish_reason == "length":
            logger.warning("Chat completion hit the token limit; output is probably truncated")
        return choice.message.content or ""


class ImageClient:
    def __init__(self, model: str = OPENAI_IMAGE_MODEL):
        self.model = model

    def generate(self, prompt: str, size: str = "1024x1024", **options) -> str:
        client = _get_client()
        try:
            resp = client.images.generate(model=self.model, prompt=prompt, n=1, size=size, **options)
        except openai.OpenAIError as e:
            raise _translate(e, "Image generation") from e
        url = resp.data[0].url if resp.data else None
        if not url:
            raise ProviderError("Image provider returned no image.")
        logger.info(f"Generated image URL: {url}")
        return url
