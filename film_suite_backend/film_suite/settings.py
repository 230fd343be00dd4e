import os
from dotenv import load_dotenv
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

APP_ENV = os.getenv("APP_ENV", "development")

OPENAI_MODEL_JSON = os.getenv("OPENAI_MODEL_JSON", "gpt-4o-mini")
OPENAI_MODEL_SCRIPT = os.getenv("OPENAI_MODEL_SCRIPT", "gpt-4o")
OPENAI_IMAGE_MODEL = os.getenv("OPENAI_IMAGE_MODEL", "dall-e-3")
OPENAI_TIMEOUT_S = float(os.getenv("OPENAI_TIMEOUT_S", "60"))

REPLICATE_MODEL_VERSION = os.getenv("REPLICATE_MODEL_VERSION", "")
REPLICATE_AUDIO_MODEL = os.getenv("REPLICATE_AUDIO_MODEL", "meta/musicgen")
REPLICATE_POLL_INTERVAL_MS = int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500"))
REPLICATE_POLL_TIMEOUT_S = int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120"))

ASSET_FETCH_TIMEOUT_S = float(os.getenv("ASSET_FETCH_TIMEOUT_S", "30"))

# Providers reject longer prompts; DALL-E 3 also behaves better with short ones.
IMAGE_PROMPT_MAX_CHARS = 950

# Comma-separated list of allowed origins for CORS (e.g., "https://app.vercel.app,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]

# Credentials are looked up at call time so that one missing key only
# disables the provider that needs it.
PROVIDER_KEYS = {
    "openai": ["OPENAI_API_KEY"],
    "replicate": ["REPLICATE_API_TOKEN"],
    "stripe": ["STRIPE_SECRET_KEY", "APP_URL"],
    "replicate_webhook": ["REPLICATE_WEBHOOK_SECRET"],
    "stripe_webhook": ["STRIPE_WEBHOOK_SECRET"],
    "firestore": ["FIREBASE_PROJECT_ID", "FIREBASE_CLIENT_EMAIL", "FIREBASE_PRIVATE_KEY"],
}


def get_secret(name: str) -> str:
    return os.getenv(name, "").strip()


def missing_keys() -> dict:
    """Map each provider to the environment variables it still needs."""
    missing = {}
    for provider, names in PROVIDER_KEYS.items():
        absent = [n for n in names if not get_secret(n)]
        if absent:
            missing[provider] = absent
    if missing:
        logger.warning(f"Missing configuration: {missing}")
    return missing
