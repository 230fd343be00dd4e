import logging
import firebase_admin
from firebase_admin import auth, credentials, exceptions

from .errors import AuthError, ConfigurationError
from .settings import get_secret

logger = logging.getLogger(__name__)


def get_firebase_app():
    """Initialise the Firebase Admin SDK once, from the service-account env vars."""
    if firebase_admin._apps:
        return firebase_admin.get_app()
    project_id = get_secret("FIREBASE_PROJECT_ID")
    client_email = get_secret("FIREBASE_CLIENT_EMAIL")
    private_key = get_secret("FIREBASE_PRIVATE_KEY")
    if not (project_id and client_email and private_key):
        raise ConfigurationError("Firebase credentials are not set; please configure your .env")
    cred = credentials.Certificate({
        "type": "service_account",
        "project_id": project_id,
        "client_email": client_email,
        # Hosting dashboards store the PEM with literal "\n" sequences.
        "private_key": private_key.replace("\\n", "\n"),
        "token_uri": "https://oauth2.googleapis.com/token",
    })
    app = firebase_admin.initialize_app(cred, {"projectId": project_id})
    logger.info("Firebase Admin SDK initialized")
    return app


def verify_user_token(token: str) -> str:
    """Return the Firebase uid for an ID token, or raise AuthError."""
    app = get_firebase_app()
    try:
        decoded = auth.verify_id_token(token, app=app)
    except (ValueError, exceptions.FirebaseError) as e:
        logger.warning(f"Invalid Firebase token: {e}")
        raise AuthError("Invalid Firebase token") from e
    return decoded["uid"]
