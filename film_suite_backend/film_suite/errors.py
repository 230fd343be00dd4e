"""
Error taxonomy shared by every handler.

Each class carries the HTTP status it maps to and a message that is safe to
show to the user. Details meant for operators go to the log, never to the
response body.
"""


class FilmSuiteError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(FilmSuiteError):
    status_code = 400
    default_message = "Invalid request."


class ConfigurationError(FilmSuiteError):
    status_code = 500
    default_message = "Server configuration error."


class ProviderError(FilmSuiteError):
    """A provider call failed. Client-attributable failures (content policy) map to 400."""

    default_message = "The AI provider request failed. Please try again later."

    def __init__(self, message: str = None, client_error: bool = False):
        super().__init__(message)
        self.client_error = client_error
        self.status_code = 400 if client_error else 500


class ContentPolicyError(ProviderError):
    default_message = "Request was blocked by the provider's content policy."

    def __init__(self, message: str = None):
        super().__init__(message, client_error=True)


class MalformedResponseError(FilmSuiteError):
    default_message = "Failed to parse AI response."


class EmptyResultError(FilmSuiteError):
    default_message = "AI returned no usable results."


class AssetFetchError(FilmSuiteError):
    """Raised per asset while building an archive; caught and logged by the assembler."""


class ArchiveEmptyError(FilmSuiteError):
    status_code = 400
    default_message = "No assets could be downloaded."


class SignatureError(FilmSuiteError):
    status_code = 401
    default_message = "Invalid signature"


class AuthError(FilmSuiteError):
    status_code = 401
    default_message = "Invalid authentication token"


class StripeSignatureError(SignatureError):
    status_code = 400
    default_message = "Webhook Error"
