import httpx, logging
from typing import Optional

from .errors import ConfigurationError, ProviderError
from .settings import get_secret

logger = logging.getLogger(__name__)

CHECKOUT_URL = "https://api.stripe.com/v1/checkout/sessions"


def checkout_mode(price_id: str) -> str:
    # Lifetime plans are one-time payments; every other price is recurring.
    return "payment" if "lifetime" in price_id else "subscription"


class CheckoutClient:
    def __init__(self, http: Optional[httpx.AsyncClient] = None):
        self._http = http

    async def create_session(self, price_id: str, user_id: Optional[str] = None) -> dict:
        secret = get_secret("STRIPE_SECRET_KEY")
        app_url = get_secret("APP_URL").rstrip("/")
        if not secret:
            raise ConfigurationError("STRIPE_SECRET_KEY is not set; please configure your .env")
        if not app_url:
            raise ConfigurationError("APP_URL is not set; please configure your .env")

        mode = checkout_mode(price_id)
        form = {
            "mode": mode,
            "line_items[0][price]": price_id,
            "line_items[0][quantity]": "1",
            "success_url": f"{app_url}/upgrade?success=true",
            "cancel_url": f"{app_url}/upgrade?canceled=true",
        }
        if user_id:
            form["metadata[userId]"] = user_id

        try:
            if self._http is not None:
                r = await self._http.post(CHECKOUT_URL, data=form, auth=(secret, ""))
            else:
                async with httpx.AsyncClient(timeout=30) as client:
                    r = await client.post(CHECKOUT_URL, data=form, auth=(secret, ""))
        except httpx.HTTPError as e:
            logger.error(f"Stripe transport failure: {e}")
            raise ProviderError("Could not reach the payment provider. Please try again later.") from e

        if r.status_code >= 400:
            logger.error(f"Stripe checkout session failed {r.status_code}: {r.text}")
            # 400/404 from Stripe mean the price id itself is bad.
            raise ProviderError("Failed to create checkout session", client_error=r.status_code in (400, 404))
        session = r.json()
        logger.info(f"Created Stripe checkout session {session.get('id')} (mode={mode})")
        return {"id": session.get("id"), "url": session.get("url"), "mode": mode}
