"""
Firestore integration for the few records that outlive a request:
finished audio assets reported by Replicate and subscription status
reported by Stripe. Writes never raise; failures are logged and reported
through the boolean return value.
"""
import asyncio
import logging
import time
from typing import Any, Dict, Optional

from firebase_admin import firestore

from .firebase import get_firebase_app

logger = logging.getLogger(__name__)

SOUND_ASSETS_COLLECTION = "soundAssets"
USERS_COLLECTION = "users"


class DocumentStore:
    def __init__(self):
        self._db = None

    def _client(self):
        if self._db is None:
            self._db = firestore.client(app=get_firebase_app())
        return self._db

    async def add_sound_asset(self, record: Dict[str, Any]) -> bool:
        """Insert a finished audio asset"""
        try:
            collection = self._client().collection(SOUND_ASSETS_COLLECTION)
            _, ref = await asyncio.to_thread(collection.add, record)
            logger.info(f"Stored sound asset {ref.id} in Firestore")
            return True
        except Exception as e:
            logger.error(f"Failed to store sound asset {record.get('name')!r}: {e}")
            return False

    async def mark_user_subscribed(self, user_id: str, customer_id: Optional[str], subscription_type: str) -> bool:
        """Merge subscription status into the user's document"""
        data = {
            "isSubscribed": True,
            "stripeCustomerId": customer_id,
            "subscriptionType": subscription_type,
            "lastUpdated": int(time.time() * 1000),
        }
        try:
            doc = self._client().collection(USERS_COLLECTION).document(user_id)
            await asyncio.to_thread(doc.set, data, merge=True)
            logger.info(f"Marked user {user_id} as subscribed ({subscription_type})")
            return True
        except Exception as e:
            logger.error(f"Failed to update subscription for user {user_id}: {e}")
            return False
