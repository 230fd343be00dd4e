#!/usr/bin/env python3
"""
Production diagnosis script for the film suite backend.
Checks provider credentials and connectivity without generating anything billable.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add the film_suite package to path
sys.path.insert(0, str(Path(__file__).parent))

import httpx

from film_suite.settings import PROVIDER_KEYS, get_secret, missing_keys

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


async def check_openai() -> bool:
    logger.info("Testing OpenAI API...")
    try:
        from film_suite.llm import _get_client
        models = _get_client().models.list()
        logger.info(f"OpenAI test successful. {len(models.data)} models visible")
        return True
    except Exception as e:
        logger.error(f"OpenAI test failed: {e}")
        return False


async def check_replicate() -> bool:
    logger.info("Testing Replicate API...")
    try:
        from film_suite.replicate_client import API_ROOT, _headers
        async with httpx.AsyncClient(timeout=30) as client:
            resp = await client.get(f"{API_ROOT}/account", headers=_headers())
            resp.raise_for_status()
        logger.info(f"Replicate test successful. Account: {resp.json().get('username', 'unknown')}")
        return True
    except Exception as e:
        logger.error(f"Replicate test failed: {e}")
        return False


async def check_stripe() -> bool:
    logger.info("Testing Stripe API...")
    secret = get_secret("STRIPE_SECRET_KEY")
    try:
        async with httpx.AsyncClient(timeout=30) as client:
            resp = await client.get("https://api.stripe.com/v1/balance", auth=(secret, ""))
            resp.raise_for_status()
        logger.info("Stripe test successful")
        return True
    except httpx.HTTPError as e:
        logger.error(f"Stripe test failed: {e}")
        return False


async def check_firestore() -> bool:
    logger.info("Testing Firestore...")
    try:
        from film_suite.store import DocumentStore, SOUND_ASSETS_COLLECTION
        db = DocumentStore()._client()
        docs = await asyncio.to_thread(lambda: list(db.collection(SOUND_ASSETS_COLLECTION).limit(1).stream()))
        logger.info(f"Firestore test successful. Sample documents: {len(docs)}")
        return True
    except Exception as e:
        logger.error(f"Firestore test failed: {e}")
        return False


CHECKS = {
    "openai": check_openai,
    "replicate": check_replicate,
    "stripe": check_stripe,
    "firestore": check_firestore,
}


async def run_diagnostics() -> bool:
    logger.info("Starting production diagnostics...")
    missing = missing_keys()
    for provider in PROVIDER_KEYS:
        logger.info(f"{provider} configured: {'No' if provider in missing else 'Yes'}")

    results = {}
    for provider, check in CHECKS.items():
        if provider in missing:
            logger.warning(f"Skipping {provider}: missing {missing[provider]}")
            results[provider] = False
            continue
        results[provider] = await check()

    all_ok = all(results.values())
    logger.info(f"Diagnostics complete. Results: {results}")
    if not all_ok:
        logger.error("Some provider checks failed. Check the logs above for details.")
    return all_ok


if __name__ == "__main__":
    success = asyncio.run(run_diagnostics())
    sys.exit(0 if success else 1)
