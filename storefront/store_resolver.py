"""
Store lookup from the request hostname.
"""
import logging
from typing import Optional

from storefront.api_client import LiveDataNowClient
from storefront.config import Config
from storefront.exceptions import StorefrontException
from storefront.models import Store
from storefront.responses import parse_store

logger = logging.getLogger(__name__)


def derive_store_slug(hostname: Optional[str]) -> str:
    """
    Store slug from a hostname: the first label of hosts like
    "flavors.example.com", else the configured default.
    """
    host = (hostname or "").split(":", 1)[0].strip().lower()
    labels = [label for label in host.split(".") if label]
    if len(labels) >= 3 and labels[0] != "www":
        return labels[0]
    return Config.DEFAULT_STORE_SUBDOMAIN


def fallback_store() -> Store:
    return Store(
        _id=Config.DEFAULT_STORE_ID,
        name=Config.DEFAULT_STORE_NAME,
        subdomain=Config.DEFAULT_STORE_SUBDOMAIN,
    )


async def resolve_store(client: LiveDataNowClient, hostname: Optional[str]) -> Store:
    """Look up the store for a hostname, falling back to the default store"""
    slug = derive_store_slug(hostname)
    try:
        return parse_store(await client.store.get_by_subdomain(slug))
    except StorefrontException as e:
        logger.warning(f"Using fallback store for '{slug}': {e}")
        return fallback_store()
