"""Read-only tenant lookups for the sync scheduler.

WHAT:
    Resolves a client's Meta ad account id and the Meta access token.

WHY:
    Client CRUD lives in another service. The scheduler only needs these two
    values, and fetching them in parallel means each lookup opens its own
    session on a worker thread (Sessions are not thread-safe).

    The Meta token is a system-user token stored once, on the designated
    token client (META_TOKEN_CLIENT_ID). Without that setting the client's
    own token is used.

REFERENCES:
    - adboard/models.py::Client
    - adboard/services/weekly_sync_service.py::WeeklySyncScheduler
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from adboard.models import Client
from adboard.security import decrypt_secret

logger = logging.getLogger(__name__)


def normalize_ad_account_id(ad_account_id: str) -> str:
    """'123' -> 'act_123'; already-prefixed ids pass through."""
    ad_account_id = ad_account_id.strip()
    return ad_account_id if ad_account_id.startswith("act_") else f"act_{ad_account_id}"


class TenantDirectory:
    def __init__(self, session_factory: Callable[[], Session], token_client_id: Optional[str] = None):
        self.session_factory = session_factory
        self.token_client_id = token_client_id

    def _load_ad_account_id(self, client_id: str) -> Optional[str]:
        db = self.session_factory()
        try:
            client = db.get(Client, client_id)
            if client is None or not client.fb_ad_account_id:
                return None
            return normalize_ad_account_id(client.fb_ad_account_id)
        finally:
            db.close()

    def _load_access_token(self, client_id: Optional[str]) -> Optional[str]:
        owner_id = self.token_client_id or client_id
        if not owner_id:
            return None

        db = self.session_factory()
        try:
            owner = db.get(Client, owner_id)
            if owner is None or not owner.meta_access_token_enc:
                return None
            ciphertext = owner.meta_access_token_enc
        finally:
            db.close()

        try:
            return decrypt_secret(ciphertext, context=f"meta:{owner_id}")
        except ValueError:
            logger.error("[TENANT] Stored Meta token for client %s cannot be decrypted", owner_id)
            return None

    async def get_ad_account_id(self, client_id: str) -> Optional[str]:
        """`act_`-prefixed ad account id, or None when the client has none."""
        return await asyncio.to_thread(self._load_ad_account_id, client_id)

    async def get_access_token(self, client_id: Optional[str] = None) -> Optional[str]:
        """Plaintext Meta token, or None when none is stored."""
        return await asyncio.to_thread(self._load_access_token, client_id)
