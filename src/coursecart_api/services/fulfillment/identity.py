from __future__ import annotations

import asyncio

import httpx
from loguru import logger

from .errors import IdentityProvisionError, LmsRequestError
from .lms_client import LmsClient
from .retry import Sleeper
from .store import FulfillmentStore, IdentityMapping


class IdentityProvisioner:
    """Find or create the buyer's LMS account and remember the link."""

    def __init__(
        self,
        store: FulfillmentStore,
        lms_client: LmsClient,
        *,
        pacing_seconds: float = 1.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._store = store
        self._lms = lms_client
        self._pacing_seconds = pacing_seconds
        self._sleep = sleep

    async def provision(self, buyer_id: str, email: str, display_name: str | None = None) -> IdentityMapping:
        """Return the buyer's mapping, creating the external user if needed.

        Raises:
            IdentityProvisionError: Lookup, creation or persistence failed.
        """
        existing = await self._store.get_identity(buyer_id)
        if existing is not None:
            logger.info("Reusing stored LMS identity", buyer_id=buyer_id, lms_user_id=existing.external_user_id)
            return existing

        if not email:
            raise IdentityProvisionError(f"No email available for buyer {buyer_id}")

        await self._sleep(self._pacing_seconds)
        try:
            user = await self._lms.find_user_by_email(email)
            if user is None:
                logger.info("No LMS user for email; creating one", buyer_id=buyer_id)
                user = await self._lms.create_user(email, display_name)
        except (LmsRequestError, httpx.HTTPError) as exc:
            raise IdentityProvisionError(f"LMS identity lookup failed: {exc}") from exc

        return await self._store.save_identity(
            IdentityMapping(buyer_id=buyer_id, external_user_id=user.id, email=user.email or email)
        )
