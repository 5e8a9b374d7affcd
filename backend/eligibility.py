"""
Eligibility Resolver - may this address trade?

Two paths feed one verdict:
  (a) on-chain whitelist registry, authoritative and tried first
  (b) off-chain access queue / invitation service

Only (a) sets is_whitelisted. Invite redemption and access-queue approval
grant is_eligible alone.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional

from errors import AgentError, VenueRejected
from venue_api import VenueApiClient
from whitelist import FuelWhitelistRegistry

logger = logging.getLogger(__name__)


@dataclass
class EligibilityStatus:
    is_eligible: bool
    is_whitelisted: bool
    waitlist_position: Optional[int] = None
    has_invite_code: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


NOT_ELIGIBLE_MESSAGE = "Not whitelisted and no valid invite code"


class EligibilityResolver:
    def __init__(
        self,
        api: VenueApiClient,
        registry: Optional[FuelWhitelistRegistry] = None,
        invite_code: Optional[str] = None,
    ):
        self.api = api
        self.registry = registry
        self._invite_code = invite_code

    def get_invite_code(self) -> Optional[str]:
        """Invite code supplied out of band (environment / launch link)"""
        return self._invite_code

    async def check_onchain(self, account_id: str, whitelist_id: Optional[str]) -> bool:
        """On-chain membership. Errors count as 'not whitelisted'."""
        if not self.registry or not whitelist_id or not account_id:
            return False
        try:
            return await self.registry.is_whitelisted(account_id, whitelist_id)
        except AgentError as e:
            logger.warning(f"[Eligibility] On-chain whitelist check failed: {e}")
            return False
        except Exception as e:
            logger.warning(f"[Eligibility] On-chain whitelist check failed unexpectedly: {e}", exc_info=True)
            return False

    async def check_eligibility(
        self,
        address: str,
        account_id: Optional[str],
        invite_code: Optional[str] = None,
        whitelist_id: Optional[str] = None,
    ) -> EligibilityStatus:
        if account_id and await self.check_onchain(account_id, whitelist_id):
            return EligibilityStatus(is_eligible=True, is_whitelisted=True)

        if invite_code:
            return await self._redeem_invite(address, account_id, invite_code)

        return await self._check_access_queue(address, account_id)

    async def _redeem_invite(self, address: str, account_id: Optional[str], code: str) -> EligibilityStatus:
        try:
            data = await self.api.assign_invite_code(address, account_id, code)
        except VenueRejected as e:
            payload = e.payload if isinstance(e.payload, dict) else {}
            return EligibilityStatus(
                is_eligible=False,
                is_whitelisted=False,
                error=payload.get("error") or payload.get("message") or "Invalid invite code",
            )
        except AgentError as e:
            return EligibilityStatus(is_eligible=False, is_whitelisted=False, error=str(e))

        if data and data.get("success"):
            logger.info(f"[Eligibility] Invite code redeemed for {address}")
            return EligibilityStatus(is_eligible=True, is_whitelisted=False, has_invite_code=True)

        return EligibilityStatus(
            is_eligible=False,
            is_whitelisted=False,
            error=(data or {}).get("error") or "Invalid invite code",
        )

    async def _check_access_queue(self, address: str, account_id: Optional[str]) -> EligibilityStatus:
        try:
            data = await self.api.verify_access_queue(address, account_id)
        except AgentError as e:
            logger.warning(f"[Eligibility] Access queue check failed: {e}")
            return EligibilityStatus(is_eligible=False, is_whitelisted=False, error=NOT_ELIGIBLE_MESSAGE)

        data = data or {}
        if data.get("success"):
            # New entry: approved straight away or queued
            if "autoApproved" in data:
                if data["autoApproved"]:
                    return EligibilityStatus(
                        is_eligible=True,
                        is_whitelisted=False,
                        has_invite_code=bool(data.get("invitationCode")),
                    )
                return EligibilityStatus(
                    is_eligible=False,
                    is_whitelisted=False,
                    waitlist_position=data.get("queuePosition"),
                )

            # Existing entry
            if data.get("found"):
                entry = data.get("entry") or {}
                if entry.get("status") == "approved":
                    return EligibilityStatus(
                        is_eligible=True,
                        is_whitelisted=False,
                        has_invite_code=bool(entry.get("invitationCode")),
                    )
                return EligibilityStatus(
                    is_eligible=False,
                    is_whitelisted=False,
                    waitlist_position=entry.get("queuePosition"),
                )

        return EligibilityStatus(is_eligible=False, is_whitelisted=False, error=NOT_ELIGIBLE_MESSAGE)
