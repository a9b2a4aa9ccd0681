"""Read-only client for the on-chain DelegationPolicy mandate registry."""

from __future__ import annotations

import logging
import time
from typing import Optional

from eth_utils import to_checksum_address

from .errors import AgentError
from .mandate import ZERO_ADDRESS, Mandate, normalize_address
from .rpc import JsonRpcClient

logger = logging.getLogger(__name__)


GET_MANDATE_SIGNATURE = "getMandate(address,address)"
GET_MANDATE_RESULT = ["(address,uint256,address[],uint256,bool,uint256)"]
IS_AUTHORIZED_SIGNATURE = "isAgentAuthorized(address,address)"


class MandateStoreClient:
    """Fetches the current mandate for an (account, agent) pair.

    Holds no state beyond the last fetched value. Read failures are logged
    and reported as "not found" so the agent loop can retry next cycle.
    """

    def __init__(self, policy_address: str, rpc: JsonRpcClient):
        self.policy_address = normalize_address(policy_address)
        self.rpc = rpc
        self.last_mandate: Optional[Mandate] = None

    def get_mandate(self, account: str, agent: str) -> Optional[Mandate]:
        logger.debug("Fetching mandate (account=%s, agent=%s)", account, agent)
        try:
            (raw,) = self.rpc.call_function(
                self.policy_address,
                GET_MANDATE_SIGNATURE,
                ["address", "address"],
                [_checksum_arg(account), _checksum_arg(agent)],
                GET_MANDATE_RESULT,
            )
            mandate = Mandate.from_abi(raw)
        except (AgentError, ValueError) as e:
            logger.error("Failed to fetch mandate: %s", e)
            self.last_mandate = None
            return None

        if mandate.agent == ZERO_ADDRESS:
            logger.warning("No mandate registered for agent %s on %s", agent, account)
            self.last_mandate = None
            return None

        logger.debug("Mandate fetched: %s", mandate.to_dict())
        self.last_mandate = mandate
        return mandate

    def is_authorized(self, account: str, agent: str) -> bool:
        try:
            (authorized,) = self.rpc.call_function(
                self.policy_address,
                IS_AUTHORIZED_SIGNATURE,
                ["address", "address"],
                [_checksum_arg(account), _checksum_arg(agent)],
                ["bool"],
            )
        except (AgentError, ValueError) as e:
            logger.error("Failed to check authorization: %s", e)
            return False
        return bool(authorized)

    @staticmethod
    def is_expired(mandate: Mandate, now: Optional[int] = None) -> bool:
        return mandate.is_expired(now)

    @staticmethod
    def is_market_allowed(mandate: Mandate, market: str) -> bool:
        return mandate.allows_market(market)

    def check_authorization(
        self,
        mandate: Optional[Mandate],
        market: str,
        now: Optional[int] = None,
    ) -> tuple[bool, str]:
        """Decide whether a trade on `market` is covered by `mandate`."""
        current = int(time.time()) if now is None else now
        if mandate is None:
            return False, "No mandate found"
        if self.is_expired(mandate, current):
            return False, f"Mandate expired at {mandate.expiry_time}"
        # Inactive mandates pass through; the strategy backs off on them.
        if mandate.is_active and mandate.max_trade_size <= 0:
            return False, "Mandate max trade size is zero"
        if not self.is_market_allowed(mandate, market):
            return False, f"Market {market} is not in mandate allowlist"
        return True, "OK"


def _checksum_arg(address: str) -> str:
    return to_checksum_address(normalize_address(address))
