"""
Solana payment verification.
Checks a user-submitted transaction signature against chain state without
trusting anything the client claims beyond the signature itself.
"""

import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import base58
import httpx

from aoc.core.exceptions.base import ChainRPCError
from aoc.core.http_client import create_client
from aoc.core.logger.logger import get_logger
from aoc.core.service.chain.models import VerificationReason, VerificationResult
from aoc.core.service.pricing.price_oracle import PriceOracle, sol_amount_for
from aoc.infra.config.settings import get_settings

logger = get_logger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

# Alphabet and length filter, applied before decoding
SIGNATURE_PATTERN = re.compile(r'^[1-9A-HJ-NP-Za-km-z]{32,88}$')
SIGNATURE_BYTES = 64

# JSON-RPC "invalid params", returned for signatures that don't decode
RPC_INVALID_PARAMS = -32602

# Accept block times slightly ahead of our clock
CLOCK_SKEW_SECONDS = 60


def is_valid_signature_format(signature: str) -> bool:
    """True when `signature` is base58 that decodes to an ed25519 signature."""
    if not signature or not SIGNATURE_PATTERN.match(signature):
        return False
    try:
        return len(base58.b58decode(signature)) == SIGNATURE_BYTES
    except ValueError:
        return False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SolanaVerifier:
    """Verifies SOL transfers to the receiving wallet via JSON-RPC `getTransaction`."""

    def __init__(
        self,
        price_oracle: PriceOracle,
        rpc_url: Optional[str] = None,
        recipient: Optional[str] = None,
        tolerance_percent: Optional[float] = None,
        max_age_minutes: Optional[int] = None,
        commitment: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        settings = get_settings()
        self.price_oracle = price_oracle
        self.rpc_url = rpc_url or settings.SOLANA_RPC_URL
        self.recipient = recipient or settings.RECIPIENT_WALLET
        self.tolerance = (tolerance_percent if tolerance_percent is not None
                          else settings.AMOUNT_TOLERANCE_PERCENT) / 100
        self.max_age_seconds = (max_age_minutes if max_age_minutes is not None
                                else settings.MAX_TRANSACTION_AGE_MINUTES) * 60
        self.commitment = commitment or settings.SOLANA_COMMITMENT
        self.client = client or create_client("solana_rpc")
        self.clock = clock
        self._request_id = 0

    async def fetch_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """
        Call `getTransaction`. Returns None when the chain has no such
        transaction, raises ChainRPCError for transport and RPC faults.
        Raises ValueError when the node rejects the signature as malformed.
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "getTransaction",
            "params": [
                signature,
                {
                    "encoding": "json",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        }
        try:
            response = await self.client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(
                "Solana RPC request failed",
                extra={"signature": signature, "error": str(e), "error_type": type(e).__name__}
            )
            raise ChainRPCError("Solana RPC is unreachable", context={"signature": signature}) from e

        if response.status_code != 200:
            logger.error(
                "Solana RPC returned an error status",
                extra={"signature": signature, "status_code": response.status_code}
            )
            raise ChainRPCError(
                f"Solana RPC returned HTTP {response.status_code}",
                context={"signature": signature}
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ChainRPCError("Solana RPC returned malformed JSON", context={"signature": signature}) from e

        if not isinstance(data, dict):
            raise ChainRPCError("Solana RPC returned an unexpected payload", context={"signature": signature})

        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            if code == RPC_INVALID_PARAMS:
                raise ValueError(error.get("message", "invalid signature"))
            logger.error(
                "Solana RPC returned an error",
                extra={"signature": signature, "rpc_error": error}
            )
            raise ChainRPCError("Solana RPC returned an error", context={"signature": signature, "rpc_error": error})

        return data.get("result")

    @staticmethod
    def account_keys(transaction: Dict[str, Any]) -> List[str]:
        """Full account list: static keys, then v0 loaded writable and readonly addresses."""
        keys = list(transaction["transaction"]["message"]["accountKeys"])
        loaded = (transaction.get("meta") or {}).get("loadedAddresses") or {}
        keys.extend(loaded.get("writable") or [])
        keys.extend(loaded.get("readonly") or [])
        return keys

    async def verify(
        self,
        signature: str,
        expected_usd: float,
        tier: Optional[str] = None,
        sol_price: Optional[float] = None,
    ) -> VerificationResult:
        """
        Verify that `signature` is a recent, successful transfer of roughly
        `expected_usd` worth of SOL to the receiving wallet.

        Args:
            signature: Transaction signature submitted by the user
            expected_usd: USD amount the payment should be worth
            tier: Tier being purchased (logging only)
            sol_price: Price captured by the caller; fetched strictly when omitted

        Returns:
            VerificationResult; business failures never raise

        Raises:
            ChainRPCError: RPC unreachable or returned an unusable response
            PriceUnavailableError: no price given and the feed failed
        """
        if not is_valid_signature_format(signature):
            return VerificationResult.reject(
                signature, VerificationReason.INVALID_FORMAT,
                "Invalid transaction signature format"
            )

        try:
            transaction = await self.fetch_transaction(signature)
        except ValueError:
            return VerificationResult.reject(
                signature, VerificationReason.INVALID_FORMAT,
                "Invalid transaction signature format"
            )

        if not transaction:
            return VerificationResult.reject(
                signature, VerificationReason.NOT_FOUND,
                "Transaction not found on the blockchain. Wait for confirmation and try again."
            )

        try:
            return await self._check_transaction(signature, transaction, expected_usd, tier, sol_price)
        except (KeyError, IndexError, TypeError) as e:
            logger.error(
                "Malformed transaction payload from Solana RPC",
                extra={"signature": signature, "error": str(e)}
            )
            raise ChainRPCError("Solana RPC returned a malformed transaction",
                                context={"signature": signature}) from e

    async def _check_transaction(
        self,
        signature: str,
        transaction: Dict[str, Any],
        expected_usd: float,
        tier: Optional[str],
        sol_price: Optional[float],
    ) -> VerificationResult:
        now = self.clock()
        block_time = transaction.get("blockTime")
        if not block_time:
            return VerificationResult.reject(
                signature, VerificationReason.EXPIRED,
                "Transaction has no block time yet"
            )

        confirmed_at = datetime.fromtimestamp(block_time, tz=timezone.utc)
        age_seconds = (now - confirmed_at).total_seconds()
        if age_seconds > self.max_age_seconds:
            return VerificationResult.reject(
                signature, VerificationReason.EXPIRED,
                f"Transaction is too old ({round(age_seconds / 60)} minutes). "
                f"Must be within {self.max_age_seconds // 60} minutes.",
                confirmed_at=confirmed_at,
            )
        if age_seconds < -CLOCK_SKEW_SECONDS:
            logger.warning(
                "Transaction block time is ahead of local clock",
                extra={"signature": signature, "skew_seconds": -age_seconds}
            )

        meta = transaction["meta"]
        if meta.get("err"):
            return VerificationResult.reject(
                signature, VerificationReason.CHAIN_FAILURE,
                "Transaction failed on the blockchain",
                confirmed_at=confirmed_at,
            )

        keys = self.account_keys(transaction)
        try:
            recipient_index = keys.index(self.recipient)
        except ValueError:
            return VerificationResult.reject(
                signature, VerificationReason.WRONG_RECIPIENT,
                "Transaction does not pay the receiving wallet",
                confirmed_at=confirmed_at,
            )

        lamports = meta["postBalances"][recipient_index] - meta["preBalances"][recipient_index]
        paid_sol = lamports / LAMPORTS_PER_SOL

        if sol_price is None:
            sol_price = await self.price_oracle.get_current_price()
        expected_sol = sol_amount_for(expected_usd, sol_price)
        tolerance = expected_sol * self.tolerance

        if paid_sol < expected_sol - tolerance or paid_sol > expected_sol + tolerance:
            return VerificationResult.reject(
                signature, VerificationReason.AMOUNT_MISMATCH,
                f"Incorrect SOL amount. Expected: {expected_sol:.4f} SOL, Actual: {paid_sol:.4f} SOL",
                recipient=self.recipient,
                paid_sol=paid_sol,
                expected_sol=expected_sol,
                sol_price=sol_price,
                confirmed_at=confirmed_at,
            )

        payer_address = keys[0]
        logger.info(
            "Transaction verified",
            extra={
                "signature": signature,
                "tier": tier,
                "payer_address": payer_address,
                "paid_sol": paid_sol,
                "expected_sol": expected_sol,
                "sol_price": sol_price,
            }
        )
        return VerificationResult(
            valid=True,
            signature=signature,
            payer_address=payer_address,
            recipient=self.recipient,
            paid_sol=paid_sol,
            paid_usd=round(paid_sol * sol_price, 2),
            expected_sol=expected_sol,
            sol_price=sol_price,
            confirmed_at=confirmed_at,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
