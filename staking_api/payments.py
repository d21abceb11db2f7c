"""
ZOO Payment Verification

Confirms that a submitted Solana transaction moved at least the order's
ZOO amount into the store wallet:
- Polls getTransaction (jsonParsed) until the transaction is visible
- Rejects failed transactions
- Compares the store's pre/post token balances for the ZOO mint,
  matching by wallet owner first, then by the store's associated token account
"""

import math
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from solders.pubkey import Pubkey

from staking_api.stake_accounts import ZOO_DECIMALS

logger = logging.getLogger("payments")

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWph1k2yV8ZfZ1BTm")


class PaymentVerificationError(Exception):
    """RPC returned an error while looking up a transaction."""


@dataclass
class PaymentResult:
    ok: bool
    signature: Optional[str] = None
    error: str = ""


def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def _balance_base_units(entry: dict) -> int:
    token_amount = entry.get("uiTokenAmount") or entry.get("tokenAmount") or {}
    amount = token_amount.get("amount")
    return int(amount) if amount else 0


def _find_balance(balances: list, mint: str, owners: set[str]) -> int:
    for entry in balances:
        if entry.get("mint") == mint and entry.get("owner") in owners:
            return _balance_base_units(entry)
    return 0


def store_received_amount(meta: dict, mint_address: str, store_wallet: str) -> int:
    """Base units of `mint_address` the store gained in this transaction."""
    pre = meta.get("preTokenBalances") or []
    post = meta.get("postTokenBalances") or []

    owners = {store_wallet}
    store_post = _find_balance(post, mint_address, owners)
    store_pre = _find_balance(pre, mint_address, owners)

    if store_post == 0 and store_pre == 0:
        ata = associated_token_address(
            Pubkey.from_string(store_wallet), Pubkey.from_string(mint_address)
        )
        owners.add(str(ata))
        store_post = _find_balance(post, mint_address, owners)
        store_pre = _find_balance(pre, mint_address, owners)

    return store_post - store_pre


class PaymentVerifier:
    """Verifies ZOO token transfers to the store over Solana JSON-RPC."""

    def __init__(
        self,
        rpc_url: str,
        attempts: int = 10,
        delay_s: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.attempts = max(1, attempts)
        self.delay_s = delay_s
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def fetch_transaction(self, signature: str) -> Optional[dict]:
        """One getTransaction call. Returns None while the tx is not visible."""
        client = await self._get_client()
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getTransaction",
            "params": [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": "confirmed",
                },
            ],
        }
        response = await client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        data = response.json()

        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise PaymentVerificationError(message)
        return data.get("result")

    async def _wait_for_transaction(self, signature: str) -> Optional[dict]:
        for attempt in range(self.attempts):
            tx = await self.fetch_transaction(signature)
            if tx:
                return tx
            if attempt < self.attempts - 1:
                await asyncio.sleep(self.delay_s)
        return None

    async def verify(
        self,
        signature: str,
        store_wallet: str,
        mint_address: str,
        amount_zoo: float,
        payer_wallet: Optional[str] = None,
    ) -> PaymentResult:
        """payer_wallet is only reported in logs; the transfer is matched on the store side."""
        required = math.floor(amount_zoo * 10 ** ZOO_DECIMALS)

        try:
            tx = await self._wait_for_transaction(signature)
            if not tx or not tx.get("meta"):
                return PaymentResult(
                    ok=False,
                    error=f"Transaction not found or not confirmed after {self.attempts} attempts",
                )

            meta = tx["meta"]
            if meta.get("err"):
                return PaymentResult(ok=False, error=f"Transaction failed: {meta['err']}")

            received = store_received_amount(meta, mint_address, store_wallet)
        except (httpx.HTTPError, PaymentVerificationError, ValueError) as e:
            logger.warning(
                f"Payment lookup failed for {signature[:12]}... payer={payer_wallet}: {e}"
            )
            return PaymentResult(ok=False, error=str(e) or "Verification failed")

        if received < required:
            return PaymentResult(
                ok=False,
                error=(
                    f"Insufficient amount: received {received / 10 ** ZOO_DECIMALS} ZOO, "
                    f"need {amount_zoo}"
                ),
            )

        return PaymentResult(ok=True, signature=signature)
