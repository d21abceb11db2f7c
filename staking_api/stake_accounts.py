"""
Staking-State Backend

Reads per-wallet stake accounts of the ZOO staking program:
- PDA derivation (vault per mint, stake account per vault + user)
- Anchor account decoding (discriminator + borsh fields)
- Async RPC reads through solana-py

Writing to the program (stake / unstake transactions) is delegated to a
StakeOperator supplied by the host; this module only defines its shape.
"""

import struct
import hashlib
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from solders.pubkey import Pubkey

logger = logging.getLogger("stake_accounts")

ZOO_DECIMALS = 9
UNSTAKE_LOCK_SECONDS = 2 * 24 * 60 * 60

VAULT_SEED = b"vault"
STAKE_SEED = b"stake"

STAKE_ACCOUNT_DISCRIMINATOR = hashlib.sha256(b"account:StakeAccount").digest()[:8]


class StakeAccountError(Exception):
    """Stake account data could not be read or decoded."""


class StakeStatus(Enum):
    ACTIVE = "Active"
    UNSTAKING = "Unstaking"   # 2-day lock, access already revoked
    UNSTAKED = "Unstaked"


# Borsh enum variant index -> status
_STATUS_BY_INDEX = [StakeStatus.ACTIVE, StakeStatus.UNSTAKING, StakeStatus.UNSTAKED]


@dataclass
class StakeInfo:
    """Decoded stake account. `amount` is in base units (9 decimals)."""
    user: str
    amount: int
    timestamp: int
    status: StakeStatus
    unstake_timestamp: Optional[int] = None
    penalty_applied: bool = False

    @property
    def amount_tokens(self) -> float:
        return self.amount / 10 ** ZOO_DECIMALS

    @property
    def unlock_timestamp(self) -> Optional[int]:
        if self.status == StakeStatus.UNSTAKING and self.unstake_timestamp is not None:
            return self.unstake_timestamp + UNSTAKE_LOCK_SECONDS
        return None


# ── PDA Derivation ──────────────────────────────────────────────────

def vault_pda(mint: Pubkey, program_id: Pubkey) -> tuple[Pubkey, int]:
    return Pubkey.find_program_address([VAULT_SEED, bytes(mint)], program_id)


def stake_account_pda(vault: Pubkey, user: Pubkey, program_id: Pubkey) -> tuple[Pubkey, int]:
    return Pubkey.find_program_address([STAKE_SEED, bytes(vault), bytes(user)], program_id)


# ── Account Decoding ────────────────────────────────────────────────

def decode_stake_account(data: bytes) -> StakeInfo:
    """
    Decode an Anchor StakeAccount:
        [8] discriminator | [32] user | u64 amount | i64 timestamp
        | Option<i64> unstake_timestamp | u8 status | bool penalty_applied
    """
    if len(data) < 8 or data[:8] != STAKE_ACCOUNT_DISCRIMINATOR:
        raise StakeAccountError("Not a stake account (discriminator mismatch)")

    try:
        offset = 8
        user = Pubkey(data[offset:offset + 32])
        offset += 32
        amount, timestamp = struct.unpack_from("<Qq", data, offset)
        offset += 16

        unstake_timestamp = None
        has_unstake = data[offset]
        offset += 1
        if has_unstake:
            (unstake_timestamp,) = struct.unpack_from("<q", data, offset)
            offset += 8

        status_index = data[offset]
        penalty_applied = bool(data[offset + 1])
    except (struct.error, IndexError, ValueError) as e:
        raise StakeAccountError(f"Truncated stake account data: {e}") from e

    if status_index >= len(_STATUS_BY_INDEX):
        raise StakeAccountError(f"Unknown stake status variant: {status_index}")

    return StakeInfo(
        user=str(user),
        amount=amount,
        timestamp=timestamp,
        status=_STATUS_BY_INDEX[status_index],
        unstake_timestamp=unstake_timestamp,
        penalty_applied=penalty_applied,
    )


# ── Backend Interfaces ──────────────────────────────────────────────

@runtime_checkable
class StakeStateReader(Protocol):
    """Source of truth for a wallet's stake."""

    async def get_stake_info(self, user_address: str) -> Optional[StakeInfo]: ...


@runtime_checkable
class StakeOperator(Protocol):
    """Submits staking transactions and returns their signatures."""

    async def stake(self, user_address: str, amount: float) -> str: ...

    async def request_unstake(self, user_address: str) -> str: ...

    async def complete_unstake(self, user_address: str) -> str: ...


class SolanaStakeReader:
    """StakeStateReader backed by the staking program's on-chain accounts."""

    def __init__(self, program_id: str, mint_address: str, rpc_url: str):
        self.program_id = program_id
        self.mint_address = mint_address
        self.rpc_url = rpc_url

    def _program_keys(self) -> tuple[Pubkey, Pubkey]:
        try:
            return Pubkey.from_string(self.program_id), Pubkey.from_string(self.mint_address)
        except ValueError as e:
            raise StakeAccountError(f"Invalid programId or mintAddress in staking config: {e}") from e

    def stake_account_address(self, user_address: str) -> Pubkey:
        """Raises ValueError for a malformed user address."""
        program_id, mint = self._program_keys()
        user = Pubkey.from_string(user_address)
        vault, _ = vault_pda(mint, program_id)
        address, _ = stake_account_pda(vault, user, program_id)
        return address

    async def get_stake_info(self, user_address: str) -> Optional[StakeInfo]:
        from solana.rpc.async_api import AsyncClient

        address = self.stake_account_address(user_address)

        async with AsyncClient(self.rpc_url) as client:
            resp = await client.get_account_info(address)

        if resp.value is None:
            logger.debug(f"No stake account for {user_address[:8]}...")
            return None
        return decode_stake_account(bytes(resp.value.data))
