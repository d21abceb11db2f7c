"""Tests for ZOO payment verification over a mocked JSON-RPC transport."""

import json

import httpx
import pytest
from solders.pubkey import Pubkey

from staking_api.payments import (
    PaymentResult,
    PaymentVerifier,
    associated_token_address,
    store_received_amount,
)


MINT = str(Pubkey.new_unique())
STORE = str(Pubkey.new_unique())
PAYER = str(Pubkey.new_unique())
SIG = "5" * 88


def _balance(owner: str, amount: int, mint: str = MINT) -> dict:
    return {
        "accountIndex": 1,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"amount": str(amount), "decimals": 9},
    }


def _tx(pre: list, post: list, err=None) -> dict:
    return {"slot": 1, "meta": {"err": err, "preTokenBalances": pre, "postTokenBalances": post}}


def _verifier(responses: list, calls: list | None = None, attempts: int = 3) -> PaymentVerifier:
    """Verifier whose RPC answers with `responses` in order (last one repeats)."""
    calls = calls if calls is not None else []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        body = responses[min(len(calls), len(responses)) - 1]
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, json=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PaymentVerifier("http://rpc.test", attempts=attempts, delay_s=0, client=client)


def _ok(result) -> dict:
    return {"jsonrpc": "2.0", "id": 1, "result": result}


# ---------------------------------------------------------------------------
# Balance matching
# ---------------------------------------------------------------------------


class TestStoreReceivedAmount:
    def test_owner_match(self) -> None:
        meta = _tx([_balance(STORE, 1_000)], [_balance(STORE, 6_000)])["meta"]
        assert store_received_amount(meta, MINT, STORE) == 5_000

    def test_new_token_account_has_no_pre_balance(self) -> None:
        meta = _tx([], [_balance(STORE, 2_000)])["meta"]
        assert store_received_amount(meta, MINT, STORE) == 2_000

    def test_other_mint_ignored(self) -> None:
        other = str(Pubkey.new_unique())
        meta = _tx([], [_balance(STORE, 9_000, mint=other)])["meta"]
        assert store_received_amount(meta, MINT, STORE) == 0

    def test_falls_back_to_associated_token_account(self) -> None:
        ata = str(associated_token_address(Pubkey.from_string(STORE), Pubkey.from_string(MINT)))
        meta = _tx([_balance(ata, 0)], [_balance(ata, 3_000)])["meta"]
        assert store_received_amount(meta, MINT, STORE) == 3_000

    def test_missing_balance_lists(self) -> None:
        assert store_received_amount({}, MINT, STORE) == 0


# ---------------------------------------------------------------------------
# PaymentVerifier.verify
# ---------------------------------------------------------------------------


class TestPaymentVerifier:
    @pytest.mark.asyncio
    async def test_sufficient_payment(self) -> None:
        calls: list = []
        tx = _tx([_balance(STORE, 0)], [_balance(STORE, 5 * 10 ** 9)])
        verifier = _verifier([_ok(tx)], calls)

        result = await verifier.verify(SIG, STORE, MINT, 5)

        assert result == PaymentResult(ok=True, signature=SIG)
        assert calls[0]["method"] == "getTransaction"
        assert calls[0]["params"][0] == SIG
        assert calls[0]["params"][1]["encoding"] == "jsonParsed"
        assert calls[0]["params"][1]["maxSupportedTransactionVersion"] == 0

    @pytest.mark.asyncio
    async def test_insufficient_payment(self) -> None:
        tx = _tx([_balance(STORE, 0)], [_balance(STORE, 4 * 10 ** 9)])
        result = await _verifier([_ok(tx)]).verify(SIG, STORE, MINT, 5)
        assert result.ok is False
        assert result.error == "Insufficient amount: received 4.0 ZOO, need 5"

    @pytest.mark.asyncio
    async def test_polls_until_visible(self) -> None:
        calls: list = []
        tx = _tx([], [_balance(STORE, 10 ** 9)])
        verifier = _verifier([_ok(None), _ok(None), _ok(tx)], calls)
        result = await verifier.verify(SIG, STORE, MINT, 1)
        assert result.ok is True
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_not_found_after_attempts(self) -> None:
        calls: list = []
        result = await _verifier([_ok(None)], calls, attempts=4).verify(SIG, STORE, MINT, 1)
        assert result.ok is False
        assert result.error == "Transaction not found or not confirmed after 4 attempts"
        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_failed_transaction(self) -> None:
        tx = _tx([], [_balance(STORE, 10 ** 9)], err={"InstructionError": [0, "Custom"]})
        result = await _verifier([_ok(tx)]).verify(SIG, STORE, MINT, 1)
        assert result.ok is False
        assert result.error.startswith("Transaction failed:")

    @pytest.mark.asyncio
    async def test_rpc_error_reported(self) -> None:
        body = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid param"}}
        result = await _verifier([body]).verify(SIG, STORE, MINT, 1)
        assert result.ok is False
        assert result.error == "Invalid param"

    @pytest.mark.asyncio
    async def test_http_error_reported(self) -> None:
        result = await _verifier([httpx.Response(503, text="busy")]).verify(SIG, STORE, MINT, 1)
        assert result.ok is False
        assert "503" in result.error

    @pytest.mark.asyncio
    async def test_fractional_amount_floors_to_base_units(self) -> None:
        tx = _tx([], [_balance(STORE, 1_500_000_000)])
        result = await _verifier([_ok(tx)]).verify(SIG, STORE, MINT, 1.5)
        assert result.ok is True

    @pytest.mark.asyncio
    async def test_payer_wallet_accepted_and_logged(self, caplog) -> None:
        tx = _tx([], [_balance(STORE, 10 ** 9)])
        result = await _verifier([_ok(tx)]).verify(SIG, STORE, MINT, 1, payer_wallet=PAYER)
        assert result == PaymentResult(ok=True, signature=SIG)

        with caplog.at_level("WARNING", logger="payments"):
            failed = await _verifier([httpx.Response(503, text="busy")]).verify(
                SIG, STORE, MINT, 1, payer_wallet=PAYER
            )
        assert failed.ok is False
        assert f"payer={PAYER}" in caplog.text
