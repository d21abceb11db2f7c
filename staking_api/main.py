"""
FastAPI Server: Fulcanellie Staking API

Backend for the WooCommerce ZOO store:
- Tier gating (product visibility, checkout, discounts, exclusive products)
  from each wallet's on-chain stake
- Stake / unstake submission through a pluggable operator
- ZOO payment verification for checkout orders

The staking config is resolved once at startup and handed to create_app();
the server refuses to start without it.
"""

import os
import re
import sys
import math
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, Union

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from staking_api import tiers
from staking_api.config import (
    DEVNET,
    ConfigResolver,
    ConfigurationError,
    Settings,
    StakingConfig,
    rpc_url_for,
)
from staking_api.payments import PaymentVerifier
from staking_api.stake_accounts import (
    SolanaStakeReader,
    StakeInfo,
    StakeOperator,
    StakeStateReader,
)

logger = logging.getLogger("main")

SERVICE_NAME = "fulcanellie-staking-api"

ROUTE_TABLE = [
    ("GET", "/api/staking/status?user_address=<address>"),
    ("GET", "/api/staking/visibility?user_address=<address>"),
    ("GET", "/api/staking/checkout?user_address=<address>"),
    ("GET", "/api/staking/discount?user_address=<address>&cart_total=<amount>"),
    ("GET", "/api/staking/exclusive?user_address=<address>"),
    ("POST", "/api/staking/stake"),
    ("POST", "/api/staking/request-unstake"),
    ("POST", "/api/staking/complete-unstake"),
    ("POST", "/api/zoo/verify-payment"),
]


# ══════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════

# Fields are optional so missing values produce the API's own 400 messages.

class StakeRequest(BaseModel):
    user_address: Optional[str] = None
    amount: Optional[float] = None


class UnstakeRequest(BaseModel):
    user_address: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    order_id: Optional[Union[int, str]] = None
    signature: Any = None
    payer_wallet: Optional[str] = None
    amount_zoo: Any = None


# ══════════════════════════════════════════════════════════════════════
# Helpers
# ══════════════════════════════════════════════════════════════════════

def _require_user_address(user_address: Optional[str], message: str = "Missing user_address") -> str:
    if not user_address:
        raise HTTPException(400, message)
    return user_address


_LEADING_NUMBER = re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _parse_cart_total(value: Optional[str]) -> float:
    """Lenient: reads the leading number ("12abc" is 12); otherwise a zero cart."""
    match = _LEADING_NUMBER.match(value or "")
    if not match:
        return 0.0
    total = float(match.group())
    return total if math.isfinite(total) else 0.0


def _parse_amount(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


async def _load_stake(request: Request, user_address: str) -> Optional[StakeInfo]:
    reader: StakeStateReader = request.app.state.stake_reader
    try:
        return await reader.get_stake_info(user_address)
    except ValueError as e:
        raise HTTPException(400, f"Invalid user_address: {e}")
    except Exception as e:
        logger.error(f"Stake lookup failed for {user_address[:8]}...: {e}")
        raise HTTPException(500, str(e))


def _require_operator(request: Request) -> StakeOperator:
    operator = request.app.state.stake_operator
    if operator is None:
        raise HTTPException(503, "Staking operations backend not configured")
    return operator


# ══════════════════════════════════════════════════════════════════════
# /api/staking: tier gating + stake operations
# ══════════════════════════════════════════════════════════════════════

staking_router = APIRouter(prefix="/staking")


@staking_router.get("/status")
async def staking_status(request: Request, user_address: Optional[str] = None):
    address = _require_user_address(user_address, "Missing user_address parameter")
    stake = await _load_stake(request, address)
    return {"success": True, "status": tiers.staking_status(stake)}


@staking_router.get("/visibility")
async def staking_visibility(request: Request, user_address: Optional[str] = None):
    address = _require_user_address(user_address)
    stake = await _load_stake(request, address)
    return {"success": True, **tiers.product_visibility(stake)}


@staking_router.get("/checkout")
async def staking_checkout(request: Request, user_address: Optional[str] = None):
    address = _require_user_address(user_address)
    stake = await _load_stake(request, address)
    return {"success": True, **tiers.checkout_permission(stake)}


@staking_router.get("/discount")
async def staking_discount(
    request: Request,
    user_address: Optional[str] = None,
    cart_total: Optional[str] = None,
):
    address = _require_user_address(user_address)
    total = _parse_cart_total(cart_total)
    stake = await _load_stake(request, address)
    return {"success": True, **tiers.staking_discount(stake, total)}


@staking_router.get("/exclusive")
async def staking_exclusive(request: Request, user_address: Optional[str] = None):
    address = _require_user_address(user_address)
    stake = await _load_stake(request, address)
    return {"success": True, **tiers.exclusive_access(stake)}


@staking_router.post("/stake")
async def stake_tokens(request: Request, req: StakeRequest):
    if not req.user_address or not req.amount or req.amount <= 0:
        raise HTTPException(400, "Missing user_address or amount")
    operator = _require_operator(request)

    try:
        signature = await operator.stake(req.user_address, req.amount)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except Exception as e:
        logger.error(f"Stake failed for {req.user_address[:8]}...: {e}")
        raise HTTPException(500, str(e))

    logger.info(f"Stake submitted for {req.user_address[:8]}...: {req.amount} ZOO ({signature})")
    return {"success": True, "signature": signature}


@staking_router.post("/request-unstake")
async def request_unstake(request: Request, req: UnstakeRequest):
    address = _require_user_address(req.user_address)
    operator = _require_operator(request)

    try:
        signature = await operator.request_unstake(address)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except Exception as e:
        logger.error(f"Unstake request failed for {address[:8]}...: {e}")
        raise HTTPException(500, str(e))

    return {
        "success": True,
        "signature": signature,
        "message": "Unstake requested. Access revoked immediately. Tokens unlock in 2 days.",
    }


@staking_router.post("/complete-unstake")
async def complete_unstake(request: Request, req: UnstakeRequest):
    address = _require_user_address(req.user_address)
    operator = _require_operator(request)

    try:
        signature = await operator.complete_unstake(address)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except Exception as e:
        logger.error(f"Unstake completion failed for {address[:8]}...: {e}")
        raise HTTPException(500, str(e))

    return {
        "success": True,
        "signature": signature,
        "message": "Unstake completed. Tokens returned.",
    }


# ══════════════════════════════════════════════════════════════════════
# /api/zoo: payment verification
# ══════════════════════════════════════════════════════════════════════

zoo_router = APIRouter(prefix="/zoo")


@zoo_router.post("/verify-payment")
async def verify_payment(request: Request, req: VerifyPaymentRequest):
    if not req.signature or not isinstance(req.signature, str):
        raise HTTPException(400, "Missing or invalid signature")

    amount_zoo = _parse_amount(req.amount_zoo)
    if amount_zoo is None or not math.isfinite(amount_zoo) or amount_zoo <= 0:
        raise HTTPException(400, "Missing or invalid amount_zoo")

    config: StakingConfig = request.app.state.config
    store_wallet = config.lookup("zoo_store_wallet")
    mint_address = config.lookup("mint_address", "zooMintAddress")
    if not store_wallet or not mint_address:
        raise HTTPException(500, "Server config missing zooStoreWallet or mintAddress")

    verifier: PaymentVerifier = request.app.state.payment_verifier
    result = await verifier.verify(
        signature=req.signature,
        store_wallet=store_wallet,
        mint_address=mint_address,
        amount_zoo=amount_zoo,
        payer_wallet=req.payer_wallet,
    )

    if not result.ok:
        logger.error(
            f"ZOO payment verification failed: order={req.order_id} sig={req.signature} "
            f"payer={req.payer_wallet} amount={amount_zoo} error={result.error}"
        )
        raise HTTPException(400, result.error)

    logger.info(
        f"ZOO payment verified: order={req.order_id} sig={req.signature} "
        f"payer={req.payer_wallet} amount={amount_zoo}"
    )
    return {"success": True, "signature": result.signature, "order_id": req.order_id}


# ══════════════════════════════════════════════════════════════════════
# App Factory
# ══════════════════════════════════════════════════════════════════════

def create_app(
    config: StakingConfig,
    stake_reader: Optional[StakeStateReader] = None,
    stake_operator: Optional[StakeOperator] = None,
    payment_verifier: Optional[PaymentVerifier] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the API around an already-resolved staking config."""
    settings = settings or Settings()
    rpc_url = rpc_url_for(config.lookup("network") or DEVNET, settings.rpc_url)

    if stake_reader is None:
        stake_reader = SolanaStakeReader(
            program_id=config.lookup("program_id") or "",
            mint_address=config.lookup("mint_address", "zooMintAddress") or "",
            rpc_url=rpc_url,
        )
    if payment_verifier is None:
        payment_verifier = PaymentVerifier(
            rpc_url,
            attempts=settings.payment_confirm_attempts,
            delay_s=settings.payment_confirm_delay_s,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Staking API starting on port {settings.port} ({rpc_url})")
        for method, path in ROUTE_TABLE:
            logger.info(f"  {method:<4} {path}")
        yield
        await payment_verifier.close()
        logger.info("Staking API shutting down")

    app = FastAPI(
        title="Fulcanellie Staking API",
        description="Tier-gated WooCommerce checkout and ZOO payment verification",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.stake_reader = stake_reader
    app.state.stake_operator = stake_operator
    app.state.payment_verifier = payment_verifier

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list(),
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse({"success": False, "error": "Invalid request body"}, status_code=400)

    @app.get("/")
    async def root():
        return {"ok": True, "service": SERVICE_NAME}

    api = APIRouter(prefix="/api")
    api.include_router(staking_router)
    api.include_router(zoo_router)
    app.include_router(api)

    return app


# ══════════════════════════════════════════════════════════════════════
# Entry Point
# ══════════════════════════════════════════════════════════════════════

def setup_logging(log_file: str):
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_file),
        ],
    )


def main():
    import uvicorn
    from dotenv import load_dotenv

    load_dotenv()
    settings = Settings()
    setup_logging(settings.log_file)

    try:
        config = ConfigResolver().resolve()
    except ConfigurationError as e:
        logger.error(f"Refusing to start: {e}")
        sys.exit(1)

    app = create_app(config, settings=settings)

    logger.info(f"Starting server on {settings.bind_host}:{settings.port}")
    uvicorn.run(app, host=settings.bind_host, port=settings.port)


if __name__ == "__main__":
    main()
