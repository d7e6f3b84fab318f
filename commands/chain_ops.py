"""
Single-transaction chain commands for an already registered host.

    add-stake           top up the stake (approving the registry if needed)
    update-url          change the advertised API URL
    update-models       replace the supported model list
    update-pricing      change the host-wide minimum price
    set-model-pricing   per-model price override (usdc or eth)
    info                registration status, balances, pricing, local config

Each one checks registration first and keeps the local HostConfig in step
with what was written on chain.
"""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Optional

import config as global_config
from commands.context import HostContext, build_context
from economics.registrar import (
    RegistrationStatus, format_amount, from_wei, model_id, model_price_pair,
    to_wei,
)
from host.errors import ErrorCode, PreconditionError, ValidationError
from host.host_config import print_config_summary
from host.validation import (
    validate_address, validate_amount, validate_model_spec, validate_models,
    validate_public_url,
)
from network.probe import extract_host_port

logger = logging.getLogger("llmhost.chain_ops")


def _require_registered(ctx: HostContext) -> RegistrationStatus:
    status = ctx.registrar.check_registration_status()
    if not status.is_registered:
        raise PreconditionError(
            'Host is not registered. Run "llmhost register" first.',
            ErrorCode.NOT_REGISTERED)
    return status


def _check(result, code: ErrorCode):
    if not result:
        raise ValidationError(result.error, code)


# ---------------------------------------------------------------------------
# add-stake
# ---------------------------------------------------------------------------

@dataclass
class StakeResult:
    current: int
    added: int
    new_total: int
    transaction_hash: str
    approved: bool = False


def add_stake(ctx: HostContext, amount_tokens: float,
              skip_approval: bool = False) -> StakeResult:
    _check(validate_amount(amount_tokens, 0, label="Stake amount",
                           exclusive_min=True), ErrorCode.INVALID_AMOUNT)
    status = _require_registered(ctx)
    amount = to_wei(amount_tokens)

    balances = ctx.registrar.get_balances()
    if balances.stake_token < amount:
        raise PreconditionError(
            f"Insufficient {global_config.TOKEN_SYMBOL} token balance",
            ErrorCode.INSUFFICIENT_BALANCE,
            {"required": format_amount(amount),
             "available": format_amount(balances.stake_token)},
        )

    approved = False
    if not skip_approval and not ctx.registrar.check_allowance(amount):
        ctx.registrar.approve_token(amount)
        approved = True

    tx_hash = ctx.registrar.add_stake(amount)
    return StakeResult(
        current=status.staked_amount,
        added=amount,
        new_total=status.staked_amount + amount,
        transaction_hash=tx_hash,
        approved=approved,
    )


# ---------------------------------------------------------------------------
# update-url
# ---------------------------------------------------------------------------

@dataclass
class UrlUpdate:
    old_url: str
    new_url: str
    transaction_hash: str
    config_updated: bool = False


def update_url(ctx: HostContext, url: str) -> UrlUpdate:
    _check(validate_public_url(url), ErrorCode.INVALID_API_URL)
    status = _require_registered(ctx)
    tx_hash = ctx.registrar.update_api_url(url)
    _, port = extract_host_port(url)
    updated = ctx.store.update(public_url=url, inference_port=port)
    return UrlUpdate(old_url=status.api_url, new_url=url,
                     transaction_hash=tx_hash,
                     config_updated=updated is not None)


# ---------------------------------------------------------------------------
# update-models
# ---------------------------------------------------------------------------

def load_models_file(path: str) -> list[str]:
    """One model per line; blank lines and # comments are skipped."""
    models = []
    with open(path, "r") as f:
        for line in f:
            line = line.split("#", 1)[0].strip()
            if line:
                models.append(line)
    return models


@dataclass
class ModelsUpdate:
    old_models: list
    new_models: list
    transaction_hash: str
    verified: bool


def update_models(ctx: HostContext, models: Optional[list] = None,
                  file: Optional[str] = None) -> ModelsUpdate:
    if file:
        models = load_models_file(file)
    _check(validate_models(models or []), ErrorCode.INVALID_MODELS)
    status = _require_registered(ctx)

    tx_hash = ctx.registrar.update_supported_models(models)
    after = ctx.registrar.check_registration_status()
    expected = {model_id(m) for m in models}
    verified = {m.lower() for m in after.models} == expected
    if not verified:
        logger.warning("Model list on chain does not match after tx %s", tx_hash)

    ctx.store.update(models=list(models))
    return ModelsUpdate(old_models=status.models, new_models=list(models),
                        transaction_hash=tx_hash, verified=verified)


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

def _validate_price(price):
    _check(validate_amount(price, global_config.MIN_MODEL_PRICE,
                           global_config.MAX_MODEL_PRICE, label="Price"),
           ErrorCode.INVALID_AMOUNT)


def update_pricing(ctx: HostContext, price: int) -> str:
    _validate_price(price)
    _require_registered(ctx)
    tx_hash = ctx.registrar.update_pricing(int(price))
    ctx.store.update(price_per_token=int(price))
    return tx_hash


@dataclass
class ModelPricing:
    model: str
    model_id: str
    native_price: int
    stable_price: int
    transaction_hash: str


def set_model_pricing(ctx: HostContext, model: str, price: int,
                      price_type: str = "usdc") -> ModelPricing:
    error = validate_model_spec(model)
    if error:
        raise ValidationError(error, ErrorCode.INVALID_MODELS)
    _validate_price(price)
    if price_type not in ("usdc", "eth"):
        raise ValidationError(
            f"Price type must be 'usdc' or 'eth', got '{price_type}'",
            ErrorCode.INVALID_AMOUNT)
    _require_registered(ctx)

    native, stable = model_price_pair(int(price), price_type)
    tx_hash = ctx.registrar.set_model_pricing(model, native, stable)
    return ModelPricing(model=model, model_id=model_id(model),
                        native_price=native, stable_price=stable,
                        transaction_hash=tx_hash)


# ---------------------------------------------------------------------------
# info
# ---------------------------------------------------------------------------

def host_info(ctx: HostContext, address: Optional[str] = None) -> dict:
    if address:
        _check(validate_address(address), ErrorCode.INVALID_ADDRESS)
    status = ctx.registrar.get_host_info(address)
    balances = ctx.registrar.get_balances(address)
    cfg = ctx.store.load()
    return {
        "address": status.host_address,
        "registered": status.is_registered,
        "active": status.is_active,
        "api_url": status.api_url,
        "staked": str(status.staked_amount),
        "models": status.models,
        "pricing": {
            "native_wei": str(status.min_price_native),
            "stable": str(status.min_price_stable),
        },
        "balances": {
            "eth_wei": str(balances.eth),
            "stake_token_wei": str(balances.stake_token),
        },
        "local": asdict(cfg) if cfg else None,
    }


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def run_add_stake(args):
    ctx = build_context(args)
    symbol = global_config.TOKEN_SYMBOL
    result = add_stake(ctx, args.amount, skip_approval=args.skip_approval)
    print(f"[Stake] Current stake: {format_amount(result.current)} {symbol}")
    print(f"[Stake] Adding: {format_amount(result.added)} {symbol}")
    if result.approved:
        print("[Stake] Approved registry to spend tokens")
    print(f"[Stake] New total: {format_amount(result.new_total)} {symbol}")
    print(f"[Stake] Transaction: {result.transaction_hash}")


def run_update_url(args):
    ctx = build_context(args)
    result = update_url(ctx, args.url)
    print(f"[Update] Old URL: {result.old_url or '(none)'}")
    print(f"[Update] New URL: {result.new_url}")
    print(f"[Update] Transaction: {result.transaction_hash}")
    if not result.config_updated:
        print("[Update] No local configuration to update")


def run_update_models(args):
    ctx = build_context(args)
    result = update_models(ctx, models=args.models, file=args.file)
    print(f"[Update] Models ({len(result.new_models)}):")
    for m in result.new_models:
        print(f"  - {m}")
    print(f"[Update] Transaction: {result.transaction_hash}")
    if not result.verified:
        print("[Update] Warning: on-chain model list does not match yet")


def run_update_pricing(args):
    ctx = build_context(args)
    tx_hash = update_pricing(ctx, args.price)
    print(f"[Pricing] Minimum price set to {args.price}")
    print(f"[Pricing] Transaction: {tx_hash}")


def run_set_model_pricing(args):
    ctx = build_context(args)
    result = set_model_pricing(ctx, args.model, args.price, args.price_type)
    print(f"[Pricing] Model: {result.model} ({result.model_id[:18]}...)")
    if args.price_type == "eth":
        print(f"[Pricing] Native price: {result.native_price} wei")
    else:
        print(f"[Pricing] Stable price: {result.stable_price}")
    print(f"[Pricing] Transaction: {result.transaction_hash}")


def run_info(args):
    ctx = build_context(args)
    info = host_info(ctx, args.address)
    if args.json:
        print(json.dumps(info, indent=2))
        return

    symbol = global_config.TOKEN_SYMBOL
    sep = "=" * 60
    print(sep)
    print("  llmhost — Host Info")
    print(sep)
    print(f"  Address:     {info['address']}")
    print(f"  Registered:  {'yes' if info['registered'] else 'no'}")
    if info["registered"]:
        print(f"  Active:      {'yes' if info['active'] else 'no'}")
        print(f"  API URL:     {info['api_url']}")
        print(f"  Staked:      {format_amount(int(info['staked']))} {symbol}")
        print(f"  Models:      {len(info['models'])}")
        print(f"  Min price:   {info['pricing']['stable']} (stable)")
    print("-" * 60)
    print(f"  ETH:         {from_wei(int(info['balances']['eth_wei'])):.4f}")
    print(f"  {symbol}:         "
          f"{format_amount(int(info['balances']['stake_token_wei']))}")
    print(sep)

    cfg = ctx.store.load()
    if cfg is not None:
        print()
        print_config_summary(cfg, ctx.store.path)
