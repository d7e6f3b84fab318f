"""
Unit tests for the single-transaction chain commands.
"""

import json

import pytest
from web3 import Web3

from commands.chain_ops import (
    add_stake,
    host_info,
    load_models_file,
    set_model_pricing,
    update_models,
    update_pricing,
    update_url,
)
from economics.registrar import model_id, model_price_pair, to_wei
from host.errors import ErrorCode, PreconditionError, ValidationError

from conftest import FakeRegistrar, MODEL, PUBLIC_URL


@pytest.fixture
def registrar():
    return FakeRegistrar(registered=True, staked_tokens=1000, tokens=5000)


class TestNotRegistered:

    @pytest.mark.parametrize("call", [
        lambda ctx: add_stake(ctx, 10),
        lambda ctx: update_url(ctx, "http://198.51.100.7:9000"),
        lambda ctx: update_models(ctx, [MODEL]),
        lambda ctx: update_pricing(ctx, 2000),
        lambda ctx: set_model_pricing(ctx, MODEL, 5),
    ])
    def test_requires_registration(self, ctx, registrar, call):
        registrar.registered = False
        with pytest.raises(PreconditionError) as exc:
            call(ctx)
        assert exc.value.code == ErrorCode.NOT_REGISTERED


class TestAddStake:

    def test_approves_when_allowance_short(self, ctx, registrar):
        result = add_stake(ctx, 500)
        assert result.approved
        assert registrar.calls.index("approve_token") < registrar.calls.index("add_stake")
        assert result.current == to_wei(1000)
        assert result.added == to_wei(500)
        assert result.new_total == to_wei(1500)

    def test_skips_approval_when_allowance_sufficient(self, ctx, registrar):
        registrar.allowance = to_wei(10_000)
        result = add_stake(ctx, 500)
        assert not result.approved
        assert "approve_token" not in registrar.calls

    def test_skip_approval_flag(self, ctx, registrar):
        result = add_stake(ctx, 500, skip_approval=True)
        assert not result.approved
        assert "check_allowance" not in registrar.calls
        assert "approve_token" not in registrar.calls

    def test_insufficient_balance(self, ctx, registrar):
        with pytest.raises(PreconditionError) as exc:
            add_stake(ctx, 6000)
        assert exc.value.code == ErrorCode.INSUFFICIENT_BALANCE
        assert "Insufficient" in str(exc.value)
        assert "balance" in str(exc.value)
        assert "add_stake" not in registrar.calls

    @pytest.mark.parametrize("amount", [0, -5, "lots"])
    def test_invalid_amount(self, ctx, amount):
        with pytest.raises(ValidationError):
            add_stake(ctx, amount)


class TestUpdateUrl:

    def test_updates_chain_and_config(self, ctx, registrar, store,
                                      registered_config):
        store.save(registered_config)
        result = update_url(ctx, "http://198.51.100.7:9000")
        assert result.old_url == PUBLIC_URL
        assert result.new_url == "http://198.51.100.7:9000"
        assert result.config_updated
        assert registrar.api_url == "http://198.51.100.7:9000"
        saved = store.load()
        assert saved.public_url == "http://198.51.100.7:9000"
        assert saved.inference_port == 9000
        assert saved.models == registered_config.models

    def test_without_local_config(self, ctx, store):
        result = update_url(ctx, "http://198.51.100.7:9000")
        assert not result.config_updated
        assert not store.exists()

    def test_invalid_url(self, ctx, registrar):
        with pytest.raises(ValidationError) as exc:
            update_url(ctx, "http://198.51.100.7")
        assert exc.value.code == ErrorCode.INVALID_API_URL
        assert "update_api_url" not in registrar.calls


class TestUpdateModels:

    def test_from_list(self, ctx, registrar, store, registered_config):
        store.save(registered_config)
        models = ["org/a:a.gguf", "org/b:b.gguf"]
        result = update_models(ctx, models)
        assert result.verified
        assert registrar.models == [model_id(m) for m in models]
        assert store.load().models == models

    def test_from_file(self, ctx, tmp_path):
        path = tmp_path / "models.txt"
        path.write_text("# production models\norg/a:a.gguf\n\n"
                        "org/b:b.gguf  # second\n")
        assert load_models_file(str(path)) == ["org/a:a.gguf", "org/b:b.gguf"]
        result = update_models(ctx, file=str(path))
        assert result.new_models == ["org/a:a.gguf", "org/b:b.gguf"]

    def test_invalid_entry(self, ctx, registrar):
        with pytest.raises(ValidationError) as exc:
            update_models(ctx, ["org/a:a.gguf", "broken"])
        assert "broken" in str(exc.value)
        assert "update_supported_models" not in registrar.calls


class TestPricing:

    def test_update_pricing(self, ctx, registrar, store, registered_config):
        store.save(registered_config)
        assert update_pricing(ctx, 3000) == "0xpricingtx"
        assert ("update_pricing", 3000) in registrar.calls
        assert store.load().price_per_token == 3000

    @pytest.mark.parametrize("price", [0, 100_000_001])
    def test_price_range(self, ctx, price):
        with pytest.raises(ValidationError):
            update_pricing(ctx, price)

    def test_usdc_conversion(self):
        assert model_price_pair(5, "usdc") == (0, 5000)

    def test_eth_conversion(self):
        assert model_price_pair(5, "eth") == (5 * 10**9, 0)

    def test_set_model_pricing_usdc(self, ctx, registrar):
        result = set_model_pricing(ctx, MODEL, 5)
        assert (result.native_price, result.stable_price) == (0, 5000)
        assert ("set_model_pricing", MODEL, 0, 5000) in registrar.calls

    def test_set_model_pricing_eth(self, ctx, registrar):
        result = set_model_pricing(ctx, MODEL, 5, "eth")
        assert ("set_model_pricing", MODEL, 5_000_000_000, 0) in registrar.calls
        assert result.model_id == model_id(MODEL)

    def test_set_model_pricing_bounds(self, ctx):
        set_model_pricing(ctx, MODEL, 1)
        set_model_pricing(ctx, MODEL, 100_000_000)
        with pytest.raises(ValidationError):
            set_model_pricing(ctx, MODEL, 100_000_001)

    def test_set_model_pricing_bad_type(self, ctx):
        with pytest.raises(ValidationError):
            set_model_pricing(ctx, MODEL, 5, "btc")


class TestModelId:

    def test_is_keccak_of_repo_slash_file(self):
        repo, filename = MODEL.split(":")
        expected = Web3.to_hex(Web3.keccak(text=f"{repo}/{filename}"))
        assert model_id(MODEL) == expected
        assert len(model_id(MODEL)) == 66


class TestHostInfo:

    def test_json_serialisable(self, ctx, store, registered_config):
        store.save(registered_config)
        info = host_info(ctx)
        doc = json.loads(json.dumps(info))
        assert doc["registered"] is True
        assert doc["api_url"] == PUBLIC_URL
        assert doc["staked"] == str(to_wei(1000))
        assert doc["local"]["public_url"] == PUBLIC_URL

    def test_invalid_address(self, ctx):
        with pytest.raises(ValidationError):
            host_info(ctx, "0xnope")
