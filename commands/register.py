"""
Register — bring a host online and put it on chain, all or nothing.

    CheckingStatus -> Validating -> Starting -> VerifyingReachability
        -> Registering -> Persisting -> Done

A failure or Ctrl+C while verifying reachability or registering force-stops
the freshly spawned process and persists nothing. Stake is only submitted once
the public URL has answered a health probe.

Usage:
    llmhost register --api-url http://203.0.113.5:8080 \
        --models TheBloke/Llama-2-7B-GGUF:llama-2-7b.Q4_K_M.gguf
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import config as global_config
from commands.context import HostContext, build_context, ensure_can_spawn
from economics.registrar import (
    RegistrationRequest, RegistrationStatus, format_amount, to_wei,
)
from economics.requirements import format_requirements_report
from host.errors import (
    ErrorCode, HostError, PreconditionError, ReachabilityError,
    ValidationError,
)
from host.host_config import HostConfig
from host.process import ProcessConfig
from host.validation import validate_amount, validate_models, validate_public_url
from network.probe import (
    extract_host_port, troubleshooting_hints, wait_for_endpoint,
    warn_if_localhost,
)

logger = logging.getLogger("llmhost.register")


@dataclass
class RegisterOptions:
    api_url: str
    models: list
    stake_tokens: float = global_config.DEFAULT_STAKE_TOKENS
    price_per_token: int = global_config.DEFAULT_PRICE_PER_TOKEN
    min_job_deposit: float = global_config.DEFAULT_MIN_JOB_DEPOSIT
    log_level: str = global_config.DEFAULT_LOG_LEVEL


class SagaEvents:
    """Ordered (stage, message) milestones. The CLI decides how to show them."""

    def __init__(self, listener: Optional[Callable[[str, str], None]] = None):
        self.items: list[tuple[str, str]] = []
        self._listener = listener

    def record(self, stage: str, message: str):
        self.items.append((stage, message))
        logger.debug("[%s] %s", stage, message)
        if self._listener:
            self._listener(stage, message)

    @property
    def stages(self) -> list[str]:
        return [stage for stage, _ in self.items]

    def messages(self) -> list[str]:
        return [message for _, message in self.items]


@dataclass
class RegistrationResult:
    success: bool
    transaction_hash: str = ""
    host_info: Optional[RegistrationStatus] = None
    pid: Optional[int] = None
    events: list = field(default_factory=list)


class RegisterSaga:
    """One registration attempt. Not reusable."""

    def __init__(self, ctx: HostContext,
                 wait_for_reachability: Callable[[str], bool] = wait_for_endpoint,
                 events: Optional[SagaEvents] = None):
        self.ctx = ctx
        self.wait_for_reachability = wait_for_reachability
        self.events = events or SagaEvents()
        self.handle = None

    # ------------------------------------------------------------------

    def run(self, opts: RegisterOptions) -> RegistrationResult:
        registrar = self.ctx.registrar

        # CheckingStatus
        status = registrar.check_registration_status()
        if status.is_registered:
            raise PreconditionError(
                "Host is already registered",
                ErrorCode.ALREADY_REGISTERED,
                {"host_address": status.host_address,
                 "api_url": status.api_url,
                 "staked_amount": status.staked_amount,
                 "staked": f"{format_amount(status.staked_amount)} "
                           f"{global_config.TOKEN_SYMBOL}"},
            )
        self.events.record("checking", "Host is not registered yet")

        # Validating
        stake_wei = self._validate(opts)
        port = global_config.get_internal_port() or extract_host_port(opts.api_url)[1]
        ensure_can_spawn(self.ctx, port)
        report = registrar.validate_registration_requirements(stake_wei)
        if not report.meets_all:
            raise PreconditionError(
                "Registration requirements not met: " + "; ".join(report.errors),
                ErrorCode.REQUIREMENTS_NOT_MET,
                {"errors": report.errors,
                 "report": format_requirements_report(report)},
            )
        self.events.record("validated", "Configuration and balances OK")

        # Starting
        warn_if_localhost(opts.api_url)
        self.handle = self.ctx.supervisor.spawn_inference_server(
            ProcessConfig(
                port=port,
                host=global_config.DEFAULT_BIND_HOST,
                public_url=opts.api_url,
                models=list(opts.models),
                log_level=opts.log_level,
            ),
            daemon=True,
        )
        self.events.record("started",
                           f"Inference node started (pid {self.handle.pid}, port {port})")

        # VerifyingReachability, Registering. Any interruption from here on,
        # Ctrl+C included, stops the spawned node.
        try:
            tx_hash = self._verify_and_register(opts, stake_wei)
        except BaseException:
            self._rollback()
            raise
        self.events.record(
            "registered",
            f"Registered with {format_amount(stake_wei)} "
            f"{global_config.TOKEN_SYMBOL} staked (tx {tx_hash})")

        # Persisting
        self._persist(opts, registrar)
        self.events.record("persisted", f"Saved configuration to {self.ctx.store.path}")

        return RegistrationResult(
            success=True,
            transaction_hash=tx_hash,
            host_info=registrar.check_registration_status(),
            pid=self.handle.pid,
            events=list(self.events.items),
        )

    # ------------------------------------------------------------------

    def _verify_and_register(self, opts: RegisterOptions, stake_wei: int) -> str:
        if not self.wait_for_reachability(opts.api_url):
            raise ReachabilityError(
                f"Node not accessible at: {opts.api_url}",
                {"hints": troubleshooting_hints(opts.api_url)},
            )
        self.events.record("reachable", f"Node reachable at {opts.api_url}")

        request = RegistrationRequest(
            api_url=opts.api_url,
            models=list(opts.models),
            stake_amount=stake_wei,
            price_per_token=opts.price_per_token,
        )
        try:
            return self.ctx.registrar.register_host(request)
        except HostError:
            raise
        except Exception as e:
            raise HostError(f"Registration failed: {e}",
                            ErrorCode.REGISTRATION_FAILED,
                            {"reason": str(e)}) from e

    @staticmethod
    def _validate(opts: RegisterOptions) -> int:
        result = validate_public_url(opts.api_url)
        if not result:
            raise ValidationError(result.error, ErrorCode.INVALID_API_URL,
                                  {"api_url": opts.api_url})
        result = validate_models(opts.models)
        if not result:
            raise ValidationError(result.error, ErrorCode.INVALID_MODELS,
                                  {"models": list(opts.models or [])})
        result = validate_amount(opts.stake_tokens, 0, label="Stake amount",
                                 exclusive_min=True)
        if not result:
            raise ValidationError(result.error, ErrorCode.INVALID_AMOUNT)
        result = validate_amount(opts.price_per_token,
                                 global_config.MIN_MODEL_PRICE,
                                 global_config.MAX_MODEL_PRICE, label="Price")
        if not result:
            raise ValidationError(result.error, ErrorCode.INVALID_AMOUNT)
        return to_wei(opts.stake_tokens)

    def _rollback(self):
        """Force-stop the spawned process. Never raises."""
        if self.handle is None:
            return
        try:
            self.ctx.supervisor.stop_inference_server(self.handle, force=True)
            self.events.record("rolled_back",
                               f"Stopped inference node (pid {self.handle.pid})")
        except Exception as e:
            logger.error("Rollback failed to stop pid %d: %s", self.handle.pid, e)
            self.events.record("rollback_failed",
                               f"Could not stop pid {self.handle.pid}: {e}")

    def _persist(self, opts: RegisterOptions, registrar):
        pid = self.handle.pid
        record = self.ctx.pids.save_pid_with_url(pid, opts.api_url)
        cfg = self.ctx.store.load() or HostConfig()
        _, port = extract_host_port(opts.api_url)
        cfg.wallet_address = getattr(registrar, "address", "") or cfg.wallet_address
        cfg.network = global_config.NETWORK
        cfg.rpc_url = self.ctx.rpc_url or cfg.rpc_url
        cfg.public_url = opts.api_url
        cfg.inference_port = port
        cfg.models = list(opts.models)
        cfg.price_per_token = opts.price_per_token
        cfg.min_job_deposit = opts.min_job_deposit
        self.ctx.store.save(cfg.with_process(pid, record.start_time))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def run_register(args):
    ctx = build_context(args)
    opts = RegisterOptions(
        api_url=args.api_url,
        models=args.models,
        stake_tokens=args.stake,
        price_per_token=args.price,
    )
    events = SagaEvents(listener=lambda stage, msg: print(f"[Register] {msg}"))
    result = RegisterSaga(ctx, events=events).run(opts)

    info = result.host_info
    print()
    print("=" * 60)
    print("  Host registered")
    print("=" * 60)
    print(f"  Address:     {info.host_address if info else '?'}")
    print(f"  API URL:     {opts.api_url}")
    print(f"  Models:      {', '.join(opts.models)}")
    if info:
        print(f"  Staked:      {format_amount(info.staked_amount)} "
              f"{global_config.TOKEN_SYMBOL}")
    print(f"  Node PID:    {result.pid}")
    print(f"  Transaction: {result.transaction_hash}")
    print("=" * 60)
