"""
llmhost CLI — lifecycle of one inference host.

Usage:
    llmhost register --api-url http://203.0.113.5:8080 --models repo:file.gguf
    llmhost start [--foreground] [--log-level debug]
    llmhost stop [--timeout 10000] [--force]
    llmhost unregister
    llmhost add-stake 500
    llmhost update-url http://203.0.113.5:9090
    llmhost update-models repo:a.gguf repo:b.gguf | --file models.txt
    llmhost update-pricing --price 2500
    llmhost set-model-pricing --model repo:file.gguf --price 5 --price-type usdc
    llmhost info [--address 0x...] [--json]
"""

from __future__ import annotations

import argparse
import logging
import sys

import config as global_config
from host.errors import describe_error


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llmhost",
        description="llmhost — inference host lifecycle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
commands:
  register           Start the node, verify it is public, stake and register
  start              Start the node for a registered host
  stop               Stop the running node
  unregister         Unregister from the chain and stop the node
  add-stake          Add stake to a registered host
  update-url         Change the advertised API URL
  update-models      Replace the supported model list
  update-pricing     Change the minimum price per token
  set-model-pricing  Set a per-model price
  info               Show registration status and balances
""",
    )
    parser.add_argument(
        "--private-key", "-k", default=None,
        help="Host wallet private key (default: $HOST_PRIVATE_KEY)",
    )
    parser.add_argument(
        "--rpc-url", "-r", default=None,
        help="Chain RPC URL (default: $LLMHOST_RPC_URL)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # ---------------------------------------------------------------
    # register
    # ---------------------------------------------------------------
    p_register = subparsers.add_parser(
        "register",
        help="Start the node, verify reachability, stake and register",
    )
    p_register.add_argument(
        "--api-url", required=True,
        help="Public URL of this host, with port (e.g. http://203.0.113.5:8080)",
    )
    p_register.add_argument(
        "--models", nargs="+", required=True,
        help="Supported models as <repo>:<file>",
    )
    p_register.add_argument(
        "--price", type=int, default=global_config.DEFAULT_PRICE_PER_TOKEN,
        help=f"Minimum price per token "
             f"(default: {global_config.DEFAULT_PRICE_PER_TOKEN})",
    )
    p_register.add_argument(
        "--stake", type=float, default=global_config.DEFAULT_STAKE_TOKENS,
        help=f"Stake amount in {global_config.TOKEN_SYMBOL} "
             f"(default: {global_config.DEFAULT_STAKE_TOKENS})",
    )

    # ---------------------------------------------------------------
    # start
    # ---------------------------------------------------------------
    p_start = subparsers.add_parser("start", help="Start the inference node")
    mode = p_start.add_mutually_exclusive_group()
    mode.add_argument(
        "--daemon", dest="foreground", action="store_false",
        help="Run in the background (default)",
    )
    mode.add_argument(
        "--foreground", dest="foreground", action="store_true",
        help="Stay attached and stream node output",
    )
    p_start.set_defaults(foreground=False)
    p_start.add_argument(
        "--log-level", choices=global_config.LOG_LEVELS,
        default=global_config.DEFAULT_LOG_LEVEL,
        help=f"Node log level (default: {global_config.DEFAULT_LOG_LEVEL})",
    )

    # ---------------------------------------------------------------
    # stop
    # ---------------------------------------------------------------
    p_stop = subparsers.add_parser("stop", help="Stop the inference node")
    p_stop.add_argument(
        "--timeout", type=int, default=global_config.STOP_TIMEOUT_MS,
        help=f"Graceful shutdown window in ms "
             f"(default: {global_config.STOP_TIMEOUT_MS})",
    )
    p_stop.add_argument(
        "--force", action="store_true",
        help="Kill immediately instead of waiting",
    )

    # ---------------------------------------------------------------
    # unregister
    # ---------------------------------------------------------------
    subparsers.add_parser("unregister",
                          help="Unregister from the chain and stop the node")

    # ---------------------------------------------------------------
    # chain updates
    # ---------------------------------------------------------------
    p_stake = subparsers.add_parser("add-stake", help="Add stake")
    p_stake.add_argument("amount", type=float,
                         help=f"Amount in {global_config.TOKEN_SYMBOL}")
    p_stake.add_argument("--skip-approval", action="store_true",
                         help="Assume the registry is already approved")

    p_url = subparsers.add_parser("update-url", help="Change the API URL")
    p_url.add_argument("url", help="New public URL, with port")

    p_models = subparsers.add_parser("update-models",
                                     help="Replace the supported models")
    p_models.add_argument("models", nargs="*", default=None,
                          help="Models as <repo>:<file>")
    p_models.add_argument("--file", default=None,
                          help="File with one model per line (# comments allowed)")

    p_pricing = subparsers.add_parser("update-pricing",
                                      help="Change the minimum price per token")
    p_pricing.add_argument("--price", type=int, required=True,
                           help=f"{global_config.MIN_MODEL_PRICE}-"
                                f"{global_config.MAX_MODEL_PRICE}")

    p_model_price = subparsers.add_parser("set-model-pricing",
                                          help="Set a per-model price")
    p_model_price.add_argument("--model", required=True,
                               help="Model as <repo>:<file>")
    p_model_price.add_argument("--price", type=int, required=True,
                               help=f"{global_config.MIN_MODEL_PRICE}-"
                                    f"{global_config.MAX_MODEL_PRICE}")
    p_model_price.add_argument("--price-type", choices=["usdc", "eth"],
                               default="usdc",
                               help="usdc (stable) or eth (gwei); default usdc")

    p_info = subparsers.add_parser("info", help="Show host status")
    p_info.add_argument("--address", default=None,
                        help="Host address (default: own wallet)")
    p_info.add_argument("--json", action="store_true",
                        help="Print a single JSON document")

    return parser


def dispatch(args) -> None:
    if args.command == "register":
        from commands.register import run_register
        run_register(args)
    elif args.command == "start":
        from commands.start import run_start
        run_start(args)
    elif args.command == "stop":
        from commands.stop import run_stop
        run_stop(args)
    elif args.command == "unregister":
        from commands.unregister import run_unregister
        run_unregister(args)
    elif args.command == "add-stake":
        from commands.chain_ops import run_add_stake
        run_add_stake(args)
    elif args.command == "update-url":
        from commands.chain_ops import run_update_url
        run_update_url(args)
    elif args.command == "update-models":
        from commands.chain_ops import run_update_models
        run_update_models(args)
    elif args.command == "update-pricing":
        from commands.chain_ops import run_update_pricing
        run_update_pricing(args)
    elif args.command == "set-model-pricing":
        from commands.chain_ops import run_set_model_pricing
        run_set_model_pricing(args)
    elif args.command == "info":
        from commands.chain_ops import run_info
        run_info(args)
    else:
        raise ValueError(f"Unknown command: {args.command}")


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        dispatch(args)
    except (Exception, KeyboardInterrupt) as e:
        message, resolution, retryable = describe_error(e)
        print(f"\n[Error] {message}", file=sys.stderr)
        print(f"[Error] {resolution}", file=sys.stderr)
        if retryable:
            print("[Error] This error may be temporary; retrying can help.",
                  file=sys.stderr)
        details = getattr(e, "details", {}) or {}
        for hint in details.get("hints", []):
            print(f"  - {hint}", file=sys.stderr)
        logging.getLogger("llmhost.cli").debug("Command failed", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
