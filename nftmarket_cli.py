from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from nftmarket.errors import DispatchError, StorageError
from nftmarket.models import Call
from nftmarket.runtime import Runtime


def _load_runtime(data_dir: str, must_exist: bool = True) -> Runtime:
    runtime = Runtime(data_dir)
    if runtime.exists():
        runtime.load()
        return runtime

    if must_exist:
        raise StorageError(f"Market state not found in '{data_dir}'. Run 'init' first.")

    return runtime


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


def _parse_endowments(raw: list[str] | None) -> dict[str, int]:
    endowments: dict[str, int] = {}
    for item in raw or []:
        account, sep, amount = item.partition("=")
        if not sep or not account:
            raise StorageError(f"Endowment must look like ACCOUNT=AMOUNT, got '{item}'")
        try:
            endowments[account] = int(amount)
        except ValueError as exc:
            raise StorageError(f"Invalid endowment amount in '{item}'") from exc
    return endowments


def _read_calls_file(path: str | Path) -> list[Any]:
    source = Path(path)
    try:
        with source.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        raise StorageError(f"Failed to read calls file '{source}': {exc}") from exc

    if isinstance(data, dict):
        data = data.get("calls")
    if not isinstance(data, list):
        raise StorageError("Calls file must contain a JSON array of call objects")
    return data


def _submit(args: argparse.Namespace, call: Call) -> None:
    runtime = _load_runtime(args.data_dir)
    result = runtime.apply_block([call])[0]
    _print_json(result.to_dict())
    if not result.ok:
        raise SystemExit(1)


def cmd_init(args: argparse.Namespace) -> None:
    runtime = _load_runtime(args.data_dir, must_exist=False)
    if runtime.exists() and not args.force:
        print(f"Market state already exists in {args.data_dir}")
        return
    runtime.initialize(_parse_endowments(args.endow))
    print(f"Initialized market state in {runtime.state_path}")
    _print_json(runtime.status())


def cmd_fund(args: argparse.Namespace) -> None:
    runtime = _load_runtime(args.data_dir)
    balance = runtime.fund(args.account, args.amount)
    _print_json({"account": args.account, "balance": balance})


def cmd_mint(args: argparse.Namespace) -> None:
    _submit(args, Call(caller=args.caller, action="mint"))


def cmd_sell(args: argparse.Namespace) -> None:
    _submit(args, Call(caller=args.caller, action="sell", token_id=args.token_id, price=args.price))


def cmd_cancel(args: argparse.Namespace) -> None:
    _submit(args, Call(caller=args.caller, action="cancel_order", token_id=args.token_id))


def cmd_buy(args: argparse.Namespace) -> None:
    _submit(args, Call(caller=args.caller, action="buy", token_id=args.token_id))


def cmd_apply(args: argparse.Namespace) -> None:
    runtime = _load_runtime(args.data_dir)
    calls = _read_calls_file(args.calls)
    results = runtime.apply_block(calls)
    _print_json(
        {
            "height": runtime.height,
            "accepted": sum(1 for result in results if result.ok),
            "results": [result.to_dict() for result in results],
        }
    )


def cmd_status(args: argparse.Namespace) -> None:
    runtime = _load_runtime(args.data_dir)
    _print_json(runtime.status())


def cmd_token(args: argparse.Namespace) -> None:
    runtime = _load_runtime(args.data_dir)
    _print_json(runtime.nft_state(args.token_id))


def cmd_tokens(args: argparse.Namespace) -> None:
    runtime = _load_runtime(args.data_dir)
    tokens = runtime.market.tokens_of(args.account)
    _print_json({"account": args.account, "tokens": tokens, "count": len(tokens)})


def cmd_orders(args: argparse.Namespace) -> None:
    runtime = _load_runtime(args.data_dir)
    rows = runtime.market.listings()
    _print_json({"orders": rows, "count": len(rows)})


def cmd_balance(args: argparse.Namespace) -> None:
    runtime = _load_runtime(args.data_dir)
    _print_json(
        {
            "account": args.account,
            "balance": runtime.market.balance_of(args.account),
            "symbol": runtime.config.symbol,
        }
    )


def cmd_verify(args: argparse.Namespace) -> None:
    runtime = _load_runtime(args.data_dir)
    problems = runtime.market.verify_integrity()
    _print_json({"ok": not problems, "problems": problems})
    if problems:
        raise SystemExit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="NFT registry and marketplace CLI")
    parser.add_argument("--data-dir", default="./data", help="Market state directory")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Initialize empty market state")
    init.add_argument("--endow", action="append", help="Genesis balance as ACCOUNT=AMOUNT (repeatable)")
    init.add_argument("--force", action="store_true", help="Overwrite existing state")
    init.set_defaults(func=cmd_init)

    fund = subparsers.add_parser("fund", help="Credit an account balance")
    fund.add_argument("--account", required=True, help="Account to credit")
    fund.add_argument("--amount", type=int, required=True, help="Amount")
    fund.set_defaults(func=cmd_fund)

    mint = subparsers.add_parser("mint", help="Mint a new token")
    mint.add_argument("--caller", required=True, help="Authenticated caller account")
    mint.set_defaults(func=cmd_mint)

    sell = subparsers.add_parser("sell", help="Create a sell order")
    sell.add_argument("--caller", required=True, help="Authenticated caller account")
    sell.add_argument("--token-id", type=int, required=True, help="Token id")
    sell.add_argument("--price", type=int, required=True, help="Sell price")
    sell.set_defaults(func=cmd_sell)

    cancel = subparsers.add_parser("cancel", help="Cancel a sell order")
    cancel.add_argument("--caller", required=True, help="Authenticated caller account")
    cancel.add_argument("--token-id", type=int, required=True, help="Token id")
    cancel.set_defaults(func=cmd_cancel)

    buy = subparsers.add_parser("buy", help="Buy a listed token")
    buy.add_argument("--caller", required=True, help="Authenticated caller account")
    buy.add_argument("--token-id", type=int, required=True, help="Token id")
    buy.set_defaults(func=cmd_buy)

    apply_cmd = subparsers.add_parser("apply", help="Apply a JSON file of calls as one block")
    apply_cmd.add_argument("--calls", required=True, help="JSON file with an array of call objects")
    apply_cmd.set_defaults(func=cmd_apply)

    status = subparsers.add_parser("status", help="Show market status")
    status.set_defaults(func=cmd_status)

    token = subparsers.add_parser("token", help="Show one token")
    token.add_argument("--token-id", type=int, required=True, help="Token id")
    token.set_defaults(func=cmd_token)

    tokens = subparsers.add_parser("tokens", help="List tokens owned by an account")
    tokens.add_argument("--account", required=True, help="Owner account")
    tokens.set_defaults(func=cmd_tokens)

    orders = subparsers.add_parser("orders", help="List active sell orders")
    orders.set_defaults(func=cmd_orders)

    balance = subparsers.add_parser("balance", help="Show account balance")
    balance.add_argument("--account", required=True, help="Account")
    balance.set_defaults(func=cmd_balance)

    verify = subparsers.add_parser("verify", help="Audit registry and order book invariants")
    verify.set_defaults(func=cmd_verify)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    try:
        args.func(args)
    except DispatchError as exc:
        print(f"Dispatch error: {exc.code}: {exc}")
        raise SystemExit(1) from exc
    except StorageError as exc:
        print(f"Storage error: {exc}")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
