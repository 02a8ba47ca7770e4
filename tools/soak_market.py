from __future__ import annotations

import argparse
import random
import sys
import tempfile
import time
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from nftmarket.runtime import Runtime


def _random_call(rng: random.Random, accounts: list[str], runtime: Runtime) -> dict:
    caller = rng.choice(accounts)
    minted = runtime.market.registry.next_token_id
    token_id = rng.randrange(minted + 2) if minted else 0
    action = rng.choices(["mint", "sell", "cancel_order", "buy"], weights=[3, 4, 2, 4])[0]
    if action == "mint":
        return {"caller": caller, "action": action}
    if action == "sell":
        return {"caller": caller, "action": action, "token_id": token_id, "price": rng.randrange(1, 250)}
    return {"caller": caller, "action": action, "token_id": token_id}


def run_soak(args: argparse.Namespace) -> int:
    rng = random.Random(int(args.seed))
    accounts = [f"acct-{i}" for i in range(max(2, int(args.accounts)))]
    started = time.time()

    with tempfile.TemporaryDirectory() as td:
        runtime = Runtime(args.data_dir or td)
        runtime.initialize({account: int(args.endowment) for account in accounts})

        accepted = 0
        rejected: dict[str, int] = {}
        for block in range(int(args.blocks)):
            calls = [_random_call(rng, accounts, runtime) for _ in range(int(args.calls_per_block))]
            results = runtime.apply_block(calls, save=False)
            for result in results:
                if result.ok:
                    accepted += 1
                else:
                    code = result.error.get("code", "?")
                    rejected[code] = rejected.get(code, 0) + 1

            problems = runtime.market.verify_integrity()
            if problems:
                print(f"[soak] invariant violation after block {block + 1}:", flush=True)
                for problem in problems:
                    print(f"  {problem}", flush=True)
                return 1
            if (block + 1) % max(1, int(args.status_every)) == 0:
                status = runtime.status()
                print(
                    f"[soak] block={runtime.height} tokens={status['token_count']} "
                    f"orders={status['order_count']} accepted={accepted}",
                    flush=True,
                )

        runtime.save()
        print("[soak] summary", flush=True)
        print(f"  blocks: {runtime.height}", flush=True)
        print(f"  accepted_calls: {accepted}", flush=True)
        print(f"  rejected_calls: {dict(sorted(rejected.items()))}", flush=True)
        print(f"  total_issuance: {runtime.ledger.total_issuance}", flush=True)
        print(f"  elapsed: {time.time() - started:.2f}s", flush=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run random marketplace calls and audit invariants.")
    parser.add_argument("--data-dir", help="Keep state here instead of a temporary directory")
    parser.add_argument("--blocks", type=int, default=200, help="Number of blocks")
    parser.add_argument("--calls-per-block", type=int, default=25, help="Calls per block")
    parser.add_argument("--accounts", type=int, default=6, help="Number of accounts")
    parser.add_argument("--endowment", type=int, default=10_000, help="Genesis balance per account")
    parser.add_argument("--seed", type=int, default=91, help="Random seed")
    parser.add_argument("--status-every", type=int, default=20, help="Status print cadence in blocks")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    exit_code = run_soak(args)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
