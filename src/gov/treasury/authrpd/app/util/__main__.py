import argparse
import asyncio
import json
import logging
from typing import Optional

from gov.treasury.authrpd.app.cli import configure_logging
from gov.treasury.authrpd.keys.key_set import KeySetBuilder
from gov.treasury.authrpd.keys.periods import is_period_id, period_id
from gov.treasury.authrpd.keys.store import FileSystemKeyStore

logger = logging.getLogger(__name__)


def period_argument(value: str) -> str:
    if not is_period_id(value):
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}")
    return value


async def ensureKey(keys_dir: str, period: Optional[str]) -> None:
    key_store = FileSystemKeyStore(keys_dir)
    handle = await key_store.ensure_period_key(period or period_id())
    print(json.dumps(handle.public_jwk(), indent=2))


async def listPeriods(keys_dir: str) -> None:
    key_store = FileSystemKeyStore(keys_dir)
    for period in await key_store.list_periods():
        print(period)


async def printKeySet(keys_dir: str, window_periods: int) -> None:
    key_set_builder = KeySetBuilder(
        FileSystemKeyStore(keys_dir), window_periods=window_periods
    )
    print(json.dumps(await key_set_builder.build_key_set(), indent=2))


async def realMain() -> None:
    parser = argparse.ArgumentParser(
        prog="authrpd-util", description="AuthRPD signing key utilities"
    )

    parser.add_argument(
        "--keys-dir",
        default="keys",
        help="Directory holding one YYYY-MM subdirectory per signing period.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    ensure_key = subparsers.add_parser(
        "ensure-key", help="Create the signing key for a period if it does not exist"
    )
    ensure_key.add_argument(
        "--period",
        type=period_argument,
        default=None,
        help="The period (YYYY-MM). Defaults to the current UTC month.",
    )

    _ = subparsers.add_parser("list-periods", help="List periods with signing keys")

    jwks = subparsers.add_parser("jwks", help="Print the published key set")
    jwks.add_argument(
        "--window-periods",
        type=int,
        default=2,
        help="Number of previous periods to include.",
    )

    args = vars(parser.parse_args())
    command = args.get("command", None)
    keys_dir: str = args.get("keys_dir", "keys")

    if command == "ensure-key":
        await ensureKey(keys_dir, args.get("period", None))
    elif command == "list-periods":
        await listPeriods(keys_dir)
    elif command == "jwks":
        await printKeySet(keys_dir, args.get("window_periods", 2))


def main() -> None:
    configure_logging()
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
