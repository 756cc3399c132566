"""
Entry point for Poker Cards Distributor
Diagnostic commands around the card reveal client: reading saved
transaction logs, the deployed contract record and the hand log.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from cards_distributor import messages
from cards_distributor.contract_info import load_contract_info
from cards_distributor.errors import DistributorError, MalformedResponse
from cards_distributor.fallback import PREVIOUS_HAND_KEY, RESPONSE_KEY, extract_payloads
from cards_distributor.settings import describe, get_settings
from cards_distributor.share_math import combine_shares, split_secret


def parse_log(path: str) -> List[dict]:
    """Collect the contract payloads carried by a saved transaction record."""
    with open(path, encoding="utf-8") as f:
        record = json.load(f)
    if not isinstance(record, dict):
        raise MalformedResponse(f"{path}: expected a transaction object")
    # broadcast results nest the record under tx_response
    record = record.get("tx_response") or record

    found = []
    for key in (RESPONSE_KEY, PREVIOUS_HAND_KEY):
        for raw in extract_payloads(record, key):
            entry = {"key": key, "raw": raw}
            try:
                entry["payload"] = messages.decode_payload(raw)
            except MalformedResponse as e:
                entry["error"] = str(e)
            found.append(entry)
    return found


def cmd_parse_log(args) -> int:
    entries = parse_log(args.path)
    if not entries:
        print(f"⚠️  No contract payloads in {args.path}")
        return 1
    for entry in entries:
        print(f"[{entry['key']}] {entry['raw']}")
        if "payload" in entry:
            print(f"    -> {entry['payload']}")
        else:
            print(f"    -> undecodable: {entry['error']}")
    return 0


def cmd_contract_info(args) -> int:
    info = load_contract_info(args.path)
    print(f"📜 Contract address: {info.contract_address}")
    print(f"🔑 Code hash:        {info.code_hash}")
    return 0


def cmd_history(args) -> int:
    from cards_distributor.database import init_database

    db = init_database(args.db)
    if args.table is not None and args.hand is not None:
        history = db.get_hand_history(args.table, args.hand)
        if not history:
            print(f"No hand {args.hand} logged for table {args.table}")
            return 1
        print(json.dumps(history, indent=2, ensure_ascii=False))
        return 0

    hands = db.get_recent_hands(args.limit)
    if not hands:
        print("No hands logged yet")
        return 0
    for hand in hands:
        outcome = hand['outcome'] or 'in progress'
        print(f"Table {hand['table_id']} hand {hand['hand_ref']}: {', '.join(hand['players'])} ({outcome})")
    print(f"📊 Fallback rate: {db.fallback_rate():.0%}")
    return 0


def cmd_split(args) -> int:
    shares = split_secret(args.secret, args.count)
    for i, share in enumerate(shares, 1):
        print(f"share {i}: {share}")
    print(f"recombined: {combine_shares(shares)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Poker Cards Distributor client tools")
    parser.add_argument("--env-file", default=".env", help="Path to the .env file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("parse-log", help="Print contract payloads found in a saved tx record")
    p.add_argument("path", nargs="?", default="response.json")
    p.set_defaults(func=cmd_parse_log)

    p = sub.add_parser("contract-info", help="Show the deployed contract record")
    p.add_argument("--path", default=None, help="Contract info file (default from CONTRACT_INFO_PATH)")
    p.set_defaults(func=cmd_contract_info)

    p = sub.add_parser("history", help="Show hands from the hand log")
    p.add_argument("--db", default=None, help="Hand log database (default from HAND_LOG_DB)")
    p.add_argument("--limit", default=10, type=int)
    p.add_argument("--table", type=int, default=None)
    p.add_argument("--hand", type=int, default=None)
    p.set_defaults(func=cmd_history)

    p = sub.add_parser("split", help="Split a u64 secret into additive shares")
    p.add_argument("secret", type=int)
    p.add_argument("count", type=int)
    p.set_defaults(func=cmd_split)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.debug:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)

    try:
        settings = get_settings(args.env_file)
        logging.debug(f"Settings: {describe(settings)}")
        if getattr(args, "path", "") is None:
            args.path = settings.contract_info_path
        if getattr(args, "db", "") is None:
            args.db = settings.hand_log_db
        return args.func(args)
    except (DistributorError, ValueError, OSError) as e:
        print(f"❌ Error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
