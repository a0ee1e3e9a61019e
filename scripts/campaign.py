"""
Campaign Operations Script

Calls a deployed Crowdfund Escrow application.

Usage:
    python scripts/campaign.py status
    python scripts/campaign.py contribute --amount 50000
    python scripts/campaign.py withdraw
    python scripts/campaign.py refund
    python scripts/campaign.py cancel
    python scripts/campaign.py metadata --title "Solar kiosk" --socials https://x.com/kiosk
    python scripts/campaign.py roadmap --date 1767225600 --description "First prototype"

Environment variables required:
- ALGOD_SERVER, ALGOD_TOKEN: Algorand node
- DEPLOYER_MNEMONIC: mnemonic of the calling account
- APP_ID: ID of the deployed campaign
"""

import os
import base64
import argparse
from dotenv import load_dotenv
from algosdk import abi, account, encoding, mnemonic, transaction
from algosdk.atomic_transaction_composer import (
    AccountTransactionSigner,
    AtomicTransactionComposer,
    TransactionWithSigner,
)
from algosdk.logic import get_application_address
from algosdk.v2client import algod

load_dotenv()

STATUS_NAMES = {0: "Active", 1: "Successful", 2: "Refunded", 3: "Cancelled"}

# Each contributor takes an account and two box references, so a call
# carries two of them alongside the asset. A group holds 16 calls.
CONTRIBUTORS_PER_CALL = 2
MAX_GROUP_SIZE = 16

CONTRIBUTE = abi.Method.from_signature("contribute(axfer)void")
WITHDRAW = abi.Method.from_signature("withdraw()void")
REFUND = abi.Method.from_signature("refund()void")
CANCEL = abi.Method.from_signature("cancel()void")
ADD_REFERENCES = abi.Method.from_signature("add_references()void")
UPDATE_METADATA = abi.Method.from_signature(
    "update_metadata((bool,string),(bool,string),(bool,string))void"
)
ADD_ROADMAP_ITEM = abi.Method.from_signature("add_roadmap_item(uint64,string)uint64")


def get_algod_client() -> algod.AlgodClient:
    """Create Algorand client from environment variables."""
    server = os.getenv("ALGOD_SERVER", "http://localhost:4001")
    token = os.getenv("ALGOD_TOKEN", "a" * 64)
    return algod.AlgodClient(token, server)


def get_caller() -> tuple[str, str]:
    """Get the calling account from the environment mnemonic."""
    mnemonic_phrase = os.getenv("DEPLOYER_MNEMONIC")
    if not mnemonic_phrase:
        raise ValueError("DEPLOYER_MNEMONIC not set in environment")

    private_key = mnemonic.to_private_key(mnemonic_phrase)
    return private_key, account.address_from_private_key(private_key)


def get_app_id() -> int:
    app_id = os.getenv("APP_ID")
    if not app_id:
        raise ValueError("APP_ID not set in environment")
    return int(app_id)


def read_global_state(client: algod.AlgodClient, app_id: int) -> dict:
    """Read global state of an application."""
    app_info = client.application_info(app_id)

    state = {}
    if "params" in app_info and "global-state" in app_info["params"]:
        for item in app_info["params"]["global-state"]:
            key = base64.b64decode(item["key"]).decode("utf-8")
            value = item["value"]
            if value["type"] == 1:  # bytes
                state[key] = base64.b64decode(value["bytes"])
            else:  # uint
                state[key] = value["uint"]

    return state


def ledger_references(
    client: algod.AlgodClient, app_id: int, contributor_count: int
) -> list[tuple[str, bytes, bytes]]:
    """Address, ledger box and index box of every recorded contributor."""
    references = []
    for index in range(contributor_count):
        index_key = b"i" + index.to_bytes(8, "big")
        box = client.application_box_by_name(app_id, index_key)
        address = base64.b64decode(box["value"])
        references.append((encoding.encode_address(address), b"c" + address, index_key))
    return references


def chunked(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)] or [[]]


def call(
    client: algod.AlgodClient,
    private_key: str,
    sender: str,
    app_id: int,
    method: abi.Method,
    method_args: list | None = None,
    boxes: list[bytes] | None = None,
    accounts: list[str] | None = None,
    foreign_assets: list[int] | None = None,
    inner_txns: int = 0,
):
    """Submit a single ABI method call and wait for it."""
    params = client.suggested_params()
    if inner_txns:
        params.flat_fee = True
        params.fee = (1 + inner_txns) * params.min_fee

    atc = AtomicTransactionComposer()
    atc.add_method_call(
        app_id=app_id,
        method=method,
        sender=sender,
        sp=params,
        signer=AccountTransactionSigner(private_key),
        method_args=method_args or [],
        boxes=[(0, name) for name in boxes or []],
        accounts=accounts,
        foreign_assets=foreign_assets,
    )
    return atc.execute(client, 4)


def cmd_status(client, private_key, sender, app_id, args):
    state = read_global_state(client, app_id)
    status = state.get("status")

    print(f"\n📍 App ID: {app_id}")
    print(f"📍 Escrow: {get_application_address(app_id)}")
    print(f"   Status: {STATUS_NAMES.get(status, 'Uninitialized')}")
    print(f"   Asset: {state.get('asset', 0)}")
    print(f"   Raised: {state.get('total_raised', 0)} / {state.get('goal', 0)}")
    print(f"   Deadline: {state.get('deadline', 0)}")
    print(f"   Minimum: {state.get('min_contribution', 0)}")
    print(f"   Contributors: {state.get('contributor_count', 0)}")
    if "platform" in state:
        platform = encoding.encode_address(state["platform"])
        print(f"   Platform fee: {state.get('fee_bps', 0)} bps -> {platform}")


def cmd_contribute(client, private_key, sender, app_id, args):
    state = read_global_state(client, app_id)
    signer = AccountTransactionSigner(private_key)

    payment = transaction.AssetTransferTxn(
        sender=sender,
        sp=client.suggested_params(),
        receiver=get_application_address(app_id),
        amt=args.amount,
        index=state["asset"],
    )

    ledger_key = b"c" + encoding.decode_address(sender)
    index_key = b"i" + state.get("contributor_count", 0).to_bytes(8, "big")

    atc = AtomicTransactionComposer()
    atc.add_method_call(
        app_id=app_id,
        method=CONTRIBUTE,
        sender=sender,
        sp=client.suggested_params(),
        signer=signer,
        method_args=[TransactionWithSigner(payment, signer)],
        foreign_assets=[state["asset"]],
        boxes=[(0, ledger_key), (0, index_key)],
    )
    result = atc.execute(client, 4)
    print(f"   ✅ Contributed {args.amount}! TX: {result.tx_ids[-1]}")


def cmd_withdraw(client, private_key, sender, app_id, args):
    state = read_global_state(client, app_id)
    receivers = [encoding.encode_address(state["creator"])]
    if "platform" in state:
        receivers.append(encoding.encode_address(state["platform"]))

    result = call(
        client,
        private_key,
        sender,
        app_id,
        WITHDRAW,
        accounts=receivers,
        foreign_assets=[state["asset"]],
        inner_txns=len(receivers),
    )
    print(f"   ✅ Withdrawn! TX: {result.tx_ids[-1]}")


def _refund_all(client, private_key, sender, app_id, method):
    """
    Refund every contributor in one atomic group.
    The refunding call carries the first contributors' references; the rest
    ride on add_references calls grouped with it.
    """
    state = read_global_state(client, app_id)
    references = ledger_references(
        client, app_id, state.get("contributor_count", 0)
    )
    chunks = chunked(references, CONTRIBUTORS_PER_CALL)
    if len(chunks) > MAX_GROUP_SIZE:
        raise ValueError(
            f"{len(references)} contributors need {len(chunks)} calls, "
            f"more than the {MAX_GROUP_SIZE} one group can carry"
        )

    signer = AccountTransactionSigner(private_key)
    atc = AtomicTransactionComposer()
    for position, chunk in enumerate(chunks):
        params = client.suggested_params()
        params.flat_fee = True
        if position == 0:
            # Pays for one inner transfer per contributor
            params.fee = (1 + len(references)) * params.min_fee
        else:
            params.fee = params.min_fee

        atc.add_method_call(
            app_id=app_id,
            method=method if position == 0 else ADD_REFERENCES,
            sender=sender,
            sp=params,
            signer=signer,
            accounts=[address for address, _, _ in chunk],
            foreign_assets=[state["asset"]] if position == 0 else None,
            boxes=[
                (0, key)
                for _, ledger_key, index_key in chunk
                for key in (ledger_key, index_key)
            ],
        )
    return atc.execute(client, 4)


def cmd_refund(client, private_key, sender, app_id, args):
    result = _refund_all(client, private_key, sender, app_id, REFUND)
    print(f"   ✅ Refunded! TX: {result.tx_ids[0]}")


def cmd_cancel(client, private_key, sender, app_id, args):
    result = _refund_all(client, private_key, sender, app_id, CANCEL)
    print(f"   ✅ Cancelled! TX: {result.tx_ids[0]}")


def cmd_metadata(client, private_key, sender, app_id, args):
    def optional(value):
        return [value is not None, value or ""]

    result = call(
        client,
        private_key,
        sender,
        app_id,
        UPDATE_METADATA,
        method_args=[
            optional(args.title),
            optional(args.description),
            optional(args.socials),
        ],
        boxes=[b"title", b"description", b"socials"],
    )
    print(f"   ✅ Metadata updated! TX: {result.tx_ids[-1]}")


def cmd_roadmap(client, private_key, sender, app_id, args):
    state = read_global_state(client, app_id)
    key = b"r" + state.get("roadmap_count", 0).to_bytes(8, "big")

    result = call(
        client,
        private_key,
        sender,
        app_id,
        ADD_ROADMAP_ITEM,
        method_args=[args.date, args.description],
        boxes=[key],
    )
    print(f"   ✅ Roadmap item #{result.abi_results[0].return_value} added!")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Operate a crowdfund escrow campaign")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="Show campaign state")

    contribute = commands.add_parser("contribute", help="Pledge to the campaign")
    contribute.add_argument("--amount", type=int, required=True, help="Amount in base units")

    commands.add_parser("withdraw", help="Pay out a successful campaign")
    commands.add_parser("refund", help="Refund a failed campaign")
    commands.add_parser("cancel", help="Cancel and refund (creator only)")

    metadata = commands.add_parser("metadata", help="Update campaign text (creator only)")
    metadata.add_argument("--title")
    metadata.add_argument("--description")
    metadata.add_argument("--socials")

    roadmap = commands.add_parser("roadmap", help="Add a roadmap item (creator only)")
    roadmap.add_argument("--date", type=int, required=True, help="Unix timestamp")
    roadmap.add_argument("--description", required=True)

    return parser.parse_args()


COMMANDS = {
    "status": cmd_status,
    "contribute": cmd_contribute,
    "withdraw": cmd_withdraw,
    "refund": cmd_refund,
    "cancel": cmd_cancel,
    "metadata": cmd_metadata,
    "roadmap": cmd_roadmap,
}


def main():
    args = parse_args()

    client = get_algod_client()
    private_key, sender = get_caller()
    app_id = get_app_id()

    print("\n" + "=" * 50)
    print(f"🎯 CROWDFUND: {args.command}")
    print("=" * 50)
    print(f"📍 Caller: {sender}")

    try:
        COMMANDS[args.command](client, private_key, sender, app_id, args)
    except Exception as e:
        print(f"   ❌ Failed: {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
