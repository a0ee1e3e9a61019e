"""
Deployment Script for the Crowdfund Escrow contract

Creates the application from the puya build output, funds the escrow
account, and initializes the campaign.

Run with: python scripts/deploy.py --asset 1234 --goal 1000000 --days 30

Build the contract first:
    algokit compile py --out-dir build contracts/crowdfund/contract.py

Environment variables required:
- ALGOD_SERVER: Algorand node URL
- ALGOD_TOKEN: Algorand node token
- DEPLOYER_MNEMONIC: 25-word mnemonic for the campaign creator
- NETWORK: localnet | testnet | mainnet
"""

import os
import json
import time
import base64
import argparse
from pathlib import Path
from dotenv import load_dotenv
from algosdk import abi, account, mnemonic, transaction
from algosdk.atomic_transaction_composer import (
    AccountTransactionSigner,
    AtomicTransactionComposer,
)
from algosdk.constants import ZERO_ADDRESS
from algosdk.logic import get_application_address
from algosdk.v2client import algod

# Load environment variables
load_dotenv()

BUILD_DIR = Path("build")
APPROVAL_FILE = BUILD_DIR / "CrowdfundEscrow.approval.teal"
CLEAR_FILE = BUILD_DIR / "CrowdfundEscrow.clear.teal"

# creator, asset, goal, deadline, min_contribution, total_raised, status,
# platform, fee_bps, contributor_count, roadmap_count
GLOBAL_INTS = 9
GLOBAL_BYTES = 2

# Covers the account minimum, the asset opt-in, and inner transaction fees.
# Box storage for pledges is topped up separately as the campaign grows.
ESCROW_FUNDING = 1_000_000

# Account and asset arguments are passed by value; the asset still has to be
# referenced for the opt-in.
INITIALIZE = abi.Method.from_signature(
    "initialize(address,uint64,uint64,uint64,uint64,address,uint64)void"
)


def get_algod_client() -> algod.AlgodClient:
    """Create Algorand client from environment variables."""
    server = os.getenv("ALGOD_SERVER", "http://localhost:4001")
    token = os.getenv("ALGOD_TOKEN", "a" * 64)

    return algod.AlgodClient(token, server)


def get_deployer_account() -> tuple[str, str]:
    """Get deployer account from mnemonic."""
    mnemonic_phrase = os.getenv("DEPLOYER_MNEMONIC")

    if not mnemonic_phrase:
        raise ValueError("DEPLOYER_MNEMONIC not set in environment")

    private_key = mnemonic.to_private_key(mnemonic_phrase)
    address = account.address_from_private_key(private_key)

    return private_key, address


def compile_teal(client: algod.AlgodClient, path: Path) -> bytes:
    """Compile a TEAL file using the Algorand node."""
    if not path.exists():
        raise FileNotFoundError(f"{path} not found - build the contract first")

    response = client.compile(path.read_text())
    return base64.b64decode(response["result"])


def create_app(client: algod.AlgodClient, private_key: str, sender: str) -> int:
    """Create the application and return its ID."""
    approval_program = compile_teal(client, APPROVAL_FILE)
    clear_program = compile_teal(client, CLEAR_FILE)

    params = client.suggested_params()

    txn = transaction.ApplicationCreateTxn(
        sender=sender,
        sp=params,
        on_complete=transaction.OnComplete.NoOpOC,
        approval_program=approval_program,
        clear_program=clear_program,
        global_schema=transaction.StateSchema(GLOBAL_INTS, GLOBAL_BYTES),
        local_schema=transaction.StateSchema(0, 0),
    )

    signed_txn = txn.sign(private_key)
    tx_id = client.send_transaction(signed_txn)
    print(f"   Transaction ID: {tx_id}")

    result = transaction.wait_for_confirmation(client, tx_id, 4)
    return result["application-index"]


def fund_escrow(
    client: algod.AlgodClient,
    private_key: str,
    sender: str,
    app_id: int,
    amount: int = ESCROW_FUNDING,
) -> str:
    """Send ALGO to the application account so it can hold the asset."""
    params = client.suggested_params()

    txn = transaction.PaymentTxn(
        sender=sender,
        sp=params,
        receiver=get_application_address(app_id),
        amt=amount,
        note=b"crowdfund-escrow-funding",
    )

    signed_txn = txn.sign(private_key)
    tx_id = client.send_transaction(signed_txn)
    transaction.wait_for_confirmation(client, tx_id, 4)
    return tx_id


def initialize_campaign(
    client: algod.AlgodClient,
    private_key: str,
    sender: str,
    app_id: int,
    asset_id: int,
    goal: int,
    deadline: int,
    min_contribution: int,
    platform: str,
    fee_bps: int,
) -> str:
    """Call initialize on the freshly created application."""
    params = client.suggested_params()
    # One extra fee covers the asset opt-in inner transaction
    params.flat_fee = True
    params.fee = 2 * params.min_fee

    atc = AtomicTransactionComposer()
    atc.add_method_call(
        app_id=app_id,
        method=INITIALIZE,
        sender=sender,
        sp=params,
        signer=AccountTransactionSigner(private_key),
        method_args=[
            sender,
            asset_id,
            goal,
            deadline,
            min_contribution,
            platform,
            fee_bps,
        ],
        foreign_assets=[asset_id],
    )

    result = atc.execute(client, 4)
    return result.tx_ids[-1]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Deploy a crowdfund escrow campaign")
    parser.add_argument("--asset", type=int, required=True, help="ASA ID accepted for pledges")
    parser.add_argument("--goal", type=int, required=True, help="Goal in asset base units")
    parser.add_argument("--days", type=float, default=30, help="Campaign length in days")
    parser.add_argument("--min", dest="min_contribution", type=int, default=1, help="Minimum pledge")
    parser.add_argument("--platform", default=ZERO_ADDRESS, help="Platform fee recipient")
    parser.add_argument("--fee-bps", type=int, default=0, help="Platform fee in basis points")
    return parser.parse_args()


def main():
    """Main deployment function."""
    args = parse_args()

    print("=" * 60)
    print("Crowdfund Escrow - Smart Contract Deployment")
    print("=" * 60)

    network = os.getenv("NETWORK", "localnet")
    print(f"\nNetwork: {network}")

    client = get_algod_client()
    private_key, deployer = get_deployer_account()
    print(f"Creator: {deployer}")

    account_info = client.account_info(deployer)
    balance = account_info["amount"] / 1_000_000
    print(f"Balance: {balance:.6f} ALGO")

    if balance < 2:
        print("❌ Insufficient balance! Need at least 2 ALGO")
        return

    deadline = int(time.time() + args.days * 86_400)

    print("\n" + "-" * 60)
    print("📄 CrowdfundEscrow")
    print("-" * 60)

    try:
        app_id = create_app(client, private_key, deployer)
        print(f"   ✅ Created! App ID: {app_id}")

        fund_escrow(client, private_key, deployer, app_id)
        print(f"   ✅ Escrow funded: {get_application_address(app_id)}")

        tx_id = initialize_campaign(
            client,
            private_key,
            deployer,
            app_id,
            asset_id=args.asset,
            goal=args.goal,
            deadline=deadline,
            min_contribution=args.min_contribution,
            platform=args.platform,
            fee_bps=args.fee_bps,
        )
        print(f"   ✅ Initialized! TX: {tx_id}")
    except Exception as e:
        print(f"   ❌ Failed: {e}")
        raise SystemExit(1)

    output_path = Path("deployment.json")
    deployment_info = {
        "network": network,
        "creator": deployer,
        "app_id": app_id,
        "escrow": get_application_address(app_id),
        "asset": args.asset,
        "goal": args.goal,
        "deadline": deadline,
        "min_contribution": args.min_contribution,
        "platform": args.platform,
        "fee_bps": args.fee_bps,
    }

    with open(output_path, "w") as f:
        json.dump(deployment_info, f, indent=2)

    print(f"\n💾 Deployment info saved to: {output_path}")
    print(f"\n📝 Add this to your .env file:\n   APP_ID={app_id}")


if __name__ == "__main__":
    main()
