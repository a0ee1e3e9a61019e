"""
Tests for the compiled contract and the scripts that call it

Tests cover:
- The contract builds with puyapy
- Script method signatures match the compiled ABI
- Refund reference layout fits one transaction group
- Accounts, boxes and the asset attached to payout calls
"""

import base64
import importlib.util
import json
import shutil
import subprocess
from pathlib import Path

import pytest
from algosdk import account, encoding, transaction

from contracts.crowdfund.contract import MAX_CONTRIBUTORS


ROOT = Path(__file__).resolve().parent.parent
CONTRACT = ROOT / "contracts" / "crowdfund" / "contract.py"
GENESIS_HASH = base64.b64encode(bytes(32)).decode()
ASSET_ID = 777


def load_script(name: str):
    spec = importlib.util.spec_from_file_location(name, ROOT / "scripts" / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def method_signatures(app_spec: dict) -> set[str]:
    """ABI signatures listed in an arc56 (or arc32) application spec."""
    methods = app_spec.get("methods") or app_spec["contract"]["methods"]
    return {
        "{}({}){}".format(
            method["name"],
            ",".join(arg["type"] for arg in method["args"]),
            method["returns"]["type"],
        )
        for method in methods
    }


@pytest.fixture(scope="module")
def build_dir(tmp_path_factory) -> Path:
    if shutil.which("puyapy") is None:
        pytest.skip("puyapy is not installed")

    out_dir = tmp_path_factory.mktemp("build")
    result = subprocess.run(
        ["puyapy", str(CONTRACT), "--out-dir", str(out_dir)],
        capture_output=True,
        text=True,
    )
    assert result.returncode == 0, result.stdout + result.stderr
    return out_dir


@pytest.fixture(scope="module")
def compiled_signatures(build_dir: Path) -> set[str]:
    specs = sorted(build_dir.rglob("*.arc56.json")) or sorted(
        build_dir.rglob("*.arc32.json")
    )
    assert specs, "no application spec written"
    return method_signatures(json.loads(specs[0].read_text()))


class TestBuild:
    """Test suite for the puyapy build."""

    def test_contract_compiles(self, build_dir: Path):
        """Test approval and clear programs are written."""
        assert list(build_dir.rglob("CrowdfundEscrow.approval.teal"))
        assert list(build_dir.rglob("CrowdfundEscrow.clear.teal"))

    def test_deploy_signature_matches_contract(self, compiled_signatures):
        deploy = load_script("deploy")

        assert deploy.INITIALIZE.get_signature() in compiled_signatures

    @pytest.mark.parametrize(
        "name",
        [
            "CONTRIBUTE",
            "WITHDRAW",
            "REFUND",
            "CANCEL",
            "ADD_REFERENCES",
            "UPDATE_METADATA",
            "ADD_ROADMAP_ITEM",
        ],
    )
    def test_campaign_signatures_match_contract(self, compiled_signatures, name):
        campaign = load_script("campaign")

        assert getattr(campaign, name).get_signature() in compiled_signatures


class FakeBoxClient:
    """Answers box reads from a dict of name -> value."""

    def __init__(self, boxes: dict[bytes, bytes]):
        self.boxes = boxes

    def application_box_by_name(self, app_id: int, name: bytes) -> dict:
        return {
            "name": base64.b64encode(name).decode(),
            "value": base64.b64encode(self.boxes[name]).decode(),
        }


class TestRefundReferences:
    """Test suite for the refund group layout built by the campaign script."""

    def test_contributor_cap_fits_one_group(self):
        """Test a refund at the contributor cap needs no more than one group."""
        campaign = load_script("campaign")

        chunks = campaign.chunked(
            list(range(MAX_CONTRIBUTORS)), campaign.CONTRIBUTORS_PER_CALL
        )

        assert len(chunks) <= campaign.MAX_GROUP_SIZE
        # account + ledger box + index box per contributor, plus the asset
        assert 3 * campaign.CONTRIBUTORS_PER_CALL + 1 <= 8

    def test_no_contributors_still_makes_one_call(self):
        campaign = load_script("campaign")

        assert campaign.chunked([], campaign.CONTRIBUTORS_PER_CALL) == [[]]

    def test_ledger_references_decode_index_boxes(self):
        """Test each contributor address is read back from its index box."""
        campaign = load_script("campaign")
        alice = bytes(range(32))
        bob = bytes(range(32, 64))
        client = FakeBoxClient(
            {
                b"i" + (0).to_bytes(8, "big"): alice,
                b"i" + (1).to_bytes(8, "big"): bob,
            }
        )

        references = campaign.ledger_references(client, 1234, 2)

        assert references == [
            (encoding.encode_address(alice), b"c" + alice, b"i" + (0).to_bytes(8, "big")),
            (encoding.encode_address(bob), b"c" + bob, b"i" + (1).to_bytes(8, "big")),
        ]


class FakeAlgod(FakeBoxClient):
    """Serves global state and boxes of one deployed campaign."""

    def __init__(self, state: dict, boxes: dict[bytes, bytes]):
        super().__init__(boxes)
        self.state = state

    def application_info(self, app_id: int) -> dict:
        items = []
        for key, value in self.state.items():
            if isinstance(value, bytes):
                encoded = {"type": 1, "bytes": base64.b64encode(value).decode()}
            else:
                encoded = {"type": 2, "uint": value}
            items.append({"key": base64.b64encode(key.encode()).decode(), "value": encoded})
        return {"params": {"global-state": items}}

    def suggested_params(self) -> transaction.SuggestedParams:
        return transaction.SuggestedParams(
            fee=0, first=1, last=1001, gh=GENESIS_HASH, min_fee=1000
        )


class RecordingComposer:
    """Stands in for the composer and keeps every method call it is given."""

    def __init__(self):
        self.calls = []
        self.tx_ids = []

    def add_method_call(self, **kwargs):
        self.calls.append(kwargs)

    def execute(self, client, wait_rounds):
        self.tx_ids = [f"TX{n}" for n in range(len(self.calls))]
        return self


def index_key(index: int) -> bytes:
    return b"i" + index.to_bytes(8, "big")


class TestScriptReferences:
    """Test suite for the resources the campaign script attaches to calls."""

    @pytest.fixture
    def campaign(self, monkeypatch):
        module = load_script("campaign")
        monkeypatch.setattr(module, "AtomicTransactionComposer", RecordingComposer)
        return module

    @pytest.fixture
    def caller(self):
        return account.generate_account()

    def test_refund_spreads_contributors_over_group(self, campaign, caller):
        """Test each contributor's account and boxes ride on some grouped call."""
        private_key, sender = caller
        contributors = [bytes([n]) * 32 for n in range(1, 6)]
        client = FakeAlgod(
            {"asset": ASSET_ID, "contributor_count": len(contributors)},
            {index_key(n): address for n, address in enumerate(contributors)},
        )

        composer = campaign._refund_all(client, private_key, sender, 1, campaign.REFUND)

        first, *padding = composer.calls
        assert first["method"] == campaign.REFUND
        assert first["foreign_assets"] == [ASSET_ID]
        assert first["sp"].fee == (1 + len(contributors)) * 1000
        assert len(padding) == 2
        for call in padding:
            assert call["method"] == campaign.ADD_REFERENCES
            assert call["sp"].fee == 1000

        referenced_accounts = [a for call in composer.calls for a in call["accounts"]]
        referenced_boxes = {name for call in composer.calls for _, name in call["boxes"]}
        assert referenced_accounts == [encoding.encode_address(a) for a in contributors]
        for n, address in enumerate(contributors):
            assert b"c" + address in referenced_boxes
            assert index_key(n) in referenced_boxes
        for call in composer.calls:
            references = (
                len(call["accounts"])
                + len(call["boxes"])
                + len(call["foreign_assets"] or [])
            )
            assert len(call["accounts"]) <= 4
            assert references <= 8

    def test_refund_with_no_contributors_is_one_call(self, campaign, caller):
        private_key, sender = caller
        client = FakeAlgod({"asset": ASSET_ID, "contributor_count": 0}, {})

        composer = campaign._refund_all(client, private_key, sender, 1, campaign.CANCEL)

        (call,) = composer.calls
        assert call["method"] == campaign.CANCEL
        assert call["accounts"] == []
        assert call["foreign_assets"] == [ASSET_ID]

    def test_withdraw_references_creator_platform_and_asset(
        self, campaign, caller, monkeypatch
    ):
        """Test the payout receivers and asset are attached to withdraw."""
        private_key, sender = caller
        creator = bytes([1]) * 32
        platform = bytes([2]) * 32
        client = FakeAlgod(
            {"asset": ASSET_ID, "creator": creator, "platform": platform}, {}
        )
        composer = RecordingComposer()
        monkeypatch.setattr(campaign, "AtomicTransactionComposer", lambda: composer)

        campaign.cmd_withdraw(client, private_key, sender, 1, None)

        (call,) = composer.calls
        assert call["method"] == campaign.WITHDRAW
        assert call["accounts"] == [
            encoding.encode_address(creator),
            encoding.encode_address(platform),
        ]
        assert call["foreign_assets"] == [ASSET_ID]
        assert call["sp"].fee == 3 * 1000
