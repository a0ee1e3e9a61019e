"""
Crowdfund Escrow Smart Contract

A single-campaign crowdfunding escrow for one Algorand Standard Asset.
Pledges are held by the application account until the deadline, then routed
either to the creator (goal met) or back to every contributor (goal missed).
The creator may cancel early, which refunds everyone.

Features:
- One campaign per application, configured once via initialize
- Cumulative per-contributor ledger with a minimum pledge
- Permissionless withdraw/refund once the deadline has passed
- Optional platform fee skimmed from successful campaigns
- Creator-editable title, description, socials and an append-only roadmap
- ARC-28 events for every state change

Algorand Primitives Used:
- AVM Application (smart contract)
- Escrow pattern (application account holds the ASA)
- Grouped asset transfer for inbound pledges
- Inner Transactions for payouts and refunds
- Boxes (for the contribution ledger, contributor index, roadmap, metadata)
"""

from algopy import (
    ARC4Contract,
    Account,
    Asset,
    Box,
    BoxMap,
    Global,
    GlobalState,
    String,
    Txn,
    UInt64,
    arc4,
    gtxn,
    itxn,
    op,
    subroutine,
    urange,
)


# Campaign status constants
STATUS_ACTIVE = 0
STATUS_SUCCESSFUL = 1
STATUS_REFUNDED = 2
STATUS_CANCELLED = 3

# Basis points denominator (10000 bps == 100%)
MAX_FEE_BPS = 10_000

# Refund and cancel repay every contributor in one transaction group. Each
# contributor costs three references (ledger box, index box, account) and a
# group carries at most 16 app calls of 8 references, two contributors each.
MAX_CONTRIBUTORS = 32

# Error messages
ERR_ALREADY_INITIALIZED = "already initialized"
ERR_CAMPAIGN_ENDED = "campaign has ended"
ERR_BELOW_MINIMUM = "amount below minimum"
ERR_STILL_ACTIVE = "campaign is still active"
ERR_GOAL_NOT_REACHED = "goal not reached"
ERR_GOAL_REACHED = "goal was reached; use withdraw instead"
ERR_NOT_ACTIVE = "campaign is not active"
ERR_NOT_AUTHORIZED = "not authorized"
ERR_DATE_NOT_FUTURE = "date must be in the future"
ERR_EMPTY_DESCRIPTION = "description cannot be empty"
ERR_FEE_TOO_HIGH = "fee too high"
ERR_TOO_MANY_CONTRIBUTORS = "too many contributors"


class OptionalText(arc4.Struct):
    """A text field that is either present (replace) or absent (keep)."""

    present: arc4.Bool
    value: arc4.String


class RoadmapItem(arc4.Struct):
    date: arc4.UInt64
    description: arc4.String


class Payout(arc4.Struct):
    receiver: arc4.Address
    amount: arc4.UInt64


# ARC-28 events
class CampaignInitialized(arc4.Struct):
    creator: arc4.Address
    goal: arc4.UInt64
    deadline: arc4.UInt64


class Contributed(arc4.Struct):
    contributor: arc4.Address
    amount: arc4.UInt64
    total_raised: arc4.UInt64


class Withdrawn(arc4.Struct):
    creator_payout: arc4.UInt64
    fee: arc4.UInt64


class Refunded(arc4.Struct):
    contributors: arc4.UInt64
    total: arc4.UInt64


class Cancelled(arc4.Struct):
    contributors: arc4.UInt64
    total: arc4.UInt64


class MetadataUpdated(arc4.Struct):
    title: arc4.Bool
    description: arc4.Bool
    socials: arc4.Bool


class RoadmapItemAdded(arc4.Struct):
    index: arc4.UInt64
    date: arc4.UInt64


@subroutine
def compute_fee(total: UInt64, fee_bps: UInt64) -> UInt64:
    """
    Platform fee for a payout, rounded down.

    The product is taken at 128-bit width so large totals cannot overflow;
    the quotient always fits in 64 bits because fee_bps <= 10000.
    """
    high, low = op.mulw(total, fee_bps)
    return op.divw(high, low, UInt64(MAX_FEE_BPS))


class CrowdfundEscrow(ARC4Contract):
    """
    Single-asset crowdfunding escrow.

    State Schema:
    - Global State:
        - creator, asset, goal, deadline, min_contribution
        - total_raised, status
        - platform, fee_bps (only when a platform fee is configured)
        - contributor_count, roadmap_count

    - Boxes:
        - c{address}: Cumulative contribution per contributor
        - i{index}: Contributor address by insertion index
        - r{index}: Roadmap item by insertion index
        - title, description, socials: Campaign metadata
    """

    def __init__(self) -> None:
        self.creator = GlobalState(Account, key="creator")
        self.asset = GlobalState(Asset, key="asset")
        self.goal = GlobalState(UInt64, key="goal")
        self.deadline = GlobalState(UInt64, key="deadline")
        self.min_contribution = GlobalState(UInt64, key="min_contribution")
        self.total_raised = GlobalState(UInt64, key="total_raised")
        self.status = GlobalState(UInt64, key="status")
        self.platform = GlobalState(Account, key="platform")
        self.fee_bps = GlobalState(UInt64, key="fee_bps")
        self.contributor_count = GlobalState(UInt64, key="contributor_count")
        self.roadmap_count = GlobalState(UInt64, key="roadmap_count")

        self.contributions = BoxMap(Account, UInt64, key_prefix=b"c")
        self.contributors = BoxMap(UInt64, arc4.Address, key_prefix=b"i")
        self.roadmap = BoxMap(UInt64, RoadmapItem, key_prefix=b"r")
        self.title = Box(arc4.String, key=b"title")
        self.description = Box(arc4.String, key=b"description")
        self.socials = Box(arc4.String, key=b"socials")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @arc4.abimethod
    def initialize(
        self,
        creator: Account,
        asset: Asset,
        goal: UInt64,
        deadline: UInt64,
        min_contribution: UInt64,
        platform: Account,
        fee_bps: UInt64,
    ) -> None:
        """
        Configure the campaign. Can only be called once.

        The application account must already hold enough ALGO for its
        minimum balance, as it opts into the campaign asset here.

        Args:
            creator: Campaign owner; must be the caller
            asset: The ASA accepted for pledges
            goal: Funding goal in asset base units
            deadline: Unix timestamp after which pledges close
            min_contribution: Smallest accepted pledge
            platform: Fee recipient, or the zero address for no fee
            fee_bps: Platform fee in basis points (ignored without platform)
        """
        _status, initialized = self.status.maybe()
        assert not initialized, ERR_ALREADY_INITIALIZED
        assert Txn.sender == creator, ERR_NOT_AUTHORIZED
        assert goal > 0, "goal must be positive"
        assert min_contribution > 0, "minimum contribution must be positive"
        assert deadline > Global.latest_timestamp, "deadline must be in the future"

        if platform != Global.zero_address:
            assert fee_bps <= MAX_FEE_BPS, ERR_FEE_TOO_HIGH
            self.platform.value = platform
            self.fee_bps.value = fee_bps
        else:
            assert fee_bps == 0, "fee requires a platform address"

        self.creator.value = creator
        self.asset.value = asset
        self.goal.value = goal
        self.deadline.value = deadline
        self.min_contribution.value = min_contribution
        self.total_raised.value = UInt64(0)
        self.contributor_count.value = UInt64(0)
        self.roadmap_count.value = UInt64(0)
        self.status.value = UInt64(STATUS_ACTIVE)

        # Opt the escrow into the campaign asset
        itxn.AssetTransfer(
            xfer_asset=asset,
            asset_receiver=Global.current_application_address,
            asset_amount=0,
            fee=0,
        ).submit()

        arc4.emit(
            CampaignInitialized(
                creator=arc4.Address(creator),
                goal=arc4.UInt64(goal),
                deadline=arc4.UInt64(deadline),
            )
        )

    @arc4.abimethod
    def contribute(self, payment: gtxn.AssetTransferTransaction) -> None:
        """
        Pledge to the campaign.
        Must be called with an asset transfer to the escrow in the same group,
        sent by the caller.

        Args:
            payment: The grouped transfer carrying the pledge
        """
        assert payment.sender == Txn.sender, ERR_NOT_AUTHORIZED
        self._require_active()
        assert Global.latest_timestamp < self.deadline.value, ERR_CAMPAIGN_ENDED
        assert payment.xfer_asset == self.asset.value, "wrong asset"
        assert (
            payment.asset_receiver == Global.current_application_address
        ), "transfer must go to escrow"
        amount = payment.asset_amount
        assert amount >= self.min_contribution.value, ERR_BELOW_MINIMUM

        contributor = payment.sender
        if contributor in self.contributions:
            self.contributions[contributor] += amount
        else:
            index = self.contributor_count.value
            assert index < MAX_CONTRIBUTORS, ERR_TOO_MANY_CONTRIBUTORS
            self.contributors[index] = arc4.Address(contributor)
            self.contributor_count.value = index + 1
            self.contributions[contributor] = amount

        self.total_raised.value += amount

        arc4.emit(
            Contributed(
                contributor=arc4.Address(contributor),
                amount=arc4.UInt64(amount),
                total_raised=arc4.UInt64(self.total_raised.value),
            )
        )

    @arc4.abimethod
    def withdraw(self) -> None:
        """
        Pay out a successful campaign to the creator, minus any platform fee.
        Anyone can call this once the deadline has passed and the goal is met.
        """
        self._require_active()
        assert Global.latest_timestamp >= self.deadline.value, ERR_STILL_ACTIVE
        total = self.total_raised.value
        assert total >= self.goal.value, ERR_GOAL_NOT_REACHED

        fee = UInt64(0)
        platform, has_platform = self.platform.maybe()
        if has_platform:
            fee = compute_fee(total, self.fee_bps.value)
        creator_payout = total - fee

        # Settle bookkeeping before any funds leave the escrow
        self.status.value = UInt64(STATUS_SUCCESSFUL)
        self.total_raised.value = UInt64(0)

        if creator_payout > 0:
            self._send(self.creator.value, creator_payout)
        if fee > 0:
            self._send(platform, fee)

        arc4.emit(
            Withdrawn(
                creator_payout=arc4.UInt64(creator_payout),
                fee=arc4.UInt64(fee),
            )
        )

    @arc4.abimethod
    def refund(self) -> None:
        """
        Return every pledge of a failed campaign.
        Anyone can call this once the deadline has passed without the goal met.
        """
        self._require_active()
        assert Global.latest_timestamp >= self.deadline.value, ERR_STILL_ACTIVE
        assert self.total_raised.value < self.goal.value, ERR_GOAL_REACHED

        total = self.total_raised.value
        plan = self._settle_ledger()
        self.status.value = UInt64(STATUS_REFUNDED)
        self.total_raised.value = UInt64(0)
        self._pay_out(plan)

        arc4.emit(
            Refunded(contributors=arc4.UInt64(plan.length), total=arc4.UInt64(total))
        )

    @arc4.abimethod
    def cancel(self) -> None:
        """
        Cancel the campaign and return every pledge.
        Only the creator can cancel, at any time while the campaign is active.
        """
        self._require_creator()
        self._require_active()

        total = self.total_raised.value
        plan = self._settle_ledger()
        self.status.value = UInt64(STATUS_CANCELLED)
        self.total_raised.value = UInt64(0)
        self._pay_out(plan)

        arc4.emit(
            Cancelled(contributors=arc4.UInt64(plan.length), total=arc4.UInt64(total))
        )

    @arc4.abimethod
    def add_references(self) -> None:
        """
        No-op call grouped with refund or cancel.
        Carries the box and account references for contributors that do not
        fit on the refunding call itself.
        """

    # ------------------------------------------------------------------
    # Metadata & roadmap
    # ------------------------------------------------------------------

    @arc4.abimethod
    def update_metadata(
        self,
        title: OptionalText,
        description: OptionalText,
        socials: OptionalText,
    ) -> None:
        """
        Replace the fields marked present; leave the others untouched.
        Only the creator can edit, and only while the campaign is active.
        """
        self._require_creator()
        self._require_active()

        if title.present.native:
            self.title.value = title.value
        if description.present.native:
            self.description.value = description.value
        if socials.present.native:
            self.socials.value = socials.value

        arc4.emit(
            MetadataUpdated(
                title=title.present,
                description=description.present,
                socials=socials.present,
            )
        )

    @arc4.abimethod
    def add_roadmap_item(self, date: UInt64, description: String) -> UInt64:
        """
        Append a roadmap entry. Entries keep call order, not date order.

        Args:
            date: Unix timestamp of the milestone; must be in the future
            description: What happens at that date

        Returns:
            Index of the new entry
        """
        self._require_creator()
        self._require_active()
        assert date > Global.latest_timestamp, ERR_DATE_NOT_FUTURE
        assert description != "", ERR_EMPTY_DESCRIPTION

        index = self.roadmap_count.value
        self.roadmap[index] = RoadmapItem(
            date=arc4.UInt64(date),
            description=arc4.String(description),
        )
        self.roadmap_count.value = index + 1

        arc4.emit(RoadmapItemAdded(index=arc4.UInt64(index), date=arc4.UInt64(date)))
        return index

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @arc4.abimethod(readonly=True)
    def get_goal(self) -> UInt64:
        return self.goal.value

    @arc4.abimethod(readonly=True)
    def get_deadline(self) -> UInt64:
        return self.deadline.value

    @arc4.abimethod(readonly=True)
    def get_min_contribution(self) -> UInt64:
        return self.min_contribution.value

    @arc4.abimethod(readonly=True)
    def get_total_raised(self) -> UInt64:
        return self.total_raised.value

    @arc4.abimethod(readonly=True)
    def get_status(self) -> UInt64:
        return self.status.value

    @arc4.abimethod(readonly=True)
    def get_creator(self) -> arc4.Address:
        return arc4.Address(self.creator.value)

    @arc4.abimethod(readonly=True)
    def get_contribution(self, who: Account) -> UInt64:
        """Cumulative pledge of an account, zero if it never contributed."""
        return self.contributions.get(who, default=UInt64(0))

    @arc4.abimethod(readonly=True)
    def get_title(self) -> arc4.String:
        return self.title.get(default=arc4.String(""))

    @arc4.abimethod(readonly=True)
    def get_description(self) -> arc4.String:
        return self.description.get(default=arc4.String(""))

    @arc4.abimethod(readonly=True)
    def get_socials(self) -> arc4.String:
        return self.socials.get(default=arc4.String(""))

    @arc4.abimethod(readonly=True)
    def get_roadmap(self) -> arc4.DynamicArray[RoadmapItem]:
        """All roadmap entries in insertion order."""
        items = arc4.DynamicArray[RoadmapItem]()
        for index in urange(self.roadmap_count.value):
            items.append(self.roadmap[index].copy())
        return items

    @arc4.abimethod(readonly=True)
    def get_platform_config(self) -> tuple[bool, arc4.Address, UInt64]:
        """
        Returns:
            Tuple of (configured, platform address, fee_bps).
            Without a platform this is (False, zero address, 0).
        """
        platform, has_platform = self.platform.maybe()
        if has_platform:
            return True, arc4.Address(platform), self.fee_bps.value
        return False, arc4.Address(Global.zero_address), UInt64(0)

    @arc4.abimethod(readonly=True)
    def get_campaign(self) -> tuple[UInt64, UInt64, UInt64, UInt64, UInt64]:
        """
        Returns:
            Tuple of (goal, total_raised, deadline, min_contribution, status)
        """
        return (
            self.goal.value,
            self.total_raised.value,
            self.deadline.value,
            self.min_contribution.value,
            self.status.value,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @subroutine
    def _require_creator(self) -> None:
        assert Txn.sender == self.creator.value, ERR_NOT_AUTHORIZED

    @subroutine
    def _require_active(self) -> None:
        assert self.status.value == STATUS_ACTIVE, ERR_NOT_ACTIVE

    @subroutine
    def _settle_ledger(self) -> arc4.DynamicArray[Payout]:
        """
        Build the refund plan and clear the ledger in one pass.
        No transfer is issued here.
        """
        plan = arc4.DynamicArray[Payout]()
        for index in urange(self.contributor_count.value):
            receiver = self.contributors[index]
            account = Account(receiver.bytes)
            amount = self.contributions.get(account, default=UInt64(0))
            if amount > 0:
                plan.append(Payout(receiver=receiver, amount=arc4.UInt64(amount)))
            if account in self.contributions:
                del self.contributions[account]
            del self.contributors[index]
        self.contributor_count.value = UInt64(0)
        return plan

    @subroutine
    def _pay_out(self, plan: arc4.DynamicArray[Payout]) -> None:
        for index in urange(plan.length):
            payout = plan[index].copy()
            self._send(Account(payout.receiver.bytes), payout.amount.as_uint64())

    @subroutine
    def _send(self, receiver: Account, amount: UInt64) -> None:
        # Fee is pooled from the outer application call
        itxn.AssetTransfer(
            xfer_asset=self.asset.value,
            asset_receiver=receiver,
            asset_amount=amount,
            fee=0,
        ).submit()
