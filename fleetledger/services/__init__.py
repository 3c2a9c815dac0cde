# Services module
from fleetledger.services.area_matcher import AreaMatcher
from fleetledger.services.wallet_ledger import WalletLedger
from fleetledger.services.assignment_service import AssignmentService
from fleetledger.services.payout_service import PayoutService
from fleetledger.services.agent_service import AgentService

__all__ = [
    "AreaMatcher",
    "WalletLedger",
    "AssignmentService",
    "PayoutService",
    "AgentService",
]
