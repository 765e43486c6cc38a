"""Canonical metric names, snapshot field mapping and reporting classification"""

from typing import Dict, FrozenSet, Tuple

FLOW = "flow"
BALANCE = "balance"

# Ledger metric name -> (snapshot column, semantics)
SNAPSHOT_FIELDS: Dict[str, Tuple[str, str]] = {
    "profit": ("total_profit", FLOW),
    "admissionFees": ("total_admission_fees", FLOW),
    "appraisalFees": ("total_appraisal_fees", FLOW),
    "savingsDeposits": ("total_savings_deposits", FLOW),
    "savingsWithdrawals": ("total_savings_withdrawals", FLOW),
    "netSavingsFlow": ("net_savings_flow", FLOW),
    "securityDepositsFlow": ("total_security_deposits_flow", FLOW),
    "personalSavingsFlow": ("total_personal_savings_flow", FLOW),
    "interestCollected": ("total_interest_collected", FLOW),
    "feesCollected": ("total_fees_collected", FLOW),
    "collected": ("total_collected", FLOW),
    "expectedCollections": ("total_expected_collections", FLOW),
    "fieldCollections": ("total_field_collections", FLOW),
    "shortage": ("total_shortage", FLOW),
    "expenses": ("total_expenses", FLOW),
    "loansCount": ("total_loans_count", FLOW),
    "loanAmountDistributed": ("total_loan_amount_distributed", FLOW),
    "waitingToBeCollected": ("total_waiting_to_be_collected", BALANCE),
    "overdue": ("total_overdue", BALANCE),
    "savingsBalance": ("total_savings_balance", BALANCE),
    "personalSavingsBalance": ("total_personal_savings_balance", BALANCE),
    "securitySavingsBalance": ("total_security_savings_balance", BALANCE),
    "pendingLoanAmount": ("total_pending_loan_amount", BALANCE),
    "approvedLoanBalance": ("total_approved_loan_balance", BALANCE),
    "pendingInterest": ("total_pending_interest", BALANCE),
    "pendingAdmissionFees": ("total_pending_admission_fees", BALANCE),
    "pendingSecurityDeposit": ("total_pending_security_deposit", BALANCE),
    "loanOfficerShortage": ("loan_officer_shortage", BALANCE),
    "branchShortage": ("branch_shortage", BALANCE),
    "entityShortage": ("entity_shortage", BALANCE),
    "badDebt": ("bad_debt", BALANCE),
    "bankDepositSaving": ("bank_deposit_saving", BALANCE),
}

# Snapshot-style keys still sent by older callers
LEGACY_ALIASES: Dict[str, str] = {
    "totalProfit": "profit",
    "totalAdmissionFees": "admissionFees",
    "totalAppraisalFees": "appraisalFees",
    "totalInterestCollected": "interestCollected",
    "totalFeesCollected": "feesCollected",
    "totalCollected": "collected",
    "totalWaitingToBeCollected": "waitingToBeCollected",
    "totalOverdue": "overdue",
    "totalExpenses": "expenses",
    "totalSavingsBalance": "savingsBalance",
    "totalPersonalSavingsBalance": "personalSavingsBalance",
    "totalSecuritySavingsBalance": "securitySavingsBalance",
    "totalPersonalSavingsFlow": "personalSavingsFlow",
    "totalSecurityDepositsFlow": "securityDepositsFlow",
    "totalSavingsDeposits": "savingsDeposits",
    "totalSavingsWithdrawals": "savingsWithdrawals",
    "totalLoansCount": "loansCount",
    "totalLoanAmountDistributed": "loanAmountDistributed",
    "totalPendingLoanAmount": "pendingLoanAmount",
    "totalApprovedLoanBalance": "approvedLoanBalance",
    "totalPendingInterest": "pendingInterest",
    "totalPendingAdmissionFees": "pendingAdmissionFees",
    "totalPendingSecurityDeposit": "pendingSecurityDeposit",
}

# Reporting classification only; the write path accepts any name.
# admissionFees is left out: client registration already folds it into feesCollected.
INCOME_METRICS: FrozenSet[str] = frozenset(
    {
        "interestCollected",
        "feesCollected",
        # legacy fee names
        "totalFormFees",
        "totalInspectionFees",
        "totalProcessingFees",
        "lostDueBookFee",
    }
)
EXPENSE_METRICS: FrozenSet[str] = frozenset({"expenses"})

# Manually entered branch-data adjustments
BRANCH_DATA_FIELDS: Tuple[str, ...] = ("loanOfficerShortage", "branchShortage", "entityShortage", "badDebt")

# Ledger columns a summary may be split by
SPLIT_DIMENSIONS: Dict[str, str] = {
    "branchName": "branch_name",
    "branchCode": "branch_code",
    "loanOfficerName": "loan_officer_name",
    "currency": "currency",
    "loan": "loan_id",
    "group": "group_id",
    "client": "client_id",
}

GROUP_BY_CHOICES: Tuple[str, ...] = ("day", "week", "month", "year")


def canonical_metric_name(name: str) -> str:
    return LEGACY_ALIASES.get(name, name)


def snapshot_column(name: str) -> str | None:
    field = SNAPSHOT_FIELDS.get(canonical_metric_name(name))
    return field[0] if field else None
