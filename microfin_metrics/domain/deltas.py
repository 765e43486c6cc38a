"""
Signed-delta calculators for business events.

Each function is pure: it maps the facts of one business event to the set of
named ledger deltas that event contributes. Deltas are commutative, so the
order in which events are applied never changes the totals. Zero deltas are
pruned here and dropped again by the recorder.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from microfin_metrics.domain.amounts import ZERO, amount_or_zero, cents, required_amount
from microfin_metrics.domain.metric_names import BRANCH_DATA_FIELDS
from microfin_metrics.domain.models import CollectionEntry, LoanFacts
from microfin_metrics.domain.schedule import total_expected_interest
from microfin_metrics.utils.date_utils import as_utc, utcnow

Deltas = Dict[str, Decimal]


def prune(deltas: Mapping[str, Any]) -> Deltas:
    """Drop zero-valued entries, coercing the rest to Decimal"""
    result = {}
    for name, value in deltas.items():
        amount = amount_or_zero(value)
        if amount != 0:
            result[name] = amount
    return result


def loan_creation_deltas(loan: LoanFacts, appraisal_fee_rate: Decimal) -> Deltas:
    """Appraisal fee income plus the pending principal/security buckets"""
    principal = required_amount(loan.loan_amount, "loan_amount", loan=loan.id)
    appraisal_fee = cents(principal * appraisal_fee_rate)
    return prune(
        {
            "appraisalFees": appraisal_fee,
            "feesCollected": appraisal_fee,
            "profit": appraisal_fee,
            "pendingLoanAmount": principal,
            "pendingSecurityDeposit": amount_or_zero(loan.security_deposit),
        }
    )


def loan_approval_deltas(loan: LoanFacts) -> Deltas:
    """
    Approval moves the principal from pending to approved and books the
    interest the loan is expected to earn over its schedule.
    """
    principal = required_amount(loan.loan_amount, "loan_amount", loan=loan.id)
    return prune(
        {
            "loansCount": 1,
            "pendingLoanAmount": -principal,
            "loanAmountDistributed": principal,
            "approvedLoanBalance": principal,
            "pendingInterest": total_expected_interest(loan),
            "pendingSecurityDeposit": -amount_or_zero(loan.security_deposit),
        }
    )


def loan_denial_deltas(loan: LoanFacts) -> Deltas:
    principal = required_amount(loan.loan_amount, "loan_amount", loan=loan.id)
    return prune(
        {
            "pendingLoanAmount": -principal,
            "pendingSecurityDeposit": -amount_or_zero(loan.security_deposit),
        }
    )


def catch_up_reduction(loan: LoanFacts, entry: CollectionEntry, now: Optional[datetime] = None) -> Decimal:
    """
    Outstanding-principal reduction caused by a payment made after the
    schedule ended on a still-active loan; zero otherwise.
    """
    if loan.ending_date is None or loan.status != "active":
        return ZERO
    collected_on = as_utc(entry.collection_date or now or utcnow())
    if collected_on <= as_utc(loan.ending_date):
        return ZERO

    others = list(loan.collections)
    for i, c in enumerate(others):
        if c is entry:
            del others[i]
            break
    else:
        if entry in others:
            others.remove(entry)

    paid = amount_or_zero(entry.field_collection)
    sum_before = sum(
        (
            amount_or_zero(c.field_collection)
            for c in others
            if c.collection_date is not None and as_utc(c.collection_date) <= collected_on
        ),
        ZERO,
    )
    principal = amount_or_zero(loan.loan_amount)
    outstanding_before = max(principal - sum_before, ZERO)
    outstanding_after = max(principal - (sum_before + paid), ZERO)
    return max(outstanding_before - outstanding_after, ZERO)


def collection_deltas(loan: LoanFacts, entry: CollectionEntry, now: Optional[datetime] = None) -> Deltas:
    """
    Deltas for one field collection.

    Profit recognition is interest-only. A shortfall against the expected
    weekly installment increases overdue; a late catch-up payment after the
    schedule end decreases it by the principal it actually retires.
    """
    interest = amount_or_zero(entry.interest_portion)
    fees = amount_or_zero(entry.fees_portion)
    principal = amount_or_zero(entry.principal_portion)

    expected_weekly = amount_or_zero(entry.weekly_amount) or amount_or_zero(loan.weekly_installment)
    paid = amount_or_zero(entry.field_collection) + amount_or_zero(entry.advance_payment)
    arrears = cents(expected_weekly - paid)

    deltas = {
        "interestCollected": interest,
        "feesCollected": fees,
        "collected": principal,
        "waitingToBeCollected": -(principal + interest),
        "approvedLoanBalance": -principal,
        "pendingInterest": -interest,
        "profit": interest,
        "expectedCollections": expected_weekly,
        "fieldCollections": paid,
    }
    overdue = ZERO
    if arrears > 0:
        deltas["shortage"] = arrears
        overdue += arrears
    overdue -= catch_up_reduction(loan, entry, now)
    deltas["overdue"] = overdue
    return prune(deltas)


def savings_deltas(deposit: Any, withdrawal: Any, savings_type: str) -> Deltas:
    deposit = amount_or_zero(deposit)
    withdrawal = amount_or_zero(withdrawal)
    net = deposit - withdrawal
    deltas = {
        "savingsDeposits": deposit,
        "savingsWithdrawals": withdrawal,
        "netSavingsFlow": net,
        "savingsBalance": net,
    }
    if savings_type == "personal":
        deltas["personalSavingsFlow"] = net
        deltas["personalSavingsBalance"] = net
    elif savings_type == "security":
        deltas["securityDepositsFlow"] = net
        deltas["securitySavingsBalance"] = net
    return prune(deltas)


def distribution_deltas(total_amount: Any) -> Deltas:
    return prune({"waitingToBeCollected": total_amount})


def branch_data_deltas(current: Mapping[str, Any], applied: Mapping[str, Any]) -> Deltas:
    """Difference between the manual adjustments now and those already applied"""
    return prune(
        {field: amount_or_zero(current.get(field)) - amount_or_zero(applied.get(field)) for field in BRANCH_DATA_FIELDS}
    )


def client_registration_deltas(admission_fee: Any) -> Deltas:
    return prune({"admissionFees": admission_fee, "feesCollected": admission_fee, "profit": admission_fee})


def expense_deltas(amount: Any) -> Deltas:
    amount = amount_or_zero(amount)
    return prune({"expenses": amount, "profit": -amount})


def bank_deposit_deltas(deposit: Any, withdrawal: Any) -> Deltas:
    return prune({"bankDepositSaving": amount_or_zero(deposit) - amount_or_zero(withdrawal)})
