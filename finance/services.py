from decimal import Decimal

from django.db.models import Sum
from rest_framework.exceptions import NotFound, ValidationError

from common.exceptions import BusinessRuleViolation, DocumentClosed
from finance.ledger import (
    adjust_customer_balance,
    adjust_supplier_balance,
    ensure_not_future,
    ledger_operation,
    lock_customer,
    lock_supplier,
    next_document_number,
    post_cash_entry,
    reverse_cash_entries,
    to_money,
)
from finance.models import CashBalanceEntry, Expense, ExpenseHead, Loan, LoanReturn, OpeningCashBalance

EXPENSE_SOURCE = "expense"
CASH_TRANSACTION_SOURCE = "cash_transaction"
LOAN_SOURCE = "loan"
LOAN_RETURN_SOURCE = "loan_return"


class LoanOverpaid(BusinessRuleViolation):
    default_detail = "Loan return exceeds the outstanding loan amount."
    default_code = "loan_overpaid"


def _active_head(company, head_code):
    head = ExpenseHead.objects.filter(company=company, code=head_code).first()
    if head is None:
        raise NotFound(f"Expense head {head_code} was not found.")
    if not head.is_active:
        raise ValidationError({"head_code": f"Expense head {head_code} is inactive."})
    return head


def _post_expense_cash(expense, user):
    post_cash_entry(
        company=expense.company,
        trans_type=CashBalanceEntry.TransType.EXPENSE,
        trans_date=expense.expense_date,
        description=f"Expense {expense.head.code}: {expense.remarks}" if expense.remarks else f"Expense {expense.head.code}",
        credit=expense.amount,
        source_type=EXPENSE_SOURCE,
        source_id=expense.id,
        user=user,
    )


@ledger_operation("expense")
def create_expense(*, company, user, head_code, amount, expense_date, remarks=""):
    ensure_not_future(expense_date, "expense_date")
    expense = Expense.objects.create(
        company=company,
        head=_active_head(company, head_code),
        amount=to_money(amount),
        remarks=remarks,
        expense_date=expense_date,
        created_by=user,
        updated_by=user,
    )
    _post_expense_cash(expense, user)
    return expense


@ledger_operation("expense")
def update_expense(expense_id, *, company, user, head_code, amount, expense_date, remarks=""):
    expense = Expense.objects.select_for_update().filter(company=company, pk=expense_id).first()
    if expense is None:
        raise NotFound("Expense was not found.")
    ensure_not_future(expense_date, "expense_date")
    head = _active_head(company, head_code)

    reverse_cash_entries(company=company, source_type=EXPENSE_SOURCE, source_id=expense.id)

    expense.head = head
    expense.amount = to_money(amount)
    expense.remarks = remarks
    expense.expense_date = expense_date
    expense.updated_by = user
    expense.save()

    _post_expense_cash(expense, user)
    return expense


def _cash_description(trans_type, party_code, remarks):
    if remarks:
        return f"{trans_type}: {party_code} - {remarks}"
    return f"{trans_type}: {party_code}"


def _apply_party_effect(company, trans_type, party_code, amount):
    """RECEIPT lowers what a customer owes us; PAYMENT lowers what we owe a supplier."""
    if trans_type == CashBalanceEntry.TransType.RECEIPT:
        adjust_customer_balance(lock_customer(company, party_code), -amount)
        return CashBalanceEntry.PartyType.CUSTOMER
    adjust_supplier_balance(lock_supplier(company, party_code), -amount)
    return CashBalanceEntry.PartyType.SUPPLIER


@ledger_operation("cash_transaction")
def post_cash_transaction(*, company, user, trans_type, party_code, amount, trans_date, remarks=""):
    ensure_not_future(trans_date, "date")
    amount = to_money(amount)
    party_type = _apply_party_effect(company, trans_type, party_code, amount)

    entry = post_cash_entry(
        company=company,
        trans_type=trans_type,
        trans_date=trans_date,
        description=_cash_description(trans_type, party_code, remarks),
        debit=amount if trans_type == CashBalanceEntry.TransType.RECEIPT else Decimal("0"),
        credit=amount if trans_type == CashBalanceEntry.TransType.PAYMENT else Decimal("0"),
        party_type=party_type,
        party_code=party_code,
        source_type=CASH_TRANSACTION_SOURCE,
        source_id=None,
        user=user,
    )
    entry.source_id = entry.id
    entry.save(update_fields=["source_id"])
    return entry


@ledger_operation("cash_transaction")
def update_cash_transaction(entry_id, *, company, user, trans_type, party_code, amount, trans_date, remarks=""):
    entry = CashBalanceEntry.objects.select_for_update().filter(company=company, pk=entry_id).first()
    if entry is None:
        raise NotFound("Transaction was not found.")
    if entry.source_type not in ("", CASH_TRANSACTION_SOURCE):
        raise DocumentClosed(
            f"Transaction belongs to a {entry.source_type.replace('_', ' ')}; edit that document instead.",
            errors={"source_type": entry.source_type, "source_id": str(entry.source_id)},
        )
    ensure_not_future(trans_date, "trans_date")

    if entry.party_type == CashBalanceEntry.PartyType.CUSTOMER:
        adjust_customer_balance(lock_customer(company, entry.party_code), entry.debit_amount)
    elif entry.party_type == CashBalanceEntry.PartyType.SUPPLIER:
        adjust_supplier_balance(lock_supplier(company, entry.party_code), entry.credit_amount)

    amount = to_money(amount)
    entry.party_type = _apply_party_effect(company, trans_type, party_code, amount)
    entry.party_code = party_code
    entry.trans_type = trans_type
    entry.trans_date = trans_date
    entry.description = _cash_description(trans_type, party_code, remarks)
    entry.debit_amount = amount if trans_type == CashBalanceEntry.TransType.RECEIPT else Decimal("0")
    entry.credit_amount = amount if trans_type == CashBalanceEntry.TransType.PAYMENT else Decimal("0")
    entry.source_type = CASH_TRANSACTION_SOURCE
    entry.source_id = entry.id
    entry.updated_by = user
    entry.save()
    return entry


@ledger_operation("opening_balance")
def set_opening_balance(*, company, user, balance_date, opening_amount, closing_amount=None):
    OpeningCashBalance.objects.filter(
        company=company, status=OpeningCashBalance.Status.OPEN
    ).update(status=OpeningCashBalance.Status.CLOSED)

    return OpeningCashBalance.objects.create(
        company=company,
        balance_date=balance_date,
        opening_amount=to_money(opening_amount),
        closing_amount=to_money(opening_amount if closing_amount is None else closing_amount),
        created_by=user,
    )


@ledger_operation("loan")
def create_loan(*, company, user, loan_date, amount, lender_name, interest_rate=0, term_months=0, loan_number=""):
    ensure_not_future(loan_date, "loan_date")
    loan = Loan.objects.create(
        company=company,
        loan_number=loan_number or next_document_number(company, "LOAN", loan_date),
        loan_date=loan_date,
        amount=to_money(amount),
        interest_rate=interest_rate,
        term_months=term_months,
        lender_name=lender_name,
        created_by=user,
    )
    post_cash_entry(
        company=company,
        trans_type=CashBalanceEntry.TransType.RECEIPT,
        trans_date=loan_date,
        description=f"Loan from {lender_name}",
        debit=loan.amount,
        source_type=LOAN_SOURCE,
        source_id=loan.id,
        user=user,
    )
    return loan


def loan_outstanding(loan):
    repaid = (
        loan.returns.exclude(status=LoanReturn.Status.FAILED).aggregate(total=Sum("amount"))["total"]
        or Decimal("0")
    )
    return to_money(loan.amount - repaid)


@ledger_operation("loan_return")
def create_loan_return(*, company, user, loan_id, return_date, amount, payment_method="CASH", reference_number=""):
    ensure_not_future(return_date, "return_date")
    loan = Loan.objects.select_for_update().filter(company=company, pk=loan_id).first()
    if loan is None:
        raise NotFound("Loan was not found.")
    if loan.status != Loan.Status.ACTIVE:
        raise DocumentClosed(f"Loan {loan.loan_number} is {loan.status.lower()}.")

    amount = to_money(amount)
    outstanding = loan_outstanding(loan)
    if amount > outstanding:
        raise LoanOverpaid(errors={"amount": str(amount), "outstanding": str(outstanding)})

    loan_return = LoanReturn.objects.create(
        company=company,
        loan=loan,
        return_date=return_date,
        amount=amount,
        payment_method=payment_method,
        reference_number=reference_number,
        created_by=user,
    )
    post_cash_entry(
        company=company,
        trans_type=CashBalanceEntry.TransType.PAYMENT,
        trans_date=return_date,
        description=f"Loan return payment {loan.loan_number}",
        credit=amount,
        source_type=LOAN_RETURN_SOURCE,
        source_id=loan_return.id,
        user=user,
    )

    if outstanding - amount <= 0:
        loan.status = Loan.Status.CLOSED
        loan.save(update_fields=["status"])
    return loan_return
