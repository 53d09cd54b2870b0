"""ORM row -> response schema conversion shared by the v1 routers"""

from thandal_ledger.api.v1.schemas import LoanSchema, RepaymentSchema
from thandal_ledger.domain.capital import disbursed_amount
from thandal_ledger.infrastructure.database.models import Loan, Repayment


def loan_to_schema(loan: Loan) -> LoanSchema:
    return LoanSchema(
        loan_id=str(loan.id),
        borrower_id=str(loan.borrower_id),
        lender_id=loan.issued_by_id,
        principal_paise=loan.principal_paise,
        upfront_deducted_paise=loan.upfront_deducted_paise,
        disbursed_paise=disbursed_amount(loan.principal_paise, loan.upfront_deducted_paise),
        daily_repayment_paise=loan.daily_repayment_paise,
        pending_paise=loan.pending_paise,
        days_to_repay=list(loan.days_to_repay),
        issued_at=loan.issued_at,
        due_date=loan.due_date,
        status=loan.status,
        installments=len(loan.repayments),
    )


def repayment_to_schema(row: Repayment) -> RepaymentSchema:
    return RepaymentSchema(
        repayment_id=str(row.id),
        loan_id=str(row.loan_id),
        due_date=row.due_date,
        amount_due_paise=row.amount_due_paise,
        amount_paid_paise=row.amount_paid_paise,
        status=row.status,
        paid_at=row.paid_at,
    )
