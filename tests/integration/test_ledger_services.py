"""Integration tests for the ledger services against a real database session"""

import pytest
from datetime import date, datetime
from zoneinfo import ZoneInfo
from sqlalchemy.orm import sessionmaker
from thandal_ledger.config import Settings
from thandal_ledger.domain.exceptions import (
    BorrowerNotFoundError,
    CapitalAlreadyInitializedError,
    DayAlreadyClosedError,
    InvalidAmountError,
    InvalidDateRangeError,
    InvalidScheduleError,
    LedgerValidationError,
    LoanNotActiveError,
    LoanNotFoundError,
    NoOutstandingRepaymentsError,
    StateConflictError,
)
from thandal_ledger.domain.models import CapitalEvent, LoanStatus, RepaymentStatus, RiskLevel
from thandal_ledger.infrastructure.database.models import Repayment
from thandal_ledger.services.capital import CapitalLedger
from thandal_ledger.services.day_close import DayCloseService
from thandal_ledger.services.loans import LoanService
from thandal_ledger.services.repayments import RepaymentService
from thandal_ledger.services.risk import RiskService
from thandal_ledger.services.scheduler import DayCloseScheduler, parse_cutoff

IST = ZoneInfo("Asia/Kolkata")
MON_TO_SAT = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

pytestmark = pytest.mark.integration


def ist(year, month, day, hour=10, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=IST)


def _issue(db, clock, lender_id, borrower, principal=5_000_000, upfront=500_000, daily=50_000, days=MON_TO_SAT):
    loan = LoanService(db, clock).issue_loan(lender_id, str(borrower.id), principal, upfront, daily, days)
    db.commit()
    return loan


def _pay(db, clock, borrower, loan, amount, **kwargs):
    row = RepaymentService(db, clock).record_payment(str(borrower.id), str(loan.id), amount, **kwargs)
    db.commit()
    return row


def _check_pending_invariant(loan):
    applied = sum(r.amount_paid_paise for r in loan.repayments if r.status != RepaymentStatus.UNPAID.value)
    assert loan.pending_paise == max(
        loan.principal_paise - loan.recovered_before_registration_paise - applied, 0
    )


# --- Issuing loans ---


def test_issue_loan_builds_schedule_and_moves_capital(db, clock, lender_id, borrower):
    CapitalLedger(db, clock).initialize(lender_id, 10_000_000)
    db.commit()

    loan = _issue(db, clock, lender_id, borrower)

    assert loan.status == LoanStatus.ACTIVE.value
    assert loan.pending_paise == 5_000_000
    assert len(loan.repayments) == 100
    assert loan.repayments[0].due_date == date(2024, 6, 4)
    assert loan.due_date == loan.repayments[-1].due_date
    assert sum(r.amount_due_paise for r in loan.repayments) == loan.principal_paise

    position = CapitalLedger(db, clock).get_position(lender_id)
    assert position.idle_capital_paise == 5_500_000
    assert position.pending_loan_paise == 5_000_000


def test_issue_loan_unknown_borrower(db, clock, lender_id):
    with pytest.raises(BorrowerNotFoundError):
        LoanService(db, clock).issue_loan(lender_id, "00000000-0000-0000-0000-000000000000", 100_000, 0, 10_000, ["Monday"])


def test_issue_loan_rejects_bad_terms(db, clock, lender_id, borrower):
    service = LoanService(db, clock)
    with pytest.raises(InvalidScheduleError):
        service.issue_loan(lender_id, str(borrower.id), 100_000, 0, 10_000, [])
    with pytest.raises(InvalidAmountError):
        service.issue_loan(lender_id, str(borrower.id), 100_000, 100_000, 10_000, ["Monday"])
    with pytest.raises(InvalidAmountError):
        service.issue_loan(lender_id, str(borrower.id), 100_000, 0, 0, ["Monday"])
    with pytest.raises(InvalidAmountError):
        service.issue_loan(lender_id, str(borrower.id), 0, 0, 10_000, ["Monday"])


# --- Recording payments ---


def test_full_repayment_closes_loan(db, clock, lender_id, borrower):
    """50000 at 500/day Mon-Sat, every installment paid on its due date"""
    loan = _issue(db, clock, lender_id, borrower)
    due_dates = [r.due_date for r in loan.repayments]

    for due in due_dates:
        clock.set(ist(due.year, due.month, due.day, 18))
        _pay(db, clock, borrower, loan, 50_000)

    details = LoanService(db, clock).get_loan_details(str(loan.id))
    assert details.loan.pending_paise == 0
    assert details.loan.status == LoanStatus.CLOSED.value
    assert details.repayment_stats["Paid"] == 100
    assert details.repayment_stats["total_paid_paise"] == 5_000_000
    _check_pending_invariant(details.loan)


def test_late_payment(db, clock, lender_id, borrower):
    """Due 2024-06-04, paid 2024-06-06 in full"""
    loan = _issue(db, clock, lender_id, borrower)
    clock.set(ist(2024, 6, 6))

    row = _pay(db, clock, borrower, loan, 50_000)

    assert row.due_date == date(2024, 6, 4)
    assert row.status == RepaymentStatus.PAID_LATE.value
    assert row.paid_on == date(2024, 6, 6)
    assert loan.pending_paise == 4_950_000


def test_partial_payment_on_due_date(db, clock, lender_id, borrower):
    loan = _issue(db, clock, lender_id, borrower)
    clock.set(ist(2024, 6, 4))

    row = _pay(db, clock, borrower, loan, 30_000)

    assert row.status == RepaymentStatus.PAID_PARTIAL.value
    assert row.amount_paid_paise == 30_000
    assert loan.pending_paise == 4_970_000


def test_advance_payment(db, clock, lender_id, borrower):
    loan = _issue(db, clock, lender_id, borrower)

    row = _pay(db, clock, borrower, loan, 50_000)

    assert row.due_date == date(2024, 6, 4)
    assert row.status == RepaymentStatus.PAID_IN_ADVANCE.value


def test_payments_resolve_oldest_due_date_first(db, clock, lender_id, borrower):
    loan = _issue(db, clock, lender_id, borrower)
    clock.set(ist(2024, 6, 7))

    first = _pay(db, clock, borrower, loan, 50_000)
    second = _pay(db, clock, borrower, loan, 50_000)
    third = _pay(db, clock, borrower, loan, 50_000)
    fourth = _pay(db, clock, borrower, loan, 50_000)

    assert [r.due_date for r in (first, second, third, fourth)] == [
        date(2024, 6, 4),
        date(2024, 6, 5),
        date(2024, 6, 6),
        date(2024, 6, 7),
    ]
    assert [r.status for r in (first, second, third, fourth)] == [
        RepaymentStatus.PAID_LATE.value,
        RepaymentStatus.PAID_LATE.value,
        RepaymentStatus.PAID_LATE.value,
        RepaymentStatus.PAID.value,
    ]


def test_overpayment_caps_at_pending(db, clock, lender_id, borrower):
    loan = _issue(db, clock, lender_id, borrower, principal=120_000, upfront=0, daily=50_000)

    _pay(db, clock, borrower, loan, 50_000)
    _pay(db, clock, borrower, loan, 50_000)
    last = _pay(db, clock, borrower, loan, 90_000)

    assert last.amount_paid_paise == 20_000
    assert last.status == RepaymentStatus.PAID_IN_ADVANCE.value
    assert loan.pending_paise == 0
    assert loan.status == LoanStatus.CLOSED.value
    _check_pending_invariant(loan)


def test_partial_shortfall_leaves_trailing_rows_unpaid(db, clock, lender_id, borrower):
    """A partial leaves pending above zero after the last row; the loan stays Active"""
    loan = _issue(db, clock, lender_id, borrower, principal=100_000, upfront=0, daily=50_000)

    _pay(db, clock, borrower, loan, 30_000)
    _pay(db, clock, borrower, loan, 50_000)

    assert loan.pending_paise == 20_000
    assert loan.status == LoanStatus.ACTIVE.value
    with pytest.raises(NoOutstandingRepaymentsError):
        RepaymentService(db, clock).record_payment(str(borrower.id), str(loan.id), 20_000)


def test_payment_validation(db, clock, lender_id, borrower, second_borrower):
    loan = _issue(db, clock, lender_id, borrower)
    service = RepaymentService(db, clock)

    with pytest.raises(InvalidAmountError):
        service.record_payment(str(borrower.id), str(loan.id), 0)
    with pytest.raises(LoanNotFoundError):
        service.record_payment(str(second_borrower.id), str(loan.id), 50_000)
    with pytest.raises(LoanNotFoundError):
        service.record_payment(str(borrower.id), "not-a-uuid", 50_000)
    with pytest.raises(LedgerValidationError):
        service.record_payment(str(borrower.id), str(loan.id), 50_000, paid_at=ist(2024, 6, 4))


def test_backdated_naive_timestamp_uses_business_timezone(db, clock, lender_id, borrower):
    loan = _issue(db, clock, lender_id, borrower)
    clock.set(ist(2024, 6, 6))

    row = _pay(db, clock, borrower, loan, 50_000, paid_at=datetime(2024, 6, 5, 9, 30))

    assert row.paid_on == date(2024, 6, 5)
    assert row.status == RepaymentStatus.PAID_LATE.value


def test_payment_on_closed_loan_rejected(db, clock, lender_id, borrower):
    loan = _issue(db, clock, lender_id, borrower)
    LoanService(db, clock).close_loan(str(loan.id))
    db.commit()

    with pytest.raises(LoanNotActiveError):
        RepaymentService(db, clock).record_payment(str(borrower.id), str(loan.id), 50_000)


def test_idempotency_key_replays_same_payment(db, clock, lender_id, borrower):
    loan = _issue(db, clock, lender_id, borrower)

    first = _pay(db, clock, borrower, loan, 50_000, idempotency_key="collector-42")
    replay = _pay(db, clock, borrower, loan, 50_000, idempotency_key="collector-42")

    assert replay.id == first.id
    assert loan.pending_paise == 4_950_000
    with pytest.raises(StateConflictError):
        RepaymentService(db, clock).record_payment(str(borrower.id), str(loan.id), 40_000, idempotency_key="collector-42")


# --- Day close ---


def test_day_close_marks_missed_and_collects(db, clock, lender_id, borrower, second_borrower):
    CapitalLedger(db, clock).initialize(lender_id, 20_000_000)
    db.commit()
    slow = _issue(db, clock, lender_id, borrower)
    prompt = _issue(db, clock, lender_id, second_borrower)

    clock.set(ist(2024, 6, 6, 20))
    for _ in range(3):
        _pay(db, clock, second_borrower, prompt, 50_000)

    result = DayCloseService(db, clock).close_day(lender_id)
    db.commit()

    assert result.missed_count == 3
    assert result.collected_total_paise == 150_000
    assert not result.already_closed
    missed = [r for r in slow.repayments if r.status == RepaymentStatus.MISSED.value]
    assert [r.due_date for r in missed] == [date(2024, 6, 4), date(2024, 6, 5), date(2024, 6, 6)]
    assert slow.pending_paise == 5_000_000

    position = CapitalLedger(db, clock).get_position(lender_id)
    assert position.idle_capital_paise == 20_000_000 - 2 * 4_500_000 + 150_000
    assert position.pending_loan_paise == 10_000_000 - 150_000

    again = DayCloseService(db, clock).close_day(lender_id)
    db.commit()

    assert again.missed_count == 0
    assert again.already_closed
    assert again.collected_total_paise == 150_000
    assert CapitalLedger(db, clock).get_position(lender_id).idle_capital_paise == position.idle_capital_paise


def test_day_close_counts_backdated_payment(db, clock, lender_id, borrower):
    """Payment dated on a day that was never closed still reaches idle capital"""
    CapitalLedger(db, clock).initialize(lender_id, 10_000_000)
    db.commit()
    loan = _issue(db, clock, lender_id, borrower)
    assert CapitalLedger(db, clock).get_position(lender_id).total_capital_paise == 10_500_000

    clock.set(ist(2024, 6, 5))
    row = _pay(db, clock, borrower, loan, 50_000, paid_at=ist(2024, 6, 4, 18))
    assert row.paid_on == date(2024, 6, 4)

    result = DayCloseService(db, clock).close_day(lender_id)
    db.commit()

    assert result.collected_total_paise == 50_000
    assert row.settled_day_close_id is not None
    position = CapitalLedger(db, clock).get_position(lender_id)
    assert position.idle_capital_paise == 5_550_000
    assert position.pending_loan_paise == 4_950_000
    assert position.total_capital_paise == 10_500_000


def test_day_close_collects_days_left_open(db, clock, lender_id, borrower):
    """Skipping a close carries that day's cash into the next close, counted once"""
    CapitalLedger(db, clock).initialize(lender_id, 10_000_000)
    db.commit()
    loan = _issue(db, clock, lender_id, borrower)

    clock.set(ist(2024, 6, 4))
    _pay(db, clock, borrower, loan, 50_000)
    clock.set(ist(2024, 6, 5))
    _pay(db, clock, borrower, loan, 50_000)

    first = DayCloseService(db, clock).close_day(lender_id)
    db.commit()
    assert first.collected_total_paise == 100_000

    clock.advance(days=1)
    second = DayCloseService(db, clock).close_day(lender_id)
    db.commit()

    assert second.collected_total_paise == 0
    assert second.missed_count == 1
    position = CapitalLedger(db, clock).get_position(lender_id)
    assert position.idle_capital_paise == 5_600_000
    assert position.total_capital_paise == 10_500_000


def test_day_close_leaves_future_rows_unpaid(db, clock, lender_id, borrower):
    loan = _issue(db, clock, lender_id, borrower)
    clock.set(ist(2024, 6, 4, 21))

    result = DayCloseService(db, clock).close_day(lender_id)
    db.commit()

    assert result.missed_count == 1
    assert sum(1 for r in loan.repayments if r.status == RepaymentStatus.UNPAID.value) == 99


def test_payment_rejected_after_day_closed(db, clock, lender_id, borrower):
    loan = _issue(db, clock, lender_id, borrower)
    DayCloseService(db, clock).close_day(lender_id)
    db.commit()

    with pytest.raises(DayAlreadyClosedError):
        RepaymentService(db, clock).record_payment(str(borrower.id), str(loan.id), 50_000)

    clock.advance(days=1)
    row = _pay(db, clock, borrower, loan, 50_000)
    assert row.status == RepaymentStatus.PAID.value


def test_missed_row_cannot_be_paid_later(db, clock, lender_id, borrower):
    """After a miss the next payment moves on to the following due date"""
    loan = _issue(db, clock, lender_id, borrower)
    clock.set(ist(2024, 6, 4, 21))
    DayCloseService(db, clock).close_day(lender_id)
    db.commit()

    clock.advance(days=1)
    row = _pay(db, clock, borrower, loan, 50_000)

    assert row.due_date == date(2024, 6, 5)
    assert db.query(Repayment).filter(Repayment.status == RepaymentStatus.MISSED.value).count() == 1


def test_collection_status_and_today_due(db, clock, lender_id, borrower, second_borrower):
    first = _issue(db, clock, lender_id, borrower)
    _issue(db, clock, lender_id, second_borrower, principal=300_000, upfront=0, daily=100_000)
    clock.set(ist(2024, 6, 4))
    _pay(db, clock, borrower, first, 50_000)

    service = RepaymentService(db, clock)
    due = service.get_today_due(lender_id)
    status = service.get_collection_status(lender_id)

    assert len(due) == 2
    assert {d.borrower.name for d in due} == {"Murugan", "Lakshmi"}
    assert status.amount_expected_today_paise == 150_000
    assert status.amount_collected_today_paise == 50_000
    assert not status.is_closed
    assert service.get_today_due("someone_else") == []


# --- History ---


def test_repayment_history_grouped_by_date(db, clock, lender_id, borrower, second_borrower):
    first = _issue(db, clock, lender_id, borrower)
    second = _issue(db, clock, lender_id, second_borrower, daily=20_000)
    clock.set(ist(2024, 6, 4))
    _pay(db, clock, borrower, first, 50_000)
    clock.set(ist(2024, 6, 5))
    _pay(db, clock, borrower, first, 50_000)
    _pay(db, clock, second_borrower, second, 20_000)

    history = RepaymentService(db, clock).get_repayment_history(lender_id, "week")

    assert list(history.keys()) == ["2024-06-05", "2024-06-04"]
    assert len(history["2024-06-05"]) == 2
    assert history["2024-06-04"][0]["borrower_name"] == "Murugan"

    filtered = RepaymentService(db, clock).get_repayment_history(lender_id, "week", min_amount_paise=30_000)
    assert sum(len(v) for v in filtered.values()) == 2

    custom = RepaymentService(db, clock).get_repayment_history(
        lender_id, "custom", start_date=date(2024, 6, 4), end_date=date(2024, 6, 4)
    )
    assert list(custom.keys()) == ["2024-06-04"]


def test_repayment_history_validation(db, clock, lender_id):
    service = RepaymentService(db, clock)

    with pytest.raises(InvalidDateRangeError):
        service.get_repayment_history(lender_id, "custom", start_date=date(2024, 6, 1))
    with pytest.raises(InvalidDateRangeError):
        service.get_repayment_history(lender_id, "year")
    with pytest.raises(InvalidDateRangeError):
        service.get_repayment_history(lender_id, "custom", start_date=date(2024, 6, 3), end_date=date(2024, 6, 1))
    with pytest.raises(InvalidDateRangeError):
        service.get_repayment_history(lender_id, "week", min_amount_paise=500, max_amount_paise=100)


# --- Loan lifecycle ---


def test_register_existing_loan(db, clock, lender_id, borrower):
    CapitalLedger(db, clock).initialize(lender_id, 1_000_000)
    db.commit()

    loan = LoanService(db, clock).register_existing_loan(
        lender_id, str(borrower.id), 1_000_000, 100_000, 100_000, MON_TO_SAT, date(2024, 5, 1), 400_000
    )
    db.commit()

    assert loan.pending_paise == 400_000
    assert loan.recovered_before_registration_paise == 600_000
    assert len(loan.repayments) == 4
    assert loan.repayments[0].due_date == date(2024, 6, 4)
    _check_pending_invariant(loan)

    position = CapitalLedger(db, clock).get_position(lender_id)
    assert position.idle_capital_paise == 1_000_000
    assert position.pending_loan_paise == 400_000


def test_register_existing_loan_validation(db, clock, lender_id, borrower):
    service = LoanService(db, clock)
    with pytest.raises(InvalidAmountError):
        service.register_existing_loan(lender_id, str(borrower.id), 100_000, 0, 10_000, ["Monday"], date(2024, 5, 1), 200_000)
    with pytest.raises(InvalidScheduleError):
        service.register_existing_loan(lender_id, str(borrower.id), 100_000, 0, 10_000, ["Monday"], date(2024, 7, 1), 50_000)


def test_close_and_default_remove_loan_from_pending(db, clock, lender_id, borrower, second_borrower):
    first = _issue(db, clock, lender_id, borrower)
    second = _issue(db, clock, lender_id, second_borrower)
    service = LoanService(db, clock)

    service.close_loan(str(first.id))
    service.mark_defaulted(str(second.id))
    db.commit()

    assert first.status == LoanStatus.CLOSED.value
    assert second.status == LoanStatus.DEFAULTED.value
    assert second.pending_paise == 5_000_000
    assert CapitalLedger(db, clock).get_position(lender_id).pending_loan_paise == 0

    history = CapitalLedger(db, clock).get_history(lender_id)
    assert history[0].event == CapitalEvent.LOAN_WRITTEN_OFF.value

    with pytest.raises(LoanNotActiveError):
        service.mark_defaulted(str(first.id))


# --- Capital ---


def test_capital_initialize_once_and_adjust(db, clock, lender_id):
    ledger = CapitalLedger(db, clock)
    ledger.initialize(lender_id, 500_000)
    db.commit()

    with pytest.raises(CapitalAlreadyInitializedError):
        ledger.initialize(lender_id, 100)

    ledger.adjust(lender_id, -200_000, note="rent")
    db.commit()
    assert ledger.get_position(lender_id).idle_capital_paise == 300_000

    with pytest.raises(InvalidAmountError):
        ledger.adjust(lender_id, -300_001)

    events = [s.event for s in ledger.get_history(lender_id)]
    assert events == [CapitalEvent.ADJUSTED.value, CapitalEvent.INITIALIZED.value]


# --- Risk ---


def test_risk_assessment_from_ledger(db, clock, lender_id, borrower):
    loan = _issue(db, clock, lender_id, borrower)
    clock.set(ist(2024, 6, 4))
    _pay(db, clock, borrower, loan, 50_000)
    clock.set(ist(2024, 6, 5, 21))
    DayCloseService(db, clock).close_day(lender_id)
    db.commit()

    assessment = RiskService(db).get_risk_assessment(str(borrower.id))

    assert assessment.factors.total_repayments == 2
    assert assessment.factors.on_time_rate == 50.0
    assert assessment.factors.repayment_rate == 50.0
    # 20 + 15 + 20 + 10
    assert assessment.risk_score == 65
    assert assessment.risk_level == RiskLevel.MEDIUM


def test_lender_thresholds_override_defaults(db, clock, lender_id, borrower):
    service = RiskService(db)
    assert service.get_thresholds(lender_id) == (70, 40)

    service.update_thresholds(lender_id, low_threshold=25)
    db.commit()

    assert service.get_thresholds(lender_id) == (25, 40)
    assessment = service.get_risk_assessment(str(borrower.id), lender_id)
    assert assessment.risk_level == RiskLevel.LOW


def test_threshold_validation(db, lender_id):
    service = RiskService(db)
    with pytest.raises(LedgerValidationError):
        service.update_thresholds(lender_id)
    with pytest.raises(LedgerValidationError):
        service.update_thresholds(lender_id, low_threshold=30, medium_threshold=50)


def test_risk_unknown_borrower(db):
    with pytest.raises(BorrowerNotFoundError):
        RiskService(db).get_risk_assessment("00000000-0000-0000-0000-000000000000")


# --- Scheduler ---


def test_scheduler_retries_lender_after_failure(db, clock, lender_id, borrower, monkeypatch):
    _issue(db, clock, lender_id, borrower)
    clock.set(ist(2024, 6, 4, 23, 58))

    original = DayCloseService.close_day
    calls = []

    def flaky_close_day(self, lender, request_id=None):
        calls.append(lender)
        if len(calls) == 1:
            raise RuntimeError("connection reset")
        return original(self, lender, request_id)

    monkeypatch.setattr(DayCloseService, "close_day", flaky_close_day)
    scheduler = DayCloseScheduler(
        Settings(day_close_scheduler_enabled=True, day_close_time="23:55"),
        sessionmaker(bind=db.get_bind(), autoflush=False),
        clock,
    )

    assert scheduler.run_once() == []
    assert scheduler.is_due(clock.now())

    results = scheduler.run_once()

    assert [r.missed_count for r in results] == [1]
    assert not scheduler.is_due(clock.now())


def test_scheduler_closes_each_lender_once(db, clock, borrower, second_borrower):
    _issue(db, clock, "lender_a", borrower)
    _issue(db, clock, "lender_b", second_borrower)
    clock.set(ist(2024, 6, 4, 23, 56))

    scheduler = DayCloseScheduler(
        Settings(day_close_scheduler_enabled=True, day_close_time="23:55"),
        sessionmaker(bind=db.get_bind(), autoflush=False),
        clock,
    )
    assert scheduler.is_due(clock.now())

    results = scheduler.run_once()

    assert [r.missed_count for r in results] == [1, 1]
    assert not scheduler.is_due(clock.now())
    assert not scheduler.is_due(ist(2024, 6, 5, 9))
    assert scheduler.is_due(ist(2024, 6, 5, 23, 55))


def test_parse_cutoff():
    assert parse_cutoff("23:55").hour == 23
    assert parse_cutoff("06:05").minute == 5
