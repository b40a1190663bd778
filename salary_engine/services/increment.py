"""
Salary increments.

An increment can be entered as an amount, a percentage of the current CTC,
or a target CTC; the other two figures follow from whichever was given.
Applying one records it and re-derives the stored structure at the new CTC,
keeping the employee's variable pay policy.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from salary_engine.core.exceptions import AppException, FieldError, SalaryValidationError
from salary_engine.core.money import as_number, round_money, to_decimal
from salary_engine.models.salary_increment import SalaryIncrement
from salary_engine.schemas.salary import (
    GuidedInput,
    IncrementCreate,
    IncrementPreview,
    IncrementPreviewRequest,
    UpdateCtcRequest,
)
from salary_engine.services import salary_service
from salary_engine.services.reconciliation import validate_guided_input

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
PERCENT_PLACES = Decimal("0.01")


def _current(current_ctc: Any) -> Decimal:
    ctc = to_decimal(current_ctc)
    if ctc <= 0:
        raise AppException(
            "Cannot compute an increment without an existing salary",
            error_code="SALARY_BASELINE_MISSING",
        )
    return ctc


def _percent_of(amount: Decimal, ctc: Decimal) -> Decimal:
    return (amount / ctc * HUNDRED).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)


def increment_from_amount(current_ctc: Any, amount: Any) -> IncrementPreview:
    ctc = _current(current_ctc)
    amount = to_decimal(amount)
    if amount < 0:
        raise SalaryValidationError([FieldError("increment_amount", "Amount must be positive")])
    return IncrementPreview(
        previous_ctc=ctc,
        increment_amount=amount,
        increment_percentage=_percent_of(amount, ctc),
        new_ctc=ctc + amount,
    )


def increment_from_percentage(current_ctc: Any, percentage: Any) -> IncrementPreview:
    ctc = _current(current_ctc)
    percentage = to_decimal(percentage)
    if percentage < 0:
        raise SalaryValidationError([FieldError("increment_percentage", "Percentage must be positive")])
    amount = round_money(ctc * percentage / HUNDRED)
    return IncrementPreview(
        previous_ctc=ctc,
        increment_amount=amount,
        increment_percentage=percentage,
        new_ctc=ctc + amount,
    )


def increment_from_new_ctc(current_ctc: Any, new_ctc: Any) -> IncrementPreview:
    ctc = _current(current_ctc)
    new_ctc = to_decimal(new_ctc)
    if new_ctc < 1:
        raise SalaryValidationError([FieldError("new_ctc", "New CTC must be valid")])
    # A lower target is allowed and shows up as a negative increment
    amount = new_ctc - ctc
    return IncrementPreview(
        previous_ctc=ctc,
        increment_amount=amount,
        increment_percentage=_percent_of(amount, ctc),
        new_ctc=new_ctc,
    )


def preview_increment(request: IncrementPreviewRequest) -> IncrementPreview:
    """Dispatch on whichever figure the caller supplied; amount wins, then percentage, then target."""
    if request.increment_amount is not None:
        return increment_from_amount(request.current_ctc, request.increment_amount)
    if request.increment_percentage is not None:
        return increment_from_percentage(request.current_ctc, request.increment_percentage)
    if request.new_ctc is not None:
        return increment_from_new_ctc(request.current_ctc, request.new_ctc)
    raise SalaryValidationError([
        FieldError("increment_amount", "Provide an increment amount, percentage or new CTC")
    ])


def increment_to_dict(record: SalaryIncrement) -> Dict[str, Any]:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "previous_salary": as_number(record.previous_salary),
        "increment_amount": as_number(record.increment_amount),
        "increment_percentage": as_number(record.increment_percentage),
        "new_salary": as_number(record.new_salary),
        "effective_date": record.effective_date.isoformat(),
        "reason": record.reason,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }


def create_increment(db: Session, data: IncrementCreate) -> Dict[str, Any]:
    """
    Record an increment and move the stored structure to the new CTC.

    Both writes land in one commit. The new CTC is checked against the
    current variable pay policy before anything is written, so a rejected
    increment leaves no record behind.
    """
    current = salary_service.get_salary(db, data.user_id)
    previous = to_decimal(current["annual_ctc"])
    if data.previous_salary is not None and data.previous_salary != previous:
        raise SalaryValidationError([
            FieldError("previous_salary", "Previous salary does not match the current CTC")
        ])

    preview = preview_increment(IncrementPreviewRequest(
        current_ctc=previous,
        increment_amount=data.increment_amount,
        increment_percentage=data.increment_percentage,
        new_ctc=data.new_salary,
    ))

    guided = GuidedInput(
        annual_ctc=preview.new_ctc,
        variable_pay_type=current["variable_pay_type"],
        variable_pay_value=current["variable_pay_value"],
        working_days_per_month=current["working_days_per_month"] or 26,
    )
    errors = validate_guided_input(guided)
    if errors:
        raise SalaryValidationError(errors)

    record = SalaryIncrement(
        user_id=data.user_id,
        previous_salary=preview.previous_ctc,
        increment_amount=preview.increment_amount,
        increment_percentage=preview.increment_percentage,
        new_salary=preview.new_ctc,
        effective_date=data.effective_date,
        reason=data.reason,
    )
    db.add(record)
    # update_ctc commits the pending record together with the structure
    salary = salary_service.update_ctc(db, data.user_id, UpdateCtcRequest(
        package_ctc_annual=guided.annual_ctc,
        variable_pay_type=guided.variable_pay_type,
        variable_pay_value=guided.variable_pay_value,
    ))
    db.refresh(record)

    logger.info(
        f"Increment applied for user {data.user_id}",
        extra={"previous": str(preview.previous_ctc), "current": str(preview.new_ctc)},
    )
    return {"increment": increment_to_dict(record), "salary": salary}


def list_increments(db: Session, user_id: int) -> List[Dict[str, Any]]:
    records = (
        db.query(SalaryIncrement)
        .filter(SalaryIncrement.user_id == user_id)
        .order_by(SalaryIncrement.effective_date, SalaryIncrement.id)
        .all()
    )
    return [increment_to_dict(r) for r in records]
