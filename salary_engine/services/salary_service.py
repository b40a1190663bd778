"""
Salary Structure Service Layer

Business logic for stored salary structures. The router stays focused on
HTTP request/response handling; validation, computation and persistence
happen here.

Architecture:
- Router -> Service (this module) -> Models / compensation formulas
- Every stored structure is recomputed from its inputs before it is written,
  so stored annual components always reconcile with the stored CTC.
"""

from sqlalchemy.orm import Session
from typing import Dict, Any, List, Optional
import logging

from salary_engine.core.exceptions import SalaryNotFoundError, SalaryValidationError
from salary_engine.core.money import as_number
from salary_engine.models.salary_structure import SalaryStructure
from salary_engine.schemas.salary import (
    COMPONENT_FIELDS,
    AnnualComponentSet,
    CompensationBreakdown,
    GuidedInput,
    GuidedSalaryCreate,
    ManualSalaryCreate,
    SalaryMode,
    UpdateCtcRequest,
)
from salary_engine.services.compensation import annualize, resolve_from_components, resolve_from_ctc_local
from salary_engine.services.reconciliation import validate_guided_input, validate_manual_input
from salary_engine.services.salary_store import components_from_persisted

logger = logging.getLogger(__name__)


def _get_row(db: Session, user_id: int) -> Optional[SalaryStructure]:
    return db.query(SalaryStructure).filter(SalaryStructure.user_id == user_id).first()


def _save(
    db: Session,
    user_id: int,
    mode: SalaryMode,
    guided: GuidedInput,
    components: AnnualComponentSet,
) -> SalaryStructure:
    """Upsert the structure for a user."""
    row = _get_row(db, user_id)
    if row is None:
        row = SalaryStructure(user_id=user_id)
        db.add(row)

    row.entry_mode = mode.value
    row.annual_ctc = guided.annual_ctc
    row.variable_pay_type = guided.variable_pay_type.value
    row.variable_pay_value = guided.variable_pay_value
    row.working_days_per_month = components.working_days_per_month
    for name in COMPONENT_FIELDS:
        setattr(row, name, getattr(components, name))
    row.is_active = True

    try:
        db.commit()
        db.refresh(row)
    except Exception:
        db.rollback()
        raise
    return row


def create_manual_salary(db: Session, data: ManualSalaryCreate) -> Dict[str, Any]:
    """
    Store a structure entered component by component.

    The stored CTC is the one implied by the components:
    (monthly gross + employer PF) * 12 + annual variable pay.
    """
    components = AnnualComponentSet.model_validate(
        data.model_dump(include=set(AnnualComponentSet.model_fields))
    )
    if data.variable_pay is not None:
        components = components.model_copy(update={"variable_pay_annual": data.variable_pay})

    errors = validate_manual_input(components)
    if errors:
        raise SalaryValidationError(errors)

    breakdown = resolve_from_components(components)
    guided = GuidedInput(
        annual_ctc=breakdown.calculated_annual_ctc,
        variable_pay_type=breakdown.variable_pay_type,
        variable_pay_value=breakdown.variable_pay_value,
        working_days_per_month=components.working_days_per_month,
    )
    row = _save(db, data.user_id, SalaryMode.MANUAL, guided, components)
    logger.info(f"Manual salary structure saved for user {data.user_id}")
    return salary_to_dict(row)


def create_salary_from_ctc(db: Session, data: GuidedSalaryCreate) -> Dict[str, Any]:
    """Derive every component from CTC and variable pay policy, then store."""
    guided = GuidedInput(
        annual_ctc=data.resolved_ctc(),
        variable_pay_type=data.variable_pay_type,
        variable_pay_value=data.variable_pay_value,
        working_days_per_month=data.resolved_working_days(),
    )
    errors = validate_guided_input(guided)
    if errors:
        raise SalaryValidationError(errors)

    breakdown = resolve_from_ctc_local(guided.annual_ctc, guided.variable_pay_type, guided.variable_pay_value)
    components = annualize(breakdown, guided.working_days_per_month)
    row = _save(db, data.user_id, SalaryMode.GUIDED, guided, components)
    logger.info(f"Guided salary structure saved for user {data.user_id}")
    return salary_to_dict(row)


def update_ctc(db: Session, user_id: int, data: UpdateCtcRequest) -> Dict[str, Any]:
    """Re-derive an existing structure from a new CTC and variable pay policy."""
    row = _get_row(db, user_id)
    if row is None:
        raise SalaryNotFoundError(user_id)

    guided = GuidedInput(
        annual_ctc=data.package_ctc_annual,
        variable_pay_type=data.variable_pay_type,
        variable_pay_value=data.variable_pay_value,
        working_days_per_month=row.working_days_per_month or 26,
    )
    errors = validate_guided_input(guided)
    if errors:
        raise SalaryValidationError(errors)

    previous_ctc = row.annual_ctc
    breakdown = resolve_from_ctc_local(guided.annual_ctc, guided.variable_pay_type, guided.variable_pay_value)
    components = annualize(breakdown, guided.working_days_per_month)
    row = _save(db, user_id, SalaryMode.GUIDED, guided, components)
    logger.info(f"CTC updated for user {user_id}", extra={"previous": str(previous_ctc), "current": str(row.annual_ctc)})
    return salary_to_dict(row)


def get_salary(db: Session, user_id: int) -> Dict[str, Any]:
    row = _get_row(db, user_id)
    if row is None:
        raise SalaryNotFoundError(user_id)
    return salary_to_dict(row)


def list_salaries(db: Session, skip: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
    rows = (
        db.query(SalaryStructure)
        .filter(SalaryStructure.is_active.is_(True))
        .order_by(SalaryStructure.user_id)
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [salary_to_dict(r) for r in rows]


def delete_salary(db: Session, user_id: int) -> Dict[str, Any]:
    row = _get_row(db, user_id)
    if row is None:
        raise SalaryNotFoundError(user_id)
    db.delete(row)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"deleted": True, "user_id": user_id}


def breakdown_for(row: SalaryStructure) -> CompensationBreakdown:
    components = components_from_persisted({name: getattr(row, name) for name in COMPONENT_FIELDS})
    return resolve_from_components(components, row.annual_ctc)


def salary_to_dict(row: SalaryStructure) -> Dict[str, Any]:
    """Persisted shape; the same shape the editor session loads as its baseline."""
    data: Dict[str, Any] = {
        "id": row.id,
        "user_id": row.user_id,
        "entry_mode": row.entry_mode,
        "annual_ctc": as_number(row.annual_ctc),
        "variable_pay_type": row.variable_pay_type,
        "variable_pay_value": as_number(row.variable_pay_value),
        "working_days_per_month": row.working_days_per_month,
        "is_active": row.is_active,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
    for name in COMPONENT_FIELDS:
        data[name] = as_number(getattr(row, name))
    data["variable_pay"] = data["variable_pay_annual"]
    data["breakdown"] = breakdown_for(row).model_dump(mode="json")
    return data
