"""
Salary Router

HTTP endpoints for salary structures: previews, validation, increments and
the stored structure CRUD. All business logic lives in the service layer.
"""

from decimal import Decimal
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List

from salary_engine.core.exceptions import SalaryValidationError
from salary_engine.core.schemas import ApiResponse
from salary_engine.database import get_db
from salary_engine.schemas.salary import (
    CompensationBreakdown,
    GuidedInput,
    GuidedSalaryCreate,
    IncrementCreate,
    IncrementPreview,
    IncrementPreviewRequest,
    ManualResolveRequest,
    ManualResolveResponse,
    ManualSalaryCreate,
    SalaryValidateRequest,
    UpdateCtcRequest,
    VariablePayType,
)
from salary_engine.services import increment, salary_service
from salary_engine.services.compensation import resolve_from_components, resolve_from_ctc_local
from salary_engine.services.reconciliation import (
    manual_ctc_difference,
    validate_guided_input,
    validate_submission,
)


router = APIRouter(prefix="/salary", tags=["salary"])


@router.post("/calculate-preview", response_model=CompensationBreakdown)
def calculate_preview(
    package_ctc_annual: Decimal = Query(...),
    variable_pay_type: VariablePayType = Query(VariablePayType.NONE),
    variable_pay_value: Decimal = Query(Decimal("0")),
):
    """
    Guided preview: derive every component from annual CTC and variable pay policy.
    """
    guided = GuidedInput(
        annual_ctc=package_ctc_annual,
        variable_pay_type=variable_pay_type,
        variable_pay_value=variable_pay_value,
    )
    errors = validate_guided_input(guided)
    if errors:
        raise SalaryValidationError(errors)
    return resolve_from_ctc_local(package_ctc_annual, variable_pay_type, variable_pay_value)


@router.post("/resolve-manual", response_model=ManualResolveResponse)
def resolve_manual(request: ManualResolveRequest):
    """
    Manual preview: derive monthly figures and implied CTC from annual components.
    Reports the gap between a declared CTC and the entered components.
    """
    breakdown = resolve_from_components(request.components, request.annual_ctc)
    difference = None
    if request.annual_ctc is not None and request.annual_ctc > 0:
        difference = manual_ctc_difference(request.annual_ctc, request.components)
    return ManualResolveResponse(breakdown=breakdown, manual_ctc_difference=difference)


@router.post("/validate")
def validate_salary(request: SalaryValidateRequest):
    """
    Submit-time validation without persisting anything.
    Returns 422 with per-field errors when the draft would be rejected.
    """
    validate_submission(request.user_id, request.mode, request.guided, request.components)
    return ApiResponse.ok({"valid": True}).to_dict()


@router.post("/increment-preview", response_model=IncrementPreview)
def increment_preview(request: IncrementPreviewRequest):
    return increment.preview_increment(request)


@router.post("/increment")
def create_increment(payload: IncrementCreate, db: Session = Depends(get_db)):
    """
    Record an increment and re-derive the stored structure at the new CTC,
    keeping the current variable pay policy.
    """
    return increment.create_increment(db, payload)


@router.get("/increments/{user_id}", response_model=List[dict])
def list_increments(user_id: int, db: Session = Depends(get_db)):
    return increment.list_increments(db, user_id)


@router.get("/employees", response_model=List[dict])
def list_salaries(
    skip: int = 0,
    limit: int = Query(100, le=500),
    db: Session = Depends(get_db),
):
    return salary_service.list_salaries(db, skip=skip, limit=limit)


@router.post("/employee")
def create_manual_salary(payload: ManualSalaryCreate, db: Session = Depends(get_db)):
    """
    Create (or replace) a structure from manually entered annual components.
    """
    return salary_service.create_manual_salary(db, payload)


@router.post("/employee/from-ctc")
def create_salary_from_ctc(payload: GuidedSalaryCreate, db: Session = Depends(get_db)):
    """
    Create (or replace) a structure derived from CTC and variable pay policy.
    """
    return salary_service.create_salary_from_ctc(db, payload)


@router.put("/employee/{user_id}/update-ctc")
def update_ctc(user_id: int, payload: UpdateCtcRequest, db: Session = Depends(get_db)):
    return salary_service.update_ctc(db, user_id, payload)


@router.get("/employee/{user_id}")
def get_salary(user_id: int, db: Session = Depends(get_db)):
    return salary_service.get_salary(db, user_id)


@router.delete("/employee/{user_id}")
def delete_salary(user_id: int, db: Session = Depends(get_db)):
    return salary_service.delete_salary(db, user_id)
