"""
Compensation formulas.

Pure functions, no I/O. Guided direction turns an annual CTC and a variable
pay policy into the full component set; manual direction takes explicit
annual components and derives the implied CTC.

All arithmetic runs on Decimal at full precision; each field is rounded
half-up to whole currency units exactly once.
"""
from decimal import Decimal
from typing import Any, List, Optional

from salary_engine.core.config import PayrollRules, settings
from salary_engine.core.exceptions import FieldError, SalaryValidationError
from salary_engine.core.money import MONTHS, ZERO, round_money, to_decimal
from salary_engine.schemas.salary import (
    AnnualComponentSet,
    BreakdownSource,
    CompensationBreakdown,
    VariablePayType,
)


def compute_variable_pay(annual_ctc: Any, variable_pay_type: VariablePayType, variable_pay_value: Any) -> Decimal:
    ctc = to_decimal(annual_ctc)
    value = to_decimal(variable_pay_value)
    variable_pay_type = VariablePayType(variable_pay_type)
    if variable_pay_type == VariablePayType.PERCENTAGE:
        return ctc * value / Decimal("100")
    if variable_pay_type == VariablePayType.FIXED:
        return value
    return ZERO


def _check_guided_bounds(ctc: Decimal, variable_pay: Decimal, variable_pay_value: Decimal) -> None:
    # Only rejects inputs that cannot produce a non-negative structure.
    # Policy limits (the 50% cap) are enforced at submit time.
    errors: List[FieldError] = []
    if ctc < 0:
        errors.append(FieldError("annual_ctc", "CTC must be a positive number"))
    if variable_pay_value < 0:
        errors.append(FieldError("variable_pay_value", "Variable pay cannot be negative"))
    elif ctc >= 0 and variable_pay > ctc:
        errors.append(FieldError("variable_pay_value", "Variable pay cannot exceed CTC"))
    if errors:
        raise SalaryValidationError(errors)


def with_calculated_ctc(breakdown: CompensationBreakdown) -> CompensationBreakdown:
    """Fill in (monthly gross + employer PF) * 12 + annual variable pay."""
    calculated = (breakdown.monthly_gross + breakdown.monthly_pf_employer) * MONTHS + breakdown.variable_pay_annual
    return breakdown.model_copy(update={"calculated_annual_ctc": calculated})


def resolve_from_ctc_local(
    annual_ctc: Any,
    variable_pay_type: VariablePayType = VariablePayType.NONE,
    variable_pay_value: Any = 0,
    rules: Optional[PayrollRules] = None,
) -> CompensationBreakdown:
    rules = rules or settings.rules
    ctc = to_decimal(annual_ctc)
    value = to_decimal(variable_pay_value)
    variable_pay_type = VariablePayType(variable_pay_type)

    variable_pay = compute_variable_pay(ctc, variable_pay_type, value)
    _check_guided_bounds(ctc, variable_pay, value)

    fixed_ctc = ctc - variable_pay
    basic = round_money(fixed_ctc * rules.basic_ratio)
    hra = round_money(basic * rules.hra_ratio)
    pf_one_side = round_money(basic * rules.pf_ratio)
    # Professional tax and other deductions come out of gross, they do not add to CTC
    special = max(ZERO, fixed_ctc - basic - hra - pf_one_side)

    breakdown = CompensationBreakdown(
        annual_ctc=ctc,
        fixed_ctc=fixed_ctc,
        variable_pay_type=variable_pay_type,
        variable_pay_value=value,
        source=BreakdownSource.LOCAL,
        basic_annual=basic,
        hra_annual=hra,
        special_allowance_annual=special,
        pf_one_side_annual=pf_one_side,
        professional_tax_annual=rules.professional_tax_annual,
        other_deduction_annual=ZERO,
        variable_pay_annual=variable_pay,
    )
    return with_calculated_ctc(breakdown)


def resolve_from_components(
    components: AnnualComponentSet,
    declared_annual_ctc: Any = None,
) -> CompensationBreakdown:
    negative = [
        FieldError(name, "Amount cannot be negative")
        for name, amount in components.money_fields().items()
        if amount < 0
    ]
    if negative:
        raise SalaryValidationError(negative)

    breakdown = with_calculated_ctc(CompensationBreakdown(
        annual_ctc=ZERO,
        source=BreakdownSource.MANUAL,
        basic_annual=components.basic_annual,
        hra_annual=components.hra_annual,
        special_allowance_annual=components.special_allowance_annual,
        conveyance_annual=components.conveyance_annual,
        medical_allowance_annual=components.medical_allowance_annual,
        other_allowance_annual=components.other_allowance_annual,
        pf_one_side_annual=components.pf_annual / 2,
        professional_tax_annual=components.professional_tax_annual,
        other_deduction_annual=components.other_deduction_annual,
        variable_pay_annual=components.variable_pay_annual,
    ))

    declared = to_decimal(declared_annual_ctc)
    reported = declared if declared > 0 else breakdown.calculated_annual_ctc
    return breakdown.model_copy(update={
        "annual_ctc": reported,
        "fixed_ctc": breakdown.calculated_annual_ctc - breakdown.variable_pay_annual,
        "variable_pay_type": VariablePayType.FIXED if components.variable_pay_annual > 0 else VariablePayType.NONE,
        "variable_pay_value": components.variable_pay_annual,
    })


def annualize(breakdown: CompensationBreakdown, working_days_per_month: Optional[int] = None) -> AnnualComponentSet:
    """
    Manual-entry figures equivalent to a resolved breakdown.

    Taken from the stored annual figures rather than monthly * 12, so switching
    from guided to manual entry reproduces the breakdown exactly.
    """
    return AnnualComponentSet(
        basic_annual=breakdown.basic_annual,
        hra_annual=breakdown.hra_annual,
        special_allowance_annual=breakdown.special_allowance_annual,
        conveyance_annual=breakdown.conveyance_annual,
        medical_allowance_annual=breakdown.medical_allowance_annual,
        other_allowance_annual=breakdown.other_allowance_annual,
        professional_tax_annual=breakdown.professional_tax_annual,
        other_deduction_annual=breakdown.other_deduction_annual,
        pf_annual=breakdown.pf_annual,
        variable_pay_annual=breakdown.variable_pay_annual,
        working_days_per_month=working_days_per_month or settings.rules.default_working_days,
    )
