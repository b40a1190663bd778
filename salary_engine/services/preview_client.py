"""
Remote salary preview collaborator.

The remote calculator is authoritative when it answers, but its payloads are
not uniform: the same figure can arrive as snake_case or camelCase, monthly or
annual. PREVIEW_FIELD_ALIASES is the one place those names are resolved;
nothing past normalize_preview_response() sees an external key.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import requests

from salary_engine.core.config import settings
from salary_engine.core.exceptions import PreviewServiceError
from salary_engine.core.money import MONTHS, ZERO, as_number, round_money, to_decimal
from salary_engine.schemas.salary import BreakdownSource, CompensationBreakdown, VariablePayType
from salary_engine.services.compensation import resolve_from_ctc_local, with_calculated_ctc

logger = logging.getLogger(__name__)

PREVIEW_PATH = "/salary/calculate-preview"

# canonical field -> (monthly keys, annual keys), in order of preference
PREVIEW_FIELD_ALIASES: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    "basic_annual": (
        ("monthly_basic", "monthlyBasic", "basic"),
        ("basic_annual", "basicAnnual", "annual_basic", "annualBasic"),
    ),
    "hra_annual": (
        ("hra", "monthly_hra", "monthlyHra"),
        ("hra_annual", "hraAnnual", "annual_hra", "annualHra"),
    ),
    "special_allowance_annual": (
        ("special_allowance", "specialAllowance", "monthly_special_allowance"),
        ("special_allowance_annual", "specialAllowanceAnnual"),
    ),
    "medical_allowance_annual": (
        ("medical_allowance", "medicalAllowance", "monthly_medical_allowance"),
        ("medical_allowance_annual", "medicalAllowanceAnnual"),
    ),
    "conveyance_annual": (
        ("conveyance_allowance", "conveyanceAllowance", "conveyance", "monthly_conveyance"),
        ("conveyance_annual", "conveyanceAnnual"),
    ),
    "other_allowance_annual": (
        ("other_allowance", "otherAllowance", "monthly_other_allowance"),
        ("other_allowance_annual", "otherAllowanceAnnual"),
    ),
    "professional_tax_annual": (
        ("professional_tax", "professionalTax", "monthly_professional_tax"),
        ("professional_tax_annual", "professionalTaxAnnual"),
    ),
    "other_deduction_annual": (
        ("other_deduction", "otherDeduction", "monthly_other_deduction"),
        ("other_deduction_annual", "otherDeductionAnnual"),
    ),
    # Each monthly PF key is one side; pf_annual is the employee + employer total
    "pf_one_side_annual": (
        ("pf_employee", "pfEmployee", "monthly_pf_employee", "pf_employer", "pfEmployer", "monthly_pf_employer"),
        (),
    ),
    "variable_pay_annual": (
        (),
        ("variable_pay", "variablePay", "variable_pay_annual", "variablePayAnnual"),
    ),
}

PF_TOTAL_ANNUAL_KEYS = ("pf_annual", "pfAnnual")
ANNUAL_CTC_KEYS = ("annual_ctc", "annualCtc", "ctc_annual", "package_ctc_annual")
IN_HAND_KEYS = ("monthly_in_hand", "monthlyInHand")


def _first_present(payload: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[Decimal]:
    for key in keys:
        if payload.get(key) is not None:
            try:
                return to_decimal(payload[key])
            except ValueError as e:
                raise PreviewServiceError(f"Malformed preview field '{key}'", details={"value": repr(payload[key])}) from e
    return None


def _unwrap(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise PreviewServiceError("Preview response is not an object")
    inner = payload.get("data")
    if isinstance(inner, dict) and not any(k in payload for k in ANNUAL_CTC_KEYS):
        return inner
    return payload


def normalize_preview_response(
    payload: Any,
    annual_ctc: Any,
    variable_pay_type: VariablePayType = VariablePayType.NONE,
    variable_pay_value: Any = 0,
) -> CompensationBreakdown:
    """
    Map a remote preview payload onto a CompensationBreakdown.

    Fields the remote omits take the locally computed value, so a partial
    response degrades to the local formulas field by field.
    """
    data = _unwrap(payload)
    local = resolve_from_ctc_local(annual_ctc, variable_pay_type, variable_pay_value)

    resolved: Dict[str, Decimal] = {}
    for field, (monthly_keys, annual_keys) in PREVIEW_FIELD_ALIASES.items():
        value = _first_present(data, monthly_keys)
        if value is not None:
            resolved[field] = value * MONTHS
            continue
        value = _first_present(data, annual_keys)
        if value is not None:
            resolved[field] = value

    if "pf_one_side_annual" not in resolved:
        pf_total = _first_present(data, PF_TOTAL_ANNUAL_KEYS)
        if pf_total is not None:
            resolved["pf_one_side_annual"] = pf_total / 2
        elif "basic_annual" in resolved:
            resolved["pf_one_side_annual"] = round_money(resolved["basic_annual"] * settings.rules.pf_ratio)

    if "professional_tax_annual" not in resolved and local.annual_ctc <= 0:
        resolved["professional_tax_annual"] = ZERO

    remote_ctc = _first_present(data, ANNUAL_CTC_KEYS)
    resolved["annual_ctc"] = remote_ctc if remote_ctc is not None else local.annual_ctc
    resolved["source"] = BreakdownSource.REMOTE

    negative = [k for k, v in resolved.items() if isinstance(v, Decimal) and v < 0]
    if negative:
        raise PreviewServiceError("Preview response contains negative components", details={"fields": negative})

    breakdown = with_calculated_ctc(local.model_copy(update=resolved))

    remote_in_hand = _first_present(data, IN_HAND_KEYS)
    if remote_in_hand is not None and abs(remote_in_hand - breakdown.monthly_in_hand) > 1:
        logger.warning(
            "Remote preview in-hand disagrees with its own components",
            extra={"remote": str(remote_in_hand), "derived": str(breakdown.monthly_in_hand)},
        )
    return breakdown


class PreviewClient:
    """HTTP client for the remote preview calculator."""

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.preview.timeout_seconds
        self.session = session or requests.Session()

    def calculate(self, annual_ctc: Any, variable_pay_type: VariablePayType, variable_pay_value: Any) -> Dict[str, Any]:
        params = {
            "package_ctc_annual": as_number(to_decimal(annual_ctc)),
            "variable_pay_type": VariablePayType(variable_pay_type).value,
            "variable_pay_value": as_number(to_decimal(variable_pay_value)),
        }
        try:
            response = self.session.post(f"{self.base_url}{PREVIEW_PATH}", params=params, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise PreviewServiceError("Salary preview service timed out") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise PreviewServiceError(f"Salary preview service returned error: {status}", details={"status": status}) from e
        except requests.exceptions.RequestException as e:
            raise PreviewServiceError(f"Salary preview service unreachable: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise PreviewServiceError("Salary preview service returned invalid JSON") from e


def default_preview_client() -> Optional[PreviewClient]:
    if not settings.preview.url:
        return None
    return PreviewClient(settings.preview.url)
