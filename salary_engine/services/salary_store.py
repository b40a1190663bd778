"""
Salary persistence collaborator client.

Talks to the salary API that owns stored structures. Writes are sent once;
only the idempotent fetch is retried.
"""
import logging
from typing import Any, Dict, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from salary_engine.core.config import settings
from salary_engine.core.exceptions import SalaryNotFoundError, SalaryPersistenceError
from salary_engine.core.money import as_number, to_decimal
from salary_engine.schemas.salary import COMPONENT_FIELDS, AnnualComponentSet, GuidedInput, VariablePayType

logger = logging.getLogger(__name__)

CTC_FIELD = "annual_ctc"


def build_manual_payload(user_id: int, components: AnnualComponentSet) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"user_id": int(user_id)}
    for name, amount in components.money_fields().items():
        payload[name] = as_number(amount)
    # The salary API names the annual variable pay field without the suffix
    payload["variable_pay"] = payload.pop("variable_pay_annual")
    payload["working_days_per_month"] = components.working_days_per_month
    return payload


def build_guided_payload(user_id: int, guided: GuidedInput) -> Dict[str, Any]:
    return {
        "user_id": int(user_id),
        "annual_ctc": as_number(guided.annual_ctc),
        "variable_pay_type": guided.variable_pay_type.value,
        "variable_pay_value": as_number(guided.variable_pay_value),
        "working_days": guided.working_days_per_month,
    }


def components_from_persisted(data: Dict[str, Any]) -> AnnualComponentSet:
    """Load a persisted structure (annual snake_case fields) as manual-entry figures."""
    values = {name: to_decimal(data.get(name)) for name in COMPONENT_FIELDS}
    if not values["variable_pay_annual"]:
        values["variable_pay_annual"] = to_decimal(data.get("variable_pay"))
    working_days = data.get("working_days_per_month") or data.get("working_days") or settings.rules.default_working_days
    return AnnualComponentSet(working_days_per_month=int(working_days), **values)


def extract_error_message(response: Optional[requests.Response]) -> str:
    if response is None:
        return "Salary service unavailable"
    try:
        body = response.json()
    except ValueError:
        return response.text or f"Salary service returned {response.status_code}"

    if isinstance(body, dict):
        detail = body.get("detail") or body.get("message")
        if isinstance(detail, str):
            return detail
        if isinstance(detail, list) and detail and isinstance(detail[0], dict):
            return str(detail[0].get("msg", detail[0]))
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            first = errors[0]
            return str(first.get("msg", first)) if isinstance(first, dict) else str(first)
    return f"Salary service returned {response.status_code}"


def _field_for_message(message: str) -> Optional[str]:
    return CTC_FIELD if "ctc" in message.lower() else None


class SalaryStoreClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.salary_api.timeout_seconds
        self.session = session or requests.Session()
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def _send(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                headers=self.headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Salary service request failed: {e}")
            raise SalaryPersistenceError(f"Salary service unreachable: {e}") from e

        if response.status_code >= 400:
            message = extract_error_message(response)
            logger.error(f"Salary service rejected {method} {path}: {message}", extra={"status": response.status_code})
            raise SalaryPersistenceError(message, field=_field_for_message(message), upstream_status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise SalaryPersistenceError("Salary service returned invalid JSON") from e

    def create_salary(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Manual payloads (annual components) and guided payloads (CTC + policy) go to different endpoints."""
        if "basic_annual" in payload:
            return self._send("POST", "/salary/employee", payload)
        return self._send("POST", "/salary/employee/from-ctc", payload)

    def update_ctc(
        self,
        user_id: int,
        annual_ctc: Any,
        variable_pay_type: VariablePayType,
        variable_pay_value: Any,
    ) -> Dict[str, Any]:
        return self._send("PUT", f"/salary/employee/{int(user_id)}/update-ctc", {
            "user_id": int(user_id),
            "package_ctc_annual": as_number(to_decimal(annual_ctc)),
            "variable_pay_type": VariablePayType(variable_pay_type).value,
            "variable_pay_value": as_number(to_decimal(variable_pay_value)),
        })

    @retry(
        stop=stop_after_attempt(settings.salary_api.fetch_attempts),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(requests.exceptions.ConnectionError),
        reraise=True,
    )
    def _get(self, path: str) -> requests.Response:
        return self.session.get(f"{self.base_url}{path}", headers=self.headers, timeout=self.timeout)

    def fetch_salary(self, user_id: int) -> Dict[str, Any]:
        try:
            response = self._get(f"/salary/employee/{int(user_id)}")
        except requests.exceptions.RequestException as e:
            raise SalaryPersistenceError(f"Salary service unreachable: {e}") from e

        if response.status_code == 404:
            raise SalaryNotFoundError(user_id)
        if response.status_code >= 400:
            message = extract_error_message(response)
            raise SalaryPersistenceError(message, field=_field_for_message(message), upstream_status=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise SalaryPersistenceError("Salary service returned invalid JSON") from e


def default_store_client() -> Optional[SalaryStoreClient]:
    if not settings.salary_api.url:
        return None
    return SalaryStoreClient(settings.salary_api.url, token=settings.salary_api.token)
