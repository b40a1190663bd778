import pytest
import requests

from salary_engine.core.exceptions import SalaryNotFoundError, SalaryPersistenceError
from salary_engine.schemas.salary import AnnualComponentSet, GuidedInput, VariablePayType
from salary_engine.services.salary_store import (
    SalaryStoreClient,
    build_guided_payload,
    build_manual_payload,
    components_from_persisted,
    extract_error_message,
)

BASE_URL = "http://salary.local/api"


def test_manual_payload_uses_annual_names():
    components = AnnualComponentSet(basic_annual=600000, pf_annual=144000, variable_pay_annual=60000)
    payload = build_manual_payload(4, components)

    assert payload["user_id"] == 4
    assert payload["basic_annual"] == 600000
    assert payload["pf_annual"] == 144000
    assert payload["variable_pay"] == 60000
    assert payload["working_days_per_month"] == 26
    assert "variable_pay_annual" not in payload


def test_guided_payload():
    guided = GuidedInput(annual_ctc="1200000", variable_pay_type="fixed", variable_pay_value="100000.50",
                         working_days_per_month=22)
    assert build_guided_payload(4, guided) == {
        "user_id": 4,
        "annual_ctc": 1200000,
        "variable_pay_type": "fixed",
        "variable_pay_value": 100000.5,
        "working_days": 22,
    }


def test_components_from_persisted_reads_variable_pay_alias():
    components = components_from_persisted({
        "basic_annual": 600000,
        "hra_annual": "300000.00",
        "variable_pay": 24000,
        "working_days": 22,
    })
    assert components.basic_annual == 600000
    assert components.hra_annual == 300000
    assert components.variable_pay_annual == 24000
    assert components.special_allowance_annual == 0
    assert components.working_days_per_month == 22


def test_create_manual_goes_to_component_endpoint(fake_http, fake_response):
    session = fake_http(fake_response(200, {"id": 1}))
    client = SalaryStoreClient(BASE_URL, token="secret", timeout=5, session=session)

    client.create_salary(build_manual_payload(4, AnnualComponentSet(basic_annual=600000)))

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == f"{BASE_URL}/salary/employee"
    assert call["headers"]["Authorization"] == "Bearer secret"
    assert call["timeout"] == 5


def test_create_guided_goes_to_ctc_endpoint(fake_http, fake_response):
    session = fake_http(fake_response(200, {"id": 1}))
    client = SalaryStoreClient(BASE_URL, session=session)

    client.create_salary(build_guided_payload(4, GuidedInput(annual_ctc=1200000)))

    assert session.calls[0]["url"] == f"{BASE_URL}/salary/employee/from-ctc"
    assert "Authorization" not in session.calls[0]["headers"]


def test_update_ctc_puts_package_ctc(fake_http, fake_response):
    session = fake_http(fake_response(200, {"id": 1}))
    client = SalaryStoreClient(BASE_URL, session=session)

    client.update_ctc(4, 1500000, VariablePayType.PERCENTAGE, 10)

    call = session.calls[0]
    assert call["method"] == "PUT"
    assert call["url"] == f"{BASE_URL}/salary/employee/4/update-ctc"
    assert call["json"] == {
        "user_id": 4,
        "package_ctc_annual": 1500000,
        "variable_pay_type": "percentage",
        "variable_pay_value": 10,
    }


def test_ctc_error_is_attributed_to_ctc_field(fake_http, fake_response):
    session = fake_http(fake_response(400, {"detail": "CTC is below the minimum wage"}))
    client = SalaryStoreClient(BASE_URL, session=session)

    with pytest.raises(SalaryPersistenceError) as exc:
        client.create_salary({"user_id": 4, "annual_ctc": 1})

    assert exc.value.message == "CTC is below the minimum wage"
    assert exc.value.field == "annual_ctc"
    assert exc.value.upstream_status == 400


def test_other_errors_have_no_field(fake_http, fake_response):
    session = fake_http(fake_response(409, {"errors": [{"field": "user_id", "msg": "Employee is inactive"}]}))
    client = SalaryStoreClient(BASE_URL, session=session)

    with pytest.raises(SalaryPersistenceError) as exc:
        client.create_salary({"user_id": 4})

    assert exc.value.message == "Employee is inactive"
    assert exc.value.field is None


def test_transport_error_becomes_persistence_error(fake_http):
    client = SalaryStoreClient(BASE_URL, session=fake_http(requests.exceptions.ConnectionError("refused")))
    with pytest.raises(SalaryPersistenceError):
        client.update_ctc(4, 1200000, VariablePayType.NONE, 0)


def test_fetch_missing_structure(fake_http, fake_response):
    client = SalaryStoreClient(BASE_URL, session=fake_http(fake_response(404, {"detail": "not found"})))
    with pytest.raises(SalaryNotFoundError):
        client.fetch_salary(4)


def test_fetch_retries_connection_errors(fake_http, fake_response):
    session = fake_http(requests.exceptions.ConnectionError("reset"), fake_response(200, {"user_id": 4}))
    client = SalaryStoreClient(BASE_URL, session=session)

    assert client.fetch_salary(4) == {"user_id": 4}
    assert len(session.calls) == 2


@pytest.mark.parametrize("payload, text, expected", [
    ({"detail": [{"loc": ["body", "annual_ctc"], "msg": "field required"}]}, "", "field required"),
    ({"message": "Salary locked for payroll run"}, "", "Salary locked for payroll run"),
    (None, "Bad Gateway", "Bad Gateway"),
])
def test_extract_error_message(fake_response, payload, text, expected):
    assert extract_error_message(fake_response(502, payload, text)) == expected


def test_fetch_invalid_json_becomes_persistence_error(fake_http, fake_response):
    client = SalaryStoreClient(BASE_URL, session=fake_http(fake_response(200, None, "<html>")))
    with pytest.raises(SalaryPersistenceError) as exc:
        client.fetch_salary(4)
    assert exc.value.message == "Salary service returned invalid JSON"
