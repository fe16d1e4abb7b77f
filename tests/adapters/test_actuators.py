"""Tests for loanflow.adapters.actuators (httpx MockTransport)."""

import httpx
import pytest

from loanflow.adapters.actuators import CallableActuator, HttpTriggerActuator, classify_response
from loanflow.core.errors import ConfigurationError
from loanflow.core.protocols import Actuator
from loanflow.core.settings import TriggerSettings
from loanflow.orchestration.outcomes import ActuationContext, HardFailure, Success, TransientFailure

TRIGGERS = {
    "create_lead": TriggerSettings(
        path="/loans/services/api/vkycCalling/createLeadVkycNoTry?loanAppId={entity_id}",
        ok_statuses=[204],
    ),
    "push_lead": TriggerSettings(
        path="/callingInfra/v1/cron/ameyo/pushCreatedLead?entityId={entity_id}",
        base_url="https://calling.qa.example.com",
    ),
}


def context(action, entity_id="app-1"):
    return ActuationContext(entity_id=entity_id, action=action, params={"entity_id": entity_id})


def make_actuator(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpTriggerActuator(TRIGGERS, base_url="https://qa.example.com/", client=client)


class TestClassifyResponse:
    def test_ok(self):
        assert classify_response(204, "", ok_statuses=[204]) == Success(detail="HTTP 204", status_code=204)

    def test_gateway_statuses_are_transient(self):
        assert isinstance(classify_response(504, "", ok_statuses=[200]), TransientFailure)
        assert isinstance(classify_response(502, "", ok_statuses=[200]), TransientFailure)

    def test_signature_in_body_is_transient(self):
        body = "<html><title>504 Gateway Time-out</title></html>"
        assert isinstance(classify_response(500, body, ok_statuses=[200]), TransientFailure)

    def test_unexpected_success_status_is_hard(self):
        outcome = classify_response(200, "{}", ok_statuses=[204])
        assert isinstance(outcome, HardFailure)
        assert outcome.status_code == 200


class TestHttpTriggerActuator:
    def test_satisfies_protocol(self):
        assert isinstance(make_actuator(lambda r: httpx.Response(204)), Actuator)

    def test_formats_url_and_succeeds(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        outcome = make_actuator(handler).act(context("create_lead"))

        assert outcome == Success(detail="HTTP 204", status_code=204)
        assert seen[0].method == "GET"
        assert str(seen[0].url) == (
            "https://qa.example.com/loans/services/api/vkycCalling/createLeadVkycNoTry?loanAppId=app-1"
        )

    def test_trigger_base_url_override(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        assert isinstance(make_actuator(handler).act(context("push_lead", "L-42")), Success)
        assert seen[0].url.host == "calling.qa.example.com"
        assert seen[0].url.params["entityId"] == "L-42"

    def test_gateway_timeout_page(self):
        actuator = make_actuator(lambda r: httpx.Response(500, text="Gateway Timeout"))
        assert isinstance(actuator.act(context("create_lead")), TransientFailure)

    def test_transport_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        outcome = make_actuator(handler).act(context("create_lead"))
        assert isinstance(outcome, TransientFailure)
        assert "ConnectTimeout" in outcome.reason

    def test_hard_failure(self):
        outcome = make_actuator(lambda r: httpx.Response(400)).act(context("create_lead"))
        assert isinstance(outcome, HardFailure)

    def test_unknown_action(self):
        with pytest.raises(ConfigurationError, match="No trigger"):
            make_actuator(lambda r: httpx.Response(204)).act(context("delete_lead"))

    def test_missing_path_parameter(self):
        actuator = make_actuator(lambda r: httpx.Response(204))
        with pytest.raises(ConfigurationError, match="entity_id"):
            actuator.act(ActuationContext(entity_id="app-1", action="create_lead"))

    def test_context_manager_closes_owned_client(self):
        with HttpTriggerActuator(TRIGGERS, base_url="https://qa.example.com") as actuator:
            client = actuator._client
        assert client.is_closed


class TestCallableActuator:
    def test_none_and_true_succeed(self):
        assert CallableActuator(lambda c: None).act(context("x")) == Success()
        assert CallableActuator(lambda c: True).act(context("x")) == Success()

    def test_false_is_hard_failure(self):
        assert isinstance(CallableActuator(lambda c: False).act(context("x")), HardFailure)

    def test_outcome_passes_through(self):
        outcome = TransientFailure("busy")
        assert CallableActuator(lambda c: outcome).act(context("x")) is outcome

    def test_exception_with_signature_is_transient(self):
        def fn(c):
            raise RuntimeError("504 Gateway Time-out")

        assert isinstance(CallableActuator(fn).act(context("x")), TransientFailure)

    def test_other_exception_is_hard(self):
        def fn(c):
            raise RuntimeError("element not found")

        outcome = CallableActuator(fn).act(context("x"))
        assert isinstance(outcome, HardFailure)
        assert "element not found" in outcome.reason
