"""AnalysisOrchestrator: retry policy, failure classification, result assembly."""
import base64
import json
import logging
import uuid

import pytest

from config import Config
from local_model.predictor import UnavailableBiomassPredictor
from server.orchestrator import AnalysisOrchestrator, build_analysis_result, check_consistency
from shared.errors import (
    AnalysisFailure,
    AnalysisTimeout,
    CorruptImageError,
    EmptyImageError,
    RemoteEmptyResponseError,
    RemoteServiceError,
    RemoteTimeoutError,
    RemoteTransportError,
    ResponseParseError,
)
from shared.schemas import BiomassComponents, LocalPrediction
from tests.conftest import REPLY, FakePredictor
from vision.parsing import parse_vision_response
from vision.prompt import PROMPT_VERSION, VisionPromptBuilder

HINT_HEADER = "Local Model Analysis Results:"


def _orchestrator(client, predictor=None, sleeps=None):
    return AnalysisOrchestrator(
        predictor=predictor or UnavailableBiomassPredictor(),
        prompt_builder=VisionPromptBuilder(),
        client=client,
        max_retries=2,
        backoff_seconds=1.0,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )


def _prompts(client):
    return [call.args[1] for call in client.analyze.call_args_list]


# ── happy path ────────────────────────────────────────────────────────────────


def test_run_returns_result_built_from_remote_reply(fake_client, png_bytes, reply_json):
    fake_client.analyze.return_value = reply_json

    result = _orchestrator(fake_client).run(png_bytes)

    assert result.id == REPLY["Id"]
    assert result.title == REPLY["Title"]
    assert result.components.dry_green_g == 1250.5
    assert result.components.dry_clover_g == 310.25
    assert result.components.dry_dead_g == 180.0
    assert result.components.dry_total_g == 1740.75
    assert result.components.gdm_g == 1062.9
    assert result.confidence_score == 0.78
    assert result.recommendations == REPLY["Recommendations"]
    assert base64.b64decode(result.image_base64) == png_bytes
    assert result.attempts == 1
    assert result.analysis_date.tzinfo is not None


def test_local_unavailable_prompt_has_no_hint_and_pipeline_completes(fake_client, png_bytes, reply_json):
    fake_client.analyze.return_value = reply_json

    result = _orchestrator(fake_client).run(png_bytes)

    assert result.local_hint_used is False
    assert HINT_HEADER not in _prompts(fake_client)[0]


def test_successful_local_prediction_is_sent_as_hint(fake_client, png_bytes, reply_json, local_prediction):
    fake_client.analyze.return_value = reply_json
    predictor = FakePredictor(local_prediction)

    result = _orchestrator(fake_client, predictor=predictor).run(png_bytes)

    assert result.local_hint_used is True
    assert _prompts(fake_client)[0].startswith(HINT_HEADER)
    # remote values win; the hint never overwrites them
    assert result.components.dry_green_g == 1250.5


def test_failed_local_prediction_is_tolerated(fake_client, png_bytes, reply_json):
    fake_client.analyze.return_value = reply_json
    predictor = FakePredictor(LocalPrediction.failed("cannot identify image file"))

    result = _orchestrator(fake_client, predictor=predictor).run(png_bytes)

    assert result.local_hint_used is False
    assert HINT_HEADER not in _prompts(fake_client)[0]


def test_each_attempt_logs_the_prompt_version(fake_client, png_bytes, reply_json, caplog):
    fake_client.analyze.side_effect = [RemoteEmptyResponseError("empty"), reply_json]

    with caplog.at_level(logging.INFO, logger="server.orchestrator"):
        _orchestrator(fake_client).run(png_bytes)

    attempts = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Analyzing image")]
    assert len(attempts) == 2
    assert all(f"prompt v{PROMPT_VERSION}" in message for message in attempts)


def test_unavailable_predictor_is_not_invoked(fake_client, png_bytes, reply_json, local_prediction):
    fake_client.analyze.return_value = reply_json
    predictor = FakePredictor(local_prediction, available=False)

    _orchestrator(fake_client, predictor=predictor).run(png_bytes)

    assert predictor.calls == 0


# ── retries ───────────────────────────────────────────────────────────────────


def test_two_timeouts_then_success_reports_three_attempts(fake_client, png_bytes, reply_json):
    fake_client.analyze.side_effect = [
        RemoteTimeoutError("timed out"),
        RemoteTimeoutError("timed out"),
        reply_json,
    ]
    sleeps = []

    result = _orchestrator(fake_client, sleeps=sleeps).run(png_bytes)

    assert result.attempts == 3
    assert fake_client.analyze.call_count == 3
    assert sleeps == [1.0, 2.0]


def test_three_timeouts_fail_with_analysis_timeout(fake_client, png_bytes):
    fake_client.analyze.side_effect = [RemoteTimeoutError("timed out")] * 3
    sleeps = []

    with pytest.raises(AnalysisTimeout) as excinfo:
        _orchestrator(fake_client, sleeps=sleeps).run(png_bytes)

    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value.cause, RemoteTimeoutError)
    assert fake_client.analyze.call_count == 3
    assert sleeps == [1.0, 2.0]


def test_empty_replies_are_retried_then_fail_with_analysis_failure(fake_client, png_bytes):
    fake_client.analyze.side_effect = [RemoteEmptyResponseError("empty")] * 3

    with pytest.raises(AnalysisFailure) as excinfo:
        _orchestrator(fake_client).run(png_bytes)

    assert not isinstance(excinfo.value, AnalysisTimeout)
    assert excinfo.value.attempts == 3


def test_local_inference_runs_once_across_retries(fake_client, png_bytes, reply_json, local_prediction):
    fake_client.analyze.side_effect = [RemoteEmptyResponseError("empty"), reply_json]
    predictor = FakePredictor(local_prediction)

    result = _orchestrator(fake_client, predictor=predictor).run(png_bytes)

    assert predictor.calls == 1
    assert result.attempts == 2
    assert all(prompt.startswith(HINT_HEADER) for prompt in _prompts(fake_client))


def test_parse_error_is_surfaced_immediately_without_retry(fake_client, png_bytes):
    fake_client.analyze.return_value = '{"DryGreen": 1.0, "Title": "truncated'
    sleeps = []

    with pytest.raises(ResponseParseError) as excinfo:
        _orchestrator(fake_client, sleeps=sleeps).run(png_bytes)

    assert fake_client.analyze.call_count == 1
    assert sleeps == []
    assert excinfo.value.attempts == 1


@pytest.mark.parametrize(
    "fault",
    [RemoteTransportError("connection refused"), RemoteServiceError("HTTP 500", status_code=500)],
)
def test_non_transient_remote_faults_are_not_retried(fake_client, png_bytes, fault):
    fake_client.analyze.side_effect = fault

    with pytest.raises(type(fault)):
        _orchestrator(fake_client).run(png_bytes)

    assert fake_client.analyze.call_count == 1


def test_timeout_after_transient_then_transport_fault_keeps_attempt_count(fake_client, png_bytes):
    fake_client.analyze.side_effect = [RemoteTimeoutError("slow"), RemoteTransportError("reset")]

    with pytest.raises(RemoteTransportError) as excinfo:
        _orchestrator(fake_client).run(png_bytes)

    assert excinfo.value.attempts == 2


@pytest.mark.parametrize("data, error", [(b"", EmptyImageError), (b"\xff\xd8\xff" * 10, CorruptImageError)])
def test_invalid_input_fails_before_any_inference(fake_client, local_prediction, data, error):
    predictor = FakePredictor(local_prediction)

    with pytest.raises(error):
        _orchestrator(fake_client, predictor=predictor).run(data)

    fake_client.analyze.assert_not_called()
    assert predictor.calls == 0


# ── result assembly ───────────────────────────────────────────────────────────


def test_missing_id_gets_a_fresh_uuid(png_bytes):
    payload = {k: v for k, v in REPLY.items() if k != "Id"}
    response = parse_vision_response(json.dumps(payload))

    first = build_analysis_result(response, png_bytes)
    second = build_analysis_result(response, png_bytes)

    assert uuid.UUID(first.id)
    assert first.id != second.id


def test_empty_id_gets_a_fresh_uuid_but_present_id_is_kept(png_bytes):
    empty = parse_vision_response(json.dumps(dict(REPLY, Id="")))
    present = parse_vision_response(json.dumps(REPLY))

    assert uuid.UUID(build_analysis_result(empty, png_bytes).id)
    assert build_analysis_result(present, png_bytes).id == REPLY["Id"]


def test_inconsistent_components_are_copied_verbatim(fake_client, png_bytes):
    fake_client.analyze.return_value = json.dumps(dict(REPLY, DryTotal=10.0, Gdm=5.0))

    result = _orchestrator(fake_client).run(png_bytes)

    assert result.components.dry_total_g == 10.0
    assert result.components.gdm_g == 5.0


def test_consistency_check_is_advisory():
    consistent = BiomassComponents(
        dry_green_g=1000.0, dry_clover_g=200.0, dry_dead_g=100.0, dry_total_g=1300.0, gdm_g=850.0
    )
    inconsistent = BiomassComponents(
        dry_green_g=1000.0, dry_clover_g=200.0, dry_dead_g=100.0, dry_total_g=400.0, gdm_g=100.0
    )
    zeros = BiomassComponents(dry_green_g=0, dry_clover_g=0, dry_dead_g=0, dry_total_g=0, gdm_g=0)

    assert check_consistency(consistent) == []
    assert check_consistency(zeros) == []
    assert len(check_consistency(inconsistent)) == 2


# ── wiring ────────────────────────────────────────────────────────────────────


def test_from_config_degrades_to_remote_only_without_model(tmp_path, monkeypatch):
    monkeypatch.setenv("BIOMASS_MODEL_PATH", str(tmp_path / "absent.pth"))
    monkeypatch.setenv("BIOMASS_VISION_API_KEYS", "k1,k2")

    orchestrator = AnalysisOrchestrator.from_config(Config())

    assert orchestrator.predictor.is_available is False
    assert orchestrator.client.is_configured is True
