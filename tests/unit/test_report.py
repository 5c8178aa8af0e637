"""
Unit tests for run summaries and streaming outputs

Tests verify:
- Console summaries show verdict, checks, thresholds and metrics
- Exported summaries load back for ``loadtest report``
- The JSON output streams one sample per line
- ``--out`` values are validated before a run starts
"""

import json

import pytest

from loadtest.errors import ConfigurationError
from loadtest.metrics import MetricSink, MetricType, PrometheusOutput, Sample
from loadtest.orchestrator import RunOrchestrator
from loadtest.outputs import JSONOutput, OutputSpec, create_output, parse_output_spec
from loadtest.report import export_summary_json, format_summary_console, load_summary
from loadtest.workload import Workload


@pytest.fixture
def summary():
    return {
        "workload": "crud",
        "passed": False,
        "exit_code": 99,
        "started_at": "2026-01-01T00:00:00+00:00",
        "duration_seconds": 12.5,
        "abort_reason": None,
        "setup_error": None,
        "teardown_error": "drop failed",
        "configuration_errors": [],
        "options": {"executor": "ramping-vus"},
        "scheduler": {
            "stop_reason": "duration",
            "max_vus": 10,
            "max_active_vus": 10,
            "iterations": 1500,
            "iterations_failed": 2,
            "iterations_interrupted": 1,
        },
        "checks": {
            "crud_round_ok": {"passes": 1498, "fails": 2, "rate": 1498 / 1500},
        },
        "thresholds": [
            {"series": "db_insert_duration", "expression": "p(95)<50", "passed": False,
             "observed": 61.25, "no_data": False, "error": None},
            {"series": "insert_success", "expression": "rate>0.99", "passed": True,
             "observed": 0.998, "no_data": False, "error": None},
            {"series": "kafka_reader_error_count", "expression": "rate<0.01", "passed": True,
             "observed": None, "no_data": True, "error": None},
        ],
        "metrics": {
            "db_insert_duration": {"type": "trend", "count": 1500, "avg": 20.5, "min": 1.0,
                                   "med": 18.0, "max": 90.0, "p(90)": 40.0, "p(95)": 61.25,
                                   "p(99)": 80.0},
            "rows_inserted": {"type": "counter", "count": 1500, "rate": 120.0},
            "insert_success": {"type": "rate", "rate": 0.998, "passes": 1497, "fails": 3,
                               "defined": True},
            "kafka_reader_error_count": {"type": "rate", "rate": 0.0, "passes": 0, "fails": 0,
                                         "defined": False},
            "vus": {"type": "gauge", "value": 0, "min": 0, "max": 10},
        },
    }


# ============================================================================
# Test Console Summary
# ============================================================================

class TestFormatSummaryConsole:
    """Test console rendering of a run summary"""

    def test_header_and_verdict(self, summary):
        output = format_summary_console(summary)

        assert "LOAD TEST SUMMARY: crud" in output
        assert "Status: FAILED" in output
        assert "Exit Code: 99" in output
        assert "Duration: 12.5s" in output
        assert "Executor: ramping-vus" in output
        assert "Iterations: 1,500 (failed 2, interrupted 1)" in output

    def test_thresholds(self, summary):
        output = format_summary_console(summary)

        assert "✗ db_insert_duration: p(95)<50 (observed 61.250)" in output
        assert "✓ insert_success: rate>0.99" in output
        assert "✓ kafka_reader_error_count: rate<0.01 (no data)" in output

    def test_threshold_failure_line(self, summary):
        summary["threshold_failure"] = "1 threshold(s) failed: db_insert_duration: p(95)<50"

        output = format_summary_console(summary)

        assert "Failed: 1 threshold(s) failed: db_insert_duration: p(95)<50" in output

    def test_checks_and_errors(self, summary):
        output = format_summary_console(summary)

        assert "✗ crud_round_ok" in output
        assert "1498 passed, 2 failed" in output
        assert "teardown error: drop failed" in output

    def test_metrics(self, summary):
        output = format_summary_console(summary)

        assert "p(95)=61.250" in output
        assert "1,500  (120/s)" in output
        assert "99.80%" in output
        assert "no data" in output

    def test_setup_failure_without_scheduler(self, summary):
        summary.update(scheduler=None, setup_error="database unreachable", metrics={})

        output = format_summary_console(summary)

        assert "Stop Reason" not in output
        assert "setup error: database unreachable" in output

    def test_real_run(self, config):
        class Inline(Workload):
            name = "inline"
            options = {"vus": 1, "iterations": 2, "thresholds": {"checks": ["rate==1"]}}

            def iteration(self, vu):
                vu.check(vu.iteration, {"non-negative": lambda v: v >= 0})

        workload = Inline()
        result = RunOrchestrator(workload, config, tick=0.01).run()

        output = format_summary_console(result.to_dict())

        assert "Status: PASSED" in output
        assert "✓ non-negative" in output
        assert "iteration_duration" in output


# ============================================================================
# Test Export and Load
# ============================================================================

class TestExportAndLoad:
    """Test summary files used by ``loadtest report``"""

    def test_round_trip(self, summary, tmp_path):
        path = tmp_path / "summary.json"

        export_summary_json(summary, str(path))

        assert load_summary(str(path)) == summary

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_summary(str(tmp_path / "nope.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_summary(str(path))

    def test_not_a_summary(self, tmp_path):
        path = tmp_path / "other.json"
        path.write_text(json.dumps(["a", "b"]))

        with pytest.raises(ConfigurationError, match="does not contain"):
            load_summary(str(path))


# ============================================================================
# Test Outputs
# ============================================================================

class TestJSONOutput:
    """Test newline-delimited sample streaming"""

    def test_writes_one_line_per_sample(self, tmp_path):
        path = tmp_path / "samples.ndjson"
        output = JSONOutput(str(path))
        sink = MetricSink()
        sink.add_listener(output)

        output.start()
        sink.record("latency", 12.5, timestamp=1000.0)
        sink.record("ok", True, timestamp=1001.0)
        output.stop()

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert lines == [
            {"type": "Point", "metric": "latency", "kind": "trend", "value": 12.5,
             "timestamp": 1000.0},
            {"type": "Point", "metric": "ok", "kind": "rate", "value": 1.0, "timestamp": 1001.0},
        ]
        assert output.written == 2

    def test_start_truncates_existing_file(self, tmp_path):
        path = tmp_path / "samples.ndjson"
        path.write_text("stale\n")
        output = JSONOutput(str(path))

        output.start()
        output.stop()

        assert path.read_text() == ""

    def test_unwritable_path_fails_on_start(self, tmp_path):
        output = JSONOutput(str(tmp_path / "missing-dir" / "samples.ndjson"))

        with pytest.raises(OSError):
            output.start()

    def test_full_queue_drops_samples(self, tmp_path):
        output = JSONOutput(str(tmp_path / "samples.ndjson"), max_queue=1)
        sample = Sample("latency", 1.0, 0.0, MetricType.TREND)

        output(sample)
        output(sample)

        assert output._dropped == 1

    def test_stop_without_start(self, tmp_path):
        JSONOutput(str(tmp_path / "samples.ndjson")).stop()


class TestParseOutputSpec:
    """Test ``--out`` parsing"""

    @pytest.mark.parametrize("value,expected", [
        ("json=results.ndjson", OutputSpec("json", "results.ndjson")),
        ("JSON = out.json", OutputSpec("json", "out.json")),
        ("prometheus=9100", OutputSpec("prometheus", "9100")),
        ("prometheus", OutputSpec("prometheus", "9091")),
    ])
    def test_valid(self, value, expected):
        assert parse_output_spec(value) == expected

    @pytest.mark.parametrize("value", [
        "influxdb=http://localhost:8086",
        "json",
        "json=",
        "prometheus=http",
        "prometheus=70000",
    ])
    def test_invalid(self, value):
        with pytest.raises(ConfigurationError):
            parse_output_spec(value)

    def test_create_output(self, tmp_path):
        assert isinstance(create_output(OutputSpec("json", str(tmp_path / "o.json"))), JSONOutput)
        assert isinstance(create_output(OutputSpec("prometheus", "9100")), PrometheusOutput)
