# tests/test_execution_log.py

import logging
from datetime import datetime, timezone

import pytest

import main
from data_models import ExecutionResult
from execution_logger import CSV_COLUMNS, ExecutionLogger
from performance_analyzer import PerformanceAnalyzer


@pytest.fixture
def log_path(tmp_path):
    return str(tmp_path / "executions.csv")


def _result(**kwargs):
    values = dict(
        success=True,
        timestamp=datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc),
        rule_id="rule_1",
        opportunity_id="zk_sync_airdrop",
        template_id="bridge-action",
        duration_ms=100.0,
    )
    values.update(kwargs)
    return ExecutionResult(**values)


def test_header_is_written_once(log_path):
    first = ExecutionLogger(log_path)
    first.log_execution(_result())
    first.close()

    second = ExecutionLogger(log_path)
    second.log_execution(_result(success=False, error="reverted, out of gas"))
    second.close()

    with open(log_path) as f:
        lines = f.read().splitlines()
    assert lines[0] == ",".join(CSV_COLUMNS)
    assert len(lines) == 3
    assert lines[1].split(",")[4] == "SUCCESS"
    assert lines[2].endswith('"reverted, out of gas"')


def test_non_results_are_not_logged(log_path):
    logger = ExecutionLogger(log_path)
    logger.log_execution({"success": True})
    logger.close()

    with open(log_path) as f:
        assert f.read().splitlines() == [",".join(CSV_COLUMNS)]


def test_analyzer_reads_the_execution_log(log_path):
    # Arrange
    logger = ExecutionLogger(log_path)
    logger.log_execution(_result(transaction_ref="0x1", gas_used=21000.0, cost="0.0012", duration_ms=200.0))
    logger.log_execution(_result(success=False, error="reverted", duration_ms=100.0))
    logger.log_execution(_result(template_id="swap-action", gas_used=42000.0, cost="$0.0030", duration_ms=300.0))
    logger.close()

    # Act
    analyzer = PerformanceAnalyzer(log_path)
    loaded = analyzer.load_data()
    kpis = analyzer.calculate_kpis()
    breakdown = analyzer.breakdown_by_template()

    # Assert
    assert loaded is True
    assert kpis["Total Executions"] == 3
    assert kpis["Successful Executions"] == 2
    assert kpis["Failed Executions"] == 1
    assert kpis["Success Rate (%)"] == "66.67"
    assert kpis["Avg Duration (ms)"] == "200.0"
    assert kpis["Total Gas Used"] == "63000"
    assert kpis["Total Cost"] == "0.004200"
    assert breakdown.loc["bridge-action", "executions"] == 2
    assert breakdown.loc["bridge-action", "successful"] == 1
    assert breakdown.loc["swap-action", "success_rate"] == 100.0


def test_analyzer_without_log_file(tmp_path):
    analyzer = PerformanceAnalyzer(str(tmp_path / "missing.csv"))
    assert analyzer.load_data() is False
    assert analyzer.calculate_kpis() == {}
    assert analyzer.breakdown_by_template().empty


def test_shutdown_report_reads_the_execution_log(log_path, caplog):
    caplog.set_level(logging.INFO)
    logger = ExecutionLogger(log_path)
    logger.log_execution(_result(gas_used=21000.0, cost="0.0012"))
    logger.log_execution(_result(success=False, error="reverted"))
    logger.close()

    kpis = main.report_performance(log_path)

    assert kpis["Total Executions"] == 2
    assert kpis["Success Rate (%)"] == "50.00"
    assert "Success Rate (%): 50.00" in caplog.text
    assert "bridge-action" in caplog.text


def test_shutdown_report_without_executions(tmp_path):
    assert main.report_performance(str(tmp_path / "missing.csv")) is None
