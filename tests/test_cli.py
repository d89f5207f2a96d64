"""Tests for the billing CLI."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from leasedesk.billing.autopay.runner import BatchRunSummary, BillingPeriod, EnrollmentOutcome
from leasedesk.billing.enums import OutcomeStatus
from leasedesk.cli import cli

pytestmark = pytest.mark.unit


def _runner_returning(summary: BatchRunSummary) -> MagicMock:
    runner = MagicMock()
    runner.run = AsyncMock(return_value=summary)
    return runner


class TestRunAutopayCommand:
    @patch("leasedesk.cli.dispose_engine", new_callable=AsyncMock)
    @patch("leasedesk.cli.build_gateway")
    def test_prints_summary(self, mock_build_gateway, mock_dispose):
        summary = BatchRunSummary(period=BillingPeriod.parse("2024-05"))
        with patch("leasedesk.cli.AutopayBatchRunner", return_value=_runner_returning(summary)):
            result = CliRunner().invoke(cli, ["run-autopay", "--period", "2024-05"])

        assert result.exit_code == 0
        assert '"period_start": "2024-05-01"' in result.output
        mock_dispose.assert_awaited_once()

    @patch("leasedesk.cli.dispose_engine", new_callable=AsyncMock)
    @patch("leasedesk.cli.build_gateway")
    def test_exit_code_on_failures(self, mock_build_gateway, mock_dispose):
        summary = BatchRunSummary(
            period=BillingPeriod.parse("2024-05"),
            outcomes=[
                EnrollmentOutcome(
                    enrollment_id="enr-1",
                    tenant_id="tenant-1",
                    status=OutcomeStatus.FAILED,
                    error="Your card was declined.",
                )
            ],
        )
        with patch("leasedesk.cli.AutopayBatchRunner", return_value=_runner_returning(summary)):
            result = CliRunner().invoke(cli, ["run-autopay", "--period", "2024-05"])

        assert result.exit_code == 1
        assert '"failed": 1' in result.output

    def test_invalid_period(self):
        result = CliRunner().invoke(cli, ["run-autopay", "--period", "2024-13"])

        assert result.exit_code == 2
        assert "Invalid billing period" in result.output


class TestInitDbCommand:
    @patch("leasedesk.cli.dispose_engine", new_callable=AsyncMock)
    @patch("leasedesk.cli.create_all_tables_async", new_callable=AsyncMock)
    def test_creates_tables(self, mock_create, mock_dispose):
        result = CliRunner().invoke(cli, ["init-db"])

        assert result.exit_code == 0
        assert "Database tables created" in result.output
        mock_create.assert_awaited_once()
        mock_dispose.assert_awaited_once()
