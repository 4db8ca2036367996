"""
Tests for CLI commands.

Tests cover:
- Main CLI group and help
- db init command
- portfolio buy/sell/positions/lots/history/edit/delete
- funding add/periods/summary
- dividends add/yield/summary
- Error handling and exit codes
"""

import json
from pathlib import Path

import pytest

from lotbook.cli.main import cli


@pytest.fixture
def runner(cli_runner, tmp_db: Path):
    """CLI runner backed by a clean temporary database."""
    return cli_runner


def _buy(runner, ticker="AAPL", quantity="10", price="100", on="2024-01-01", *extra):
    return runner.invoke(cli, ["portfolio", "buy", ticker, "-q", quantity, "-p", price, "-d", on, *extra])


class TestCLIMain:
    """Tests for main CLI group."""

    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "Lotbook" in result.output
        assert "portfolio" in result.output
        assert "funding" in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "lotbook" in result.output.lower()


class TestDbCommands:
    """Tests for database commands."""

    def test_db_init(self, runner, tmp_db):
        result = runner.invoke(cli, ["db", "init"])

        assert result.exit_code == 0
        assert "Database initialized" in result.output

    def test_db_rebuild(self, runner):
        _buy(runner)
        result = runner.invoke(cli, ["db", "rebuild", "AAPL", "--method", "lifo"])

        assert result.exit_code == 0
        assert "Lots: 1" in result.output


class TestPortfolioCommands:
    """Tests for portfolio commands."""

    def test_buy(self, runner):
        result = _buy(runner, "aapl", "10", "100", "2024-01-01", "--fees", "1")

        assert result.exit_code == 0, result.output
        assert "Recorded purchase of AAPL" in result.output
        assert "$1,000.00" in result.output

    def test_buy_rejects_bad_quantity(self, runner):
        result = _buy(runner, "AAPL", "abc")

        assert result.exit_code == 2
        assert "not a valid number" in result.output

    def test_buy_rejects_bad_ticker(self, runner):
        result = _buy(runner, "BAD TICKER")

        assert result.exit_code == 2

    def test_sell_reports_realized(self, runner):
        _buy(runner, "AAPL", "10", "100", "2024-01-01", "--fees", "1")
        result = runner.invoke(
            cli, ["portfolio", "sell", "AAPL", "-q", "10", "-p", "120", "-d", "2024-06-01", "--fees", "2"]
        )

        assert result.exit_code == 0, result.output
        assert "Recorded sale of AAPL" in result.output
        assert "$198.00" in result.output

    def test_sell_insufficient_shares(self, runner):
        _buy(runner)
        result = runner.invoke(cli, ["portfolio", "sell", "AAPL", "-q", "11", "-p", "120", "-d", "2024-02-01"])

        assert result.exit_code == 1
        assert "Insufficient shares" in result.output

    def test_positions_json_with_price(self, runner):
        _buy(runner, "AAPL", "10", "100", "2024-01-01")
        _buy(runner, "AAPL", "10", "120", "2024-02-01")

        result = runner.invoke(cli, ["portfolio", "positions", "--price", "AAPL=130", "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        position = data["positions"][0]
        assert position["ticker"] == "AAPL"
        assert position["total_shares"] == 20.0
        assert position["average_cost"] == 110.0
        assert position["unrealized_pnl"] == 400.0
        assert data["summary"]["missing_prices"] == []

    def test_positions_without_price_shows_na(self, runner):
        _buy(runner)

        result = runner.invoke(cli, ["portfolio", "positions"])

        assert result.exit_code == 0, result.output
        assert "Market Value: N/A" in result.output
        assert "No price for: AAPL" in result.output

        data = json.loads(runner.invoke(cli, ["portfolio", "positions", "--json"]).output)
        assert data["positions"][0]["unrealized_pnl"] is None
        assert data["summary"]["missing_prices"] == ["AAPL"]

    def test_positions_bad_price_pair(self, runner):
        result = runner.invoke(cli, ["portfolio", "positions", "--price", "AAPL"])

        assert result.exit_code == 2
        assert "TICKER=PRICE" in result.output

    def test_positions_empty(self, runner):
        result = runner.invoke(cli, ["portfolio", "positions"])

        assert result.exit_code == 0
        assert "No positions found" in result.output

    def test_lots_json(self, runner):
        _buy(runner, "AAPL", "10", "100", "2024-01-01")
        _buy(runner, "AAPL", "10", "120", "2024-02-01")
        runner.invoke(cli, ["portfolio", "sell", "AAPL", "-q", "5", "-p", "130", "-d", "2024-03-01"])

        result = runner.invoke(cli, ["portfolio", "lots", "AAPL", "--json"])

        lots = json.loads(result.output)
        assert [lot["quantity_remaining"] for lot in lots] == [5.0, 10.0]
        assert [lot["status"] for lot in lots] == ["partial", "open"]

    def test_history_realized_json(self, runner):
        _buy(runner)
        runner.invoke(cli, ["portfolio", "sell", "AAPL", "-q", "4", "-p", "110", "-d", "2024-02-01"])

        result = runner.invoke(cli, ["portfolio", "history", "--realized", "--json"])

        closures = json.loads(result.output)
        assert len(closures) == 1
        assert closures[0]["realized_pl"] == 40.0
        assert closures[0]["date"] == "2024-02-01"

    def test_history_transactions(self, runner):
        _buy(runner)

        result = runner.invoke(cli, ["portfolio", "history", "--json"])

        transactions = json.loads(result.output)
        assert transactions[0]["side"] == "buy"
        assert transactions[0]["ticker"] == "AAPL"

    def test_edit_and_delete(self, runner):
        _buy(runner)
        txn_id = json.loads(runner.invoke(cli, ["portfolio", "history", "--json"]).output)[0]["id"]

        edit = runner.invoke(cli, ["portfolio", "edit", txn_id, "-p", "90"])
        assert edit.exit_code == 0, edit.output

        lots = json.loads(runner.invoke(cli, ["portfolio", "lots", "AAPL", "--json"]).output)
        assert lots[0]["entry_price"] == 90.0

        delete = runner.invoke(cli, ["portfolio", "delete", txn_id, "--yes"])
        assert delete.exit_code == 0, delete.output
        assert json.loads(runner.invoke(cli, ["portfolio", "lots", "AAPL", "--json"]).output) == []

    def test_delete_missing(self, runner):
        result = runner.invoke(cli, ["portfolio", "delete", "nope", "--yes"])

        assert result.exit_code == 1
        assert "Transaction not found" in result.output


class TestFundingCommands:
    """Tests for funding commands."""

    def _add(self, runner, direction, amount, start, end=None, rate="1"):
        args = ["funding", "add", "--direction", direction, "--amount", amount, "--rate", rate,
                "-d", start, "--from", start]
        if end:
            args += ["--to", end]
        return runner.invoke(cli, args)

    def test_periods_cumulative(self, runner):
        assert self._add(runner, "in", "1000", "2024-01-01", "2024-01-31").exit_code == 0
        assert self._add(runner, "out", "300", "2024-02-01", "2024-02-29").exit_code == 0
        assert self._add(runner, "in", "500", "2024-03-01").exit_code == 0

        result = runner.invoke(cli, ["funding", "periods", "--json"])

        stats = json.loads(result.output)
        assert [s["cumulative_home"] for s in stats] == [1000.0, 700.0, 1200.0]
        assert stats[-1]["period_display"] == "Mar 1, 2024 - Ongoing"

    def test_summary(self, runner):
        self._add(runner, "in", "1000", "2024-01-01", rate="1.1")

        data = json.loads(runner.invoke(cli, ["funding", "summary", "--json"]).output)

        assert data["total_deposited_home"] == 1000.0
        assert data["total_deposited_trading"] == pytest.approx(1100.0)
        assert data["weighted_avg_rate"] == pytest.approx(1.1)

    def test_to_requires_from(self, runner):
        result = runner.invoke(cli, ["funding", "add", "--direction", "in", "--amount", "5", "--to", "2024-01-01"])

        assert result.exit_code == 2

    def test_period_end_before_start(self, runner):
        result = self._add(runner, "in", "100", "2024-02-01", "2024-01-01")

        assert result.exit_code == 1
        assert "before it starts" in result.output

    def test_list_and_delete(self, runner):
        self._add(runner, "in", "100", "2024-01-01")
        movements = json.loads(runner.invoke(cli, ["funding", "list", "--json"]).output)
        assert len(movements) == 1

        result = runner.invoke(cli, ["funding", "delete", movements[0]["id"], "-y"])

        assert result.exit_code == 0
        assert json.loads(runner.invoke(cli, ["funding", "list", "--json"]).output) == []


class TestDividendCommands:
    """Tests for dividend commands."""

    def test_yield(self, runner):
        _buy(runner, "AAPL", "100", "100", "2024-01-01")
        result = runner.invoke(
            cli, ["dividends", "add", "AAPL", "--dps", "0.24", "--shares", "100", "--ex-date", "2024-02-09"]
        )
        assert result.exit_code == 0, result.output
        assert "$24.00" in result.output

        data = json.loads(runner.invoke(cli, ["dividends", "yield", "AAPL", "--price", "120", "--json"]).output)

        assert data["ticker"] == "AAPL"
        assert data["personal_yield"] == pytest.approx(0.24)
        assert data["market_yield"] == pytest.approx(0.2)

    def test_summary_by_year(self, runner):
        runner.invoke(cli, ["dividends", "add", "MSFT", "--dps", "0.75", "--shares", "10",
                            "--ex-date", "2023-11-15", "--pay-date", "2023-12-14"])
        runner.invoke(cli, ["dividends", "add", "MSFT", "--dps", "0.75", "--shares", "10",
                            "--ex-date", "2024-02-14"])

        summaries = json.loads(runner.invoke(cli, ["dividends", "summary", "--by", "year", "--json"]).output)

        assert [s["key"] for s in summaries] == ["2024", "2023"]

    def test_rejects_zero_dps(self, runner):
        result = runner.invoke(
            cli, ["dividends", "add", "AAPL", "--dps", "0", "--shares", "100", "--ex-date", "2024-02-09"]
        )

        assert result.exit_code == 2
