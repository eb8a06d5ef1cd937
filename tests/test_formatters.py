"""
Unit tests for the formatters module.

Tests follow the Given/When/Then pattern for clarity.
"""

import csv
import io
from decimal import Decimal
from unittest.mock import patch

from rich.console import Console

from dustsweep.lib.formatters import (
    format_age,
    format_amount,
    generate_filename,
    generate_timestamp,
    history_table,
    preview_table,
    scan_table,
    shorten,
    write_csv,
    write_csv_to_stream,
)
from dustsweep.lib.models import (
    CSV_COLUMNS,
    RENT_PER_ACCOUNT,
    ActionKind,
    ItemStatus,
    ReclaimPreview,
    RunHistory,
    RunLogEntry,
    RunStatus,
    ScanResult,
)

HOUR_MS = 60 * 60 * 1000
NOW = 1_700_000_000_000


def render(table):
    console = Console(record=True, width=200)
    console.print(table)
    return console.export_text()


class TestGenerateTimestamp:
    """Tests for generate_timestamp function."""

    def test_returns_string_in_correct_format(self):
        """
        Given the current time
        When generating a timestamp
        Then it should be in YYYYMMDD_HHMMSS format
        """
        # When
        timestamp = generate_timestamp()

        # Then
        assert len(timestamp) == 15  # YYYYMMDD_HHMMSS
        assert timestamp[8] == "_"
        assert timestamp[:8].isdigit()
        assert timestamp[9:].isdigit()


class TestGenerateFilename:
    """Tests for generate_filename function."""

    def test_inserts_timestamp_before_suffix(self):
        """
        Given a base path with a .csv suffix
        When generating a filename
        Then the timestamp should precede the suffix
        """
        # When
        filename = generate_filename("reports/dust.csv", "20241214_153022")

        # Then
        assert filename.replace("\\", "/") == "reports/dust_20241214_153022.csv"

    def test_defaults_to_csv_suffix(self):
        """
        Given a base path without a suffix
        When generating a filename
        Then .csv should be appended
        """
        # When
        filename = generate_filename("dust", "20241214_153022")

        # Then
        assert filename == "dust_20241214_153022.csv"


class TestWriteCsv:
    """Tests for CSV export."""

    def test_writes_header_and_rows(self, make_items):
        """
        Given two dust items
        When writing CSV to a stream
        Then the header and one row per item should be written
        """
        # Given
        stream = io.StringIO()

        # When
        write_csv_to_stream(make_items(2), stream)

        # Then
        rows = list(csv.reader(io.StringIO(stream.getvalue())))
        assert rows[0] == CSV_COLUMNS
        assert [row[0] for row in rows[1:]] == ["acct0", "acct1"]
        assert rows[1][CSV_COLUMNS.index("recoverable")] == str(RENT_PER_ACCOUNT)
        assert rows[1][CSV_COLUMNS.index("selected")] == "yes"

    def test_writes_to_stdout_without_path(self, make_items, capsys):
        """
        Given no output path
        When writing CSV
        Then it should go to stdout and no path be returned
        """
        # When
        path = write_csv(make_items(1))

        # Then
        assert path is None
        assert capsys.readouterr().out.startswith(",".join(CSV_COLUMNS))

    def test_writes_timestamped_file(self, make_items, tmp_path):
        """
        Given an output path
        When writing CSV
        Then a timestamped file should be created and its path returned
        """
        # Given
        base = str(tmp_path / "dust.csv")

        # When
        with patch(
            "dustsweep.lib.formatters.generate_timestamp", return_value="20241214_153022"
        ):
            path = write_csv(make_items(3), base)

        # Then
        assert path == str(tmp_path / "dust_20241214_153022.csv")
        with open(path, newline="", encoding="utf-8") as f:
            assert len(list(csv.reader(f))) == 4


class TestDisplayHelpers:
    """Tests for small display helpers."""

    def test_shortens_long_addresses(self, sample_solana_address):
        """
        Given a long address
        When shortening it
        Then the first and last four characters should remain
        """
        # When / Then
        assert shorten(sample_solana_address) == "GKvq...JqiV"

    def test_keeps_short_values(self):
        """
        Given a value shorter than the shortened form
        When shortening it
        Then it should be returned unchanged
        """
        # When / Then
        assert shorten("none") == "none"

    def test_format_amount_fixes_places(self):
        """
        Given a recoverable amount
        When formatting it
        Then six decimal places should be shown
        """
        # When / Then
        assert format_amount(RENT_PER_ACCOUNT) == "0.002039"
        assert format_amount(Decimal("0")) == "0.000000"

    def test_format_age(self):
        """
        Given account ages in hours and days
        When formatting them
        Then hours under a day and days beyond should be shown
        """
        # When / Then
        assert format_age(None, NOW) == "unknown"
        assert format_age(NOW - 5 * HOUR_MS, NOW) == "5h"
        assert format_age(NOW - 72 * HOUR_MS, NOW) == "3d"


class TestTables:
    """Tests for the rich tables."""

    def test_scan_table_lists_every_item(self, make_items):
        """
        Given a scan with three items, one protected
        When building the scan table
        Then it should have three rows and show the protected status
        """
        # Given
        items = make_items(2) + [
            make_items(1, status=ItemStatus.PROTECTED, selected=False, created_at=NOW)[0]
        ]
        result = ScanResult(5, 3, RENT_PER_ACCOUNT * 2, tuple(items))

        # When
        table = scan_table(result, "SOL", NOW, usd=lambda amount: "$1.00")

        # Then
        assert table.row_count == 3
        text = render(table)
        assert "protected" in text
        assert "3 dust items in 5 holdings" in text
        assert "($1.00)" in text

    def test_preview_table_shows_net(self):
        """
        Given a reclaim preview
        When building the preview table
        Then the net amount after fees should appear
        """
        # Given
        preview = ReclaimPreview(
            ActionKind.CLOSE, 3, RENT_PER_ACCOUNT * 3, 1, Decimal("0.000005")
        )

        # When
        text = render(preview_table(preview, "SOL"))

        # Then
        assert "0.006113 SOL" in text
        assert "Estimated fee" in text

    def test_history_table_shows_errors(self, sample_solana_address):
        """
        Given a history with a failed run
        When building the history table
        Then the run and its error should be shown
        """
        # Given
        history = RunHistory(
            entries=[
                RunLogEntry(
                    timestamp="2024-12-14T15:30:22+00:00",
                    signature_or_hash="none",
                    accounts_closed=0,
                    amount_reclaimed=Decimal("0"),
                    wallet_address=sample_solana_address,
                    status=RunStatus.FAILED,
                    error="Transaction was rejected by the wallet.",
                )
            ]
        )

        # When
        table = history_table(history)

        # Then
        assert table.row_count == 1
        text = render(table)
        assert "failed" in text
        assert "rejected by the wallet" in text
