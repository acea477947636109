"""Tests for PeriodGridValidator."""

from __future__ import annotations

from datetime import date

import pytest

from curtailment_recon.quality.periods import PeriodGridValidator

DAY = date(2025, 3, 28)


class TestPeriodGridValidator:
    def setup_method(self):
        self.validator = PeriodGridValidator()

    def test_complete_day(self):
        report = self.validator.validate(DAY, range(1, 49))
        assert report.is_complete is True
        assert report.missing == ()
        assert report.coverage == 1.0

    def test_first_half_present(self):
        report = self.validator.validate(DAY, range(1, 25))
        assert report.is_complete is False
        assert list(report.missing) == list(range(25, 49))

    def test_empty_day(self):
        report = self.validator.validate(DAY, [])
        assert report.missing == tuple(range(1, 49))
        assert report.coverage == 0.0

    def test_single_gap_is_incomplete(self):
        present = [p for p in range(1, 49) if p != 31]
        report = self.validator.validate(DAY, present)
        assert report.missing == (31,)
        assert not report.is_complete

    def test_duplicates_and_order_ignored(self):
        report = self.validator.validate(DAY, [3, 1, 3, 2])
        assert report.present == (1, 2, 3)
        assert len(report.missing) == 45

    @pytest.mark.parametrize("bad", [0, 49, -1])
    def test_off_grid_rejected(self, bad):
        with pytest.raises(ValueError):
            self.validator.validate(DAY, [1, bad])
