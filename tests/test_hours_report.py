"""Compliance classification and the fixed-width report table."""

import arrow
import pytest

from hours_report import (NO_DATA_TABLE, REPORT_FILENAME, HoursReportGenerator,
                          format_table)
from timesheet import ProcessedEntry, ProcessingStats

GOLDEN_TABLE = (
    '| User                 | Hours Worked | Expected | Difference | % Deviation | Status |\n'
    '|----------------------|--------------|----------|------------|-------------|--------|\n'
    '| Bob Brown            |        76.50 |    80.00 |      -3.50 |       -4.4% |      ✗ |\n'
    '| Carol Chen           |        40.00 |    40.00 |      +0.00 |       +0.0% |      ✓ |\n'
)


def entry(user, hours, day='2025-06-20'):
    return ProcessedEntry(canonical_user=user,
                          duration_seconds=int(round(hours * 3600)),
                          date=day,
                          project='Internal',
                          activity='Development',
                          description='',
                          billable=True,
                          original_user=user)


class TestComplianceRecord:

    def test_under_tolerance_is_not_compliant(self, generator):
        record = generator.build_record('bob', 76.5)
        assert record.expected_hours == 80.0
        assert record.difference == -3.5
        assert not record.compliant
        assert record.percent_deviation == pytest.approx(-4.375)
        assert record.format_percent() == '-4.4%'
        assert record.format_difference() == '-3.50'
        assert record.format_status() == '✗'

    @pytest.mark.parametrize('worked, compliant', [
        (83.0, True), (83.01, False), (77.0, True), (76.99, False), (80.0, True),
    ])
    def test_tolerance_is_inclusive(self, generator, worked, compliant):
        assert generator.build_record('alice', worked).compliant is compliant

    def test_tolerance_edge_from_summed_minutes(self, generator):
        # 83h assembled from many short entries still lands on the edge
        hours = generator.aggregate_hours_by_user([entry('alice', 0.1)] * 830)
        assert generator.build_record('alice', hours['alice']).compliant

    def test_zero_expected_hours(self, generator):
        idle = generator.build_record('dave', 0.0)
        assert idle.compliant
        assert idle.percent_deviation is None
        assert idle.format_percent() == 'n/a'
        assert not generator.build_record('dave', 1.0).compliant

    def test_unknown_user_uses_default_target(self, generator):
        record = generator.build_record('mallory', 80.0)
        assert record.display_name == 'mallory'
        assert record.expected_hours == 80.0
        assert record.compliant

    def test_custom_tolerance(self, directory):
        strict = HoursReportGenerator(directory, tolerance_hours=1.0)
        assert not strict.build_record('bob', 78.5).compliant


class TestGenerateReport:

    def test_aggregates_per_user(self, generator):
        hours = generator.aggregate_hours_by_user([entry('alice', 8), entry('bob', 2), entry('alice', 0.5)])
        assert hours == {'alice': 8.5, 'bob': 2.0}

    def test_sorted_by_hours_with_stable_ties(self, generator):
        report = generator.generate_report([entry('alice', 10), entry('bob', 10), entry('carol', 20)])
        assert [r.user_key for r in report.records] == ['carol', 'alice', 'bob']

    def test_summary(self, generator):
        report = generator.generate_report([entry('alice', 80), entry('bob', 60), entry('carol', 40)])
        summary = report.summary
        assert summary.total_users == 3
        assert summary.compliant_users == 2
        assert summary.non_compliant_users == 1
        assert summary.compliance_rate == 66.7
        assert summary.total_expected_hours == 200.0
        assert summary.total_worked_hours == 180.0
        assert summary.total_difference == -20.0
        assert summary.average_hours_per_user == 60.0
        assert [r.user_key for r in report.non_compliant()] == ['bob']
        assert report.entry_count == 3

    def test_empty_report(self, generator):
        report = generator.generate_report([])
        assert report.records == []
        assert report.table == NO_DATA_TABLE
        assert report.summary.total_users == 0
        assert report.summary.compliance_rate == 0.0


class TestTable:

    def test_golden_table(self, generator):
        report = generator.generate_report([entry('bob', 76.5), entry('carol', 40)])
        assert report.table == GOLDEN_TABLE

    def test_same_input_same_bytes(self, generator):
        entries = [entry('bob', 76.5), entry('carol', 40)]
        assert generator.generate_report(entries).table == generator.generate_report(entries).table

    def test_long_names_widen_user_column(self, generator):
        name = 'Maximilian Longname-Smith'
        lines = format_table([generator.build_record(name, 1.0)]).splitlines()
        assert lines[2].startswith(f'| {name} |')
        assert len({len(line) for line in lines}) == 1

    def test_empty_table(self):
        assert format_table([]) == NO_DATA_TABLE


class TestReportFile:

    def test_content_and_save(self, generator, period_18, tmp_path):
        stats = ProcessingStats(total_records=5, filtered_records=2, records_outside_period=1,
                                malformed_records=2, period_number=18)
        report = generator.generate_report([entry('bob', 76.5), entry('carol', 40)],
                                           period=period_18, stats=stats,
                                           generated_at=arrow.get('2025-06-24T12:00:00+00:00'))
        content = report.content
        assert content.startswith('Hours Compliance Report - Pay Period #18\n')
        assert 'Period: Jun 10 - Jun 23, 2025' in content
        assert 'Generated: 2025-06-24T12:00:00+00:00' in content
        assert 'Excluded (outside period): 1' in content
        assert 'Malformed rows: 2' in content
        assert GOLDEN_TABLE.rstrip('\n') in content
        assert 'Compliance rate: 50.0%' in content

        path = report.save(str(tmp_path / '18'))
        assert path.endswith(REPORT_FILENAME)
        with open(path, encoding='utf-8') as saved:
            assert saved.read() == content
