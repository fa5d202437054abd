"""
Unit tests for record building, deduplication and field merge policy.
"""

import pytest

from pipeline.merge import apply_detail, dedupe_key, merge_records, normalize_url_key
from pipeline.models import ExtractedRecord
from pipeline.records import (
    base_url_for,
    build_record,
    build_records,
    clean_value,
    normalize_deadline,
    normalize_url,
)

URL = "https://www.saramin.co.kr/zf_user/jobs/relay/view?rec_idx=1"


def _record(**kwargs):
    data = {'title': 'Backend Developer', 'company': 'Acme', 'source_url': URL}
    data.update(kwargs)
    return ExtractedRecord(**data)


class TestDedupeKey:

    def test_url_key_ignores_case_of_host_and_trailing_slash(self):
        a = _record(source_url="https://WWW.Example.com/jobs/1/")
        b = _record(source_url="https://www.example.com/jobs/1")
        assert dedupe_key(a) == dedupe_key(b)
        assert dedupe_key(a).startswith('url:')

    def test_query_is_part_of_key(self):
        assert normalize_url_key("https://a.com/view?id=1") != normalize_url_key("https://a.com/view?id=2")

    def test_title_company_key_without_url(self):
        a = _record(source_url=None, title="Backend  Developer", company="ACME")
        b = _record(source_url="  ", title="backend developer", company="acme")
        assert dedupe_key(a) == dedupe_key(b)
        assert dedupe_key(a).startswith('tc:')


class TestMergeRecords:

    def test_duplicate_backfills_empty_description(self):
        first = _record(description=None)
        second = _record(description="Build and run our APIs")

        merged = merge_records([first, second])

        assert len(merged) == 1
        assert merged[0].description == "Build and run our APIs"

    def test_order_is_first_seen(self):
        records = [
            _record(source_url="https://a.com/1", title="One"),
            _record(source_url="https://a.com/2", title="Two"),
            _record(source_url="https://a.com/1", title="One again"),
        ]
        merged = merge_records(records)
        assert [r.title for r in merged] == ["One", "Two"]

    def test_title_and_company_never_overwritten(self):
        merged = merge_records([
            _record(title="Backend Developer"),
            _record(title="Senior Backend Developer (Python)", company="Acme Holdings"),
        ])
        assert merged[0].title == "Backend Developer"
        assert merged[0].company == "Acme"

    def test_populated_fields_kept(self):
        merged = merge_records([
            _record(description="Original text"),
            _record(description="Different, much longer replacement text"),
        ])
        assert merged[0].description == "Original text"

    def test_longer_salary_and_location_win(self):
        merged = merge_records([
            _record(salary="5000", location="Seoul"),
            _record(salary="5000-6000 KRW", location="Seoul"),
        ])
        assert merged[0].salary == "5000-6000 KRW"
        assert merged[0].location == "Seoul"

    def test_strict_mode_drops_duplicates(self):
        merged = merge_records([_record(description=None), _record(description="Filled")], backfill=False)
        assert len(merged) == 1
        assert merged[0].description is None

    def test_idempotent(self):
        records = [
            _record(),
            _record(description="Filled"),
            _record(source_url=None, title="Other", company="Beta"),
        ]
        once = merge_records(records)
        twice = merge_records(once)
        assert [r.to_dict() for r in once] == [r.to_dict() for r in twice]

    def test_inputs_not_mutated(self):
        first = _record(description=None)
        merge_records([first, _record(description="Filled")])
        assert first.description is None


class TestApplyDetail:

    def test_detail_dict_fills_gaps(self):
        record = _record(salary="Negotiable")
        refined = apply_detail(record, {
            'title': 'Should not change',
            'description': 'We build things',
            'requirements': ['Python', 'SQL'],
            'salary': '60,000,000 KRW per year',
            'deadline': 'March 31, 2025',
        })

        assert refined is not record
        assert refined.title == 'Backend Developer'
        assert refined.description == 'We build things'
        assert refined.requirements == 'Python\nSQL'
        assert refined.salary == '60,000,000 KRW per year'
        assert refined.deadline == '2025-03-31'

    def test_no_new_information_returns_same_record(self):
        record = _record(description="Existing")
        assert apply_detail(record, {'description': 'Other', 'salary': None}) is record

    def test_relative_detail_url_resolved_against_record_url(self):
        record = _record(source_url=None)
        refined = apply_detail(record, {'source_url': '/jobs/7'}, base_url="https://example.com/list")
        assert refined.source_url == "https://example.com/jobs/7"


class TestBuildRecord:

    def test_aliases_and_cleaning(self):
        record = build_record({
            'job_title': '  Data Engineer ',
            'companyName': 'Gamma',
            'link': '/view?id=3',
            'employmentType': 'Full-time',
            'salary': 'N/A',
        }, source_site='saramin', base_url=URL)

        assert record.title == 'Data Engineer'
        assert record.company == 'Gamma'
        assert record.source_url == 'https://www.saramin.co.kr/view?id=3'
        assert record.employment_type == 'Full-time'
        assert record.salary is None
        assert record.source_site == 'saramin'

    @pytest.mark.parametrize("data", [
        {'company': 'Acme', 'source_url': URL},
        {'title': 'Dev', 'source_url': URL},
        {'title': 'Dev', 'company': 'null', 'source_url': URL},
        {'title': 'Dev', 'company': 'Acme'},
        {'title': 'Dev', 'company': 'Acme', 'source_url': 'javascript:void(0)'},
    ])
    def test_invalid_records_rejected(self, data):
        assert build_record(data) is None

    def test_url_optional_when_not_required(self):
        record = build_record({'title': 'Dev', 'company': 'Acme'}, require_url=False)
        assert record is not None
        assert record.is_valid(require_url=False)
        assert not record.is_valid()

    def test_build_records_drops_invalid(self, caplog):
        items = [{'title': 'Dev', 'company': 'Acme', 'url': URL}, {'title': 'No company'}]
        with caplog.at_level('INFO', logger='pipeline.records'):
            records = build_records(items)
        assert len(records) == 1
        assert 'Dropped 1 invalid' in caplog.text


class TestNormalizers:

    @pytest.mark.parametrize("value, expected", [
        ('2025-04-01', '2025-04-01'),
        ('2025/04/01', '2025-04-01'),
        ('April 1, 2025', '2025-04-01'),
        ('until filled', None),
        (None, None),
    ])
    def test_normalize_deadline(self, value, expected):
        assert normalize_deadline(value) == expected

    def test_normalize_url(self):
        assert normalize_url('https://a.com/x') == 'https://a.com/x'
        assert normalize_url('/x', 'https://a.com/list') == 'https://a.com/x'
        assert normalize_url('/x') is None
        assert normalize_url('mailto:hr@a.com') is None
        assert normalize_url('ftp://a.com/x') is None

    def test_clean_value(self):
        assert clean_value(['a', None, ' b ']) == 'a\nb'
        assert clean_value({'nested': 1}) is None
        assert clean_value(' - ') is None
        assert clean_value(42) == '42'

    def test_base_url_for(self):
        assert base_url_for('https://a.com/list', 'https://b.com') == 'https://a.com/list'
        assert base_url_for('file.html', 'https://b.com') == 'https://b.com'
        assert base_url_for(None) is None
