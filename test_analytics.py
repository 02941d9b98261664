"""
Tests for tagging rules and the filter/aggregation engine.

Run with: pytest
"""

import json
from dataclasses import FrozenInstanceError

import pytest

from analytics import (
    Dataset,
    DerivedView,
    FilterState,
    Provenance,
    StudentRecord,
    Tag,
    classify,
    correlation_matrix,
    filter_options,
    priority_list,
    project,
    records_to_frame,
    task_completion_tiers,
    view_to_dict,
)
from config import ALL, SCATTER_POINT_LIMIT, TASK_TIER_LABELS


def make_record(**overrides):
    values = dict(
        school='North',
        grade='5',
        subject='Maths',
        pre_score=70.0,
        post_score=75.0,
        usage_minutes=45,
        tasks_completed=12,
        practice_quiz_count=3,
        display_name='Student',
    )
    values.update(overrides)
    return StudentRecord(**values)


def make_dataset(*records, provenance=Provenance.UPLOADED):
    return Dataset(records=tuple(records), provenance=provenance)


@pytest.fixture
def mixed_dataset():
    return make_dataset(
        make_record(display_name='A', school='North', subject='Maths', pre_score=50, post_score=70, usage_minutes=20),
        make_record(display_name='B', school='South', subject='Maths', pre_score=70, post_score=65, usage_minutes=90),
        make_record(display_name='C', school='North', subject='English', pre_score=60, post_score=55, usage_minutes=40),
        make_record(display_name='D', school='East', subject='English', pre_score=70, post_score=75, usage_minutes=45),
        make_record(display_name='E', school='South', subject='Maths', pre_score=80, post_score=90, usage_minutes=35),
    )


class TestClassify:

    def test_failing_post_score_dominates(self):
        assert classify(90, 55, 5) == Tag.NEEDS_ATTENTION
        assert classify(40, 59.9, 500) == Tag.NEEDS_ATTENTION

    @pytest.mark.parametrize("pre, post, usage, expected", [
        (50, 70, 20, Tag.HIGH_POTENTIAL),
        (70, 65, 90, Tag.INEFFECTIVE_LEARNING),
        (70, 75, 45, Tag.STABLE),
    ])
    def test_documented_examples(self, pre, post, usage, expected):
        assert classify(pre, post, usage) == expected

    def test_post_score_of_60_is_not_failing(self):
        assert classify(60, 60, 45) == Tag.STABLE

    def test_usage_boundary_for_ineffective_learning(self):
        assert classify(70, 70, 60) == Tag.STABLE
        assert classify(70, 70, 61) == Tag.INEFFECTIVE_LEARNING

    def test_usage_boundary_for_high_potential(self):
        assert classify(50, 60, 29) == Tag.HIGH_POTENTIAL
        assert classify(50, 60, 30) == Tag.STABLE

    def test_gain_boundary_for_high_potential(self):
        assert classify(51, 60, 10) == Tag.STABLE

    def test_no_gain_with_high_usage_is_ineffective_even_at_top_score(self):
        assert classify(100, 100, 61) == Tag.INEFFECTIVE_LEARNING


class TestStudentRecord:

    def test_improvement_and_tag_are_derived(self):
        record = make_record(pre_score=50, post_score=70, usage_minutes=20)

        assert record.improvement == 20
        assert record.tag == Tag.HIGH_POTENTIAL

    def test_improvement_is_not_settable(self):
        with pytest.raises(TypeError):
            make_record(improvement=99)

        record = make_record()
        with pytest.raises(FrozenInstanceError):
            record.improvement = 99


class TestProject:

    def test_all_filter_keeps_every_record_in_order(self, mixed_dataset):
        view = project(mixed_dataset, FilterState())

        assert view.filtered_records == mixed_dataset.records
        assert view.kpi.total_students == 5

    def test_default_filter_is_all(self, mixed_dataset):
        assert project(mixed_dataset) == project(mixed_dataset, FilterState(ALL, ALL))

    def test_school_filter(self, mixed_dataset):
        view = project(mixed_dataset, FilterState(school='North'))
        assert [r.display_name for r in view.filtered_records] == ['A', 'C']

    def test_subject_and_school_filter(self, mixed_dataset):
        view = project(mixed_dataset, FilterState(school='South', subject='Maths'))
        assert [r.display_name for r in view.filtered_records] == ['B', 'E']

    def test_absent_school_gives_empty_view(self, mixed_dataset):
        view = project(mixed_dataset, FilterState(school='Nowhere'))

        assert view.kpi.total_students == 0
        assert view.kpi.avg_improvement == 0
        assert view.bar_series == ()
        assert view.scatter_series == ()

    def test_kpi(self, mixed_dataset):
        kpi = project(mixed_dataset).kpi

        # improvements: 20, -5, -5, 5, 10
        assert kpi.avg_improvement == pytest.approx(5.0)
        assert kpi.high_potential_count == 1
        assert kpi.ineffective_learning_count == 1
        assert kpi.needs_attention_count == 1
        assert kpi.stable_count == 2

    def test_bar_series_one_entry_per_school(self, mixed_dataset):
        bars = project(mixed_dataset).bar_series

        assert [b.school for b in bars] == ['North', 'South', 'East']
        assert bars[0].avg_improvement == pytest.approx(7.5)
        assert bars[1].avg_improvement == pytest.approx(2.5)
        assert bars[2].avg_improvement == pytest.approx(5.0)

    def test_bar_series_follows_filter(self, mixed_dataset):
        bars = project(mixed_dataset, FilterState(subject='English')).bar_series
        assert [b.school for b in bars] == ['North', 'East']

    def test_scatter_points(self, mixed_dataset):
        point = project(mixed_dataset).scatter_series[1]

        assert point.x == 90
        assert point.y == -5
        assert point.label == 'B'
        assert point.school == 'South'
        assert point.tag == Tag.INEFFECTIVE_LEARNING

    def test_scatter_is_capped_in_input_order(self):
        records = [make_record(display_name=f"S{i}") for i in range(SCATTER_POINT_LIMIT + 20)]
        view = project(make_dataset(*records))

        assert view.kpi.total_students == SCATTER_POINT_LIMIT + 20
        assert len(view.scatter_series) == SCATTER_POINT_LIMIT
        assert view.scatter_series[-1].label == f"S{SCATTER_POINT_LIMIT - 1}"

    def test_projection_is_repeatable(self, mixed_dataset):
        state = FilterState(school='South')
        first = project(mixed_dataset, state)
        second = project(mixed_dataset, state)

        assert isinstance(first, DerivedView)
        assert first == second
        assert view_to_dict(first) == view_to_dict(second)

    def test_filter_persists_across_dataset_replacement(self, mixed_dataset):
        state = FilterState(school='East')
        replacement = make_dataset(make_record(school='West'))

        assert project(mixed_dataset, state).kpi.total_students == 1
        assert project(replacement, state).kpi.total_students == 0


class TestFilterOptions:

    def test_first_appearance_order_with_all(self, mixed_dataset):
        schools, subjects = filter_options(mixed_dataset)

        assert schools == [ALL, 'North', 'South', 'East']
        assert subjects == [ALL, 'Maths', 'English']


class TestSupplementaryAnalysis:

    def test_records_to_frame(self, mixed_dataset):
        df = records_to_frame(mixed_dataset.records)

        assert len(df) == 5
        assert list(df['tag'])[:2] == ['HighPotential', 'IneffectiveLearning']
        assert records_to_frame([]).empty

    def test_correlation_matrix(self):
        records = [
            make_record(pre_score=50, post_score=60, usage_minutes=10, tasks_completed=1, practice_quiz_count=3),
            make_record(pre_score=60, post_score=70, usage_minutes=20, tasks_completed=1, practice_quiz_count=2),
            make_record(pre_score=70, post_score=80, usage_minutes=30, tasks_completed=1, practice_quiz_count=1),
        ]
        matrix = correlation_matrix(records)

        assert matrix.loc['Pre Score', 'Post Score'] == pytest.approx(1.0)
        assert matrix.loc['Pre Score', 'Practice Quizzes'] == pytest.approx(-1.0)
        # constant column has no defined correlation
        assert matrix.loc['Tasks Completed', 'Pre Score'] == 0.0
        assert matrix.loc['Tasks Completed', 'Tasks Completed'] == 1.0

    def test_correlation_matrix_needs_two_records(self):
        matrix = correlation_matrix([make_record()])

        assert matrix.shape == (5, 5)
        assert matrix.to_numpy().trace() == 5.0
        assert matrix.to_numpy().sum() == 5.0

    def test_task_completion_tiers(self):
        records = [
            make_record(tasks_completed=5, pre_score=60, post_score=62),
            make_record(tasks_completed=10, pre_score=60, post_score=70),
            make_record(tasks_completed=19, pre_score=60, post_score=66),
            make_record(tasks_completed=20, pre_score=60, post_score=80),
        ]
        tiers = task_completion_tiers(records)

        assert [t.tier for t in tiers] == list(TASK_TIER_LABELS)
        assert [t.count for t in tiers] == [1, 2, 1]
        assert [t.avg_improvement for t in tiers] == [2.0, 8.0, 20.0]

    def test_task_completion_tiers_empty(self):
        tiers = task_completion_tiers([])
        assert [(t.avg_improvement, t.count) for t in tiers] == [(0.0, 0)] * 3

    def test_priority_list(self, mixed_dataset):
        names = [r.display_name for r in priority_list(mixed_dataset.records)]
        # NeedsAttention, IneffectiveLearning, HighPotential, then Stable by post score
        assert names == ['C', 'B', 'A', 'D', 'E']

    def test_priority_list_limit(self, mixed_dataset):
        assert len(priority_list(mixed_dataset.records, limit=2)) == 2

    def test_view_to_dict_is_json_safe(self, mixed_dataset):
        data = view_to_dict(project(mixed_dataset))
        decoded = json.loads(json.dumps(data))

        assert decoded['kpi']['total_students'] == 5
        assert decoded['scatter_series'][0]['tag'] == 'HighPotential'
        assert decoded['filtered_records'][2]['tag'] == 'NeedsAttention'
        assert decoded['bar_series'][0] == {'school': 'North', 'avg_improvement': 7.5}
