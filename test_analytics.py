#!/usr/bin/env python3
"""
Tests for the analytics aggregator and dashboard summary
"""

from datetime import datetime, timedelta, timezone

import pytest

from analytics import (build_analytics, build_dashboard, completion_rate, time_bucket,
                       week_number, completion_moment)

NOW = datetime(2025, 3, 12, 14, 30, tzinfo=timezone.utc)  # a Wednesday


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def tasks():
    return [
        {'id': 't1', 'title': 'Read chapter', 'completed': True, 'completed_at': utc(2025, 3, 10, 9, 0),
         'priority': 'High', 'type': 'Homework', 'due_date': utc(2025, 3, 9)},
        {'id': 't2', 'title': 'Lab report', 'completed': False, 'priority': 'Low', 'type': 'Project',
         'due_date': utc(2025, 3, 11)},
        {'id': 't3', 'title': 'Worksheet', 'completed': False, 'priority': 'Medium', 'type': 'Homework',
         'due_date': NOW + timedelta(hours=2)},
        {'id': 't4', 'title': 'Novel', 'completed': False, 'priority': 'Medium', 'type': 'Reading',
         'due_date': utc(2025, 3, 17, 10, 0)},
        {'id': 't5', 'title': 'Someday', 'completed': False, 'priority': 'Medium', 'type': 'Other',
         'due_date': None},
    ]


@pytest.fixture
def modules():
    return [
        {'id': 'm1', 'subject_id': 's1', 'difficulty': 'Hard', 'completed': True,
         'completed_at': utc(2025, 3, 11, 19, 0)},
        {'id': 'm2', 'subject_id': 's1', 'difficulty': 'Easy', 'completed': False},
        {'id': 'm3', 'subject_id': 's2', 'difficulty': 'Easy', 'completed': False},
    ]


@pytest.fixture
def subjects():
    # Stored counters are stale on purpose
    return [
        {'id': 's1', 'name': 'Maths', 'total_modules': 7, 'completed_modules': 7},
        {'id': 's2', 'name': 'Physics', 'total_modules': 0, 'completed_modules': 0},
    ]


@pytest.fixture
def class_slots():
    return [
        {'day': 'Monday', 'start_time': '09:00', 'duration': 1.5, 'attended': True},
        {'day': 'Monday', 'start_time': '14:00', 'duration': 'n/a', 'attended': False},
        {'day': 'Friday', 'start_time': '18:00', 'duration': 2, 'attended': False},
    ]


@pytest.fixture
def summary(tasks, modules, subjects, class_slots):
    return build_analytics(tasks, modules, subjects, class_slots, now=NOW)


def test_completion_rate_rounding():
    assert completion_rate(0, 0) == 0
    assert completion_rate(1, 3) == 33
    assert completion_rate(1, 8) == 13  # 12.5 rounds up
    assert completion_rate(2, 3) == 67


def test_week_number():
    assert week_number(utc(2025, 1, 1)) == 1
    # 2025-01-05 is a Sunday, the first day of week 2
    assert week_number(utc(2025, 1, 4)) == 1
    assert week_number(utc(2025, 1, 5)) == 2


def test_time_buckets():
    assert time_bucket(6) == 'Morning'
    assert time_bucket(12) == 'Afternoon'
    assert time_bucket(17) == 'Evening'
    assert time_bucket(22) == 'Night'
    assert time_bucket(3) == 'Night'


def test_completion_moment_falls_back_to_updated_at():
    doc = {'completed': True, 'updated_at': utc(2025, 3, 1, 8)}
    assert completion_moment(doc) == utc(2025, 3, 1, 8)
    assert completion_moment({'completed': False, 'completed_at': utc(2025, 3, 1)}) is None


def test_task_stats(summary):
    assert summary['task_stats'] == {'total': 5, 'completed': 1, 'overdue': 1, 'completion_rate': 20}
    assert summary['task_status'] == [
        {'name': 'Completed', 'value': 1, 'color': '#10B981'},
        {'name': 'Pending', 'value': 4, 'color': '#EF4444'},
    ]


def test_module_stats(summary):
    assert summary['module_stats'] == {'total': 3, 'completed': 1, 'completion_rate': 33}


def test_distributions_omit_empty_entries(summary):
    assert [(d['name'], d['value']) for d in summary['priority_dist']] == [('High', 1), ('Medium', 3), ('Low', 1)]
    assert [(d['name'], d['value']) for d in summary['task_type_dist']] == [
        ('Homework', 2), ('Project', 1), ('Reading', 1), ('Other', 1),
    ]
    assert [(d['name'], d['value']) for d in summary['difficulty_dist']] == [('Easy', 2), ('Hard', 1)]


def test_deadline_pressure(summary):
    assert summary['deadline_pressure'] == [
        {'range': 'Today', 'tasks': 1},
        {'range': 'Next 3 Days', 'tasks': 1},
        {'range': 'Next 7 Days', 'tasks': 2},
    ]


def test_study_hours(summary):
    rows = {row['day']: row for row in summary['study_hours']}
    assert len(rows) == 7
    # Non-numeric duration counts as one hour; the completed task adds one to Monday
    assert rows['Mon'] == {'day': 'Mon', 'planned': 2.5, 'actual': 2.5}
    assert rows['Fri'] == {'day': 'Fri', 'planned': 2, 'actual': 0}
    assert rows['Tue'] == {'day': 'Tue', 'planned': 0, 'actual': 0}


def test_productivity_only_counts_completed_tasks(summary):
    assert summary['study_schedule_productivity'] == [
        {'time': 'Morning', 'sessions': 2},
        {'time': 'Afternoon', 'sessions': 1},
        {'time': 'Evening', 'sessions': 1},
        {'time': 'Night', 'sessions': 0},
    ]


def test_subject_allocation_uses_live_modules(summary):
    assert summary['subject_allocation'] == [
        {'name': 'Maths', 'total_modules': 2, 'completed_modules': 1},
        {'name': 'Physics', 'total_modules': 1, 'completed_modules': 0},
    ]


def test_weekly_trend(summary):
    assert summary['weekly_trend'] == [{'week': 'W11', 'completed_tasks': 1, 'completed_modules': 1}]


def test_unparseable_dates_are_skipped(class_slots):
    tasks = [{'completed': False, 'due_date': 'soon', 'priority': 'Low', 'type': 'Other'}]
    result = build_analytics(tasks, [], [], class_slots, now=NOW)
    assert result['task_stats']['overdue'] == 0
    assert all(row['tasks'] == 0 for row in result['deadline_pressure'])


def test_empty_collections():
    result = build_analytics([], [], [], [], now=NOW)
    assert result['task_stats'] == {'total': 0, 'completed': 0, 'overdue': 0, 'completion_rate': 0}
    assert result['task_status'] == []
    assert result['weekly_trend'] == []
    assert result['subject_allocation'] == []
    assert len(result['study_hours']) == 7


def test_dashboard(tasks, modules):
    events = [
        {'id': 'e1', 'title': 'Morning lecture', 'date_time': utc(2025, 3, 12, 8, 0)},
        {'id': 'e2', 'title': 'Exam', 'date_time': utc(2025, 3, 20, 9, 0)},
        {'id': 'e3', 'title': 'Old meeting', 'date_time': utc(2025, 3, 1, 9, 0)},
    ]
    result = build_dashboard(tasks, events, modules, now=NOW)

    assert result['stats'] == {
        'total_tasks': 5,
        'completed_tasks': 1,
        'today_tasks': 1,
        'upcoming_events': 2,
        'total_modules': 3,
        'completed_modules': 1,
    }
    assert [t['id'] for t in result['upcoming_tasks']] == ['t2', 't3', 't4', 't5']
    assert [e['id'] for e in result['upcoming_events_list']] == ['e1', 'e2']


def test_task_due_tomorrow_counts_in_both_ranges():
    tasks = [{'completed': False, 'due_date': NOW + timedelta(days=1)}]
    result = build_analytics(tasks, [], [], [], now=NOW)
    assert [row['tasks'] for row in result['deadline_pressure']] == [0, 1, 1]


def test_weekly_trend_sorted_without_duplicates():
    tasks = [
        {'completed': True, 'completed_at': utc(2025, 3, 10)},
        {'completed': True, 'completed_at': utc(2025, 1, 2)},
        {'completed': True, 'completed_at': utc(2025, 3, 11)},
    ]
    trend = build_analytics(tasks, [], [], [], now=NOW)['weekly_trend']
    assert [row['week'] for row in trend] == ['W1', 'W11']
    assert trend[1]['completed_tasks'] == 2
