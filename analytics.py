"""
Analytics aggregation for the StudyFlow dashboard.

Everything here works on plain document dicts that are already scoped to one
user. Records with a missing or unparseable date are left out of the
date-bucketed figures instead of failing the whole summary.
"""

import math
from datetime import timedelta, timezone

from models import (PRIORITIES, TASK_TYPES, DIFFICULTIES, parse_hhmm, start_of_day,
                    to_datetime_safe, utcnow)
from monitoring import timed

STATUS_COLORS = {'Completed': '#10B981', 'Pending': '#EF4444'}
PRIORITY_COLORS = {'High': '#EF4444', 'Medium': '#F59E0B', 'Low': '#10B981'}
TASK_TYPE_COLORS = {
    'Homework': '#3B82F6',
    'Assignment': '#8B5CF6',
    'Project': '#F59E0B',
    'Reading': '#10B981',
    'Other': '#6B7280',
}
DIFFICULTY_COLORS = {'Easy': '#10B981', 'Medium': '#F59E0B', 'Hard': '#EF4444'}

SHORT_DAYS = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')
TIME_BUCKETS = ('Morning', 'Afternoon', 'Evening', 'Night')
DEADLINE_RANGES = (('Next 3 Days', 3), ('Next 7 Days', 7))


def completion_rate(completed, total):
    """Whole-number percentage, rounding halves up; 0 when there is nothing to complete."""
    if not total:
        return 0
    return int(math.floor(completed * 100 / total + 0.5))


def week_number(moment):
    """Week index within the year; weeks start on Sunday and week 1 contains Jan 1."""
    day = moment.date()
    year_start = day.replace(month=1, day=1)
    days_since = (day - year_start).days
    jan1_weekday = (year_start.weekday() + 1) % 7  # Sunday == 0
    return math.ceil((days_since + jan1_weekday + 1) / 7)


def time_bucket(hour):
    if 6 <= hour < 12:
        return 'Morning'
    if 12 <= hour < 17:
        return 'Afternoon'
    if 17 <= hour < 22:
        return 'Evening'
    return 'Night'


def completion_moment(doc, tz=timezone.utc):
    """When a completed task/module was finished; older records fall back to updated_at."""
    if not doc.get('completed'):
        return None
    moment = to_datetime_safe(doc.get('completed_at')) or to_datetime_safe(doc.get('updated_at'))
    return moment.astimezone(tz) if moment else None


def distribution(docs, field, names, colors):
    entries = []
    for name in names:
        value = sum(1 for d in docs if d.get(field) == name)
        if value > 0:
            entries.append({'name': name, 'value': value, 'color': colors[name]})
    return entries


def _slot_duration(slot):
    duration = slot.get('duration')
    if isinstance(duration, (int, float)) and not isinstance(duration, bool):
        return duration
    return 1


def task_stats(tasks, now):
    total = len(tasks)
    completed = sum(1 for t in tasks if t.get('completed'))
    overdue = 0
    for task in tasks:
        due = to_datetime_safe(task.get('due_date'))
        if not task.get('completed') and due is not None and due < now:
            overdue += 1
    return {
        'total': total,
        'completed': completed,
        'overdue': overdue,
        'completion_rate': completion_rate(completed, total),
    }


def module_stats(modules):
    total = len(modules)
    completed = sum(1 for m in modules if m.get('completed'))
    return {'total': total, 'completed': completed, 'completion_rate': completion_rate(completed, total)}


def study_hours(tasks, class_slots, tz=timezone.utc):
    """Planned (scheduled class hours) against actual (attended hours + tasks finished) per weekday."""
    finished_per_day = dict.fromkeys(SHORT_DAYS, 0)
    for task in tasks:
        moment = completion_moment(task, tz)
        if moment:
            finished_per_day[SHORT_DAYS[moment.weekday()]] += 1

    rows = []
    for day in SHORT_DAYS:
        slots = [s for s in class_slots if str(s.get('day') or '').startswith(day)]
        planned = sum(_slot_duration(s) for s in slots)
        attended = sum(_slot_duration(s) for s in slots if s.get('attended'))
        rows.append({'day': day, 'planned': planned, 'actual': attended + finished_per_day[day]})
    return rows


def deadline_pressure(tasks, now, tz=timezone.utc):
    """Counts for overlapping windows: due today, and due between now and now + N days."""
    today = now.astimezone(tz).date()
    dues = [d for d in (to_datetime_safe(t.get('due_date')) for t in tasks) if d is not None]

    rows = [{'range': 'Today', 'tasks': sum(1 for d in dues if d.astimezone(tz).date() == today)}]
    for label, days in DEADLINE_RANGES:
        horizon = now + timedelta(days=days)
        rows.append({'range': label, 'tasks': sum(1 for d in dues if now <= d <= horizon)})
    return rows


def productivity_by_time(tasks, class_slots, tz=timezone.utc):
    buckets = dict.fromkeys(TIME_BUCKETS, 0)
    for task in tasks:
        moment = completion_moment(task, tz)
        if moment:
            buckets[time_bucket(moment.hour)] += 1
    for slot in class_slots:
        try:
            hour, _ = parse_hhmm(slot.get('start_time'))
        except ValueError:
            continue
        buckets[time_bucket(hour)] += 1
    return [{'time': name, 'sessions': count} for name, count in buckets.items()]


def subject_allocation(subjects, modules):
    """Per subject counts taken from the live modules, not the stored counters."""
    rows = []
    for subject in subjects:
        owned = [m for m in modules if m.get('subject_id') == subject.get('id')]
        rows.append({
            'name': subject.get('name') or 'Unnamed',
            'total_modules': len(owned),
            'completed_modules': sum(1 for m in owned if m.get('completed')),
        })
    return rows


def weekly_trend(tasks, modules, tz=timezone.utc):
    weeks = {}
    for docs, key in ((tasks, 'completed_tasks'), (modules, 'completed_modules')):
        for doc in docs:
            moment = completion_moment(doc, tz)
            if not moment:
                continue
            index = week_number(moment)
            row = weeks.setdefault(index, {'week': f'W{index}', 'completed_tasks': 0, 'completed_modules': 0})
            row[key] += 1
    return [weeks[index] for index in sorted(weeks)]


@timed('studyflow.analytics')
def build_analytics(tasks, modules, subjects, class_slots, now=None, tz=timezone.utc):
    """Flat analytics summary for one user's collections."""
    now = now or utcnow()
    stats = task_stats(tasks, now)
    pending = max(0, stats['total'] - stats['completed'])
    task_status = [
        {'name': name, 'value': value, 'color': STATUS_COLORS[name]}
        for name, value in (('Completed', stats['completed']), ('Pending', pending))
        if value > 0
    ]

    return {
        'task_stats': stats,
        'module_stats': module_stats(modules),
        'task_status': task_status,
        'priority_dist': distribution(tasks, 'priority', PRIORITIES, PRIORITY_COLORS),
        'task_type_dist': distribution(tasks, 'type', TASK_TYPES, TASK_TYPE_COLORS),
        'difficulty_dist': distribution(modules, 'difficulty', DIFFICULTIES, DIFFICULTY_COLORS),
        'study_hours': study_hours(tasks, class_slots, tz),
        'deadline_pressure': deadline_pressure(tasks, now, tz),
        'study_schedule_productivity': productivity_by_time(tasks, class_slots, tz),
        'subject_allocation': subject_allocation(subjects, modules),
        'weekly_trend': weekly_trend(tasks, modules, tz),
    }


def _by_due(task):
    due = to_datetime_safe(task.get('due_date'))
    return (due is None, due.timestamp() if due else 0)


def build_dashboard(tasks, events, modules, now=None, tz=timezone.utc, limit=5):
    """Headline counts and the next few tasks/events for the dashboard page."""
    now = now or utcnow()
    today = start_of_day(now, tz)
    tomorrow = today + timedelta(days=1)

    due_today = 0
    for task in tasks:
        due = to_datetime_safe(task.get('due_date'))
        if due is not None and today <= due < tomorrow:
            due_today += 1

    upcoming_events = []
    for event in events:
        when = to_datetime_safe(event.get('date_time'))
        if when is not None and when >= today:
            upcoming_events.append((when, event))
    upcoming_events.sort(key=lambda pair: pair[0])

    pending_tasks = sorted((t for t in tasks if not t.get('completed')), key=_by_due)

    return {
        'stats': {
            'total_tasks': len(tasks),
            'completed_tasks': sum(1 for t in tasks if t.get('completed')),
            'today_tasks': due_today,
            'upcoming_events': len(upcoming_events),
            'total_modules': len(modules),
            'completed_modules': sum(1 for m in modules if m.get('completed')),
        },
        'upcoming_tasks': pending_tasks[:limit],
        'upcoming_events_list': [event for _, event in upcoming_events[:limit]],
    }
