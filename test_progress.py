#!/usr/bin/env python3
"""
Tests for subject progress reconciliation and cascading deletes
"""

from progress import (after_module_write, count_modules, delete_subject_cascade,
                      delete_user_cascade, reconcile_subject, reconcile_user_subjects)


def make_subject(store, user_id='u1', name='Maths', **counters):
    return store.create('subjects', {'user_id': user_id, 'name': name, **counters})


def make_module(store, subject, completed=False, user_id='u1'):
    return store.create('modules', {'user_id': user_id, 'subject_id': subject['id'],
                                    'name': 'Module', 'completed': completed})


def assert_counters_match(store, subject):
    total, completed = count_modules(store, subject['id'])
    stored = store.get('subjects', subject['id'])
    assert (stored['total_modules'], stored['completed_modules']) == (total, completed)


def test_reconcile_replaces_stale_counters(store):
    subject = make_subject(store, total_modules=9, completed_modules=4)
    make_module(store, subject, completed=True)
    make_module(store, subject)

    updated = reconcile_subject(store, subject['id'])
    assert updated['total_modules'] == 2
    assert updated['completed_modules'] == 1


def test_counters_follow_module_moves(store):
    maths = make_subject(store, name='Maths')
    physics = make_subject(store, name='Physics')
    module = make_module(store, maths, completed=True)
    after_module_write(store, maths['id'])

    store.update('modules', module['id'], {'subject_id': physics['id']})
    after_module_write(store, maths['id'], physics['id'])

    assert_counters_match(store, maths)
    assert_counters_match(store, physics)
    assert store.get('subjects', physics['id'])['completed_modules'] == 1


def test_reconcile_missing_subject(store):
    assert reconcile_subject(store, None) is None
    assert reconcile_subject(store, 'gone') is None


def test_reconcile_user_subjects_only_touches_owner(store):
    mine = make_subject(store, user_id='u1')
    theirs = make_subject(store, user_id='u2', total_modules=5)
    make_module(store, mine)

    subjects = reconcile_user_subjects(store, 'u1')
    assert [s['id'] for s in subjects] == [mine['id']]
    assert subjects[0]['total_modules'] == 1
    assert store.get('subjects', theirs['id'])['total_modules'] == 5


def test_delete_subject_cascade(store):
    subject = make_subject(store)
    other = make_subject(store, name='Other')
    make_module(store, subject)
    make_module(store, subject)
    kept = make_module(store, other)

    assert delete_subject_cascade(store, subject) == 2
    assert store.get('subjects', subject['id']) is None
    assert [m['id'] for m in store.find('modules')] == [kept['id']]


def test_delete_user_cascade(store):
    user = store.create('users', {'email': 'a@example.com'})
    survivor = store.create('users', {'email': 'b@example.com'})
    for collection in ('tasks', 'events', 'subjects', 'class_slots'):
        store.create(collection, {'user_id': user['id']})
        store.create(collection, {'user_id': survivor['id']})
    store.create('modules', {'user_id': user['id'], 'subject_id': 'x'})

    summary = delete_user_cascade(store, user['id'])

    assert summary == {'tasks': 1, 'events': 1, 'modules': 1, 'subjects': 1, 'class_slots': 1}
    assert store.get('users', user['id']) is None
    assert store.get('users', survivor['id']) is not None
    assert store.count('tasks') == 1
