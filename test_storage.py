#!/usr/bin/env python3
"""
Tests for the in-memory document store
"""

from datetime import datetime, timezone

import pytest

from models import NotFoundError
from storage import MemoryStore, init_store


def test_create_assigns_id_and_copies(store):
    data = {'title': 'Essay', 'tags': ['a']}
    doc = store.create('tasks', data)
    assert doc['id']
    data['tags'].append('b')
    assert store.get('tasks', doc['id'])['tags'] == ['a']


def test_find_with_filters_and_order(store):
    store.create('tasks', {'user_id': 'u1', 'title': 'Later', 'due_date': datetime(2025, 3, 20, tzinfo=timezone.utc)})
    store.create('tasks', {'user_id': 'u1', 'title': 'Sooner', 'due_date': datetime(2025, 3, 10, tzinfo=timezone.utc)})
    store.create('tasks', {'user_id': 'u1', 'title': 'Undated', 'due_date': None})
    store.create('tasks', {'user_id': 'u2', 'title': 'Other user', 'due_date': None})

    docs = store.find('tasks', [('user_id', '==', 'u1')], order_by='due_date')
    assert [d['title'] for d in docs] == ['Sooner', 'Later', 'Undated']

    ranged = store.find('tasks', [('due_date', '>=', datetime(2025, 3, 15, tzinfo=timezone.utc))])
    assert [d['title'] for d in ranged] == ['Later']

    assert store.count('tasks', [('user_id', 'in', ['u1', 'u2'])]) == 4
    assert len(store.find('tasks', limit=2)) == 2


def test_update_and_delete(store):
    doc = store.create('tasks', {'title': 'Essay'})
    assert store.update('tasks', doc['id'], {'title': 'Essay v2'})['title'] == 'Essay v2'
    assert store.update('tasks', 'missing', {'title': 'x'}) is None
    assert store.delete('tasks', doc['id']) is True
    assert store.delete('tasks', doc['id']) is False


def test_delete_where(store):
    for i in range(3):
        store.create('modules', {'subject_id': 's1', 'name': f'M{i}'})
    store.create('modules', {'subject_id': 's2', 'name': 'Keep'})
    assert store.delete_where('modules', [('subject_id', '==', 's1')]) == 3
    assert [m['name'] for m in store.find('modules')] == ['Keep']


def test_get_owned_hides_other_users_documents(store):
    doc = store.create('tasks', {'user_id': 'u1', 'title': 'Essay'})
    assert store.get_owned('tasks', doc['id'], 'u1', 'Task')['title'] == 'Essay'
    with pytest.raises(NotFoundError, match="Task not found"):
        store.get_owned('tasks', doc['id'], 'u2', 'Task')
    with pytest.raises(NotFoundError):
        store.get_owned('tasks', 'missing', 'u1', 'Task')


def test_find_one(store):
    store.create('users', {'email': 'a@example.com'})
    assert store.find_one('users', [('email', '==', 'a@example.com')])['email'] == 'a@example.com'
    assert store.find_one('users', [('email', '==', 'b@example.com')]) is None


def test_init_store_memory_backend():
    assert isinstance(init_store('memory'), MemoryStore)
