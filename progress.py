"""
Subject progress reconciliation and cascading deletes.

Subject documents keep denormalised `total_modules` / `completed_modules`
counters for cheap listing. They are never incremented in place: every
module write ends with `reconcile_subject`, which recounts the live modules.
"""

import logging

from models import utcnow

logger = logging.getLogger('studyflow')


def count_modules(store, subject_id):
    modules = store.find('modules', [('subject_id', '==', subject_id)])
    completed = sum(1 for m in modules if m.get('completed'))
    return len(modules), completed


def reconcile_subject(store, subject_id):
    """Recount a subject's modules and persist the counters. Returns the updated subject or None."""
    if not subject_id:
        return None
    total, completed = count_modules(store, subject_id)
    return store.update('subjects', subject_id, {
        'total_modules': total,
        'completed_modules': completed,
    })


def reconcile_user_subjects(store, user_id):
    subjects = []
    for subject in store.find('subjects', [('user_id', '==', user_id)]):
        subjects.append(reconcile_subject(store, subject['id']) or subject)
    return subjects


def after_module_write(store, *subject_ids):
    """Reconcile every subject touched by a module create/update/delete (a move touches two)."""
    for subject_id in dict.fromkeys(s for s in subject_ids if s):
        reconcile_subject(store, subject_id)


def delete_subject_cascade(store, subject):
    """Delete a subject together with its modules; topics live inside the modules."""
    removed = store.delete_where('modules', [('subject_id', '==', subject['id'])])
    store.delete('subjects', subject['id'])
    logger.info(f"Deleted subject {subject['id']} and {removed} modules")
    return removed


def delete_user_cascade(store, user_id):
    """Delete a user and every document they own."""
    summary = {}
    for collection in ('tasks', 'events', 'modules', 'subjects', 'class_slots'):
        summary[collection] = store.delete_where(collection, [('user_id', '==', user_id)])
    store.delete('users', user_id)
    logger.info(f"Deleted user {user_id} at {utcnow().isoformat()}: {summary}")
    return summary
