import pytest

from macrodata.services.database import MemoryDatabase, resolve_database_url
from macrodata.services.entity_store import EntityStore
from macrodata.utils.config import StoreConfig


def test_upsert_is_idempotent_per_type_and_name(store):
    first = store.upsert('topic', 'python', 'Likes type hints')
    second = store.upsert('topic', 'python', 'Prefers dataclasses')

    assert first.id == second.id == 'state-topic-python'
    documents = store.get_all_by_type('topic')
    assert len(documents) == 1
    assert documents[0].content == 'Prefers dataclasses'
    assert store.get('topic', 'python').content == 'Prefers dataclasses'


def test_same_name_different_type_are_distinct(store):
    store.upsert('topic', 'alpha', 'a topic')
    store.upsert('project', 'alpha', 'a project')

    assert store.get('topic', 'alpha').content == 'a topic'
    assert store.get('project', 'alpha').content == 'a project'


def test_get_missing_returns_none(store):
    assert store.get('person', 'nobody') is None


def test_invalid_state_type_is_rejected(store):
    with pytest.raises(ValueError):
        store.upsert('secret', 'x', 'y')
    with pytest.raises(ValueError):
        store.get_all_by_type('secret')


def test_get_all_by_type_orders_by_name(store):
    for name in ('zeta', 'alpha', 'mid'):
        store.upsert('topic', name, name)
    assert [d.name for d in store.get_all_by_type('topic')] == ['alpha', 'mid', 'zeta']


def test_journal_entries_are_returned_newest_first(store):
    ids = [store.append_journal('work', f'entry {i}').id for i in range(5)]

    recent = store.recent_journal(3)
    assert [entry.id for entry in recent] == list(reversed(ids))[:3]


def test_journal_ids_and_fields(store):
    entry = store.append_journal('git', 'Committed the fix', intent='track progress')

    assert entry.id.startswith('journal-')
    millis, suffix = entry.id.split('-')[1:]
    assert millis.isdigit()
    assert len(suffix) == 8
    assert entry.timestamp.endswith('Z')

    stored = store.recent_journal(1)[0]
    assert (stored.topic, stored.content, stored.intent) == ('git', 'Committed the fix', 'track progress')


def test_journal_entries_never_change(store):
    original = store.append_journal('work', 'first')
    for i in range(3):
        store.append_journal('work', f'later {i}')

    entries = {entry.id: entry for entry in store.recent_journal(10)}
    assert entries[original.id] == original
    assert not hasattr(store, 'update_journal')
    assert not hasattr(store, 'delete_journal')


def test_recent_journal_non_positive_limit(store):
    store.append_journal('work', 'x')
    assert store.recent_journal(0) == []


def test_owners_have_separate_databases(tmp_path):
    store_config = StoreConfig(data_dir=str(tmp_path), database_url=None)
    alice = EntityStore(MemoryDatabase(resolve_database_url('alice', store_config)))
    bob = EntityStore(MemoryDatabase(resolve_database_url('bob', store_config)))

    alice.upsert('today', 'today', 'Alice plans')
    assert bob.get('today', 'today') is None
    assert (tmp_path / 'alice' / 'memory.db').exists()


def test_database_url_owner_placeholder(tmp_path):
    store_config = StoreConfig(data_dir=str(tmp_path), database_url='sqlite:///' + str(tmp_path) + '/{owner}.db')
    assert resolve_database_url('a/b', store_config).endswith('a~2Fb.db')


def test_in_memory_database_shares_one_connection():
    store = EntityStore(MemoryDatabase('sqlite://'))
    store.upsert('identity', 'identity', 'I am an agent')
    assert store.get('identity', 'identity').content == 'I am an agent'
