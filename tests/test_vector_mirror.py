import pytest

from macrodata.services.memory_writer import MemoryWriter
from macrodata.services.vector_mirror import IndexDesyncError, VectorMirror, VectorMirrorError


def test_state_sync_shares_the_entity_id(store, mirror, fake_opensearch):
    writer = MemoryWriter(store, mirror)
    document = writer.write_state('topic', 'rust', 'Borrow checker notes')

    record = fake_opensearch.documents('memory')[document.id]
    assert record['owner_id'] == 'owner-1'
    assert record['type'] == 'topic'
    assert record['name'] == 'rust'
    assert record['content'] == 'Borrow checker notes'


def test_rewriting_state_replaces_its_vector(store, mirror, fake_opensearch):
    writer = MemoryWriter(store, mirror)
    writer.write_state('topic', 'rust', 'old')
    writer.write_state('topic', 'rust', 'new')

    records = fake_opensearch.documents('memory')
    assert len(records) == 1
    assert records['state-topic-rust']['content'] == 'new'


def test_query_filters_by_type(store, mirror):
    writer = MemoryWriter(store, mirror)
    writer.write_state('topic', 'deploy', 'deploy pipeline uses blue green')
    writer.log_journal('deploy', 'deploy pipeline failed on friday')

    journal_only = mirror.query('deploy pipeline', type_filter='journal')
    assert [match.type for match in journal_only] == ['journal']
    assert journal_only[0].topic == 'deploy'

    everything = mirror.query('deploy pipeline', type_filter='all')
    assert {match.type for match in everything} == {'topic', 'journal'}


def test_query_rejects_unknown_filter(mirror):
    with pytest.raises(ValueError):
        mirror.query('anything', type_filter='secrets')


def test_query_respects_limit(store, mirror):
    writer = MemoryWriter(store, mirror)
    for i in range(4):
        writer.log_journal('notes', f'note number {i}')
    assert len(mirror.query('note', limit=2)) == 2


def test_failed_sync_keeps_the_primary_write(store, mirror, fake_embed):
    writer = MemoryWriter(store, mirror)
    fake_embed.fail = True

    with pytest.raises(IndexDesyncError) as excinfo:
        writer.write_state('today', 'today', 'Ship the release')

    assert excinfo.value.entity_id == 'state-today-today'
    assert store.get('today', 'today').content == 'Ship the release'


def test_failed_journal_sync_keeps_the_entry(store, mirror, fake_opensearch):
    writer = MemoryWriter(store, mirror)
    fake_opensearch.fail = True

    with pytest.raises(IndexDesyncError):
        writer.log_journal('git', 'pushed main')
    assert store.recent_journal(1)[0].content == 'pushed main'


def test_query_failure_is_not_degraded(mirror, fake_opensearch):
    fake_opensearch.fail = True
    with pytest.raises(VectorMirrorError):
        mirror.query('anything')


def test_summary_lives_only_in_the_index(store, mirror, fake_opensearch):
    writer = MemoryWriter(store, mirror)
    summary = writer.save_summary('Paired on the indexer', key_decisions=['use generators'], open_threads=['tests'])

    assert summary.id.startswith('summary-')
    record = fake_opensearch.documents('memory')[summary.id]
    assert record['type'] == 'summary'
    assert record['content'] == 'Paired on the indexer\nDecisions: use generators\nOpen threads: tests'
    assert store.recent_journal(5) == []


def test_mirrors_are_partitioned_by_owner(store, fake_embed, fake_opensearch):
    mine = VectorMirror('me', embed=fake_embed, opensearch=fake_opensearch)
    theirs = VectorMirror('them', embed=fake_embed, opensearch=fake_opensearch)
    MemoryWriter(store, mine).log_journal('private', 'my secret plan')

    assert theirs.query('secret plan') == []
    assert len(mine.query('secret plan')) == 1
