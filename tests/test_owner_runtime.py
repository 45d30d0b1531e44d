import threading
import time

import pytest

from macrodata.services.database import owner_from_key, owner_key
from macrodata.services.owner_runtime import OwnerActor, OwnerRegistry


def test_actor_runs_work_in_arrival_order():
    actor = OwnerActor('alice')
    order = []

    def work(i):
        time.sleep(0.01 if i == 0 else 0)
        order.append(i)

    futures = [actor.submit(work, i) for i in range(5)]
    for future in futures:
        future.result(timeout=5)
    actor.shutdown()

    assert order == [0, 1, 2, 3, 4]


def test_actor_never_runs_two_operations_at_once():
    actor = OwnerActor('alice')
    active = []
    overlap = []
    lock = threading.Lock()

    def work():
        with lock:
            active.append(1)
            if len(active) > 1:
                overlap.append(True)
        time.sleep(0.005)
        with lock:
            active.pop()

    callers = [threading.Thread(target=actor.call, args=(work,)) for _ in range(8)]
    for caller in callers:
        caller.start()
    for caller in callers:
        caller.join(timeout=5)
    actor.shutdown()

    assert overlap == []


def test_nested_call_runs_inline():
    actor = OwnerActor('alice')
    assert actor.call(lambda: actor.call(lambda: 42)) == 42
    actor.shutdown()


def test_registry_caches_services_per_owner(registry):
    alice = registry.get('alice')
    assert registry.get('alice') is alice
    assert registry.get('bob') is not alice
    assert registry.get('bob').store is not alice.store


def test_registry_requires_owner(registry):
    with pytest.raises(ValueError):
        registry.get('  ')


@pytest.mark.parametrize('owner_id', ['alice', 'alice@corp', 'alice_corp', 'a/b', '..', 'émile', 'x~41'])
def test_owner_directory_names_are_reversible(owner_id):
    key = owner_key(owner_id)
    assert owner_from_key(key) == owner_id
    assert '/' not in key and not key.startswith('.')


def test_distinct_owners_never_share_a_directory():
    assert owner_key('alice@corp') != owner_key('alice_corp')


@pytest.mark.parametrize('name', ['.hidden', 'x~zz', 'x~4a', 'café'])
def test_foreign_directories_are_not_owners(name):
    assert owner_from_key(name) is None


def test_discovered_owner_keeps_real_id(registry, app_config, fake_embed, fake_opensearch, fake_llm):
    registry.get('alice@corp').writer.log_journal('git', 'Command: git commit -m fix')

    fresh = OwnerRegistry(app_config=app_config, embed=fake_embed, opensearch=fake_opensearch, llm=fake_llm)
    try:
        assert fresh.known_owners() == ['alice@corp']
        discovered = fresh.get('alice@corp')
        assert [m.topic for m in discovered.mirror.query('git commit', type_filter='journal')] == ['git']
        assert fresh.known_owners() == ['alice@corp']
    finally:
        fresh.shutdown()
