import json

from .conftest import text_response


def test_first_run_returns_onboarding(tools):
    assert tools.get_context('alice').startswith('# First Run - Onboarding Needed')


def test_today_document_scenario(tools, registry, fake_opensearch):
    assert tools.write_state('alice', 'today', 'today', 'Focus: release 2.0') == 'Updated today: today'

    assert tools.read_state('alice', 'today', 'today') == '# today\n\nFocus: release 2.0'
    assert fake_opensearch.documents('memory')['state-today-today']['content'] == 'Focus: release 2.0'

    tools.write_state('alice', 'identity', 'identity', 'I am Mac')
    context = tools.get_context('alice')
    assert '## Today\nFocus: release 2.0' in context
    assert '## User\nNo user profile yet.' in context


def test_git_journal_scenario(tools):
    assert tools.log_journal('alice', 'git', 'Merged feature/login into main', intent='track') == \
        'Journal entry saved: git'

    recent = tools.get_recent_journal('alice', 5)
    assert 'git: Merged feature/login into main' in recent

    found = tools.search_memory('alice', 'merged login', type='journal')
    assert found.startswith('[journal] (')
    assert 'Merged feature/login into main' in found


def test_end_of_day_schedule_scenario(tools):
    reply = tools.schedule_recurring('alice', 'eod', '0 18 * * 1-5', 'End of day review', 'reflect')
    assert reply == 'Scheduled recurring task "End of day review" with cron: 0 18 * * 1-5'

    listed = tools.list_schedules('alice')
    assert '**eod**: End of day review' in listed
    assert 'cron: 0 18 * * 1-5' in listed

    assert tools.cancel_schedule('alice', 'eod') == 'Cancelled schedule: eod'
    assert tools.list_schedules('alice') == 'No scheduled tasks.'
    assert tools.cancel_schedule('alice', 'eod') == 'Schedule not found: eod'


def test_schedule_payload_defaults_to_description(tools, registry):
    tools.schedule_once('alice', 'ping', '2030-01-01T09:00:00', 'Check the release', 'briefing')
    assert registry.get('alice').schedules.get('ping').payload == 'Check the release'


def test_invalid_schedule_is_a_message(tools):
    assert tools.schedule_recurring('alice', 'bad', 'every day', 'x', 'reflect').startswith('Invalid schedule:')


def test_invalid_state_type_is_a_message(tools):
    assert tools.write_state('alice', 'secret', 'x', 'y').startswith('Invalid request:')


def test_missing_state_is_a_message(tools):
    assert tools.read_state('alice', 'topic', 'nothing') == 'State file not found: topic/nothing'


def test_desync_is_reported_but_write_stands(tools, fake_embed):
    fake_embed.fail = True
    reply = tools.write_state('alice', 'topic', 'go', 'Goroutines')

    assert 'failed to update the search index' in reply
    fake_embed.fail = False
    assert tools.read_state('alice', 'topic', 'go') == '# go\n\nGoroutines'


def test_search_failure_is_a_message(tools, fake_opensearch):
    fake_opensearch.fail = True
    assert tools.search_memory('alice', 'anything').startswith('Memory search failed:')


def test_topics_and_states_listing(tools):
    assert tools.list_topics('alice') == 'No topics yet.'
    tools.write_state('alice', 'topic', 'python', 'x')
    tools.write_state('alice', 'topic', 'go', 'y')

    assert tools.list_topics('alice') == '## Topics\n\n- go\n- python'
    assert '- python (updated ' in tools.list_states('alice', 'topic')


def test_conversation_summary(tools, fake_opensearch):
    assert tools.save_conversation_summary('alice', 'Planned the migration', ['use alembic']) == \
        'Conversation summary saved.'
    summaries = [d for d in fake_opensearch.documents('memory').values() if d['type'] == 'summary']
    assert len(summaries) == 1


def test_conversation_search_and_expand(tools, app_config):
    project = app_config.conversations.projects_dir + '/-work-app'
    import os
    os.makedirs(project)
    session = os.path.join(project, 's1.jsonl')
    records = [
        {'type': 'user', 'uuid': 'A', 'sessionId': 's1', 'cwd': '/work/app', 'timestamp': '2025-01-01T00:00:00Z',
         'message': {'role': 'user', 'content': 'fix flaky login test'}},
        {'type': 'assistant', 'uuid': 'B', 'sessionId': 's1', 'timestamp': '2025-01-01T00:00:01Z',
         'message': {'role': 'assistant', 'content': [{'type': 'text', 'text': 'Added a retry'}]}},
    ]
    with open(session, 'w', encoding='utf-8') as f:
        f.write('\n'.join(json.dumps(r) for r in records))

    assert tools.search_conversations('alice', 'login test') == 'No matching conversations found.'
    assert tools.rebuild_conversation_index('alice').startswith('Indexed 1 exchanges from 1 files')

    found = tools.search_conversations('alice', 'flaky login', current_project_path='/work/app')
    assert 'User: fix flaky login test' in found
    assert 'Assistant: Added a retry' in found

    expanded = tools.expand_conversation('alice', session, 'A')
    assert expanded.startswith('## app')
    assert 'Added a retry' in expanded
    assert tools.expand_conversation('alice', session + '.gone', 'A').startswith('Session file not found')


def test_refine_runs_background_agent(tools, fake_llm):
    fake_llm.responses.append(text_response('Nothing to clean.'))
    assert tools.refine('alice', 'cleanup') == '## Refinement: cleanup\n\nNothing to clean.'
    assert tools.refine('alice', 'dance').startswith("Unknown refine task 'dance'")


def test_external_tools_without_connections(tools):
    assert tools.list_external_mcps('alice') == 'No external MCPs connected.'
    assert tools.list_external_tools('alice', 'github').startswith('MCP "github" not found')
    assert tools.call_external_tool('alice', 'github', 'search').startswith('MCP "github" not found')


def test_external_tools_listing(tools, app_config):
    import os
    owner_path = os.path.join(app_config.store.data_dir, 'alice')
    os.makedirs(owner_path, exist_ok=True)
    with open(os.path.join(owner_path, 'mcps.json'), 'w', encoding='utf-8') as f:
        json.dump([{'name': 'github', 'endpoint': 'https://gh.example.com', 'accessToken': 't'}], f)

    assert tools.list_external_mcps('alice') == '## Connected MCPs\n\n- **github**: https://gh.example.com'


def test_owners_are_isolated(tools):
    tools.write_state('alice', 'today', 'today', 'Alice day')
    assert tools.read_state('bob', 'today', 'today') == 'State file not found: today/today'
    assert tools.search_memory('bob', 'Alice day') == 'No relevant memories found.'


def test_owners_with_the_same_document_keep_their_own_copy(tools, fake_opensearch):
    tools.write_state('alice', 'today', 'today', 'Alice ships the release')
    tools.write_state('bob', 'today', 'today', 'Bob fixes the flaky test')

    assert fake_opensearch.documents('memory', owner_id='alice')['state-today-today']['content'] == \
        'Alice ships the release'
    assert 'Alice ships the release' in tools.search_memory('alice', 'ships release', type='today')
    assert 'Bob fixes the flaky test' in tools.search_memory('bob', 'flaky test', type='today')
