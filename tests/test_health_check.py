from macrodata.utils.health_check import check_health, format_health_status, get_health_status


def test_all_components_healthy(registry):
    registry.get('alice')
    status = get_health_status(registry)

    assert set(status) == {'bedrock_llm', 'bedrock_embed', 'opensearch', 'store'}
    assert all(component['healthy'] for component in status.values())
    assert check_health(registry) is True


def test_unhealthy_index_is_reported(registry, fake_opensearch):
    fake_opensearch.fail = True

    assert get_health_status(registry)['opensearch']['healthy'] is False
    assert check_health(registry) is False


def test_format_health_status():
    text = format_health_status({
        'opensearch': {'healthy': True, 'endpoint': 'search.example.com'},
        'bedrock_llm': {'healthy': False, 'error': 'throttled'},
    })
    assert text == '- opensearch: healthy (search.example.com)\n- bedrock_llm: unhealthy (throttled)'
