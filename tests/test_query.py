from zendesk_ticket_notifier.query import build_search_query, quote_search_value


def test_build_query_orders_fragments_and_quotes_delimiters():
    query = build_search_query("tags:x", ["a,b"], 7, [101, 102])
    assert query == 'tags:x tags:"a,b" group:7 custom_status_id:101 custom_status_id:102'


def test_tag_with_space_is_quoted_and_plain_tags_are_not():
    query = build_search_query("", ["needs review", "vip"], None, [])
    assert query == 'tags:"needs review",vip'


def test_quote_escapes_quote_and_backslash():
    assert quote_search_value('say "hi"') == '"say \\"hi\\""'
    assert quote_search_value("a\\b") == '"a\\\\b"'
    assert quote_search_value("key:value") == '"key:value"'
    assert quote_search_value("plain_tag") == "plain_tag"


def test_group_fragment_omitted_when_none():
    assert build_search_query("status<solved", [], None, [5]) == "status<solved custom_status_id:5"


def test_group_zero_is_kept():
    assert build_search_query("", [], 0, []) == "group:0"


def test_empty_inputs_build_empty_query():
    assert build_search_query("", [], None, []) == ""
    assert build_search_query("   ", ["", "  "], None, []) == ""


def test_base_query_is_trimmed():
    assert build_search_query("  type:ticket  ", [], 3, []) == "type:ticket group:3"
