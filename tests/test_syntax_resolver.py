from jsmonitor.analyzers.syntax_resolver import PLACEHOLDER, SyntaxResolver


def _by_category(result, category):
    return [c for c in result.candidates if c.category == category]


def test_resolves_fetch_through_variable():
    result = SyntaxResolver().resolve("const a = '/api/' + 'users';\nfetch(a);")
    assert not result.degraded
    calls = _by_category(result, "network_call_resolved")
    assert [(c.value, c.method, c.high_confidence) for c in calls] == [("/api/users", "FETCH", True)]
    assert calls[0].line == 2


def test_resolves_member_paths_from_object_literals():
    code = """
    const base = '/api';
    const cfg = { paths: { users: base + '/users' } };
    axios.get(cfg.paths.users);
    """
    calls = _by_category(SyntaxResolver().resolve(code), "network_call_resolved")
    assert [(c.value, c.method) for c in calls] == [("/api/users", "GET")]


def test_member_assignment_is_tracked():
    code = "var api = {}; api.root = '/v2'; api.items = api.root + '/items'; fetch(api.items);"
    calls = _by_category(SyntaxResolver().resolve(code), "network_call_resolved")
    assert [c.value for c in calls] == ["/v2/items"]


def test_unknown_template_expressions_become_placeholders():
    code = "fetch(`/api/items/${itemId}/detail`);"
    calls = _by_category(SyntaxResolver().resolve(code), "network_call_resolved")
    assert [c.value for c in calls] == [f"/api/items/{PLACEHOLDER}/detail"]


def test_literal_network_call():
    result = SyntaxResolver().resolve("$.post('/submit/form', data);")
    literal = _by_category(result, "network_call")
    assert [(c.value, c.method) for c in literal] == [("/submit/form", "POST")]


def test_unparseable_source_is_degraded():
    result = SyntaxResolver().resolve("function ( { ]]]")
    assert result.degraded
    assert result.candidates == []


def test_symbol_count():
    result = SyntaxResolver().resolve("const a = '/x'; const b = a + '/y'; let c = 1;")
    assert result.symbols == 3
