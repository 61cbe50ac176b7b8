from jsmonitor.analyzers.patterns import PatternMatcher


def _values(matches, category=None):
    return [m.value for m in matches if category is None or m.category == category]


def test_fetch_and_method_patterns():
    matcher = PatternMatcher()
    content = "fetch('/api/orders'); axios.post('/api/login', body); $.get('/legacy/list');"
    matches = list(matcher.scan(content))
    assert "/api/orders" in _values(matches, "fetch_patterns")
    method_matches = [m for m in matches if m.category == "http_method_patterns"]
    assert any(m.value == "/api/login" and m.method == "POST" for m in method_matches)


def test_combining_patterns_expose_both_parts():
    matcher = PatternMatcher()
    matches = [m for m in matcher.scan("var u = '/api/' + 'users';") if m.category == "dynamic_patterns"]
    assert any(m.parts == ("/api/", "users") for m in matches)


def test_custom_patterns_with_flags():
    matcher = PatternMatcher([{"pattern": r"SECRET_PATH\('([^']+)'\)", "flags": "i",
                               "description": "secret path helper"}])
    matches = [m for m in matcher.scan("secret_path('/hidden/route')") if m.category == "custom_patterns"]
    assert [m.value for m in matches] == ["/hidden/route"]
    assert matches[0].description == "secret path helper"


def test_invalid_custom_pattern_is_skipped():
    matcher = PatternMatcher([{"pattern": "([unclosed"}, {"pattern": "/ok/[a-z]+"}])
    assert len(matcher.compiled_custom) == 1


def test_scan_extra_patterns():
    matcher = PatternMatcher()
    extra = matcher.compile_custom([{"pattern": r"route=(/[a-z/]+)"}])
    values = _values(matcher.scan("route=/internal/panel", extra), "custom_patterns")
    assert values == ["/internal/panel"]
