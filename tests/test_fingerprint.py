from jsmonitor.analyzers.fingerprint import Fingerprinter

CODE = """
import { api } from './api';
export const VERSION = 2;
function loadUsers(page) {
  return api.get('/users?page=' + page);
}
class Store extends Base {}
"""


def test_create_extracts_structure():
    fingerprint = Fingerprinter().create(CODE, "https://example.com/a.js")
    assert "function loadUsers(page)" in fingerprint.function_signatures
    assert "class Store extends Base" in fingerprint.function_signatures
    assert "import { api } from './api';" in fingerprint.import_export_statements
    assert fingerprint.code_length == len(CODE)


def test_normalize_ignores_comments_and_whitespace():
    fp = Fingerprinter()
    assert fp.normalize("a = 1; // note\n/* block */  b = 2;") == fp.normalize("a = 1;\n\n b = 2;")


def test_identical_code_scores_one():
    fp = Fingerprinter()
    score = fp.similarity(fp.create(CODE), fp.create(CODE))
    assert score.overall == 1.0
    assert score.content_match


def test_similarity_is_symmetric():
    fp = Fingerprinter()
    a = fp.create(CODE)
    b = fp.create(CODE + "\nfunction extra() { return 1; }\n")
    assert fp.similarity(a, b) == fp.similarity(b, a)


def test_empty_sets_score_zero():
    assert Fingerprinter.jaccard(set(), set()) == 0.0
