import json
import threading

from jsmonitor.analyzers.change_detector import ChangeDetector

DOMAIN = "example.com"
URL = "https://example.com/static/app.js"


def test_lifecycle_new_unchanged_changed(store):
    detector = ChangeDetector(store, silent_mode=True)

    first = detector.classify(DOMAIN, URL, b"var a = 1;\nvar b = 2;\n")
    assert first.is_new and first.changed
    assert first.status == "new"
    assert first.preview == ["var a = 1;", "var b = 2;", ""]

    second = detector.classify(DOMAIN, URL, b"var a = 1;\nvar b = 2;\n")
    assert not second.is_new and not second.changed
    assert second.status == "unchanged"

    third = detector.classify(DOMAIN, URL, b"var a = 1;\nvar c = 3;\nvar b = 2;\n")
    assert third.status == "changed"
    assert third.diff_stats.added_lines == 1
    assert third.diff_stats.removed_lines == 0
    assert third.raw_sections[0].lines == ["var c = 3;"]
    assert store.read_hashes(DOMAIN)[URL] == third.content_hash


def test_change_writes_diff_and_new_code_documents(store):
    detector = ChangeDetector(store, silent_mode=True)
    detector.classify(DOMAIN, URL, "function a() {}\n")
    detector.classify(DOMAIN, URL, "function a() {}\nfunction b() { return '/api/b'; }\n")

    domain_dir = store.base_dir / DOMAIN
    diffs = list((domain_dir / "diffs").glob("*.json"))
    new_code = list((domain_dir / "new-code").glob("*.json"))
    assert len(diffs) == 1
    assert len(new_code) == 1
    document = json.loads(new_code[0].read_text())
    assert document["status"] == "changed"
    assert document["new_code_sections"]["raw"]


def test_save_diff_disabled(store):
    detector = ChangeDetector(store, save_diff=False, silent_mode=True)
    detector.classify(DOMAIN, URL, "a();\n")
    detector.classify(DOMAIN, URL, "a();\nb();\n")
    assert not list((store.base_dir / DOMAIN / "diffs").glob("*.json"))


def test_corrupt_hash_store_treats_file_as_new(store):
    domain_dir = store.base_dir / DOMAIN
    domain_dir.mkdir(parents=True)
    (domain_dir / "hashes.json").write_text("{corrupt")

    detector = ChangeDetector(store, silent_mode=True)
    result = detector.classify(DOMAIN, URL, "var a = 1;")
    assert result.is_new
    assert store.read_hashes(DOMAIN) == {URL: result.content_hash}


def test_missing_previous_content_diffs_against_empty(store):
    detector = ChangeDetector(store, silent_mode=True)
    store.write_hash(DOMAIN, URL, "stale")
    result = detector.classify(DOMAIN, URL, "one();\ntwo();")
    assert result.status == "changed"
    assert result.diff_stats.added_lines == 2
    assert result.raw_sections[0].lines == ["one();", "two();"]


def test_sections_are_truncated(store):
    detector = ChangeDetector(store, max_lines_per_section=3, silent_mode=True)
    sections, added, removed = detector.extract_new_code(
        "keep();", "keep();\n" + "\n".join(f"line{i}();" for i in range(6))
    )
    assert added == 6
    assert removed == 0
    assert len(sections) == 1
    assert sections[0].lines == ["line0();", "line1();", "line2();"]
    assert sections[0].truncated


def test_separate_insertions_give_separate_sections(store):
    detector = ChangeDetector(store, silent_mode=True)
    old = "\n".join(f"s{i}();" for i in range(10))
    new_lines = old.split("\n")
    new_lines.insert(1, "first();")
    new_lines.insert(9, "second();")
    sections, added, _ = detector.extract_new_code(old, "\n".join(new_lines))
    assert added == 2
    assert [s.lines for s in sections] == [["first();"], ["second();"]]


def test_removed_lines_are_reported(store):
    detector = ChangeDetector(store, silent_mode=True)
    sections, added, removed = detector.extract_new_code("a();\nold();\nb();", "a();\nnew();\nb();")
    assert (added, removed) == (1, 1)
    assert sections[0].removed == ["old();"]
    assert sections[0].lines == ["new();"]


def test_context_follows_removed_lines(store):
    detector = ChangeDetector(store, silent_mode=True)
    sections, _, removed = detector.extract_new_code(
        "a();\ngone();\nb();\nc();\nd();", "a();\nb();\nc();\nadded();\nd();"
    )
    assert removed == 1
    assert sections[0].removed == ["gone();"]
    assert sections[0].context == ["b();", "c();"]
    assert sections[0].lines == ["added();"]


def test_concurrent_classify_of_one_url_is_serialized(store):
    detector = ChangeDetector(store, silent_mode=True)
    payloads = [f"var build = {index};\n".encode() for index in range(8)]
    barrier = threading.Barrier(len(payloads))
    results = []

    def worker(data):
        barrier.wait()
        results.append(detector.classify(DOMAIN, URL, data))

    threads = [threading.Thread(target=worker, args=(data,)) for data in payloads]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(r.status for r in results) == ["changed"] * 7 + ["new"]
    assert store.read_hashes(DOMAIN)[URL] in {r.content_hash for r in results}
