"""Tests for diff line mapping, the basis of every inline comment's placement."""

from prloop_core.utils.diff import build_line_map, compute_valid_lines, extract_snippet, iter_new_lines

ADDITION_PATCH = "@@ -10,4 +10,6 @@\n const a = 1;\n+const b = 2;\n+const c = 3;\n const d = 4;\n const e = 5;"
DELETION_PATCH = "@@ -5,4 +5,3 @@\n keep\n-removed\n also keep\n end"


def test_added_and_context_lines_are_valid():
    assert compute_valid_lines(ADDITION_PATCH) == {10, 11, 12, 13, 14}


def test_deleted_lines_do_not_consume_a_line_number():
    assert compute_valid_lines(DELETION_PATCH) == {5, 6, 7}


def test_cursor_resets_at_each_hunk():
    patch = """\
@@ -1,2 +1,3 @@
 context a
+added in hunk 1
 context b
@@ -20,2 +21,3 @@
 context c
+added in hunk 2
 context d"""
    assert compute_valid_lines(patch) == {1, 2, 3, 21, 22, 23}


def test_hunk_header_without_counts():
    assert compute_valid_lines("@@ -1 +1 @@\n-old\n+new") == {1}


def test_no_newline_marker_is_ignored():
    patch = "@@ -1,1 +1,2 @@\n first\n+second\n\\ No newline at end of file"
    assert compute_valid_lines(patch) == {1, 2}


def test_trailing_newline_adds_no_line():
    assert compute_valid_lines(ADDITION_PATCH + "\n") == {10, 11, 12, 13, 14}


def test_lines_before_first_hunk_are_ignored():
    patch = "diff --git a/x b/x\n+++ b/x\n@@ -3,1 +3,1 @@\n same"
    assert compute_valid_lines(patch) == {3}


def test_pure_deletion_hunk_has_no_valid_lines():
    assert compute_valid_lines("@@ -1,2 +0,0 @@\n-gone\n-also gone") == set()


def test_empty_or_missing_patch():
    assert compute_valid_lines("") == set()
    assert compute_valid_lines(None) == set()
    assert list(iter_new_lines(None)) == []


def test_line_map_strips_plus_marker_only():
    line_map = build_line_map(ADDITION_PATCH)
    assert line_map[11].text == "const b = 2;"
    assert line_map[10].text == " const a = 1;"


class TestExtractSnippet:
    def test_window_of_three_lines(self):
        assert extract_snippet(ADDITION_PATCH, 12) == "const b = 2;\nconst c = 3;\n const d = 4;"

    def test_first_mapped_line_clips_window(self):
        assert extract_snippet(ADDITION_PATCH, 10) == " const a = 1;\nconst b = 2;"

    def test_last_mapped_line_clips_window(self):
        assert extract_snippet(ADDITION_PATCH, 14) == " const d = 4;\n const e = 5;"

    def test_unmapped_line_returns_none(self):
        assert extract_snippet(ADDITION_PATCH, 99) is None
        assert extract_snippet(None, 10) is None

    def test_snippet_skips_deleted_lines(self):
        assert extract_snippet(DELETION_PATCH, 6) == " keep\n also keep\n end"

    def test_snippet_defined_exactly_on_valid_lines(self):
        valid = compute_valid_lines(DELETION_PATCH)
        for line in range(1, 12):
            snippet = extract_snippet(DELETION_PATCH, line)
            assert (snippet is not None) == (line in valid)
            if snippet is not None:
                assert len(snippet.split("\n")) <= 3
