"""Tests for file filtering and language detection utilities."""

from prloop_core.utils.code import detect_language, detect_languages, is_code_file


class TestIsCodeFile:
    def test_python_file_is_code(self):
        assert is_code_file("app/services/user.py") is True

    def test_tsx_file_is_code(self):
        assert is_code_file("src/components/Button.tsx") is True

    def test_image_is_not_code(self):
        assert is_code_file("assets/logo.png") is False

    def test_font_is_not_code(self):
        assert is_code_file("static/fonts/Inter.woff2") is False

    def test_archive_is_not_code(self):
        assert is_code_file("dist/bundle.tar.gz") is False

    def test_minified_bundle_is_not_code(self):
        assert is_code_file("public/app.min.js") is False

    def test_lock_files_are_not_code(self):
        assert is_code_file("poetry.lock") is False
        assert is_code_file("frontend/package-lock.json") is False
        assert is_code_file("go.sum") is False

    def test_case_insensitive(self):
        assert is_code_file("image.PNG") is False


class TestDetectLanguage:
    def test_known_extensions(self):
        assert detect_language("src/app.py") == "python"
        assert detect_language("web/index.tsx") == "typescript"
        assert detect_language("cmd/main.GO") == "go"

    def test_unknown_or_missing_extension(self):
        assert detect_language("Makefile") == ""
        assert detect_language("data.xyz") == ""

    def test_languages_are_unique_and_sorted(self):
        assert detect_languages(["b.py", "a.ts", "c.py", "README"]) == ["python", "typescript"]
