NON_CODE_EXTENSIONS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".webp",
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".otf",
    ".mp4",
    ".mp3",
    ".zip",
    ".tar",
    ".gz",
    ".jar",
    ".so",
    ".dll",
    ".exe",
    ".min.js",
    ".min.css",
    ".map",
    ".lock",  # e.g. poetry.lock, Cargo.lock
}

# Lockfiles whose names carry no .lock suffix.
NON_CODE_FILENAMES = {"package-lock.json", "pnpm-lock.yaml", "go.sum"}

LANGUAGES = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "csharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".swift": "swift",
    ".scala": "scala",
    ".sh": "bash",
    ".sql": "sql",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".json": "json",
    ".toml": "toml",
    ".md": "markdown",
}


def is_code_file(file_name: str) -> bool:
    lowered = file_name.lower()
    if lowered.rsplit("/", 1)[-1] in NON_CODE_FILENAMES:
        return False
    return not any(lowered.endswith(ext) for ext in NON_CODE_EXTENSIONS)


def detect_language(file_name: str) -> str:
    """Return a language name for a path (used as the code fence tag), or "" if unknown."""
    base = file_name.rsplit("/", 1)[-1].lower()
    if "." not in base:
        return ""
    return LANGUAGES.get("." + base.rsplit(".", 1)[-1], "")


def detect_languages(file_names: list[str]) -> list[str]:
    return sorted({lang for lang in (detect_language(f) for f in file_names) if lang})
