import posixpath
import re
from collections import Counter
from typing import Iterable, List, Optional

from config.models import ReviewConfig
from core.contracts.models import ChangedFile, DiffLine, FileStats, ParsedDiff, ReviewCandidate

LANGUAGE_MAP = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".cs": "csharp",
    ".cpp": "cpp",
    ".c": "c",
    ".h": "c",
    ".hpp": "cpp",
    ".php": "php",
    ".rb": "ruby",
    ".go": "go",
    ".rs": "rust",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".sh": "bash",
    ".bash": "bash",
    ".zsh": "bash",
    ".ps1": "powershell",
    ".sql": "sql",
    ".html": "html",
    ".css": "css",
    ".scss": "scss",
    ".sass": "sass",
    ".less": "less",
    ".vue": "vue",
    ".svelte": "svelte",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".xml": "xml",
    ".md": "markdown",
    ".dockerfile": "dockerfile",
    ".r": "r",
    ".m": "matlab",
    ".pl": "perl",
    ".lua": "lua",
    ".dart": "dart",
    ".elm": "elm",
    ".ex": "elixir",
    ".exs": "elixir",
    ".clj": "clojure",
    ".fs": "fsharp",
    ".vb": "vbnet",
    ".nim": "nim",
    ".zig": "zig",
}

# Basenames (matched by substring) that are worth reviewing despite an unknown extension.
SPECIAL_FILES = (
    "dockerfile",
    "makefile",
    "rakefile",
    "gemfile",
    "podfile",
    "package.json",
    "composer.json",
    "pom.xml",
    "build.gradle",
    "cargo.toml",
    "requirements.txt",
    "setup.py",
    "tsconfig.json",
    "eslintrc",
    "prettierrc",
    "gitignore",
    "gitattributes",
    "editorconfig",
)

BINARY_EXTENSIONS = frozenset([
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".webp",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".zip", ".tar", ".gz", ".rar", ".7z",
    ".exe", ".dll", ".so", ".dylib",
    ".bin", ".dat", ".db", ".sqlite",
    ".mp3", ".mp4", ".avi", ".mov", ".mkv",
    ".ttf", ".otf", ".woff", ".woff2",
    ".jar", ".war", ".ear",
])

# Generated bundles; a plain extension lookup only ever sees ".js" for these.
BUNDLE_SUFFIXES = (".min.js", ".bundle.js")

LANGUAGE_PRIORITIES = {
    "javascript": 15,
    "typescript": 15,
    "python": 12,
    "java": 12,
    "csharp": 12,
    "go": 10,
    "rust": 10,
    "php": 8,
    "ruby": 8,
}
DEFAULT_LANGUAGE_PRIORITY = 5

MAX_CHANGES = 1000

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,\d+)? \+(\d+)(?:,\d+)? @@")


def _extension(path: str) -> str:
    return posixpath.splitext(path)[1].lower()


def _basename(path: str) -> str:
    return posixpath.basename(path).lower()


def detect_language(path: str) -> str:
    """
    Detects the language of a file from its name.

    `Dockerfile` and `Makefile` are recognised by basename in any case; everything else
    goes through the extension table, with "text" for unknown extensions.
    """
    basename = _basename(path)
    if basename == "dockerfile":
        return "dockerfile"
    if basename == "makefile":
        return "makefile"
    return LANGUAGE_MAP.get(_extension(path), "text")


def is_code_file(path: str) -> bool:
    if _extension(path) in LANGUAGE_MAP:
        return True
    basename = _basename(path)
    return any(special in basename for special in SPECIAL_FILES)


def is_binary_file(path: str) -> bool:
    if _extension(path) in BINARY_EXTENSIONS:
        return True
    return path.lower().endswith(BUNDLE_SUFFIXES)


def glob_to_regex(pattern: str) -> str:
    """
    Translates a path glob into a regular expression.

    `*` and `?` never cross a `/`. `**` as a whole segment spans any number of
    directories, including none, so `**/*.test.js` matches `app.test.js`.
    """
    out: List[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if pattern.startswith("**", i) and (i == 0 or pattern[i - 1] == "/"):
            end = i + 2
            if end == n:
                out.append(".*")
                i = end
                continue
            if pattern[end] == "/":
                out.append("(?:[^/]*/)*")
                i = end + 1
                continue
        if c == "*":
            while i + 1 < n and pattern[i + 1] == "*":
                i += 1
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            close = pattern.find("]", i + 2)
            if close == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:close].replace("\\", "\\\\")
                if body[0] in "!^":
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = close
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


def matches_pattern(path: str, pattern: str) -> bool:
    """
    Glob match against the full path. A pattern without a slash is matched against
    the basename instead, so `*-lock.json` also catches `web/package-lock.json`.
    """
    if "/" not in pattern:
        return re.fullmatch(glob_to_regex(pattern), posixpath.basename(path)) is not None
    if re.fullmatch(glob_to_regex(pattern), path):
        return True
    # "dir/**" also matches the directory entry itself.
    if pattern.endswith("/**"):
        return path == pattern[:-3]
    return False


def calculate_priority(path: str, change_count: int, language: Optional[str] = None) -> int:
    """
    Scores a file for review ordering; higher is reviewed first.

    Every bonus applies independently, so a file under `src/auth/` collects both the
    source-tree and the security bonus.
    """
    if language is None:
        language = detect_language(path)
    lowered = path.lower()
    priority = 0

    if "src/" in lowered or "lib/" in lowered:
        priority += 20
    if "test" in lowered or "spec" in lowered:
        priority += 15
    if "config" in lowered or "package.json" in lowered:
        priority += 10
    if "auth" in lowered or "security" in lowered or "login" in lowered:
        priority += 25

    priority += LANGUAGE_PRIORITIES.get(language, DEFAULT_LANGUAGE_PRIORITY)

    if change_count > 100:
        priority += 10
    elif change_count > 50:
        priority += 5

    return priority


def parse_diff(patch: Optional[str]) -> ParsedDiff:
    """
    Splits a unified diff patch into added, removed and context lines.

    Added and context lines carry their line number in the new file, counted from the
    most recent hunk header. Removed lines have no position in the new file. File
    headers, "\\ No newline at end of file" markers and anything else unrecognised are
    skipped.
    """
    parsed = ParsedDiff()
    if not patch:
        return parsed

    current_line = 0
    for line in patch.split("\n"):
        if line.startswith("@@"):
            match = HUNK_HEADER.match(line)
            if match:
                current_line = int(match.group(2))
            continue

        if line.startswith("+") and not line.startswith("+++"):
            parsed.added.append(DiffLine(line=current_line, content=line[1:]))
            current_line += 1
        elif line.startswith("-") and not line.startswith("---"):
            parsed.removed.append(DiffLine(content=line[1:]))
        elif line.startswith(" "):
            parsed.context.append(DiffLine(line=current_line, content=line[1:]))
            current_line += 1

    return parsed


class FileSelector:
    """
    Decides which changed files are reviewed and in what order.

    Holds nothing but its (frozen) review configuration, so one instance can be
    shared between concurrent callers.
    """

    def __init__(self, config: ReviewConfig):
        self.config = config

    def should_review(self, file: ChangedFile) -> bool:
        if file.status == "removed":
            return False
        if is_binary_file(file.path):
            return False
        if any(matches_pattern(file.path, pattern) for pattern in self.config.exclude_patterns):
            return False
        if file.change_count > MAX_CHANGES:
            return False
        return is_code_file(file.path)

    def to_candidate(self, file: ChangedFile) -> ReviewCandidate:
        language = detect_language(file.path)
        fields = file.model_dump(include=set(ChangedFile.model_fields))
        return ReviewCandidate(
            **fields,
            language=language,
            priority=calculate_priority(file.path, file.change_count, language),
        )

    def select(self, files: Iterable[ChangedFile]) -> List[ReviewCandidate]:
        """
        Filters, annotates and ranks changed files.

        Args:
            files: Changed files in the order GitHub reported them.

        Returns:
            Eligible candidates by descending priority, at most `max_files` of them.
            Equal priorities keep their input order.
        """
        candidates = [self.to_candidate(f) for f in files if self.should_review(f)]
        candidates.sort(key=lambda c: c.priority, reverse=True)
        return candidates[: self.config.max_files]


def select_files(files: Iterable[ChangedFile], config: ReviewConfig) -> List[ReviewCandidate]:
    return FileSelector(config).select(files)


def file_stats(files: Iterable[ChangedFile]) -> FileStats:
    files = list(files)
    return FileStats(
        total=len(files),
        by_language=dict(Counter(detect_language(f.path) for f in files)),
        by_status=dict(Counter(f.status for f in files)),
        total_changes=sum(f.change_count for f in files),
    )
