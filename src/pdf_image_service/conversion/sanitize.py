import re

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")
_SEPARATORS = re.compile(r"[/\\]")


def sanitize_filename(raw_name: str, extension: str = ".pdf", fallback: str = "uploaded_file.pdf") -> str:
    """Reduce an untrusted name to ``[A-Za-z0-9._-]+`` ending in ``extension``.

    Directory components are dropped (both separators, so Windows-style names
    from browsers are handled too). Names that try to climb directories, and
    degenerate results (nothing left, only dots, or only the extension), yield
    ``fallback``.
    """
    parts = _SEPARATORS.split(raw_name or "")
    name = _UNSAFE.sub("", parts[-1])
    if ".." in parts or not name.strip(".") or name.lower() == extension.lower():
        name = fallback
    if not name.lower().endswith(extension.lower()):
        name += extension
    return name
