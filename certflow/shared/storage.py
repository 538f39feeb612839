import os
import tempfile


def resolve_output_path(out: str, default_name: str) -> str:
    """Return the file to write for ``--out``.

    An existing directory (or a path ending in a separator) receives
    ``default_name`` inside it; anything else is taken as the file path.
    """
    if out.endswith(os.sep) or os.path.isdir(out):
        return os.path.join(out, default_name)
    return out


def write_atomic(path: str, data: bytes) -> str:
    """Write ``data`` beside ``path`` then rename over it; returns the path.

    Readers never observe a half-written archive.
    """
    dir_path = os.path.dirname(os.path.abspath(path))
    os.makedirs(dir_path, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=dir_path, suffix=".part")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
    return path
