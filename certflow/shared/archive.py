from __future__ import annotations

import io
import zipfile
from typing import Iterable

# Fixed entry timestamp so identical entries always give identical bytes.
_ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def build_archive(entries: Iterable[tuple[str, bytes]]) -> bytes:
    """Bundle ``(filename, payload)`` pairs, in order, into one ZIP blob.

    Names are not de-duplicated; a repeated name produces a second entry
    with the same name and extractors keep the last one.
    """

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for filename, payload in entries:
            info = zipfile.ZipInfo(filename, date_time=_ENTRY_DATE_TIME)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = 0o644 << 16
            archive.writestr(info, payload)
    return buffer.getvalue()
