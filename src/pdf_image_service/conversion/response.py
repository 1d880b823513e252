import time

from .interfaces import ConversionResult, OutputMode


def assemble(result: ConversionResult, *, base_url: str, label_key: str, label: str) -> dict[str, object]:
    """Build the success payload for a finished conversion.

    ``label_key`` is ``original_name`` for uploads and ``source_url`` for fetched documents.
    """
    if result.mode is OutputMode.INLINE_BASE64:
        images = list(result.images)
    else:
        prefix = f"{base_url.rstrip('/')}/download/"
        images = [prefix + name for name in result.images]
    return {
        "success": True,
        label_key: label,
        "pages": result.pages,
        "images": images,
        "output_type": result.mode.value,
        "timestamp": int(time.time()),
    }
