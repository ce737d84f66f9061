import enum


class FormatClass(str, enum.Enum):
    PAGED_DOCUMENT = "paged_document"
    CONVERTIBLE_DOCUMENT = "convertible_document"
    IMAGE = "image"
    UNKNOWN = "unknown"


_SUFFIXES: dict[str, FormatClass] = {
    ".pdf": FormatClass.PAGED_DOCUMENT,
    ".doc": FormatClass.CONVERTIBLE_DOCUMENT,
    ".docx": FormatClass.CONVERTIBLE_DOCUMENT,
    ".jpg": FormatClass.IMAGE,
    ".jpeg": FormatClass.IMAGE,
    ".png": FormatClass.IMAGE,
    ".gif": FormatClass.IMAGE,
}


def classify(display_name: str) -> FormatClass:
    """Map a display name to its preview format by case-insensitive suffix."""
    name = (display_name or "").strip()
    if "." not in name:
        return FormatClass.UNKNOWN
    # keep the last suffix only
    suffix = "." + name.rsplit(".", 1)[-1].lower()
    return _SUFFIXES.get(suffix, FormatClass.UNKNOWN)
