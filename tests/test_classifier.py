import pytest

from doc_viewer.preview import FormatClass, classify


@pytest.mark.parametrize(
    "name, expected",
    [
        ("report.pdf", FormatClass.PAGED_DOCUMENT),
        ("REPORT.PDF", FormatClass.PAGED_DOCUMENT),
        ("thesis.docx", FormatClass.CONVERTIBLE_DOCUMENT),
        ("legacy.DOC", FormatClass.CONVERTIBLE_DOCUMENT),
        ("photo.jpg", FormatClass.IMAGE),
        ("photo.JPEG", FormatClass.IMAGE),
        ("scan.png", FormatClass.IMAGE),
        ("anim.gif", FormatClass.IMAGE),
        ("archive.zip", FormatClass.UNKNOWN),
        ("notes.pdf.txt", FormatClass.UNKNOWN),
        ("backup.docx.bak", FormatClass.UNKNOWN),
        ("README", FormatClass.UNKNOWN),
        ("", FormatClass.UNKNOWN),
    ],
)
def test_classify_by_suffix(name, expected):
    assert classify(name) is expected


def test_classify_is_deterministic():
    names = ["a.pdf", "b.docx", "c.png", "d.zip"]
    first = [classify(n) for n in names]
    assert [classify(n) for n in names] == first


def test_only_last_suffix_counts():
    assert classify("archive.zip.pdf") is FormatClass.PAGED_DOCUMENT
