def normalize_text(text: str) -> str:
    """Collapse whitespace for OCR-derived strings.

    Used by every format parser before storing text on `Word`/`Line` objects, so
    the renderer gets consistent spacing even when the markup carries
    indentation, line breaks or runs of blanks between words.
    """
    return " ".join(text.split())


def join_words(words: list[str]) -> str:
    """Join word texts into line text, skipping empty entries."""
    return " ".join(word for word in words if word)
