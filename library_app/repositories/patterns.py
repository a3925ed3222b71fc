LIKE_ESCAPE = "\\"


def contains_pattern(term: str) -> str:
    """
    LIKE pattern matching ``term`` anywhere, with ``%`` and ``_`` in the
    term taken literally. Use together with ``escape=LIKE_ESCAPE``.
    """
    escaped = (
        term.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"
