"""Case id minting from the counter and the configured id format."""

from __future__ import annotations

from datetime import date

__all__ = ["format_case_id", "SUPPORTED_FORMATS", "DEFAULT_CUSTOM_TEMPLATE"]

SUPPORTED_FORMATS = ("YYMMDD-NUM", "YYYY-MM-NUM", "CUSTOM")
DEFAULT_CUSTOM_TEMPLATE = "CASE-[YYYY]-[NUM]"


def format_case_id(
    fmt: str,
    counter: int,
    *,
    today: date | None = None,
    custom_template: str = "",
) -> str:
    """Return the case id for ``counter`` on ``today``.

    Unknown formats fall back to ``YYMMDD-NUM``.  In ``CUSTOM`` templates each
    placeholder is substituted once, first occurrence only.
    """
    today = today or date.today()
    yyyy = f"{today.year:04d}"
    mm = f"{today.month:02d}"
    dd = f"{today.day:02d}"

    if fmt == "YYYY-MM-NUM":
        return f"{yyyy}-{mm}-{counter}"
    if fmt == "CUSTOM":
        result = custom_template or DEFAULT_CUSTOM_TEMPLATE
        for placeholder, value in (
            ("[YYYY]", yyyy),
            ("[YY]", yyyy[-2:]),
            ("[MM]", mm),
            ("[DD]", dd),
            ("[NUM]", str(counter)),
        ):
            result = result.replace(placeholder, value, 1)
        return result
    return f"{yyyy[-2:]}{mm}{dd}-{counter}"
