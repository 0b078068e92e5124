from datetime import date

import pytest

from casekeeper.core.case_ids import format_case_id

DAY = date(2025, 3, 7)


@pytest.mark.parametrize(
    "fmt,template,expected",
    [
        ("YYMMDD-NUM", "", "250307-12"),
        ("YYYY-MM-NUM", "", "2025-03-12"),
        ("CUSTOM", "", "CASE-2025-12"),
        ("CUSTOM", "[DD]/[MM]/[YY]-[NUM]", "07/03/25-12"),
        ("CUSTOM", "[NUM]-[NUM]", "12-[NUM]"),
        ("SOMETHING-ELSE", "", "250307-12"),
    ],
)
def test_format_case_id(fmt, template, expected):
    assert format_case_id(fmt, 12, today=DAY, custom_template=template) == expected
