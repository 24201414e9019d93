"""
Small utility tests for mapper statics:
- _cell_str
- _to_bool
"""

import math

from fibreid.mapper import DefaultMapper


def test_cell_str_variants():
    c = DefaultMapper._cell_str
    assert c(None) == ""
    assert c(math.nan) == ""
    assert c(12.0) == "12"
    assert c(0.52) == "0.52"
    assert c("  White ") == "White"
    assert c(7) == "7"


def test_to_bool_truth_table():
    b = DefaultMapper._to_bool
    for t in [1, 1.0, "1", "true", "TRUE", "Yes", "y", True]:
        assert b(t) is True
    for f in [0, 0.0, "0", "false", "no", "", None, math.nan, False]:
        assert b(f) is False


def test_yes_no():
    assert DefaultMapper._yes_no("Y") == "yes"
    assert DefaultMapper._yes_no(None) == "no"
