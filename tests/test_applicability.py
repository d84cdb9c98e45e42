from __future__ import annotations

from app.applicability import FALLBACK_MARKER, UNIVERSAL_SENTINEL, ApplicableTypes, applies


def test_universal_sentinel_applies_to_every_type():
    declared = ApplicableTypes.universal()
    assert applies(declared, "lease")
    assert applies(declared, "purchase")
    assert declared.as_list() == [UNIVERSAL_SENTINEL]


def test_fallback_marker_applies_to_every_type():
    declared = ApplicableTypes.fallback()
    assert applies(declared, "lease")
    assert declared.is_fallback
    assert declared.as_list() == [FALLBACK_MARKER]


def test_concrete_types_match_exactly_and_case_sensitively():
    declared = ApplicableTypes.of(["lease", "service"])
    assert applies(declared, "lease")
    assert not applies(declared, "Lease")
    assert not applies(declared, "purchase")


def test_empty_declaration_applies_to_nothing():
    declared = ApplicableTypes.of([])
    assert declared.is_empty
    assert not applies(declared, "lease")
    assert not applies(declared, "")


def test_of_strips_blanks_and_duplicates_preserving_order():
    declared = ApplicableTypes.of([" lease", "service", "lease", "  "])
    assert declared.values == ("lease", "service")
    assert ApplicableTypes.of("payment").values == ("payment",)
    assert declared.concrete_values == ("lease", "service")
