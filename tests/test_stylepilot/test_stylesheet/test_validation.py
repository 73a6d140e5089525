from __future__ import annotations

from stylepilot.stylesheet import check_css, extract_addressable_classes


class TestExtractAddressableClasses:
    def test_finds_prefixed_classes_in_order(self) -> None:
        css = ".portal-hdr { color: red } .other {} .portal-nav:hover, .portal-hdr p {}"
        assert extract_addressable_classes(css) == ["portal-hdr", "portal-nav"]

    def test_custom_prefix(self) -> None:
        assert extract_addressable_classes(".x-card{} .portal-a{}", prefix="x-") == ["x-card"]


class TestCheckCss:
    def test_clean_css(self) -> None:
        assert check_css(".portal-hdr { color: red; }") == []

    def test_missing_braces(self) -> None:
        warnings = check_css(".portal-hdr color: red")
        assert "CSS appears to be malformed (missing braces)" in warnings

    def test_unbalanced(self) -> None:
        assert "Unbalanced CSS braces" in check_css(".portal-a { .portal-b { }")

    def test_no_addressable_selectors(self) -> None:
        warnings = check_css(".card { color: red; }")
        assert warnings == ["CSS does not target any portal-* classes"]
