"""
Unit tests for content reduction and site profiles.
"""

import pytest

from core.errors import NoContentFound
from core.sites import parse_site_profiles
from pipeline.models import RawDocument
from pipeline.reducer import ContentReducer

LISTING_URL = "https://www.saramin.co.kr/zf_user/search?searchword=python"


@pytest.fixture
def reducer(profiles):
    return ContentReducer(profiles)


class TestContentReducer:
    """Selector, keyword and full-text strategies."""

    def test_site_selectors_yield_one_fragment_per_block(self, reducer, saramin_html):
        doc = RawDocument(LISTING_URL, "saramin", saramin_html)
        reduced = reducer.reduce(doc)

        assert reduced.strategy == "selector"
        assert not reduced.low_confidence
        assert len(reduced.fragments) == 3

        first = reduced.fragments[0].text
        assert first.startswith("=== Posting 1 ===")
        assert "Title: Backend Developer" in first
        assert "Company: Acme Corp" in first
        assert "Location: Seoul" in first
        assert "Link: https://www.saramin.co.kr/zf_user/jobs/relay/view?rec_idx=1" in first
        assert reduced.fragments[0].children

    def test_noise_is_removed(self, reducer, saramin_html):
        reduced = reducer.reduce(RawDocument(LISTING_URL, "saramin", saramin_html))
        combined = "\n".join(reduced.texts())

        for noise in ("Premium membership", "secret hidden", "screen reader junk", "tracking", "Copyright"):
            assert noise not in combined

    def test_site_alias_resolves_profile(self, reducer, saramin_html):
        reduced = reducer.reduce(RawDocument(LISTING_URL, "사람인", saramin_html))
        assert reduced.strategy == "selector"
        assert len(reduced.fragments) == 3

    def test_second_selector_set_used_when_first_misses(self, reducer):
        html = """
        <body>
          <div class="recruit_info"><a href="/view?idx=9">QA Engineer at Delta, Daejeon, full-time</a></div>
        </body>
        """
        reduced = reducer.reduce(RawDocument(LISTING_URL, "saramin", html))

        assert reduced.strategy == "selector"
        assert len(reduced.fragments) == 1
        assert "Link: https://www.saramin.co.kr/view?idx=9" in reduced.fragments[0].text

    def test_keyword_scan_when_no_selector_matches(self, reducer):
        text = ("We are hiring a data engineer to join our platform team in Berlin. "
                "You will build pipelines, apply by March 31st. Competitive salary offered.")
        html = f"<body><div><p>{text}</p></div><div><p>Unrelated short text</p></div></body>"

        reduced = reducer.reduce(RawDocument("https://careers.example.org/", "unknown-site", html))

        assert reduced.strategy == "keyword"
        assert len(reduced.fragments) == 1
        assert "hiring a data engineer" in reduced.fragments[0].text

    def test_full_text_fallback_is_low_confidence(self, reducer):
        html = "<body><p>Short page.</p><p>Nothing else.</p></body>"
        reduced = reducer.reduce(RawDocument("https://example.org/", "unknown-site", html))

        assert reduced.strategy == "fulltext"
        assert reduced.low_confidence
        assert reduced.fragments[0].text == "Short page.\nNothing else."
        assert len(reduced.fragments[0].children) == 2

    @pytest.mark.parametrize("html", ["", "   \n  ", "<html><head><script>x()</script></head><body></body></html>"])
    def test_empty_document_signals_no_content(self, reducer, html):
        with pytest.raises(NoContentFound):
            reducer.reduce(RawDocument("https://example.org/", "saramin", html))

    def test_html_mode_emits_cleaned_markup(self, profiles, saramin_html):
        reducer = ContentReducer(profiles, mode="html")
        reduced = reducer.reduce(RawDocument(LISTING_URL, "saramin", saramin_html))

        assert len(reduced.fragments) == 3
        assert reduced.fragments[0].text.startswith('<div class="item_recruit">')

    def test_block_cap(self):
        profiles = parse_site_profiles({
            "defaults": {"max_blocks": 2},
            "sites": {"tiny": {"selector_sets": [["li.job"]]}},
        })
        html = "<ul>" + "".join(f"<li class='job'>Position number {i} in Seoul office</li>" for i in range(5)) + "</ul>"

        reduced = ContentReducer(profiles).reduce(RawDocument("https://example.org/", "tiny", html))
        assert len(reduced.fragments) == 2

    def test_nested_matches_keep_outermost_block(self):
        profiles = parse_site_profiles({"sites": {"nest": {"selector_sets": [["div.card", "div.inner"]]}}})
        html = "<div class='card'><div class='inner'>Senior Engineer, Acme, Seoul, apply now</div></div>"

        reduced = ContentReducer(profiles).reduce(RawDocument("https://example.org/", "nest", html))
        assert len(reduced.fragments) == 1

    def test_invalid_mode_rejected(self, profiles):
        with pytest.raises(ValueError):
            ContentReducer(profiles, mode="pdf")


class TestReduceDetail:
    """Detail page reduction."""

    def test_main_region_preferred(self, reducer):
        html = """
        <body>
          <div class="promo">Other jobs you may like: lots of unrelated listing text here</div>
          <main>
            <h1>Backend Developer</h1>
            <p>Responsibilities: build and operate APIs</p>
            <p>Requirements: Python, PostgreSQL</p>
          </main>
        </body>
        """
        reduced = reducer.reduce_detail(RawDocument("https://example.org/job/1", "unknown", html))

        assert reduced.strategy == "detail"
        assert not reduced.low_confidence
        text = reduced.fragments[0].text
        assert "Requirements: Python, PostgreSQL" in text
        assert "Other jobs" not in text

    def test_falls_back_to_body(self, reducer):
        html = "<body><div><p>Benefits: remote work and a learning budget for everyone</p></div></body>"
        reduced = reducer.reduce_detail(RawDocument("https://example.org/job/1", "unknown", html))

        assert reduced.low_confidence
        assert "learning budget" in reduced.fragments[0].text

    def test_empty_detail_page(self, reducer):
        with pytest.raises(NoContentFound):
            reducer.reduce_detail(RawDocument("https://example.org/job/1", "unknown", ""))


class TestSiteProfiles:
    """Profile resolution from config/sites.yaml."""

    def test_resolve_by_id_alias_and_host(self, profiles):
        assert profiles.resolve("saramin").site_id == "saramin"
        assert profiles.resolve("원티드").site_id == "wanted"
        assert profiles.resolve(None, "https://www.jobkorea.co.kr/Search/?stext=python").site_id == "jobkorea"
        assert profiles.resolve("nope", "https://example.org").site_id == "default"

    def test_weights(self, profiles):
        assert profiles.weight_for("saramin") == pytest.approx(0.9)
        assert profiles.weight_for("wanted") == pytest.approx(0.85)
        assert profiles.weight_for("jumpit") == pytest.approx(0.8)
        assert profiles.weight_for("somewhere-else") == pytest.approx(0.7)

    def test_missing_file_uses_defaults(self, tmp_path):
        from core.sites import load_site_profiles

        profiles = load_site_profiles(tmp_path / "missing.yaml")
        assert profiles.resolve("saramin").site_id == "default"
        assert profiles.default.max_blocks == 30
