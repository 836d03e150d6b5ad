"""
Unit tests for link canonicalization.

The canonical link is the exact duplicate key, so these rules decide which
feed items collapse into one article.
"""

from app.services.url_normalizer import normalize_url


class TestNormalizeUrl:
    """Tests for normalize_url function."""

    def test_basic_url_unchanged(self):
        url = "https://example.com/article/123"
        assert normalize_url(url) == "https://example.com/article/123"

    def test_http_converted_to_https(self):
        assert normalize_url("http://example.com/article") == "https://example.com/article"

    def test_www_removed(self):
        assert normalize_url("https://www.example.com/article") == "https://example.com/article"

    def test_trailing_slashes_removed(self):
        assert normalize_url("https://example.com/article///") == "https://example.com/article"

    def test_host_lowercased_path_case_kept(self):
        """Hosts are case-insensitive; paths are not."""
        url = "HTTPS://EXAMPLE.COM/News/Article-ABC"
        assert normalize_url(url) == "https://example.com/News/Article-ABC"

    def test_utm_params_removed(self):
        url = "https://example.com/article?utm_source=twitter&utm_medium=social&utm_id=7"
        assert normalize_url(url) == "https://example.com/article"

    def test_click_ids_removed(self):
        url = "https://example.com/article?fbclid=abc123&gclid=xyz"
        assert normalize_url(url) == "https://example.com/article"

    def test_article_id_preserved_in_order(self):
        url = "https://example.com/story?id=12345&page=2"
        assert normalize_url(url) == "https://example.com/story?id=12345&page=2"

    def test_combined_normalization(self):
        url = "http://www.EXAMPLE.com/article/?utm_source=rss&id=123&fbclid=xyz"
        assert normalize_url(url) == "https://example.com/article?id=123"

    def test_fragment_removed(self):
        assert normalize_url("https://example.com/article#section1") == "https://example.com/article"

    def test_empty_url_returns_empty(self):
        assert normalize_url("") == ""
        assert normalize_url(None) == ""

    def test_relative_url_returned_stripped(self):
        """Links without a host cannot be canonicalized and are kept as given."""
        assert normalize_url("  /relative/path ") == "/relative/path"

    def test_root_url(self):
        assert normalize_url("https://example.com/") == "https://example.com"

    def test_variants_share_one_key(self):
        variants = [
            "http://www.example.com/story/42/",
            "https://example.com/story/42?utm_campaign=weekly",
            "https://EXAMPLE.com/story/42#comments",
        ]
        assert len({normalize_url(v) for v in variants}) == 1
