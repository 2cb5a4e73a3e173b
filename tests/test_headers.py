"""Tests for delivery/headers.py - response header synthesis."""

from unittest.mock import patch

from delivery.cache import Validator
from delivery.headers import build_headers, cache_control
from delivery.resource import Resource


class TestCacheControl:
    """Tests for cache_control."""

    def test_static_public(self):
        assert cache_control(Resource(static=True)) == "public"

    def test_dynamic_private(self):
        assert cache_control(Resource(static=False)) == "private"

    def test_max_age_appended(self):
        """expires adds a max-age clause."""
        assert cache_control(Resource(static=True, expires=3600)) == "public, max-age=3600"

    def test_zero_expires_still_emitted(self):
        """expires=0 is defined and therefore emitted."""
        assert cache_control(Resource(static=False, expires=0)) == "private, max-age=0"


class TestBuildHeaders:
    """Tests for build_headers."""

    def test_content_type_always_present(self):
        """Content-Type is set even for a bare resource."""
        head = build_headers(Resource())
        assert "Content-Type" in head

    def test_charset_only_for_dynamic(self, doc_root):
        """charset=utf-8 is appended iff the resource is not static."""
        dynamic = build_headers(Resource(type="text/html", static=False))
        static = build_headers(
            Resource(type="text/html", static=True, filename="index.html",
                     file_path=doc_root / "index.html")
        )
        assert dynamic["Content-Type"] == "text/html; charset=utf-8"
        assert static["Content-Type"] == "text/html"

    def test_content_encoding_when_set(self):
        assert build_headers(Resource(encoding="gzip"))["Content-Encoding"] == "gzip"

    def test_no_content_encoding_by_default(self):
        assert "Content-Encoding" not in build_headers(Resource())

    def test_static_validators(self, doc_root):
        """Static resources carry Last-Modified and Etag."""
        head = build_headers(
            Resource(type="text/html", static=True, filename="index.html",
                     file_path=doc_root / "index.html")
        )
        assert head["Last-Modified"].endswith("GMT")
        assert head["Etag"].startswith('"')

    def test_dynamic_has_no_validators(self):
        head = build_headers(Resource(static=False))
        assert "Last-Modified" not in head
        assert "Etag" not in head

    def test_missing_file_omits_validators(self, tmp_path):
        """Failed lookups drop their headers without failing."""
        head = build_headers(
            Resource(type="text/css", static=True, filename="gone.css",
                     file_path=tmp_path / "gone.css")
        )
        assert "Last-Modified" not in head
        assert "Etag" not in head
        assert head["Content-Type"] == "text/css"
        assert head["Cache-Control"] == "public"

    def test_each_validator_omitted_independently(self, doc_root):
        """A failing Etag lookup leaves Last-Modified in place."""
        resource = Resource(type="text/html", static=True, filename="index.html",
                            file_path=doc_root / "index.html")
        with patch("delivery.headers.compute_etag", return_value=Validator(error=OSError("boom"))):
            head = build_headers(resource)
        assert "Last-Modified" in head
        assert "Etag" not in head

    def test_sourcemap_in_dev_mode(self, doc_root):
        """Scripts get an x-sourcemap hint in dev mode."""
        resource = Resource(type="application/javascript", static=True, ext="js",
                            filename="app.js", file_path=doc_root / "scripts" / "app.js")
        head = build_headers(resource, dev_mode=True)
        assert head["x-sourcemap"] == "/scripts-maps/app.js.map"

    def test_no_sourcemap_outside_dev_mode(self, doc_root):
        resource = Resource(type="application/javascript", static=True, ext="js",
                            filename="app.js", file_path=doc_root / "scripts" / "app.js")
        assert "x-sourcemap" not in build_headers(resource, dev_mode=False)

    def test_no_sourcemap_for_non_scripts(self, doc_root):
        resource = Resource(type="text/css", static=True, ext="css",
                            filename="site.css", file_path=doc_root / "styles" / "site.css")
        assert "x-sourcemap" not in build_headers(resource, dev_mode=True)

    def test_disallowed_static_has_no_validators(self, doc_root):
        resource = Resource(type="text/html", static=True, allowed=False, filename="index.html",
                            file_path=doc_root / "index.html")
        head = build_headers(resource)
        assert "Last-Modified" not in head
        assert "Etag" not in head

    def test_missing_type_falls_back(self):
        """A cleared type still produces a Content-Type."""
        head = build_headers(Resource(type=None, static=True))
        assert head["Content-Type"] == "application/octet-stream"
