"""
Unit tests for the upload eligibility filter.
"""

from pushagent.agent.filter import PathFilter


class TestPathFilter:
    """Tests for PathFilter.accept."""

    def test_rejects_source_derivation(self):
        """Derivation ids ending in -source.drv are not uploaded."""
        path_filter = PathFilter()
        assert (
            path_filter.accept("/nix/store/abc-src", "/nix/store/xyz-hello-source.drv")
            is False
        )

    def test_accepts_regular_derivation(self):
        """Ordinary derivations are uploaded."""
        path_filter = PathFilter()
        assert path_filter.accept("/nix/store/abc-myapp-1.0", "myapp-1.0.drv") is True

    def test_rejects_temporary_derivation(self):
        """Anything with 'tmp' in the derivation id is skipped."""
        path_filter = PathFilter()
        assert path_filter.accept("/nix/store/abc-x", "/nix/store/q-tmpbuild.drv") is False

    def test_plain_pattern_is_suffix_match_on_path(self):
        """A pattern without glob characters matches as a suffix of the path."""
        path_filter = PathFilter(["-source"])

        assert path_filter.accept("/store/def-bar-source", "bar.drv") is False
        assert path_filter.accept("/store/abc-foo", "foo.drv") is True
        assert path_filter.accept("/store/source-foo", "foo.drv") is True

    def test_glob_pattern(self):
        """Glob patterns use fnmatch semantics on the whole string."""
        path_filter = PathFilter(["*-docs"])

        assert path_filter.accept("/store/abc-hello-docs", "hello.drv") is False
        assert path_filter.accept("/store/abc-hello-docs-extra", "hello.drv") is True

    def test_no_patterns_accepts_everything(self):
        """An empty pattern list never rejects."""
        path_filter = PathFilter([])
        assert path_filter.accept("/store/abc-tmp-source", "x-source.drv") is True

    def test_empty_patterns_ignored(self):
        """Blank patterns do not match everything."""
        path_filter = PathFilter(["", "-source.drv"])
        assert path_filter.accept("/store/abc-foo", "foo.drv") is True

    def test_malformed_pattern_fails_open(self):
        """A pattern that cannot be evaluated does not reject the path."""
        path_filter = PathFilter(["[unclosed"])
        assert path_filter.accept("/store/abc-foo", "foo.drv") is True

    def test_empty_derivation_id(self):
        """A missing derivation id is checked against the path only."""
        path_filter = PathFilter(["*-source.drv"])
        assert path_filter.accept("/store/abc-foo", "") is True

    def test_store_directory_is_not_matched(self):
        """Only the store name is matched, not the directory holding it."""
        path_filter = PathFilter(["*tmp*"])
        assert path_filter.accept("/tmp/store/abc-hello", "/tmp/store/x-hello.drv") is True
