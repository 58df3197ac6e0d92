"""Unit tests for cache key derivation."""

from aha_smt.cache import get_cache_key


class TestGetCacheKey:

    def test_same_inputs_produce_same_key(self):
        url = "https://example.com/api/test"
        params = {"foo": "bar", "baz": "qux"}

        assert get_cache_key(url, params) == get_cache_key(url, params)

    def test_parameter_order_does_not_matter(self):
        url = "https://example.com/api/test"

        assert get_cache_key(url, {"a": 1, "b": 2}) == get_cache_key(url, {"b": 2, "a": 1})
        assert get_cache_key(url, {"a": "1", "b": "2", "c": "3"}) == get_cache_key(
            url, {"c": "3", "a": "1", "b": "2"}
        )

    def test_different_values_produce_different_keys(self):
        url = "https://example.com/api/test"

        assert get_cache_key(url, {"a": 1}) != get_cache_key(url, {"a": 2})

    def test_different_urls_produce_different_keys(self):
        params = {"foo": "bar"}

        assert get_cache_key("https://example.com/api/test1", params) != get_cache_key(
            "https://example.com/api/test2", params
        )

    def test_empty_params_is_the_url(self):
        url = "https://example.com/api/test"

        assert get_cache_key(url) == url
        assert get_cache_key(url, {}) == url
        assert get_cache_key(url, None) == url

    def test_missing_params_differs_from_present_params(self):
        url = "https://example.com/api/test"

        assert get_cache_key(url) != get_cache_key(url, {"foo": "bar"})

    def test_key_embeds_resource_path(self):
        key = get_cache_key("https://x/api/v1/releases/123/features", {"page": "1"})

        assert "/releases/123/features" in key

    def test_release_features_scenario(self):
        url = "https://x/api/v1/releases/123/features"
        params = {"fields": "id,name,score", "per_page": "200"}

        first = get_cache_key(url, params)
        second = get_cache_key(url, dict(params))
        smaller_pages = get_cache_key(url, {"fields": "id,name,score", "per_page": "100"})

        assert first == second
        assert first != smaller_pages
