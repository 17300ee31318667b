"""Tests for the filesystem result cache."""

import json
import threading

import pytest

from research_pivot.data.cache import ResultCache, cache_key, normalize_query


class FakeTime:
    def __init__(self, t=1_000_000.0):
        self.t = t

    def __call__(self):
        return self.t


@pytest.fixture
def now():
    return FakeTime()


@pytest.fixture
def cache(tmp_path, settings, now):
    return ResultCache(root=str(tmp_path / "cache"), settings=settings, ttl_seconds=3600,
                       max_entries=10, now=now)


RESULT = {"primary_domain": "security", "complexity": "COMPLEX"}


class TestKeys:
    def test_normalization(self):
        assert normalize_query("  OSINT   Tools, for Threat-Intel! ") == "osint tools for threat intel"

    def test_equivalent_queries_share_a_key(self):
        assert cache_key("OSINT tools?") == cache_key("osint   TOOLS")
        assert cache_key("osint tools") != cache_key("osint tool")
        assert len(cache_key("x")) == 32


class TestGetSet:
    def test_round_trip(self, cache):
        assert cache.get("osint tools") is None
        assert cache.set("osint tools", RESULT) is True
        assert cache.get("OSINT Tools!") == RESULT
        assert cache.hits == 1
        assert cache.misses == 1

    def test_hits_persisted_on_entry(self, cache, tmp_path, settings, now):
        cache.set("osint tools", RESULT)
        cache.get("osint tools")
        cache.get("osint tools")
        reopened = ResultCache(root=str(tmp_path / "cache"), settings=settings, now=now)
        assert reopened.stats()["entry_hits"] == 2

    def test_concurrent_hits_all_persisted(self, cache):
        cache.set("osint tools", RESULT)

        def worker():
            for _ in range(25):
                assert cache.get("osint tools") == RESULT

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.hits == 200
        assert cache.stats()["entry_hits"] == 200

    def test_ttl_expiry_removes_entry(self, cache, now):
        cache.set("osint tools", RESULT)
        now.t += 3599
        assert cache.get("osint tools") == RESULT
        now.t += 1
        assert cache.get("osint tools") is None
        assert not (cache.entries_dir / f"{cache_key('osint tools')}.json").exists()

    def test_corrupt_entry_is_a_miss(self, cache):
        cache.set("osint tools", RESULT)
        path = cache.entries_dir / f"{cache_key('osint tools')}.json"
        path.write_text("{not json")
        assert cache.get("osint tools") is None
        assert cache.misses == 1

    def test_disabled_cache(self, tmp_path, settings):
        off = ResultCache(root=str(tmp_path / "off"), settings=settings.model_copy(update={"CACHE_ENABLED": False}))
        assert off.set("q", RESULT) is False
        assert off.get("q") is None

    def test_empty_query_ignored(self, cache):
        assert cache.set("   ", RESULT) is False
        assert cache.get("") is None


class TestBypass:
    @pytest.mark.parametrize("query", [
        "latest ransomware news",
        "What is the CURRENT state of OSINT?",
        "kubernetes security this week",
        "AI policy in 2026",
    ])
    def test_time_sensitive_queries_bypass(self, cache, query):
        assert cache.should_bypass(query)
        assert cache.set(query, RESULT) is False
        assert cache.get(query) is None
        assert cache.stats()["entries"] == 0

    @pytest.mark.parametrize("query", [
        "FY2025 vendor revenue for threat intel",
        "2025Q3 ransomware trends",
        "todays phishing campaigns",
    ])
    def test_keywords_embedded_in_words(self, cache, query):
        """Keywords match anywhere in the raw query, not only as whole words."""
        assert cache.should_bypass(query)
        assert cache.set(query, RESULT) is False
        assert cache.get(query) is None

    def test_custom_keywords(self, tmp_path, settings):
        cache = ResultCache(root=str(tmp_path / "c"), settings=settings, bypass_keywords=["Q4"])
        assert cache.should_bypass("q4 earnings")
        assert not cache.should_bypass("latest earnings")

    def test_bypass_counted(self, cache):
        cache.get("latest news")
        assert cache.stats()["bypassed"] == 1


class TestEviction:
    def test_evicts_least_recently_accessed(self, tmp_path, settings, now):
        cache = ResultCache(root=str(tmp_path / "c"), settings=settings, max_entries=3, now=now)
        for q in ("alpha", "beta", "gamma"):
            cache.set(q, {"q": q})
            now.t += 10
        # Touch alpha so beta becomes the oldest
        cache.get("alpha")
        now.t += 10

        cache.set("delta", {"q": "delta"})

        assert cache.get("beta") is None
        assert cache.get("alpha") == {"q": "alpha"}
        assert cache.get("delta") == {"q": "delta"}
        stats = cache.stats()
        assert stats["entries"] == 3
        assert stats["evictions"] == 1
        assert stats["total_evictions"] == 1

    def test_overwrite_does_not_evict(self, tmp_path, settings, now):
        cache = ResultCache(root=str(tmp_path / "c"), settings=settings, max_entries=2, now=now)
        cache.set("alpha", {"v": 1})
        cache.set("beta", {"v": 1})
        cache.set("alpha", {"v": 2})
        assert cache.stats()["entries"] == 2
        assert cache.evictions == 0
        assert cache.get("alpha") == {"v": 2}


class TestMaintenance:
    def test_stats(self, cache):
        cache.set("a", RESULT)
        cache.set("b", RESULT)
        cache.get("a")
        cache.get("missing")
        stats = cache.stats()
        assert stats["entries"] == 2
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["total_sets"] == 2
        assert stats["ttl_hours"] == 1.0
        persisted = json.loads(cache.stats_path.read_text())
        assert persisted["total_sets"] == 2

    def test_purge_expired(self, cache, now):
        cache.set("old", RESULT)
        now.t += 1800
        cache.set("new", RESULT)
        now.t += 1800
        assert cache.purge_expired() == 1
        assert cache.stats()["entries"] == 1

    def test_clear(self, cache):
        cache.set("a", RESULT)
        cache.get("a")
        assert cache.clear() == 1
        stats = cache.stats()
        assert stats["entries"] == 0
        assert stats["hits"] == 0
        assert stats["total_sets"] == 0
