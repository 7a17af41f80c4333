"""Tests unitaires pour le module de cache Redis."""

from unittest.mock import AsyncMock, patch

import pytest

from app.core.cache import (
    _extract_key_prefix,
    cache_delete,
    cache_get,
    cache_key_hospital_analytics,
    cache_key_recent_activity,
    cache_key_system_analytics,
    cache_set,
)


class TestCacheKeyGeneration:
    """Tests pour les fonctions de generation de cles cache."""

    def test_cache_key_system_analytics(self):
        assert cache_key_system_analytics() == "admin:analytics:system"

    def test_cache_key_hospital_analytics(self):
        """Test generation cle analytique hopital."""
        assert cache_key_hospital_analytics("h-1") == "admin:hospital-analytics:h-1"

    def test_cache_key_recent_activity(self):
        assert cache_key_recent_activity() == "admin:activity:recent"

    def test_extract_key_prefix(self):
        assert _extract_key_prefix("admin:activity:recent") == "activity"
        assert _extract_key_prefix("nokey") == "unknown"


class TestCacheGet:
    """Tests pour cache_get()."""

    @pytest.mark.asyncio
    async def test_cache_get_hit(self):
        """Test cache hit retourne la valeur."""
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(return_value='{"total_users": 3}')

        with patch("app.core.cache._get_redis_client", return_value=mock_redis):
            with patch("app.core.cache.settings") as mock_settings:
                mock_settings.CACHE_ENABLED = True

                result = await cache_get("admin:analytics:system")

                assert result == '{"total_users": 3}'
                mock_redis.get.assert_called_once_with("admin:analytics:system")

    @pytest.mark.asyncio
    async def test_cache_get_miss(self):
        """Test cache miss retourne None."""
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(return_value=None)

        with patch("app.core.cache._get_redis_client", return_value=mock_redis):
            with patch("app.core.cache.settings") as mock_settings:
                mock_settings.CACHE_ENABLED = True

                assert await cache_get("admin:analytics:system") is None

    @pytest.mark.asyncio
    async def test_cache_get_disabled(self):
        """Test cache desactive ne touche pas Redis."""
        mock_redis = AsyncMock()

        with patch("app.core.cache._get_redis_client", return_value=mock_redis):
            with patch("app.core.cache.settings") as mock_settings:
                mock_settings.CACHE_ENABLED = False

                assert await cache_get("admin:analytics:system") is None
                mock_redis.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_cache_get_redis_not_initialized(self):
        with patch("app.core.cache._get_redis_client", return_value=None):
            with patch("app.core.cache.settings") as mock_settings:
                mock_settings.CACHE_ENABLED = True

                assert await cache_get("admin:analytics:system") is None

    @pytest.mark.asyncio
    async def test_cache_get_error_is_miss(self):
        """Test erreur Redis traitee comme un miss (graceful degradation)."""
        mock_redis = AsyncMock()
        mock_redis.get = AsyncMock(side_effect=ConnectionError("Redis down"))

        with patch("app.core.cache._get_redis_client", return_value=mock_redis):
            with patch("app.core.cache.settings") as mock_settings:
                mock_settings.CACHE_ENABLED = True

                assert await cache_get("admin:analytics:system") is None


class TestCacheSet:
    """Tests pour cache_set()."""

    @pytest.mark.asyncio
    async def test_cache_set_with_ttl(self):
        mock_redis = AsyncMock()

        with patch("app.core.cache._get_redis_client", return_value=mock_redis):
            with patch("app.core.cache.settings") as mock_settings:
                mock_settings.CACHE_ENABLED = True

                assert await cache_set("admin:analytics:system", "{}", ttl=60) is True
                mock_redis.set.assert_called_once_with("admin:analytics:system", "{}", ex=60)

    @pytest.mark.asyncio
    async def test_cache_set_default_ttl(self):
        """Test TTL par defaut depuis la configuration."""
        mock_redis = AsyncMock()

        with patch("app.core.cache._get_redis_client", return_value=mock_redis):
            with patch("app.core.cache.settings") as mock_settings:
                mock_settings.CACHE_ENABLED = True
                mock_settings.CACHE_TTL_DEFAULT = 300

                await cache_set("admin:activity:recent", "[]")
                mock_redis.set.assert_called_once_with("admin:activity:recent", "[]", ex=300)

    @pytest.mark.asyncio
    async def test_cache_set_error(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(side_effect=ConnectionError("Redis down"))

        with patch("app.core.cache._get_redis_client", return_value=mock_redis):
            with patch("app.core.cache.settings") as mock_settings:
                mock_settings.CACHE_ENABLED = True

                assert await cache_set("admin:activity:recent", "[]", ttl=10) is False


class TestCacheDelete:
    """Tests pour cache_delete()."""

    @pytest.mark.asyncio
    async def test_cache_delete(self):
        mock_redis = AsyncMock()

        with patch("app.core.cache._get_redis_client", return_value=mock_redis):
            with patch("app.core.cache.settings") as mock_settings:
                mock_settings.CACHE_ENABLED = True

                assert await cache_delete("admin:activity:recent") is True
                mock_redis.delete.assert_called_once_with("admin:activity:recent")

    @pytest.mark.asyncio
    async def test_cache_delete_error(self):
        mock_redis = AsyncMock()
        mock_redis.delete = AsyncMock(side_effect=ConnectionError("Redis down"))

        with patch("app.core.cache._get_redis_client", return_value=mock_redis):
            with patch("app.core.cache.settings") as mock_settings:
                mock_settings.CACHE_ENABLED = True

                assert await cache_delete("admin:activity:recent") is False
