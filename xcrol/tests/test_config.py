"""Settings defaults and production security posture."""

import pytest

from xcrol.config import Settings, validate_security_posture


def _make_settings(**overrides) -> Settings:
    """Create a Settings instance without reading any .env file."""
    defaults = {"_env_file": None, "environment": "development"}
    defaults.update(overrides)
    return Settings(**defaults)


def _make_prod_settings(**overrides) -> Settings:
    defaults = {
        "_env_file": None,
        "environment": "production",
        "jwt_secret_key": "strong-random-jwt-secret-not-in-insecure-set",
        "platform_api_keys": "k1-strong-random,k2-strong-random",
        "cors_origins": "https://xcrol.com",
    }
    defaults.update(overrides)
    return Settings(**defaults)


class TestDefaults:
    def test_oauth_lifetimes(self):
        cfg = _make_settings()
        assert cfg.oauth_code_ttl_seconds == 600
        assert cfg.oauth_access_token_ttl_seconds == 3600
        assert cfg.oauth_refresh_token_ttl_seconds == 30 * 24 * 3600

    def test_api_keys_split(self):
        cfg = _make_settings(platform_api_keys=" a , b,, ")
        assert cfg.api_keys == ["a", "b"]

    def test_is_production(self):
        assert _make_settings(environment="PROD").is_production
        assert not _make_settings().is_production


class TestSecurityPosture:
    def test_development_only_warns(self):
        with pytest.warns(UserWarning):
            validate_security_posture(_make_settings())

    def test_production_with_strong_values_passes(self):
        validate_security_posture(_make_prod_settings())

    def test_production_insecure_jwt_secret(self):
        with pytest.raises(RuntimeError):
            validate_security_posture(
                _make_prod_settings(jwt_secret_key="dev-secret-change-in-production"),
            )

    def test_production_wildcard_cors(self):
        with pytest.raises(RuntimeError):
            validate_security_posture(_make_prod_settings(cors_origins="*"))

    def test_production_default_api_key(self):
        with pytest.raises(RuntimeError):
            validate_security_posture(_make_prod_settings(platform_api_keys="dev-platform-api-key"))

    def test_production_missing_api_keys(self):
        with pytest.raises(RuntimeError):
            validate_security_posture(_make_prod_settings(platform_api_keys=""))

    def test_production_long_code_ttl(self):
        with pytest.raises(RuntimeError):
            validate_security_posture(_make_prod_settings(oauth_code_ttl_seconds=3600))
