"""Tests for settings loading and storage config normalization."""

import pytest

from core.storage.config import GB, StorageConfig, normalize_extensions
from FileServer.config import Settings


class TestStorageConfig:
    """StorageConfig value object."""

    def test_defaults(self, tmp_path):
        cfg = StorageConfig(root=str(tmp_path))

        assert cfg.allows_any_extension
        assert cfg.max_upload_size == 10 * GB
        assert cfg.request_timeout == 86400
        assert cfg.allow_symlinks is False

    def test_root_made_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        cfg = StorageConfig(root='files/')

        assert cfg.root == str(tmp_path / 'files')

    @pytest.mark.parametrize('raw,expected', [
        (['.JPG', 'png', ' jpg '], ('jpg', 'png')),
        (['txt', '*'], ('*',)),
        ([], ()),
    ])
    def test_normalize_extensions(self, raw, expected):
        assert normalize_extensions(raw) == expected

    def test_empty_list_means_wildcard(self, tmp_path):
        assert StorageConfig(root=str(tmp_path), allowed_extensions=()).allows_any_extension

    @pytest.mark.parametrize('field', ['max_upload_size', 'chunk_size', 'request_timeout'])
    def test_non_positive_rejected(self, tmp_path, field):
        with pytest.raises(ValueError):
            StorageConfig(root=str(tmp_path), **{field: 0})

    def test_root_required(self):
        with pytest.raises(ValueError):
            StorageConfig(root='')


class TestSettingsFromEnv:
    """Settings.from_env precedence and coercion."""

    def test_defaults(self):
        s = Settings.from_env({})

        assert (s.host, s.port) == ('0.0.0.0', 8080)
        assert s.auth_enabled is True
        assert s.token_expiration_hours == 24

    def test_env_values(self, tmp_path):
        s = Settings.from_env({
            'FILEDASH_PORT': '9000',
            'FILEDASH_STORAGE_ROOT': str(tmp_path),
            'FILEDASH_ALLOWED_EXTENSIONS': 'jpg, png',
            'FILEDASH_MAX_UPLOAD_SIZE': '1024',
            'FILEDASH_AUTH_ENABLED': 'false',
            'FILEDASH_ALLOW_SYMLINKS': 'yes',
        })

        assert s.port == 9000
        assert s.allowed_extensions == ('jpg', 'png')
        assert s.auth_enabled is False
        cfg = s.storage_config()
        assert cfg.root == str(tmp_path)
        assert cfg.max_upload_size == 1024
        assert cfg.allow_symlinks is True

    def test_toml_then_env(self, tmp_path):
        path = tmp_path / 'config.toml'
        path.write_text(
            '[server]\nport = 7000\nhost = "127.0.0.1"\n'
            '[storage]\nhome_directory = "/srv/files"\nallowed_extensions = ["pdf"]\n'
            '[auth]\nenable_auth = false\ntoken_expiration = 12\n'
        )

        s = Settings.from_env({'FILEDASH_CONFIG': str(path), 'FILEDASH_PORT': '7100'})

        assert s.port == 7100
        assert s.host == '127.0.0.1'
        assert s.storage_root == '/srv/files'
        assert s.allowed_extensions == ('pdf',)
        assert s.auth_enabled is False
        assert s.token_expiration_hours == 12

    @pytest.mark.parametrize('var,value', [
        ('FILEDASH_PORT', 'eighty'),
        ('FILEDASH_MAX_UPLOAD_SIZE', '-5'),
        ('FILEDASH_AUTH_ENABLED', 'maybe'),
        ('FILEDASH_REQUEST_TIMEOUT', '0'),
    ])
    def test_bad_values_fail_fast(self, var, value):
        with pytest.raises(ValueError):
            Settings.from_env({var: value})

    def test_secret_not_in_repr(self):
        s = Settings.coerce(jwt_secret='top-secret', admin_password='hunter22')

        assert 'top-secret' not in repr(s)
        assert 'hunter22' not in repr(s)

    def test_unset_secret_uses_process_secret(self):
        s = Settings.from_env({})

        assert s.resolved_jwt_secret()
        assert s.resolved_jwt_secret() == Settings.from_env({}).resolved_jwt_secret()
