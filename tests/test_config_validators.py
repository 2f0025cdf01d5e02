import io
import builtins
import os
import logging

import pytest
from pydantic import ValidationError
from zoneinfo import ZoneInfo

import identity_finder.config as config
from identity_finder.config import Settings
from identity_finder.constants import MAX_UPLOAD_SIZE, MAX_UPLOAD_SIZE_LIMIT


from tests._helpers import make_fake_open


def test_defaults():
    s = Settings()
    assert s.max_upload_bytes == MAX_UPLOAD_SIZE
    assert s.jwt_algorithm_list == ["HS256"]
    assert s.cors_origin_list == ["*"]
    assert s.port == 8000


def test_database_url_rejects_blank():
    with pytest.raises(ValidationError):
        Settings(database_url="   ")


def test_database_url_is_stripped():
    s = Settings(database_url="  sqlite:///x.db ")
    assert s.database_url == "sqlite:///x.db"


@pytest.mark.parametrize("field", ["storage_workers", "storage_concurrency"])
def test_worker_counts_zero_raises(field):
    with pytest.raises(ValidationError):
        Settings(**{field: 0})


def test_worker_counts_string_is_int():
    s = Settings(storage_workers="6")
    assert isinstance(s.storage_workers, int)
    assert s.storage_workers == 6


def test_storage_workers_non_numeric_raises():
    with pytest.raises(ValidationError):
        Settings(storage_workers="abc")


def test_max_upload_bytes_bounds():
    with pytest.raises(ValidationError):
        Settings(max_upload_bytes=0)
    with pytest.raises(ValidationError):
        Settings(max_upload_bytes=MAX_UPLOAD_SIZE_LIMIT + 1)
    assert Settings(max_upload_bytes=MAX_UPLOAD_SIZE_LIMIT).max_upload_bytes == MAX_UPLOAD_SIZE_LIMIT


def test_jwt_algorithms_normalised():
    s = Settings(jwt_algorithms=" hs256, HS512 ")
    assert s.jwt_algorithms == "HS256,HS512"
    assert s.jwt_algorithm_list == ["HS256", "HS512"]


def test_jwt_algorithms_rejects_unknown_and_empty():
    with pytest.raises(ValidationError):
        Settings(jwt_algorithms="HS256,ROT13")
    with pytest.raises(ValidationError):
        Settings(jwt_algorithms=" , ")


def test_jwt_leeway_bounds():
    with pytest.raises(ValidationError):
        Settings(jwt_leeway_seconds=-1)
    with pytest.raises(ValidationError):
        Settings(jwt_leeway_seconds=301)
    assert Settings(jwt_leeway_seconds="30").jwt_leeway_seconds == 30


@pytest.mark.parametrize("port", [0, 65536, -5])
def test_port_out_of_range_raises(port):
    with pytest.raises(ValidationError):
        Settings(port=port)


def test_cors_origin_list_splits_and_trims():
    s = Settings(cors_origins="https://a.example.com, https://b.example.com,")
    assert s.cors_origin_list == ["https://a.example.com", "https://b.example.com"]


def test_storage_base_url():
    assert Settings().storage_base_url() is None
    assert Settings(webdav_url="https://dav.example.com/").storage_base_url() == "https://dav.example.com"
    s = Settings(webdav_url="https://dav.example.com/remote.php/", webdav_path="/identity/uploads/")
    assert s.storage_base_url() == "https://dav.example.com/remote.php/identity/uploads"


def test_webdav_secrets_prefer_secret_over_env(monkeypatch):
    secret_path = "/run/secrets/webdav_password"
    monkeypatch.setattr(os.path, "isfile", lambda p: os.path.normpath(p) == os.path.normpath(secret_path))
    monkeypatch.setattr(builtins, "open", make_fake_open(secret_path, "super-secret\n"))

    s = Settings(webdav_password="env-pass")
    assert s.webdav_password == "super-secret"


def test_load_settings_exits_on_validation_error(monkeypatch, caplog):
    monkeypatch.setenv('STORAGE_WORKERS', '0')

    caplog.set_level(logging.ERROR)
    with pytest.raises(SystemExit):
        config.load_settings()
    assert any('Configuration error' in r.message for r in caplog.records)


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv('JWT_SECRET', 'from-env')
    monkeypatch.setenv('MAX_UPLOAD_BYTES', '1024')
    monkeypatch.setattr(os.path, "isfile", lambda p: False)
    s = config.load_settings()
    assert s.jwt_secret == 'from-env'
    assert s.max_upload_bytes == 1024


def test_secret_read_unicode_error_fallback(monkeypatch):
    secret_path = "/run/secrets/jwt_secret"
    monkeypatch.setattr(os.path, "isfile", lambda p: os.path.normpath(p) == os.path.normpath(secret_path))

    class BadReader:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def read(self):
            raise UnicodeDecodeError("utf-8", b"", 0, 1, "invalid")

    real_open = builtins.open

    def fake_open(path, mode='r', encoding=None, *args, **kwargs):
        if os.path.normpath(path) == os.path.normpath(secret_path):
            return BadReader()
        return real_open(path, mode, encoding=encoding, *args, **kwargs)

    monkeypatch.setattr(builtins, "open", fake_open)
    s = Settings(jwt_secret="env-value")
    assert s.jwt_secret == "env-value"


def test_upper_secret_empty_prefers_lower(monkeypatch):
    upper_path = "/run/secrets/JWT_SECRET"
    lower_path = "/run/secrets/jwt_secret"
    real_open = builtins.open

    def isfile(p):
        return os.path.normpath(p) in (os.path.normpath(upper_path), os.path.normpath(lower_path))

    def fake_open(path, mode='r', encoding=None, *args, **kwargs):
        norm = os.path.normpath(path)
        if norm == os.path.normpath(upper_path):
            return io.StringIO("   \n")
        if norm == os.path.normpath(lower_path):
            return io.StringIO("lower-secret")
        return real_open(path, mode, encoding=encoding, *args, **kwargs)

    monkeypatch.setattr(os.path, "isfile", isfile)
    monkeypatch.setattr(builtins, "open", fake_open)

    s = Settings(jwt_secret="env-value")
    assert s.jwt_secret == "lower-secret"


def test_env_empty_string_preserved(monkeypatch):
    monkeypatch.setattr(os.path, "isfile", lambda p: False)
    s = Settings(webdav_password="")
    assert s.webdav_password == ""


def test_local_iso_formatter_uses_timezone():
    ZoneInfo('UTC')

    fmt = config.LocalISOFormatter(tz_name='UTC')
    record = logging.LogRecord(name="test", level=logging.INFO, pathname=__file__, lineno=1, msg="x", args=(), exc_info=None)
    record.created = 0.0
    s = fmt.formatTime(record)
    assert s.startswith('1970-01-01T00:00:00.')
    assert s.endswith('+00:00')
