"""Tests for the per-user database credentials file."""

import os
import stat

import pytest

from app.services.db_credentials import (
    DatabaseCredentials,
    append_credentials,
    credentials_path,
    load_credentials,
    remove_credentials,
)


def _creds(name: str, db_type: str = "mariadb") -> DatabaseCredentials:
    return DatabaseCredentials(
        database=name,
        db_type=db_type,
        host=f"dployr-{db_type}",
        port=3306 if db_type == "mariadb" else 5432,
        username=f"{name}_user",
        password="p@ss=word",
    )


class TestCredentialsFile:
    def test_append_and_load(self, tmp_path):
        append_credentials("ivy", _creds("shop_db"), users_path=str(tmp_path))
        append_credentials("ivy", _creds("blog_db", "postgresql"), users_path=str(tmp_path))

        records = load_credentials("ivy", users_path=str(tmp_path))
        assert [r.database for r in records] == ["shop_db", "blog_db"]
        assert records[0] == _creds("shop_db")
        assert records[1].db_type == "postgresql"
        assert records[1].port == 5432
        assert records[1].password == "p@ss=word"

    def test_file_is_owner_only(self, tmp_path):
        path = append_credentials("ivy", _creds("shop_db"), users_path=str(tmp_path))
        assert path == credentials_path("ivy", str(tmp_path))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_header_format(self, tmp_path):
        path = append_credentials("ivy", _creds("shop_db"), users_path=str(tmp_path))
        content = path.read_text()
        assert "# Database: shop_db (created: " in content
        assert "type: mariadb)" in content
        assert "DB_DATABASE=shop_db" in content

    def test_rejects_multiline_values(self, tmp_path):
        creds = _creds("shop_db")
        creds.password = "a\nDB_HOST=evil"
        with pytest.raises(ValueError):
            append_credentials("ivy", creds, users_path=str(tmp_path))

    def test_load_missing_file(self, tmp_path):
        assert load_credentials("nobody", users_path=str(tmp_path)) == []

    def test_remove_exact_match_only(self, tmp_path):
        for name in ("shop", "shop_db", "blog_db"):
            append_credentials("ivy", _creds(name), users_path=str(tmp_path))

        assert remove_credentials("ivy", "shop", users_path=str(tmp_path)) is True

        remaining = [r.database for r in load_credentials("ivy", users_path=str(tmp_path))]
        assert remaining == ["shop_db", "blog_db"]

    def test_remove_unknown(self, tmp_path):
        append_credentials("ivy", _creds("shop_db"), users_path=str(tmp_path))
        assert remove_credentials("ivy", "other", users_path=str(tmp_path)) is False
        assert remove_credentials("nobody", "shop_db", users_path=str(tmp_path)) is False
