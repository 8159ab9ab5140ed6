"""
SignatureSignerのテスト
"""
import base64
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from app.models.schemas import XFYunCredentials
from app.services.exceptions import ConfigurationError
from app.services.signature_service import SignatureSigner

FIXED_DATE = "Mon, 19 Oct 2026 10:00:00 GMT"
FIXED_NOW = datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc)


class TestSignatureSigner:
    """SignatureSignerのテストクラス"""

    @pytest.fixture
    def signer(self, credentials):
        return SignatureSigner(credentials)

    def test_missing_api_key(self):
        """APIキーが空の場合はエラー"""
        credentials = XFYunCredentials(app_id="app", api_key="", api_secret="secret")
        with pytest.raises(ConfigurationError):
            SignatureSigner(credentials)

    def test_missing_api_secret(self):
        """APIシークレットが空の場合はエラー"""
        credentials = XFYunCredentials(app_id="app", api_key="key", api_secret="")
        with pytest.raises(ConfigurationError):
            SignatureSigner(credentials)

    def test_format_date(self):
        """日時はRFC1123形式のGMT"""
        assert SignatureSigner.format_date(FIXED_NOW) == FIXED_DATE

    def test_format_date_naive_is_utc(self):
        """タイムゾーンなしの日時はUTCとして扱う"""
        assert SignatureSigner.format_date(datetime(2026, 10, 19, 10, 0, 0)) == FIXED_DATE

    def test_format_date_converts_to_gmt(self):
        """他のタイムゾーンの日時はGMTに変換する"""
        jst = timezone(timedelta(hours=9))
        assert SignatureSigner.format_date(datetime(2026, 10, 19, 19, 0, 0, tzinfo=jst)) == FIXED_DATE

    def test_signature_origin(self, signer):
        """署名対象はhost、date、request-lineの3行"""
        assert signer.signature_origin(FIXED_DATE) == (
            "host: ise-api.xfyun.cn\n"
            f"date: {FIXED_DATE}\n"
            "GET /v2/open-ise HTTP/1.1"
        )

    def test_authorization_contents(self, signer):
        """authorizationをデコードするとAPIキー、アルゴリズム、ヘッダー、署名が含まれる"""
        decoded = base64.b64decode(signer.create_authorization(FIXED_DATE)).decode("utf-8")

        expected_signature = base64.b64encode(
            hmac.new(
                b"secret789",
                signer.signature_origin(FIXED_DATE).encode("utf-8"),
                hashlib.sha256,
            ).digest()
        ).decode("utf-8")

        assert decoded == (
            'api_key="key456", algorithm="hmac-sha256", '
            f'headers="host date request-line", signature="{expected_signature}"'
        )

    def test_deterministic(self, signer):
        """同じ入力からは同じ署名"""
        assert signer.create_authorization(FIXED_DATE) == signer.create_authorization(FIXED_DATE)
        assert signer.build_auth_url(FIXED_NOW) == signer.build_auth_url(FIXED_NOW)

    def test_any_input_changes_signature(self, credentials, signer):
        """秘密鍵・日時・ホスト・パスのいずれかが変わると署名が変わる"""
        base = signer.create_authorization(FIXED_DATE)

        other_secret = SignatureSigner(
            XFYunCredentials(app_id="app123", api_key="key456", api_secret="another")
        )
        other_host = SignatureSigner(credentials, host="example.com")
        other_path = SignatureSigner(credentials, path="/v2/other")

        assert other_secret.create_authorization(FIXED_DATE) != base
        assert signer.create_authorization("Tue, 20 Oct 2026 10:00:00 GMT") != base
        assert other_host.create_authorization(FIXED_DATE) != base
        assert other_path.create_authorization(FIXED_DATE) != base

    def test_build_auth_url(self, signer):
        """接続URLにauthorization、date、hostが付与される"""
        url = signer.build_auth_url(FIXED_NOW)
        parsed = urlparse(url)
        params = parse_qs(parsed.query)

        assert parsed.scheme == "wss"
        assert parsed.netloc == "ise-api.xfyun.cn"
        assert parsed.path == "/v2/open-ise"
        assert params["authorization"] == [signer.create_authorization(FIXED_DATE)]
        assert params["date"] == [FIXED_DATE]
        assert params["host"] == ["ise-api.xfyun.cn"]

    def test_build_auth_url_percent_encoding(self, signer):
        """クエリの値はパーセントエンコードされる"""
        url = signer.build_auth_url(FIXED_NOW)
        query = urlparse(url).query

        assert " " not in query
        assert "Mon%2C%2019%20Oct%202026%2010%3A00%3A00%20GMT" in query
        # base64の記号もエンコードされる
        authorization = query.split("&")[0].split("=", 1)[1]
        assert "+" not in authorization
        assert "/" not in authorization
        assert not authorization.endswith("=")
