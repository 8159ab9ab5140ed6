"""
iFlytek ISE 認証署名サービス
HMAC-SHA256署名を含む接続用URLを生成する
"""
import base64
import hashlib
import hmac
from datetime import datetime, timezone
from email.utils import format_datetime
from urllib.parse import quote

from app.models.schemas import XFYunCredentials
from app.services.exceptions import ConfigurationError


class SignatureSigner:
    """WebSocket接続の認証署名を生成するクラス"""

    def __init__(
        self,
        credentials: XFYunCredentials,
        host: str = "ise-api.xfyun.cn",
        path: str = "/v2/open-ise",
        method: str = "GET",
    ) -> None:
        """
        初期化処理

        Args:
            credentials: iFlytekの認証情報
            host: サービスのホスト名
            path: リクエストパス
            method: HTTPメソッド

        Raises:
            ConfigurationError: APIキーまたはAPIシークレットが空の場合
        """
        if not credentials.api_key or not credentials.api_secret:
            raise ConfigurationError("APIキーまたはAPIシークレットが設定されていません")
        self.api_key: str = credentials.api_key
        self.api_secret: str = credentials.api_secret
        self.host: str = host
        self.path: str = path
        self.method: str = method

    @staticmethod
    def format_date(now: datetime | None = None) -> str:
        """
        RFC1123形式の日時文字列を生成

        Args:
            now: 署名に使う時刻（指定しない場合は現在時刻）

        Returns:
            例: "Mon, 19 Oct 2026 10:00:00 GMT"
        """
        moment: datetime = now or datetime.now(timezone.utc)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return format_datetime(moment.astimezone(timezone.utc), usegmt=True)

    def signature_origin(self, date: str) -> str:
        """署名対象の文字列（host、date、request-lineの3行）"""
        request_line: str = f"{self.method} {self.path} HTTP/1.1"
        return f"host: {self.host}\ndate: {date}\n{request_line}"

    def create_authorization(self, date: str) -> str:
        """
        authorizationパラメータを生成

        Args:
            date: RFC1123形式の日時文字列（URLのdateと同じ値を使うこと）

        Returns:
            base64エンコードされた認証文字列
        """
        digest: bytes = hmac.new(
            self.api_secret.encode("utf-8"),
            self.signature_origin(date).encode("utf-8"),
            hashlib.sha256,
        ).digest()
        signature: str = base64.b64encode(digest).decode("utf-8")

        authorization_origin: str = (
            f'api_key="{self.api_key}", algorithm="hmac-sha256", '
            f'headers="host date request-line", signature="{signature}"'
        )
        return base64.b64encode(authorization_origin.encode("utf-8")).decode("utf-8")

    def build_auth_url(self, now: datetime | None = None) -> str:
        """
        署名付きの接続URLを生成

        Args:
            now: 署名に使う時刻（指定しない場合は現在時刻）

        Returns:
            wss://で始まる接続URL
        """
        date: str = self.format_date(now)
        authorization: str = self.create_authorization(date)
        return (
            f"wss://{self.host}{self.path}"
            f"?authorization={quote(authorization, safe='')}"
            f"&date={quote(date, safe='')}"
            f"&host={quote(self.host, safe='')}"
        )
