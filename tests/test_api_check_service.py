"""
APICheckServiceのテスト
"""
import pytest
import asyncio
import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from websockets.exceptions import InvalidHandshake
from app.config import ISESettings
from app.services.api_check_service import APICheckService

CREDENTIAL_ENV = {
    "XFYUN_APP_ID": "app123",
    "XFYUN_API_KEY": "key456",
    "XFYUN_API_SECRET": "secret789",
}


class RejectedHandshake(InvalidHandshake):
    """HTTPステータス付きのハンドシェイク拒否"""

    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.response = SimpleNamespace(status_code=status_code)


def make_connector(error=None):
    """接続関数のモックを作成"""
    websocket = AsyncMock()
    calls = []

    async def connect(url):
        calls.append(url)
        if error is not None:
            raise error
        return websocket

    connect.calls = calls
    connect.websocket = websocket
    return connect


class TestAPICheckService:
    """APICheckServiceのテストクラス"""

    @pytest.fixture
    def settings(self):
        return ISESettings(connect_timeout=0.2)

    @patch.dict(os.environ, {}, clear=True)
    def test_check_credentials_missing(self, settings):
        """認証情報が設定されていない場合のテスト"""
        result = APICheckService(settings).check_credentials()

        assert result["name"] == "iFlytek ISE API"
        assert result["status"] == "不明"
        assert "XFYUN_APP_ID" in result["message"]

    @patch.dict(os.environ, CREDENTIAL_ENV, clear=True)
    def test_check_credentials_available(self, settings):
        """認証情報が設定されている場合のテスト"""
        result = APICheckService(settings).check_credentials()

        assert result["status"] == "利用可能"

    @pytest.mark.asyncio
    @patch.dict(os.environ, CREDENTIAL_ENV, clear=True)
    async def test_check_connection_success(self, settings):
        """署名付き接続に成功した場合のテスト"""
        connector = make_connector()

        result = await APICheckService(settings, connector).check_connection()

        assert result["status"] == "利用可能"
        assert connector.calls[0].startswith("wss://ise-api.xfyun.cn/v2/open-ise?authorization=")
        connector.websocket.close.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    @patch.dict(os.environ, CREDENTIAL_ENV, clear=True)
    async def test_check_connection_rejected(self, settings, status_code):
        """署名が拒否された場合のテスト"""
        connector = make_connector(error=RejectedHandshake(status_code))

        result = await APICheckService(settings, connector).check_connection()

        assert result["status"] == "認証エラー"
        assert str(status_code) in result["message"]

    @pytest.mark.asyncio
    @patch.dict(os.environ, CREDENTIAL_ENV, clear=True)
    async def test_check_connection_error(self, settings):
        """接続エラーのテスト"""
        connector = make_connector(error=ConnectionRefusedError("refused"))

        result = await APICheckService(settings, connector).check_connection()

        assert result["status"] == "エラー"
        assert "接続エラー" in result["message"]

    @pytest.mark.asyncio
    @patch.dict(os.environ, CREDENTIAL_ENV, clear=True)
    async def test_check_connection_timeout(self, settings):
        """接続タイムアウトのテスト"""

        async def never_connect(url):
            await asyncio.sleep(10)

        result = await APICheckService(settings, never_connect).check_connection()

        assert result["status"] == "エラー"
        assert "タイムアウト" in result["message"]

    @pytest.mark.asyncio
    @patch.dict(os.environ, {}, clear=True)
    async def test_check_connection_no_credentials(self, settings):
        """認証情報がない場合は接続しない"""
        connector = make_connector()

        result = await APICheckService(settings, connector).check_connection()

        assert result["status"] == "不明"
        assert connector.calls == []

    @pytest.mark.asyncio
    @patch.object(APICheckService, 'check_credentials')
    @patch.object(APICheckService, 'check_connection', new_callable=AsyncMock)
    async def test_check_all_apis(self, mock_connection, mock_credentials, settings):
        """すべてのチェックのテスト"""
        mock_credentials.return_value = {"name": "iFlytek ISE API", "status": "利用可能"}
        mock_connection.return_value = {"name": "iFlytek ISE API", "status": "利用可能"}
        service = APICheckService(settings)

        assert len(await service.check_all_apis()) == 1
        mock_connection.assert_not_called()

        results = await service.check_all_apis(connect=True)

        assert len(results) == 2
        mock_connection.assert_awaited_once()
