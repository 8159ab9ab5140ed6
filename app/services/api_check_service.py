"""
API接続チェックサービス
iFlytek ISE（音声評価）サービスの設定と接続状態をチェックする
"""
import asyncio
from typing import Any, Dict, List

import websockets
from websockets.exceptions import InvalidHandshake, WebSocketException

from app.config import ISESettings, load_credentials
from app.services.exceptions import ConfigurationError
from app.services.ise_session import Connector
from app.services.signature_service import SignatureSigner

API_NAME = "iFlytek ISE API"


class APICheckService:
    """API接続状態をチェックするサービスクラス"""

    def __init__(
        self,
        settings: ISESettings | None = None,
        connector: Connector | None = None,
    ) -> None:
        """
        初期化処理

        Args:
            settings: 接続設定
            connector: 接続関数（指定しない場合はwebsockets.connect）
        """
        self.settings: ISESettings = settings or ISESettings()
        self.connector: Connector = connector or websockets.connect

    def check_credentials(self) -> Dict[str, str]:
        """
        認証情報の設定状態をチェック

        Returns:
            API名と状態を含む辞書
        """
        try:
            load_credentials()
        except ConfigurationError as e:
            return {
                "name": API_NAME,
                "status": "不明",
                "message": f"認証情報が設定されていません: {e}"
            }
        return {
            "name": API_NAME,
            "status": "利用可能",
            "message": "APP ID、APIキー、APIシークレットが設定されています"
        }

    async def check_connection(self) -> Dict[str, str]:
        """
        署名付きURLでハンドシェイクを行い、接続状態をチェック

        Returns:
            API名と状態を含む辞書
        """
        try:
            signer = SignatureSigner(
                load_credentials(), host=self.settings.host, path=self.settings.path
            )
        except ConfigurationError as e:
            return {
                "name": API_NAME,
                "status": "不明",
                "message": f"認証情報が設定されていません: {e}"
            }

        try:
            websocket: Any = await asyncio.wait_for(
                self.connector(signer.build_auth_url()),
                timeout=self.settings.connect_timeout,
            )
            await websocket.close()
        except InvalidHandshake as e:
            status = getattr(getattr(e, "response", None), "status_code", None) or getattr(
                e, "status_code", None
            )
            if status in (401, 403):
                return {
                    "name": API_NAME,
                    "status": "認証エラー",
                    "message": f"署名が拒否されました（HTTP {status}）"
                }
            return {
                "name": API_NAME,
                "status": "エラー",
                "message": f"ハンドシェイクエラー: {e}"
            }
        except asyncio.TimeoutError:
            return {
                "name": API_NAME,
                "status": "エラー",
                "message": "接続がタイムアウトしました"
            }
        except (WebSocketException, OSError) as e:
            return {
                "name": API_NAME,
                "status": "エラー",
                "message": f"接続エラー: {e}"
            }
        return {
            "name": API_NAME,
            "status": "利用可能",
            "message": "署名付き接続に成功しました"
        }

    async def check_all_apis(self, connect: bool = False) -> List[Dict[str, str]]:
        """
        全てのチェックを実行

        Args:
            connect: Trueの場合は実際に接続してチェック

        Returns:
            API状態のリスト
        """
        results: List[Dict[str, str]] = [self.check_credentials()]
        if connect:
            results.append(await self.check_connection())
        return results
