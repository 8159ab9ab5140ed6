"""
発音評価クライアントの例外定義
1回の評価セッション内で発生し、終端通知として呼び出し元へ渡される
"""


class EvaluationError(Exception):
    """評価関連エラーの基底クラス"""


class ConfigurationError(EvaluationError, ValueError):
    """認証情報などの設定不足（接続前に送出される）"""


class AuthenticationError(EvaluationError):
    """署名がサーバーに拒否された"""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code: int | None = status_code


class TransportError(EvaluationError):
    """接続失敗、接続タイムアウト、ストリーミング中の切断"""


class ProtocolError(EvaluationError):
    """サーバー応答のcodeが0以外"""

    def __init__(self, code: int, message: str, sid: str | None = None) -> None:
        super().__init__(f"{message} (エラーコード: {code})")
        self.code: int = code
        self.message: str = message
        self.sid: str | None = sid


class DecodeError(EvaluationError):
    """評価結果のペイロードを解析できない"""


class EvaluationTimeoutError(EvaluationError, TimeoutError):
    """最終フレーム送信後、制限時間内に最終結果が届かなかった"""


class SessionStateError(EvaluationError):
    """現在のセッション状態では実行できない操作"""
