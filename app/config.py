"""
アプリケーション設定
"""
import logging
import os
import sys
from pathlib import Path

from pydantic import BaseModel

from app.models.schemas import XFYunCredentials
from app.services.exceptions import ConfigurationError


def get_app_data_dir() -> Path:
    """
    アプリケーションのデータディレクトリを取得

    Returns:
        アプリケーションデータディレクトリのパス
    """
    if sys.platform == "win32":
        # Windowsの場合、AppData\Local\PronunciationCoachを使用
        app_data: str | None = os.getenv("LOCALAPPDATA")
        if app_data:
            app_dir: Path = Path(app_data) / "PronunciationCoach"
            app_dir.mkdir(exist_ok=True)
            return app_dir
    elif sys.platform == "darwin":
        # macOSの場合、~/Library/Application Support/PronunciationCoachを使用
        app_support: Path = Path.home() / "Library" / "Application Support" / "PronunciationCoach"
        app_support.mkdir(parents=True, exist_ok=True)
        return app_support
    # その他のOSまたはフォールバック
    return Path.home() / ".pronunciation_coach"


def get_log_file() -> Path:
    """
    ログファイルのパスを取得

    Returns:
        ログファイルのパス
    """
    return get_app_data_dir() / "app.log"


# アプリケーションデータディレクトリ
APP_DATA_DIR = get_app_data_dir()

# ログファイル
LOG_FILE = get_log_file()


class ISESettings(BaseModel):
    """iFlytek ISE（音声評価）サービスの接続設定"""

    host: str = "ise-api.xfyun.cn"
    path: str = "/v2/open-ise"
    sample_rate: int = 16000  # 16kHz モノラル
    frame_samples: int = 1280  # ファイル送信時の1フレームあたりのサンプル数（40ms）
    connect_timeout: float = 10.0  # 接続タイムアウト（秒）
    result_timeout: float = 30.0  # 最終フレーム送信後の結果待ちタイムアウト（秒）


# 環境変数名（NEXT_PUBLIC_付きの名前も受け付ける）
_CREDENTIAL_ENV_NAMES: dict[str, tuple[str, str]] = {
    "app_id": ("XFYUN_APP_ID", "NEXT_PUBLIC_XFYUN_APP_ID"),
    "api_key": ("XFYUN_API_KEY", "NEXT_PUBLIC_XFYUN_API_KEY"),
    "api_secret": ("XFYUN_API_SECRET", "NEXT_PUBLIC_XFYUN_API_SECRET"),
}


def load_credentials() -> XFYunCredentials:
    """
    環境変数からiFlytekの認証情報を読み込む

    Returns:
        認証情報

    Raises:
        ConfigurationError: いずれかの環境変数が設定されていない場合
    """
    values: dict[str, str] = {}
    missing: list[str] = []
    for field, names in _CREDENTIAL_ENV_NAMES.items():
        value: str | None = os.getenv(names[0]) or os.getenv(names[1])
        if value:
            values[field] = value
        else:
            missing.append(names[0])

    if missing:
        raise ConfigurationError(
            f"{', '.join(missing)}環境変数が設定されていません"
        )
    return XFYunCredentials(**values)


def setup_logging(level: int = logging.INFO, log_file: Path | None = None) -> None:
    """
    ログ出力を設定（コンソールとログファイル）

    Args:
        level: ログレベル
        log_file: ログファイルのパス（指定しない場合はLOG_FILE）
    """
    log_path: Path = log_file or LOG_FILE
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(console_handler)
    root.addHandler(file_handler)
