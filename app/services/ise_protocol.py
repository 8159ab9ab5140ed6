"""
iFlytek ISE WebSocketプロトコル
送信フレームの組み立てと受信メッセージの解析を行う
"""
import json
from typing import Any, Dict

from pydantic import BaseModel, ValidationError

from app.models.schemas import AudioFrame, EvaluationRequest
from app.services.audio_encoder import AudioFrameEncoder
from app.services.exceptions import DecodeError

# 受信メッセージのdata.status
STATUS_INITIAL = 0
STATUS_INTERIM = 1
STATUS_FINAL = 2


def build_session_frame(
    app_id: str, request: EvaluationRequest, sample_rate: int = 16000
) -> Dict[str, Any]:
    """
    接続直後に送るパラメータフレーム（cmd=ssb）を生成

    Args:
        app_id: アプリケーションID
        request: 評価リクエスト
        sample_rate: 音声のサンプリングレート

    Returns:
        送信用の辞書
    """
    return {
        "common": {"app_id": app_id},
        "business": {
            "aue": "raw",
            "auf": f"audio/L16;rate={sample_rate}",
            "category": request.category.value,
            "cmd": "ssb",
            "ent": request.language,
            "sub": "ise",
            "text": request.formatted_text(),
            "ttp_skip": True,
            "rst": "entirety",
            "ise_unite": "1",
            "extra_ability": request.extra_ability,
        },
        "data": {"status": 0},
    }


def build_audio_frame(frame: AudioFrame) -> Dict[str, Any]:
    """
    音声フレーム（cmd=auw）を生成

    Args:
        frame: PCM16サンプルと役割

    Returns:
        送信用の辞書
    """
    return {
        "business": {"cmd": "auw", "aus": frame.role.value},
        "data": {
            "status": frame.role.data_status,
            "data": AudioFrameEncoder.to_base64(frame.samples),
        },
    }


class ISEResponseData(BaseModel):
    """受信メッセージのdata部"""

    status: int
    data: str | None = None  # base64エンコードされたXML


class ISEResponse(BaseModel):
    """サーバーからの受信メッセージ"""

    code: int
    message: str = ""
    sid: str | None = None
    data: ISEResponseData | None = None

    @property
    def is_final(self) -> bool:
        return self.data is not None and self.data.status == STATUS_FINAL

    @property
    def is_interim(self) -> bool:
        return self.data is not None and self.data.status == STATUS_INTERIM


def parse_response(raw: str | bytes) -> ISEResponse:
    """
    受信メッセージを解析

    Raises:
        DecodeError: JSONとして解析できない、または必須項目がない場合
    """
    try:
        return ISEResponse.model_validate(json.loads(raw))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        raise DecodeError(f"受信メッセージの解析に失敗しました: {e}") from e
