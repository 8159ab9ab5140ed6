"""
テスト共通のフィクスチャ
ISEサーバーの代わりになる偽のWebSocket接続と評価結果XMLを提供する
"""
import asyncio
import base64
import json
from typing import Any, Callable, Dict, List

import pytest
from websockets.exceptions import ConnectionClosedError

from app.config import ISESettings
from app.models.schemas import EvaluationCategory, EvaluationRequest, XFYunCredentials

SAMPLE_RESULT_XML = """<?xml version="1.0" encoding="utf-8"?>
<xml_result>
  <read_sentence lan="en" type="study" version="7,0,0,1024">
    <rec_paper>
      <read_chapter accuracy_score="0" fluency_score="0" integrity_score="95.5"
                    standard_score="0" total_score="0" is_rejected="false" except_info="0">
        <sentence content="hello world" total_score="80" accuracy_score="82.5"
                  fluency_score="70" standard_score="75">
          <word content="hello" total_score="85" dp_message="0" beg_pos="10" end_pos="50">
            <syll content="hh ah" syll_score="90" serr_msg="0" syll_accent="1"/>
            <syll content="l ow" syll_score="80" serr_msg="0" syll_accent="0"/>
          </word>
          <word content="world" total_score="75" dp_message="16" beg_pos="50" end_pos="90"/>
        </sentence>
        <sentence content="good morning" total_score="90" accuracy_score="91" fluency_score="88">
          <word content="good" total_score="92" dp_message="0" beg_pos="100" end_pos="130"/>
          <word content="morning" total_score="88" dp_message="128" beg_pos="130" end_pos="180"/>
        </sentence>
      </read_chapter>
    </rec_paper>
  </read_sentence>
</xml_result>
"""


def encode_payload(xml_text: str) -> str:
    """XMLをサーバーと同じbase64形式にする"""
    return base64.b64encode(xml_text.encode("utf-8")).decode("utf-8")


def final_message(xml_text: str = SAMPLE_RESULT_XML, sid: str = "ise000001") -> Dict[str, Any]:
    return {
        "code": 0,
        "message": "success",
        "sid": sid,
        "data": {"status": 2, "data": encode_payload(xml_text)},
    }


def interim_message(sid: str = "ise000001") -> Dict[str, Any]:
    return {"code": 0, "message": "success", "sid": sid, "data": {"status": 1, "data": ""}}


_CLOSE = object()
_DROP = object()


class FakeWebSocket:
    """ISEサーバーとの接続を模倣するクラス"""

    def __init__(self) -> None:
        self.url: str | None = None
        self.sent: List[Dict[str, Any]] = []
        self.closed: bool = False
        self.on_send: Callable[[Dict[str, Any]], None] | None = None
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        data = json.loads(message)
        self.sent.append(data)
        if self.on_send:
            self.on_send(data)

    def push(self, message: Dict[str, Any] | str) -> None:
        """サーバーからのメッセージを追加"""
        self._incoming.put_nowait(
            json.dumps(message) if isinstance(message, dict) else message
        )

    def drop(self) -> None:
        """通信途中の切断を発生させる"""
        self._incoming.put_nowait(_DROP)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if item is _DROP:
            raise ConnectionClosedError(None, None)
        return item

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    @property
    def audio_frames(self) -> List[Dict[str, Any]]:
        """送信された音声フレーム（cmd=auw）"""
        return [m for m in self.sent if m.get("business", {}).get("cmd") == "auw"]


class BlockingSendWebSocket(FakeWebSocket):
    """音声フレームの送信がreleaseされるまで完了しない接続"""

    def __init__(self) -> None:
        super().__init__()
        self.sending: asyncio.Event = asyncio.Event()
        self.release: asyncio.Event = asyncio.Event()

    async def send(self, message: str) -> None:
        if json.loads(message).get("business", {}).get("cmd") == "auw":
            self.sending.set()
            await self.release.wait()
        await super().send(message)


@pytest.fixture
def credentials() -> XFYunCredentials:
    return XFYunCredentials(app_id="app123", api_key="key456", api_secret="secret789")


@pytest.fixture
def sentence_request() -> EvaluationRequest:
    return EvaluationRequest(
        category=EvaluationCategory.SENTENCE, reference_text="hello world. good morning."
    )


@pytest.fixture
def fast_settings() -> ISESettings:
    """タイムアウトを短くした設定"""
    return ISESettings(connect_timeout=0.2, result_timeout=0.1)


@pytest.fixture
def fake_websocket() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def blocking_websocket() -> BlockingSendWebSocket:
    return BlockingSendWebSocket()


@pytest.fixture
def blocking_connector(blocking_websocket):
    async def connect(url: str) -> BlockingSendWebSocket:
        blocking_websocket.url = url
        return blocking_websocket

    return connect


@pytest.fixture
def connector(fake_websocket):
    async def connect(url: str) -> FakeWebSocket:
        fake_websocket.url = url
        return fake_websocket

    return connect
