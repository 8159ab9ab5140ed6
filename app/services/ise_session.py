"""
iFlytek ISE 評価セッション
1本のWebSocket接続を持ち、パラメータ送信 → 音声ストリーミング → 最終結果受信までを
明示的な状態遷移で管理する
"""

import asyncio
import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

import numpy as np
import websockets
from numpy.typing import ArrayLike
from websockets.exceptions import ConnectionClosed, InvalidHandshake, WebSocketException

from app.config import ISESettings
from app.models.schemas import (
    AudioFrame,
    EvaluationRequest,
    EvaluationResult,
    FrameRole,
    XFYunCredentials,
)
from app.services.audio_encoder import AudioFrameEncoder
from app.services.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DecodeError,
    EvaluationError,
    EvaluationTimeoutError,
    ProtocolError,
    SessionStateError,
    TransportError,
)
from app.services.ise_protocol import (
    STATUS_FINAL,
    STATUS_INTERIM,
    build_audio_frame,
    build_session_frame,
    parse_response,
)
from app.services.result_parser import ResultDecoder
from app.services.score_aggregator import ScoreAggregator
from app.services.signature_service import SignatureSigner

logger = logging.getLogger(__name__)

# 接続関数（URLを受け取り、send/close/非同期イテレーションを持つ接続を返す）
Connector = Callable[[str], Awaitable[Any]]


class SessionState(str, Enum):
    """評価セッションの状態"""

    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    AWAITING_FINAL_RESULT = "awaiting_final_result"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED}
)

_EMPTY_PCM = np.zeros(0, dtype=np.int16)


class EvaluationSession:
    """
    1回の発音評価を行うセッション

    呼び出し元への終端通知（結果またはエラー）はセッション全体で1回だけ行われる。
    キャンセルした場合は何も通知しない。
    """

    def __init__(
        self,
        credentials: XFYunCredentials,
        request: EvaluationRequest,
        settings: ISESettings | None = None,
        connector: Connector | None = None,
        on_result: Callable[[EvaluationResult], None] | None = None,
        on_error: Callable[[EvaluationError], None] | None = None,
        on_progress: Callable[[int], None] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        初期化処理

        Args:
            credentials: iFlytekの認証情報
            request: 評価リクエスト
            settings: 接続設定（指定しない場合はデフォルト値）
            connector: 接続関数（指定しない場合はwebsockets.connect）
            on_result: 評価完了時のコールバック
            on_error: 評価失敗時のコールバック
            on_progress: 中間結果受信時のコールバック（受信回数を渡す）
            clock: 署名に使う現在時刻の取得関数

        Raises:
            ConfigurationError: 認証情報が不足している場合
        """
        if not credentials.app_id:
            raise ConfigurationError("アプリケーションIDが設定されていません")
        self.settings: ISESettings = settings or ISESettings()
        self.signer: SignatureSigner = SignatureSigner(
            credentials, host=self.settings.host, path=self.settings.path
        )
        self.app_id: str = credentials.app_id
        self.request: EvaluationRequest = request

        self._connector: Connector = connector or websockets.connect
        self._clock: Callable[[], datetime] | None = clock

        # コールバック関数
        self.on_result = on_result
        self.on_error = on_error
        self.on_progress = on_progress

        self._state: SessionState = SessionState.IDLE
        self.websocket: Any | None = None
        self.sid: str | None = None
        self.result: EvaluationResult | None = None
        self.error: EvaluationError | None = None
        self.interim_count: int = 0
        self.frames_sent: int = 0

        # 送信待ちフレーム（送信順 = 投入順）
        self._outbound: asyncio.Queue[tuple[AudioFrame, asyncio.Future[bool]]] = (
            asyncio.Queue()
        )
        self._first_frame_queued: bool = False
        self._result_future: asyncio.Future[EvaluationResult] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[None] | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def result_future(self) -> "asyncio.Future[EvaluationResult]":
        """終端通知用のFuture（結果・エラー・キャンセルのいずれか1回だけ確定する）"""
        if self._result_future is None:
            future: asyncio.Future[EvaluationResult] = (
                asyncio.get_running_loop().create_future()
            )
            # 誰も待っていない場合の未取得警告を抑止
            future.add_done_callback(
                lambda f: f.cancelled() or f.exception()
            )
            self._result_future = future
        return self._result_future

    def _set_state(self, state: SessionState) -> None:
        logger.debug("評価セッション状態: %s → %s", self._state.value, state.value)
        self._state = state

    async def start(self) -> bool:
        """
        署名付きURLで接続し、パラメータフレームを送信してストリーミングを開始

        Returns:
            ストリーミング開始時True、接続失敗・キャンセル時False
            （失敗の詳細は終端通知として届く）

        Raises:
            SessionStateError: 既に開始済みの場合
        """
        if self._state is not SessionState.IDLE:
            raise SessionStateError(f"セッションは既に開始されています（状態: {self._state.value}）")

        self._set_state(SessionState.CONNECTING)
        _ = self.result_future
        url: str = self.signer.build_auth_url(self._clock() if self._clock else None)

        try:
            websocket = await asyncio.wait_for(
                self._connector(url), timeout=self.settings.connect_timeout
            )
        except asyncio.TimeoutError:
            self._fail(
                TransportError(
                    f"接続がタイムアウトしました（{self.settings.connect_timeout:g}秒）"
                )
            )
            return False
        except InvalidHandshake as e:
            self._fail(self._handshake_error(e))
            return False
        except (WebSocketException, OSError) as e:
            self._fail(TransportError(f"接続に失敗しました: {e}"))
            return False

        self.websocket = websocket
        if self._state is SessionState.CANCELLED:
            # 接続中にキャンセルされた
            await self._close_connection()
            return False

        logger.info("ISEサービスに接続しました: %s", self.settings.host)
        frame = build_session_frame(self.app_id, self.request, self.settings.sample_rate)
        try:
            await websocket.send(json.dumps(frame, ensure_ascii=False))
        except (ConnectionClosed, OSError) as e:
            self._fail(TransportError(f"パラメータフレームの送信に失敗しました: {e}"))
            return False

        if self.is_terminal:
            return False

        logger.debug("パラメータフレームを送信しました: category=%s", self.request.category.value)
        self._set_state(SessionState.STREAMING)
        self._reader_task = asyncio.create_task(self._read_loop())
        self._writer_task = asyncio.create_task(self._write_loop())
        return True

    @staticmethod
    def _handshake_error(error: InvalidHandshake) -> EvaluationError:
        """ハンドシェイク失敗を認証エラーまたは通信エラーに分類"""
        response = getattr(error, "response", None)
        status: int | None = getattr(response, "status_code", None) or getattr(
            error, "status_code", None
        )
        if status in (401, 403):
            return AuthenticationError(
                f"署名が拒否されました（HTTP {status}）。APIキー・シークレットと時刻を確認してください",
                status_code=status,
            )
        return TransportError(f"ハンドシェイクに失敗しました: {error}")

    async def submit_audio(self, samples: ArrayLike) -> bool:
        """
        音声データを1フレームとして送信

        Args:
            samples: float32（-1.0～1.0）またはint16のPCMサンプル

        Returns:
            送信成功時True、キャンセル・失敗により破棄された場合False

        Raises:
            SessionStateError: ストリーミング中でない場合
        """
        if self._state is not SessionState.STREAMING:
            raise SessionStateError(
                f"ストリーミング中ではないため音声を送信できません（状態: {self._state.value}）"
            )

        data = np.asarray(samples)
        pcm = data.reshape(-1) if data.dtype == np.int16 else AudioFrameEncoder.encode(data)

        role = FrameRole.MIDDLE if self._first_frame_queued else FrameRole.FIRST
        self._first_frame_queued = True
        return await self._enqueue(AudioFrame(samples=pcm, role=role))

    async def finish(self) -> bool:
        """
        音声の終了を通知し、最終フレームを送信

        音声を1度も送信していない場合は、空の先頭フレームを先に送る。

        Returns:
            最終フレームの送信成功時True

        Raises:
            SessionStateError: ストリーミング中でない場合
        """
        if self._state is not SessionState.STREAMING:
            raise SessionStateError(
                f"ストリーミング中ではないため終了できません（状態: {self._state.value}）"
            )

        if not self._first_frame_queued:
            self._first_frame_queued = True
            self._enqueue(AudioFrame(samples=_EMPTY_PCM, role=FrameRole.FIRST))

        self._set_state(SessionState.AWAITING_FINAL_RESULT)
        return await self._enqueue(AudioFrame(samples=_EMPTY_PCM, role=FrameRole.LAST))

    async def wait_result(self) -> EvaluationResult:
        """
        最終結果を待つ

        Returns:
            集計済みの評価結果

        Raises:
            EvaluationError: 評価に失敗した場合
            asyncio.CancelledError: セッションがキャンセルされた場合
        """
        return await asyncio.shield(self.result_future)

    async def wait_closed(self) -> None:
        """接続のクローズ完了を待つ"""
        if self._close_task is not None:
            await asyncio.shield(self._close_task)

    async def cancel(self) -> None:
        """
        セッションをキャンセル

        接続を閉じ、送信待ちのフレームを破棄する。呼び出し元には何も通知しない。
        """
        if self.is_terminal:
            return
        logger.info("評価セッションをキャンセルしました")
        self._set_state(SessionState.CANCELLED)
        self.result_future.cancel()
        self._terminate()
        await self.wait_closed()

    def _enqueue(self, frame: AudioFrame) -> "asyncio.Future[bool]":
        sent: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._outbound.put_nowait((frame, sent))
        return sent

    async def _write_loop(self) -> None:
        """送信待ちフレームを投入順に1つずつ送信"""
        while True:
            frame, sent = await self._outbound.get()
            try:
                await self.websocket.send(json.dumps(build_audio_frame(frame)))
            except (ConnectionClosed, OSError) as e:
                if not sent.done():
                    sent.set_result(False)
                self._fail(TransportError(f"音声フレームの送信に失敗しました: {e}"))
                return
            except asyncio.CancelledError:
                # 送信中にセッションが終了した
                if not sent.done():
                    sent.set_result(False)
                raise

            self.frames_sent += 1
            logger.debug(
                "音声フレームを送信しました: role=%s, samples=%d",
                frame.role.name,
                frame.samples.size,
            )
            if not sent.done():
                sent.set_result(True)

            if frame.role is FrameRole.LAST:
                if not self.is_terminal:
                    self._arm_result_timer()
                return

    def _arm_result_timer(self) -> None:
        loop = asyncio.get_running_loop()
        self._timeout_handle = loop.call_later(
            self.settings.result_timeout, self._on_result_timeout
        )
        logger.info("最終フレームを送信しました。評価結果を待っています")

    def _on_result_timeout(self) -> None:
        self._timeout_handle = None
        self._fail(
            EvaluationTimeoutError(
                f"評価がタイムアウトしました（{self.settings.result_timeout:g}秒）"
            )
        )

    async def _read_loop(self) -> None:
        """サーバーからのメッセージを受信"""
        try:
            async for raw in self.websocket:
                self._handle_message(raw)
                if self.is_terminal:
                    return
        except ConnectionClosed as e:
            self._fail(TransportError(f"接続が切断されました: {e}"))
            return
        self._fail(TransportError("最終結果を受信する前に接続が閉じられました"))

    def _handle_message(self, raw: str | bytes) -> None:
        try:
            response = parse_response(raw)
        except DecodeError as e:
            self._fail(e)
            return

        self.sid = response.sid or self.sid
        if response.code != 0:
            logger.error("評価失敗: %s (エラーコード: %s)", response.message, response.code)
            self._fail(ProtocolError(response.code, response.message, response.sid))
            return

        if response.data is None:
            logger.debug("データなしの応答を受信しました: sid=%s", response.sid)
            return

        if response.data.status == STATUS_INTERIM:
            # 中間結果、最終結果を待ち続ける
            self.interim_count += 1
            logger.debug("中間結果を受信しました（%d回目）", self.interim_count)
            self._notify(self.on_progress, self.interim_count)
            return

        if response.data.status != STATUS_FINAL:
            logger.debug("status=%sの応答を受信しました", response.data.status)
            return

        if not response.data.data:
            self._fail(DecodeError("最終結果にペイロードがありません"))
            return
        try:
            result = ScoreAggregator.aggregate(ResultDecoder.decode(response.data.data))
        except DecodeError as e:
            self._fail(e)
            return
        self._complete(result)

    def _complete(self, result: EvaluationResult) -> None:
        if self.is_terminal:
            return
        self._set_state(SessionState.COMPLETED)
        self.result = result
        self.result_future.set_result(result)
        logger.info("評価が完了しました: total_score=%s", result.total_score)
        self._terminate()
        self._notify(self.on_result, result)

    def _fail(self, error: EvaluationError) -> None:
        if self.is_terminal:
            return
        self._set_state(SessionState.FAILED)
        self.error = error
        self.result_future.set_exception(error)
        logger.error("評価セッションが失敗しました: %s", error)
        self._terminate()
        self._notify(self.on_error, error)

    @staticmethod
    def _notify(callback: Callable[[Any], None] | None, value: Any) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("コールバックでエラーが発生しました")

    def _terminate(self) -> None:
        """タイマー停止、送信待ちフレームの破棄、接続のクローズ"""
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

        while not self._outbound.empty():
            _, sent = self._outbound.get_nowait()
            if not sent.done():
                sent.set_result(False)

        current = asyncio.current_task()
        for task in (self._reader_task, self._writer_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        if self.websocket is not None and self._close_task is None:
            self._close_task = asyncio.get_running_loop().create_task(
                self._close_connection()
            )

    async def _close_connection(self) -> None:
        if self.websocket is None:
            return
        try:
            await self.websocket.close()
        except (WebSocketException, OSError) as e:
            logger.debug("接続のクローズ中にエラーが発生しました: %s", e)
        logger.debug("接続を閉じました")
