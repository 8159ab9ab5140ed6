"""
評価サービス
評価セッション、音声入力、練習記録の保存をまとめて1回の発音評価を実行する
"""
import asyncio
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Callable, Iterable

import numpy as np
from numpy.typing import ArrayLike

from app.config import ISESettings, load_credentials
from app.models.schemas import (
    EvaluationRequest,
    EvaluationResult,
    PracticeRecord,
    XFYunCredentials,
)
from app.services.audio_service import AudioService
from app.services.ise_session import Connector, EvaluationSession, SessionState
from app.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)


async def _as_async_iter(
    chunks: Iterable[ArrayLike] | AsyncIterable[ArrayLike],
) -> AsyncIterator[ArrayLike]:
    if isinstance(chunks, AsyncIterable):
        async for chunk in chunks:
            yield chunk
    else:
        for chunk in chunks:
            yield chunk


class EvaluationService:
    """発音評価を統合的に実行するサービスクラス"""

    def __init__(
        self,
        credentials: XFYunCredentials | None = None,
        settings: ISESettings | None = None,
        storage: LocalStorageService | None = None,
        audio_service: AudioService | None = None,
        connector: Connector | None = None,
    ) -> None:
        """
        初期化処理

        Args:
            credentials: 認証情報（指定しない場合は環境変数から読み込む）
            settings: 接続設定
            storage: 練習記録の保存先（Noneの場合は保存しない）
            audio_service: マイク・音声ファイルの入力
            connector: 接続関数（テスト用）

        Raises:
            ConfigurationError: 認証情報の環境変数が設定されていない場合
        """
        self.credentials: XFYunCredentials = credentials or load_credentials()
        self.settings: ISESettings = settings or ISESettings()
        self.storage: LocalStorageService | None = storage
        self.audio_service: AudioService = audio_service or AudioService(
            sample_rate=self.settings.sample_rate
        )
        self.connector: Connector | None = connector

    def create_session(
        self,
        request: EvaluationRequest,
        on_progress: Callable[[int], None] | None = None,
    ) -> EvaluationSession:
        """評価セッションを作成"""
        return EvaluationSession(
            self.credentials,
            request,
            settings=self.settings,
            connector=self.connector,
            on_progress=on_progress,
        )

    async def evaluate_stream(
        self,
        request: EvaluationRequest,
        chunks: Iterable[ArrayLike] | AsyncIterable[ArrayLike],
        on_progress: Callable[[int], None] | None = None,
    ) -> EvaluationResult:
        """
        音声チャンクを順に送信して評価を実行

        Args:
            request: 評価リクエスト
            chunks: 音声チャンク（float32またはint16）の列
            on_progress: 中間結果受信時のコールバック

        Returns:
            集計済みの評価結果

        Raises:
            EvaluationError: 接続・認証・プロトコル・解析・タイムアウトのいずれかのエラー
        """
        started: float = time.monotonic()
        session = self.create_session(request, on_progress=on_progress)
        try:
            if await session.start():
                async for chunk in _as_async_iter(chunks):
                    if session.state is not SessionState.STREAMING:
                        break
                    await session.submit_audio(chunk)
                if session.state is SessionState.STREAMING:
                    await session.finish()
            result: EvaluationResult = await session.wait_result()
        finally:
            if not session.is_terminal:
                await session.cancel()
            await session.wait_closed()

        duration = int(time.monotonic() - started)
        if self.storage is not None:
            await self.storage.save_practice_record_async(
                self.build_practice_record(request, result, duration)
            )
        return result

    async def evaluate_file(
        self,
        request: EvaluationRequest,
        path: str | Path,
        on_progress: Callable[[int], None] | None = None,
    ) -> EvaluationResult:
        """
        音声ファイルを評価

        Args:
            request: 評価リクエスト
            path: 音声ファイルのパス
            on_progress: 中間結果受信時のコールバック

        Returns:
            集計済みの評価結果
        """
        samples: np.ndarray = await asyncio.to_thread(self.audio_service.load_audio_file, path)
        frames = AudioService.split_frames(samples, self.settings.frame_samples)
        logger.info("音声ファイルを評価します: %s (%dフレーム)", path, len(frames))
        return await self.evaluate_stream(request, frames, on_progress=on_progress)

    async def evaluate_microphone(
        self,
        request: EvaluationRequest,
        duration: float,
        on_progress: Callable[[int], None] | None = None,
    ) -> EvaluationResult:
        """
        マイクから指定時間録音しながら評価

        Args:
            request: 評価リクエスト
            duration: 録音時間（秒）
            on_progress: 中間結果受信時のコールバック

        Returns:
            集計済みの評価結果
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[np.ndarray | None] = asyncio.Queue()

        def on_audio(chunk: np.ndarray) -> None:
            # sounddeviceのスレッドからイベントループへ渡す
            loop.call_soon_threadsafe(queue.put_nowait, chunk)

        async def stop_after_duration() -> None:
            await asyncio.sleep(duration)
            await asyncio.to_thread(self.audio_service.stop_recording)
            queue.put_nowait(None)

        async def microphone_chunks() -> AsyncIterator[np.ndarray]:
            while True:
                chunk = await queue.get()
                if chunk is None:
                    return
                yield chunk

        if not self.audio_service.start_recording(on_audio):
            raise RuntimeError("既に録音中です")
        stopper = asyncio.create_task(stop_after_duration())
        try:
            return await self.evaluate_stream(
                request, microphone_chunks(), on_progress=on_progress
            )
        finally:
            if not stopper.done():
                stopper.cancel()
                await asyncio.to_thread(self.audio_service.stop_recording)

    @staticmethod
    def build_practice_record(
        request: EvaluationRequest, result: EvaluationResult, duration: int
    ) -> PracticeRecord:
        """
        評価結果から練習記録を作成

        Args:
            request: 評価リクエスト
            result: 評価結果
            duration: 練習時間（秒）

        Returns:
            練習記録
        """
        return PracticeRecord(
            id=uuid.uuid4().hex,
            type=request.category.practice_type,
            content=request.reference_text,
            total_score=result.total_score or 0.0,
            accuracy=result.accuracy_score or 0.0,
            fluency=result.fluency_score or 0.0,
            integrity=result.integrity_score or 0.0,
            standard=result.standard_score or 0.0,
            word_details=result.sentences,
            raw_result=result,
            duration=duration,
            created_at=datetime.now(),
        )
