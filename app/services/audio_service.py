"""
音声入力サービス
マイクからの録音と音声ファイルの読み込みを行い、評価セッションへ渡す音声を用意する
"""

import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np
import sounddevice as sd
from pydub import AudioSegment

logger = logging.getLogger(__name__)


class AudioService:
    """音声入力を管理するサービスクラス"""

    def __init__(self, sample_rate: int = 16000, chunk_size: int = 4096) -> None:
        """
        初期化処理

        Args:
            sample_rate: サンプリングレート（ISEは16kHz）
            chunk_size: 1回のコールバックで受け取るサンプル数
        """
        self.is_recording: bool = False
        self.recording_thread: Optional[threading.Thread] = None
        self.mic_callback: Optional[Callable[[np.ndarray], None]] = None

        # 音声設定
        self.chunk_size: int = chunk_size
        self.sample_rate: int = sample_rate
        self.channels: int = 1
        self.dtype: np.dtype = np.float32

    def _candidate_input_devices(self) -> List[Optional[int]]:
        """試行する入力デバイスのリスト（デフォルト → その他 → None）"""
        candidate_devices: List[Optional[int]] = []

        # 1. デフォルトデバイス
        try:
            if sd.default.device[0] >= 0:
                candidate_devices.append(sd.default.device[0])
        except Exception:
            pass

        # 2. その他の入力可能なデバイス
        try:
            devices = sd.query_devices()
            for i, dev in enumerate(devices):
                if dev["max_input_channels"] > 0 and i not in candidate_devices:
                    candidate_devices.append(i)
        except Exception:
            pass

        # 最後にNoneを追加（デフォルトの挙動を試す）
        if None not in candidate_devices:
            candidate_devices.append(None)
        return candidate_devices

    def start_recording(self, callback: Callable[[np.ndarray], None]) -> bool:
        """
        マイクからの録音を開始

        コールバックはsounddeviceのスレッドから呼ばれる。

        Args:
            callback: float32の音声チャンクを受け取るコールバック関数

        Returns:
            開始成功時True
        """
        if self.is_recording:
            return False

        self.mic_callback = callback
        self.is_recording = True
        self.recording_thread = threading.Thread(target=self._record_audio, daemon=True)
        self.recording_thread.start()
        return True

    def stop_recording(self) -> None:
        """マイクからの録音を停止"""
        self.is_recording = False
        if self.recording_thread:
            self.recording_thread.join(timeout=1.0)
        self.mic_callback = None

    def _record_audio(self) -> None:
        """録音の内部処理"""

        def audio_callback(
            indata: np.ndarray, frames: int, time_info: dict, status: sd.CallbackFlags
        ) -> None:
            """sounddeviceのコールバック関数"""
            if status:
                logger.warning("Audio callback status: %s", status)
            if self.mic_callback and self.is_recording:
                audio_data = indata[:, 0] if indata.shape[1] > 0 else indata.flatten()
                self.mic_callback(audio_data.copy())

        stream_opened = False
        last_error: Exception | None = None

        for device_index in self._candidate_input_devices():
            if not self.is_recording:
                break

            try:
                logger.info("録音を開始します (Device Index: %s)", device_index)
                with sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype=self.dtype,
                    blocksize=self.chunk_size,
                    callback=audio_callback,
                    device=device_index,
                ):
                    stream_opened = True
                    while self.is_recording:
                        time.sleep(0.05)
                break

            except Exception as e:
                logger.warning("デバイス %s でのエラー: %s", device_index, e)
                last_error = e
                time.sleep(0.2)

        if not stream_opened and self.is_recording:
            logger.error("すべてのデバイスで録音に失敗しました。最後のエラー: %s", last_error)
            self.is_recording = False

    def record_audio(self, duration: float = 3.0) -> np.ndarray:
        """
        指定時間だけ録音する

        Args:
            duration: 録音時間（秒）

        Returns:
            録音された音声データ（float32のnumpy配列）、失敗時は空配列
        """
        for device_index in self._candidate_input_devices():
            try:
                logger.info("録音を開始します (Device Index: %s)", device_index)
                recording = sd.rec(
                    int(duration * self.sample_rate),
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype=self.dtype,
                    device=device_index,
                )
                sd.wait()  # 録音が完了するまで待機
                return recording.flatten()
            except Exception as e:
                logger.warning("録音エラー (Device %s): %s", device_index, e)
                continue

        logger.error("すべてのデバイスで録音に失敗しました")
        return np.array([], dtype=self.dtype)

    def load_audio_file(self, path: str | Path) -> np.ndarray:
        """
        音声ファイルを読み込み、16bit モノラル PCM に変換

        Args:
            path: 音声ファイルのパス（wav、mp3など）

        Returns:
            int16のnumpy配列（self.sample_rateにリサンプリング済み）
        """
        segment: AudioSegment = AudioSegment.from_file(str(path))
        segment = (
            segment.set_frame_rate(self.sample_rate)
            .set_channels(self.channels)
            .set_sample_width(2)
        )
        return np.array(segment.get_array_of_samples(), dtype=np.int16)

    @staticmethod
    def split_frames(samples: np.ndarray, frame_samples: int) -> List[np.ndarray]:
        """
        音声データを一定サンプル数ごとのフレームに分割

        Args:
            samples: 音声データ
            frame_samples: 1フレームあたりのサンプル数

        Returns:
            フレームのリスト（最後のフレームは短い場合がある）
        """
        return [
            samples[i:i + frame_samples] for i in range(0, len(samples), frame_samples)
        ]

    def __del__(self) -> None:
        """クリーンアップ"""
        self.stop_recording()
