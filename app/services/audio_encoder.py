"""
音声フレームエンコーダ
32bit浮動小数点の音声サンプルを16bit符号付きPCMへ変換する
"""
import base64

import numpy as np
from numpy.typing import ArrayLike


class AudioFrameEncoder:
    """float32 → PCM16 の変換を行うクラス（状態を持たない）"""

    @staticmethod
    def encode(samples: ArrayLike) -> np.ndarray:
        """
        float32サンプルを16bit整数に変換

        Args:
            samples: -1.0～1.0の範囲の音声サンプル

        Returns:
            int16の配列（入力と同じ長さ）
        """
        data = np.asarray(samples, dtype=np.float32).reshape(-1)
        if data.size == 0:
            return np.zeros(0, dtype=np.int16)

        clipped = np.clip(np.nan_to_num(data, nan=0.0), -1.0, 1.0).astype(np.float64)
        # 負の値は0x8000、0以上は0x7FFFで拡大し、0方向へ切り捨て
        scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
        return np.trunc(scaled).astype(np.int16)

    @staticmethod
    def to_bytes(pcm: np.ndarray) -> bytes:
        """PCM16配列をリトルエンディアンのバイト列に変換"""
        return np.asarray(pcm, dtype="<i2").tobytes()

    @classmethod
    def to_base64(cls, pcm: np.ndarray) -> str:
        """PCM16配列を送信用のbase64文字列に変換"""
        return base64.b64encode(cls.to_bytes(pcm)).decode("utf-8")
