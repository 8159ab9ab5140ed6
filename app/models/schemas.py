"""
データモデル（スキーマ定義）
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class EvaluationCategory(str, Enum):
    """評価カテゴリ（単語・文・段落）"""

    WORD = "read_word"
    SENTENCE = "read_sentence"
    CHAPTER = "read_chapter"

    @property
    def practice_type(self) -> str:
        """練習記録に保存する種類"""
        return {
            EvaluationCategory.WORD: "word",
            EvaluationCategory.SENTENCE: "sentence",
            EvaluationCategory.CHAPTER: "paragraph",
        }[self]

    @property
    def text_tag(self) -> str:
        """参照テキストの先頭に付けるタグ"""
        return "[word]" if self is EvaluationCategory.WORD else "[content]"


class EvaluationRequest(BaseModel):
    """評価リクエストのデータモデル（セッション開始後は変更不可）"""

    model_config = ConfigDict(frozen=True)

    category: EvaluationCategory
    reference_text: str  # 参照テキスト
    language: Literal["en_vip", "cn_vip"] = "en_vip"  # 評価言語（ent）
    extra_ability: str = "multi_dimension"  # 追加評価能力

    @field_validator("reference_text")
    @classmethod
    def _reference_text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("参照テキストが空です")
        return value.strip()

    def formatted_text(self) -> str:
        """
        送信用の参照テキストを生成

        Returns:
            カテゴリタグ付きのテキスト（既にタグがある場合はそのまま）
        """
        if self.reference_text.startswith("["):
            return self.reference_text
        return f"{self.category.text_tag}\n{self.reference_text}"


class FrameRole(int, Enum):
    """音声フレームの順序上の役割（値は送信時のaus）"""

    FIRST = 1
    MIDDLE = 2
    LAST = 4

    @property
    def data_status(self) -> int:
        """dataのstatus（1: 継続、2: 最終）"""
        return 2 if self is FrameRole.LAST else 1


class AudioFrame(BaseModel):
    """送信する音声フレーム"""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    samples: np.ndarray  # 16bit符号付きPCMサンプル
    role: FrameRole


class WordErrorType(str, Enum):
    """単語の読み誤りの種類（dp_message）"""

    NONE = "none"
    OMISSION = "omission"
    INSERTION = "insertion"
    REPETITION = "repetition"
    SUBSTITUTION = "substitution"
    UNKNOWN = "unknown"

    @classmethod
    def from_code(cls, code: int) -> "WordErrorType":
        return _WORD_ERROR_CODES.get(code, cls.UNKNOWN)


_WORD_ERROR_CODES: Dict[int, WordErrorType] = {
    0: WordErrorType.NONE,
    16: WordErrorType.OMISSION,
    32: WordErrorType.INSERTION,
    64: WordErrorType.REPETITION,
    128: WordErrorType.SUBSTITUTION,
}


class SyllableScore(BaseModel):
    """音節スコア"""

    content: str = ""
    score: float | None = None  # syll_score
    error_code: int | None = None  # serr_msg
    stress_marker: int | None = None  # syll_accent（重読マーク）


class WordScore(BaseModel):
    """単語スコア"""

    content: str = ""
    total_score: float = 0.0
    dp_message: int = 0  # 元のエラーコード（診断表示用にそのまま保持）
    start_offset: int = 0  # beg_pos
    end_offset: int = 0  # end_pos
    syllables: List[SyllableScore] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def error_type(self) -> WordErrorType:
        """エラーの種類（未定義のコードはUNKNOWN）"""
        return WordErrorType.from_code(self.dp_message)


class SentenceScore(BaseModel):
    """文スコア"""

    content: str = ""
    total_score: float | None = None
    accuracy_score: float | None = None  # 正確性スコア
    fluency_score: float | None = None  # 流暢さスコア
    standard_score: float | None = None  # 標準度スコア
    words: List[WordScore] = Field(default_factory=list)


class EvaluationResult(BaseModel):
    """評価結果のデータモデル"""

    total_score: float | None = None  # 総合スコア
    accuracy_score: float | None = None  # 正確性スコア
    fluency_score: float | None = None  # 流暢さスコア
    standard_score: float | None = None  # 標準度スコア
    integrity_score: float | None = None  # 完全性スコア
    is_rejected: bool = False  # 乱読検出（スコアの信頼性なし）
    except_info: str | None = None  # サーバーからの例外情報
    sentences: List[SentenceScore] = Field(default_factory=list)


class XFYunCredentials(BaseModel):
    """iFlytek ISEの認証情報"""

    app_id: str
    api_key: str
    api_secret: str


PracticeType = Literal["word", "sentence", "paragraph"]


class PracticeRecord(BaseModel):
    """練習記録のデータモデル"""

    id: str
    type: PracticeType
    content: str
    total_score: float
    accuracy: float = 0.0
    fluency: float = 0.0
    integrity: float = 0.0
    standard: float = 0.0
    word_details: List[SentenceScore] | None = None  # 文・単語ごとの詳細
    raw_result: EvaluationResult | None = None
    duration: int = 0  # 練習時間（秒）
    audio_url: str | None = None
    created_at: datetime


class TypeStats(BaseModel):
    """種類別の統計"""

    count: int = 0
    avg_score: float = 0.0


class DailyCount(BaseModel):
    """日別の練習回数"""

    date: str
    count: int


class PracticeStats(BaseModel):
    """練習統計のデータモデル"""

    total_count: int = 0
    total_duration: int = 0
    average_score: float = 0.0
    best_score: float = 0.0
    by_type: Dict[str, TypeStats] = Field(default_factory=dict)
    recent_7_days: List[DailyCount] = Field(default_factory=list)
