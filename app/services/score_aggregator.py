"""
スコア集計サービス
ルート要素に総合スコア・分項スコアがない（または0の）場合、文スコアの平均で補完する
"""
import math
from typing import Callable, Dict, List

from app.models.schemas import EvaluationResult, SentenceScore

# 補完対象の分項スコア
DIMENSIONS: tuple[str, ...] = ("accuracy_score", "fluency_score", "standard_score")


def round_half_up(value: float, digits: int = 1) -> float:
    """小数点以下digits桁で四捨五入（0.05 → 0.1）"""
    factor: int = 10**digits
    return math.floor(value * factor + 0.5) / factor


def score_level(score: float | None) -> str:
    """
    スコアの評価レベルを取得

    Args:
        score: 総合スコア

    Returns:
        "excellent"（90以上）、"good"（80以上）、"pass"（70以上）、"fail"
    """
    value: float = score or 0.0
    if value >= 90:
        return "excellent"
    if value >= 80:
        return "good"
    if value >= 70:
        return "pass"
    return "fail"


class ScoreAggregator:
    """評価結果の集計スコアを補完するクラス"""

    @staticmethod
    def _needs_repair(value: float | None) -> bool:
        # 0とNaNは「スコアなし」とみなす
        return value is None or value == 0 or math.isnan(value)

    @staticmethod
    def _mean(
        sentences: List[SentenceScore],
        getter: Callable[[SentenceScore], float | None],
    ) -> float | None:
        values: List[float] = [
            v for v in (getter(s) for s in sentences)
            if v is not None and not math.isnan(v)
        ]
        if not values:
            return None
        return round_half_up(sum(values) / len(values))

    @classmethod
    def aggregate(cls, result: EvaluationResult) -> EvaluationResult:
        """
        欠けている集計スコアを文スコアの平均で補完

        Args:
            result: デコード済みの評価結果

        Returns:
            補完後の評価結果（引数は変更しない）
        """
        if not result.sentences:
            return result

        updates: Dict[str, float] = {}

        if cls._needs_repair(result.total_score):
            total = cls._mean(result.sentences, lambda s: s.total_score)
            if total is not None:
                updates["total_score"] = total

        for dimension in DIMENSIONS:
            if not cls._needs_repair(getattr(result, dimension)):
                continue
            value = cls._mean(
                result.sentences, lambda s, name=dimension: getattr(s, name)
            )
            if value is not None:
                updates[dimension] = value

        if not updates:
            return result
        return result.model_copy(update=updates)
