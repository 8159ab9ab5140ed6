"""
ローカルストレージサービス
ユーザー認証不要で、練習記録をローカルファイルに保存し、履歴と統計を提供する
"""
import json
import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, List

import aiofiles
from pydantic import ValidationError

from app.config import APP_DATA_DIR
from app.models.schemas import (
    DailyCount,
    PracticeRecord,
    PracticeStats,
    PracticeType,
    TypeStats,
)
from app.services.score_aggregator import round_half_up

logger = logging.getLogger(__name__)

PRACTICE_TYPES: tuple[PracticeType, ...] = ("word", "sentence", "paragraph")


class LocalStorageService:
    """練習記録をローカルファイルに保存・読み込むサービスクラス"""

    def __init__(self, data_dir: Path | None = None) -> None:
        """
        初期化処理
        データ保存ディレクトリを作成する

        Args:
            data_dir: 保存先の親ディレクトリ（指定しない場合はAPP_DATA_DIR）
        """
        self.data_dir: Path = (data_dir or APP_DATA_DIR) / "practices"
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _record_path(self, record_id: str) -> Path:
        return self.data_dir / f"practice_{record_id}.json"

    def save_practice_record(self, record: PracticeRecord) -> bool:
        """
        練習記録をローカルファイルに保存

        Args:
            record: 保存する練習記録

        Returns:
            保存成功時True、失敗時False
        """
        try:
            with open(self._record_path(record.id), "w", encoding="utf-8") as f:
                json.dump(record.model_dump(mode="json"), f, ensure_ascii=False, indent=2)
            return True
        except OSError as e:
            logger.error("練習記録の保存に失敗しました: %s", e)
            return False

    async def save_practice_record_async(self, record: PracticeRecord) -> bool:
        """
        練習記録を非同期でローカルファイルに保存

        Args:
            record: 保存する練習記録

        Returns:
            保存成功時True、失敗時False
        """
        try:
            content: str = json.dumps(
                record.model_dump(mode="json"), ensure_ascii=False, indent=2
            )
            async with aiofiles.open(self._record_path(record.id), "w", encoding="utf-8") as f:
                await f.write(content)
            logger.info("練習記録を保存しました: %s", record.id)
            return True
        except OSError as e:
            logger.error("練習記録の保存に失敗しました: %s", e)
            return False

    def load_practice_record(self, record_id: str) -> PracticeRecord | None:
        """
        練習記録をローカルファイルから読み込む

        Args:
            record_id: 練習記録のID

        Returns:
            練習記録、存在しない・読み込み失敗時はNone
        """
        file_path: Path = self._record_path(record_id)
        if not file_path.exists():
            return None
        return self._read_record(file_path)

    def _read_record(self, file_path: Path) -> PracticeRecord | None:
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return PracticeRecord.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("練習記録の読み込みに失敗しました %s: %s", file_path, e)
            return None

    def load_all_records(self) -> List[PracticeRecord]:
        """保存済みのすべての練習記録（新しい順）"""
        records: List[PracticeRecord] = []
        for file_path in self.data_dir.glob("practice_*.json"):
            record = self._read_record(file_path)
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def list_practice_history(
        self,
        practice_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, object]:
        """
        練習履歴を取得

        Args:
            practice_type: 種類で絞り込む（word, sentence, paragraph）
            limit: 取得件数
            offset: 取得開始位置

        Returns:
            records（練習記録のリスト）、total、limit、offsetを含む辞書
        """
        records = self.load_all_records()
        if practice_type in PRACTICE_TYPES:
            records = [r for r in records if r.type == practice_type]
        return {
            "records": records[offset:offset + limit],
            "total": len(records),
            "limit": limit,
            "offset": offset,
        }

    def get_practice_stats(self, today: date | None = None) -> PracticeStats:
        """保存済みの練習記録から統計を計算"""
        return self.calculate_stats(self.load_all_records(), today)

    @staticmethod
    def calculate_stats(
        records: List[PracticeRecord], today: date | None = None
    ) -> PracticeStats:
        """
        練習統計を計算

        Args:
            records: 練習記録のリスト
            today: 直近7日間の基準日（指定しない場合は今日）

        Returns:
            練習統計
        """
        if not records:
            return PracticeStats(
                by_type={t: TypeStats() for t in PRACTICE_TYPES},
            )

        scores: List[float] = [r.total_score for r in records]

        by_type: Dict[str, TypeStats] = {}
        for practice_type in PRACTICE_TYPES:
            type_scores = [r.total_score for r in records if r.type == practice_type]
            by_type[practice_type] = TypeStats(
                count=len(type_scores),
                avg_score=sum(type_scores) / len(type_scores) if type_scores else 0.0,
            )

        # 直近7日間の練習回数（古い日付から）
        base_day: date = today or datetime.now().date()
        recent_7_days: List[DailyCount] = []
        for days_ago in range(6, -1, -1):
            day = base_day - timedelta(days=days_ago)
            recent_7_days.append(
                DailyCount(
                    date=day.isoformat(),
                    count=sum(1 for r in records if r.created_at.date() == day),
                )
            )

        return PracticeStats(
            total_count=len(records),
            total_duration=sum(r.duration for r in records),
            average_score=round_half_up(sum(scores) / len(scores), 2),
            best_score=round_half_up(max(scores), 2),
            by_type=by_type,
            recent_7_days=recent_7_days,
        )
