"""
評価結果デコーダ
base64エンコードされたXML結果を文・単語・音節のスコアツリーに変換する
"""
import base64
import binascii
import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, List

from pydantic import ValidationError

from app.models.schemas import EvaluationCategory, EvaluationResult, WordErrorType
from app.services.exceptions import DecodeError

logger = logging.getLogger(__name__)

# ルート要素として認識するタグ
ROOT_TAGS: tuple[str, ...] = tuple(category.value for category in EvaluationCategory)

# XML属性名 → モデルのフィールド名
_RESULT_ATTRS: Dict[str, str] = {
    "total_score": "total_score",
    "accuracy_score": "accuracy_score",
    "fluency_score": "fluency_score",
    "standard_score": "standard_score",
    "integrity_score": "integrity_score",
    "except_info": "except_info",
}
_SENTENCE_ATTRS: Dict[str, str] = {
    "content": "content",
    "total_score": "total_score",
    "accuracy_score": "accuracy_score",
    "fluency_score": "fluency_score",
    "standard_score": "standard_score",
}
_WORD_ATTRS: Dict[str, str] = {
    "content": "content",
    "total_score": "total_score",
    "dp_message": "dp_message",
    "beg_pos": "start_offset",
    "end_pos": "end_offset",
}
_SYLL_ATTRS: Dict[str, str] = {
    "content": "content",
    "syll_score": "score",
    "serr_msg": "error_code",
    "syll_accent": "stress_marker",
}

_ERROR_DESCRIPTIONS: Dict[WordErrorType, str] = {
    WordErrorType.NONE: "正確",
    WordErrorType.OMISSION: "読み飛ばし",
    WordErrorType.INSERTION: "余分な読み",
    WordErrorType.REPETITION: "繰り返し",
    WordErrorType.SUBSTITUTION: "置き換え",
    WordErrorType.UNKNOWN: "不明なエラー",
}


def describe_error(dp_message: int) -> str:
    """
    単語のエラーコードを表示用の説明に変換

    Args:
        dp_message: 単語のエラーコード

    Returns:
        エラーの説明
    """
    return _ERROR_DESCRIPTIONS[WordErrorType.from_code(dp_message)]


class ResultDecoder:
    """評価結果のXMLを解析するクラス"""

    @classmethod
    def decode(cls, payload: str) -> EvaluationResult:
        """
        base64エンコードされた評価結果を解析

        Args:
            payload: サーバーから受信したbase64文字列

        Returns:
            評価結果

        Raises:
            DecodeError: base64、文字コード、XML、属性値のいずれかが不正な場合
        """
        try:
            raw: bytes = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"評価結果のbase64デコードに失敗しました: {e}") from e
        return cls.parse_xml(raw)

    @classmethod
    def parse_xml(cls, xml_text: str | bytes) -> EvaluationResult:
        """
        評価結果のXMLを解析

        Args:
            xml_text: XML文字列またはバイト列（文字コードはXML宣言に従う）

        Returns:
            評価結果（途中まで解析した結果は返さない）

        Raises:
            DecodeError: XMLが不正、ルート要素がない、属性値が不正な場合
        """
        try:
            document: ET.Element = ET.fromstring(xml_text)
        except ET.ParseError as e:
            raise DecodeError(f"評価結果のXML解析に失敗しました: {e}") from e
        except ValueError as e:
            # XML宣言の文字コードが不正な場合など
            raise DecodeError(f"評価結果の文字コードが不正です: {e}") from e

        root = cls._find_root(document)
        if root is None:
            raise DecodeError("評価結果のルート要素が見つかりません")

        data: Dict[str, Any] = cls._attributes(root, _RESULT_ATTRS)
        data["is_rejected"] = root.get("is_rejected") == "true"
        data["sentences"] = [
            cls._sentence(node) for node in document.iter("sentence")
        ]

        try:
            result = EvaluationResult.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"評価結果の属性値が不正です: {e}") from e

        logger.debug(
            "評価結果を解析しました: root=%s, sentences=%d",
            root.tag,
            len(result.sentences),
        )
        return result

    @staticmethod
    def _find_root(document: ET.Element) -> ET.Element | None:
        """スコアを持つ最初のカテゴリ要素（なければ最初のカテゴリ要素）"""
        candidates: List[ET.Element] = [
            node for node in document.iter() if node.tag in ROOT_TAGS
        ]
        for node in candidates:
            if node.get("total_score"):
                return node
        return candidates[0] if candidates else None

    @staticmethod
    def _attributes(node: ET.Element, mapping: Dict[str, str]) -> Dict[str, Any]:
        """空でない属性だけをフィールド名に変換して取り出す"""
        values: Dict[str, Any] = {}
        for attr, field in mapping.items():
            value: str | None = node.get(attr)
            if value is not None and value != "":
                values[field] = value
        return values

    @classmethod
    def _sentence(cls, node: ET.Element) -> Dict[str, Any]:
        sentence = cls._attributes(node, _SENTENCE_ATTRS)
        sentence["words"] = [cls._word(word) for word in node.iter("word")]
        return sentence

    @classmethod
    def _word(cls, node: ET.Element) -> Dict[str, Any]:
        word = cls._attributes(node, _WORD_ATTRS)
        word["syllables"] = [
            cls._attributes(syll, _SYLL_ATTRS) for syll in node.iter("syll")
        ]
        return word
