import json
from typing import Any, Dict

from utilities.errors import MalformedModelOutput


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    LLMの応答テキストから埋め込まれたJSONオブジェクトを取り出す

    コードフェンスや前後の説明文が付いていても、最初の '{' から
    対応する '}' までを解析する。

    Args:
        text: モデルの生の応答

    Returns:
        解析したJSONオブジェクト

    Raises:
        MalformedModelOutput: JSONオブジェクトが見つからない、または不正な場合
    """
    if not text or not text.strip():
        raise MalformedModelOutput("empty model output")

    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)

    raise MalformedModelOutput(f"no JSON object in model output: {text[:200]!r}")


def extract_json_array(text: str) -> list:
    """応答テキストから最初のJSON配列を取り出す"""
    if not text or not text.strip():
        raise MalformedModelOutput("empty model output")

    decoder = json.JSONDecoder()
    start = text.find("[")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("[", start + 1)
            continue
        if isinstance(value, list):
            return value
        start = text.find("[", start + 1)

    raise MalformedModelOutput(f"no JSON array in model output: {text[:200]!r}")
