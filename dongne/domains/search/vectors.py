# dongne/domains/search/vectors.py

import json
from typing import Optional, Sequence, Union

import numpy as np

from dongne.core.exceptions import EmbeddingCorrupt


def parse_vector(raw: Union[str, Sequence[float]], expected_dimensions: Optional[int] = None) -> np.ndarray:
    """
    저장된 임베딩(JSON 문자열 또는 리스트)을 float 배열로 변환합니다.
    파싱 불가 / 빈 벡터 / 차원 불일치 / NaN 포함이면 EmbeddingCorrupt
    """
    try:
        values = json.loads(raw) if isinstance(raw, str) else raw
        vector = np.asarray(values, dtype=float)
    except (ValueError, TypeError) as e:
        raise EmbeddingCorrupt(f"임베딩 파싱 실패: {e}") from e

    if vector.ndim != 1 or vector.size == 0:
        raise EmbeddingCorrupt("빈 임베딩 또는 잘못된 형태")
    if expected_dimensions and vector.size != expected_dimensions:
        raise EmbeddingCorrupt(f"임베딩 차원 불일치: {vector.size} != {expected_dimensions}")
    if not np.all(np.isfinite(vector)):
        raise EmbeddingCorrupt("임베딩에 NaN/Inf 포함")
    return vector


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """dot(a, b) / (|a| * |b|), 어느 한쪽 norm 이 0 이면 0"""
    if a.shape != b.shape:
        return 0.0
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return 0.0
    return float(np.dot(a, b) / norm)
