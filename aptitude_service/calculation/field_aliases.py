# 历史字段别名映射：把不同来源的结果行统一为RawResult
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from .results import RawResult

logger = logging.getLogger(__name__)

# 规范字段 -> 按优先级排列的别名
FIELD_ALIASES = {
    "subject_id": ("subject_id", "paciente_id", "patient_id", "candidato_id"),
    "aptitude_code": ("aptitude_code", "aptitud_codigo", "codigo", "test", "aptitud"),
    "raw_score": ("raw_score", "puntaje_directo", "pd"),
    "correct_count": ("correct_count", "respuestas_correctas"),
    "incorrect_count": ("incorrect_count", "respuestas_incorrectas", "respuestas_incorrecas"),
    "omitted_count": ("omitted_count", "respuestas_omitidas"),
    "elapsed_seconds": ("elapsed_seconds", "tiempo_total", "tiempo_segundos"),
    "percentile": ("percentile", "percentil", "puntaje_pc", "pc"),
    "timestamp": ("timestamp", "created_at", "fecha_evaluacion"),
    "result_id": ("result_id", "id"),
}

# 嵌套的关联对象，例如 {"aptitudes": {"codigo": "V"}}
NESTED_CODE_KEYS = ("aptitudes", "aptitude")


def _first_present(row: Dict[str, Any], aliases: Iterable[str]) -> Any:
    for alias in aliases:
        value = row.get(alias)
        if value is not None and value != "":
            return value
    return None


def _to_number(value: Any) -> Any:
    """尽量转换为数值；无法转换时保留原值交给校验环节"""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return value
    return int(number) if number.is_integer() else number


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable result timestamp: {value}")
            return None
    # 统一为naive UTC，避免排序时混合时区
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _extract_code(row: Dict[str, Any]) -> Optional[str]:
    for key in NESTED_CODE_KEYS:
        nested = row.get(key)
        if isinstance(nested, dict) and nested.get("codigo"):
            return str(nested["codigo"]).strip().upper()
        if isinstance(nested, dict) and nested.get("code"):
            return str(nested["code"]).strip().upper()
    code = _first_present(row, FIELD_ALIASES["aptitude_code"])
    return str(code).strip().upper() if code is not None else None


def normalize_record(row: Any) -> RawResult:
    """把任意来源的结果行映射为规范RawResult"""
    if isinstance(row, RawResult):
        return row
    if not isinstance(row, dict):
        raise TypeError(f"Unsupported result record type: {type(row).__name__}")

    return RawResult(
        subject_id=_first_present(row, FIELD_ALIASES["subject_id"]),
        aptitude_code=_extract_code(row),
        raw_score=_to_number(_first_present(row, FIELD_ALIASES["raw_score"])),
        correct_count=_to_number(_first_present(row, FIELD_ALIASES["correct_count"])),
        incorrect_count=_to_number(_first_present(row, FIELD_ALIASES["incorrect_count"])),
        omitted_count=_to_number(_first_present(row, FIELD_ALIASES["omitted_count"])),
        elapsed_seconds=_to_number(_first_present(row, FIELD_ALIASES["elapsed_seconds"])),
        percentile=_to_number(_first_present(row, FIELD_ALIASES["percentile"])),
        timestamp=_to_datetime(_first_present(row, FIELD_ALIASES["timestamp"])),
        result_id=_first_present(row, FIELD_ALIASES["result_id"]),
    )
