# BAT-7 能力倾向目录与百分位等级配置
import logging
import math
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AptitudeDefinition:
    """能力倾向定义"""
    code: str
    display_name: str
    group_tags: Tuple[str, ...] = field(default_factory=tuple)
    description: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "code": self.code,
            "display_name": self.display_name,
            "group_tags": list(self.group_tags),
            "description": self.description
        }


@dataclass(frozen=True)
class PercentileBand:
    """百分位展示等级"""
    key: str
    label: str
    min: int
    max: int
    order: int

    def contains(self, percentile: float) -> bool:
        return self.min <= percentile <= self.max

    def to_dict(self) -> Dict[str, object]:
        return {
            "key": self.key,
            "label": self.label,
            "min": self.min,
            "max": self.max,
            "order": self.order
        }


class AptitudeCatalog:
    """能力倾向静态注册表"""

    # 综合指数分组
    COMPOSITE_GROUPINGS = {
        "fluid": ("E", "R"),            # 空间 + 推理
        "crystallized": ("V", "O"),     # 言语 + 拼写
        "processing": ("A", "CON"),     # 注意 + 专注
        "quantitative": ("N", "M")      # 数字 + 机械
    }

    # 汇总分级阈值（比展示等级更粗）
    SUMMARY_HIGH_THRESHOLD = 75
    SUMMARY_LOW_THRESHOLD = 25

    _DEFINITIONS = (
        AptitudeDefinition("V", "Aptitud Verbal", ("crystallized",),
                           "Capacidad para comprender y utilizar el lenguaje"),
        AptitudeDefinition("E", "Aptitud Espacial", ("fluid",),
                           "Capacidad para visualizar y manipular objetos en el espacio"),
        AptitudeDefinition("A", "Atención", ("processing",),
                           "Capacidad para mantener la concentración y detectar detalles"),
        AptitudeDefinition("CON", "Concentración", ("processing",),
                           "Capacidad para mantener el foco en tareas específicas"),
        AptitudeDefinition("R", "Razonamiento", ("fluid",),
                           "Capacidad para resolver problemas lógicos"),
        AptitudeDefinition("N", "Aptitud Numérica", ("quantitative",),
                           "Capacidad para trabajar con números y operaciones matemáticas"),
        AptitudeDefinition("M", "Aptitud Mecánica", ("quantitative",),
                           "Comprensión de principios mecánicos y físicos"),
        AptitudeDefinition("O", "Ortografía", ("crystallized",),
                           "Conocimiento de reglas ortográficas y escritura correcta"),
    )

    # 按下限升序排列，便于二分查找
    _BANDS = (
        PercentileBand("very_low", "Muy Bajo", 0, 5, 1),
        PercentileBand("low", "Bajo", 6, 20, 2),
        PercentileBand("medium_low", "Medio-Bajo", 21, 40, 3),
        PercentileBand("medium", "Medio", 41, 60, 4),
        PercentileBand("medium_high", "Medio-Alto", 61, 80, 5),
        PercentileBand("high", "Alto", 81, 94, 6),
        PercentileBand("very_high", "Muy Alto", 95, 100, 7),
    )

    def __init__(self):
        self._by_code: Dict[str, AptitudeDefinition] = {d.code: d for d in self._DEFINITIONS}
        self._band_floors: List[int] = [band.min for band in self._BANDS]

    def get(self, code: Optional[str]) -> Optional[AptitudeDefinition]:
        """按代码获取能力倾向定义"""
        if code is None:
            return None
        return self._by_code.get(str(code).strip().upper())

    def require(self, code: str) -> AptitudeDefinition:
        definition = self.get(code)
        if definition is None:
            raise KeyError(f"Unknown aptitude code: {code}")
        return definition

    def is_known(self, code: Optional[str]) -> bool:
        return self.get(code) is not None

    def codes(self) -> List[str]:
        return [d.code for d in self._DEFINITIONS]

    def definitions(self) -> List[AptitudeDefinition]:
        return list(self._DEFINITIONS)

    def display_name(self, code: str) -> str:
        definition = self.get(code)
        return definition.display_name if definition else "Desconocido"

    @property
    def bands(self) -> Tuple[PercentileBand, ...]:
        return self._BANDS

    def band_for(self, percentile: Optional[float]) -> PercentileBand:
        """百分位 -> 展示等级（二分查找）

        超出[0,100]的值被截断到边界，非有限值按0处理，调用方应先校验范围。
        非整数百分位（如5.5）归入下限不超过它的等级。
        """
        value = 0.0 if percentile is None else float(percentile)
        if not math.isfinite(value):
            value = 0.0
        value = min(max(value, 0.0), 100.0)
        index = bisect_right(self._band_floors, value) - 1
        return self._BANDS[max(index, 0)]

    def summary_level(self, percentile: float) -> str:
        """汇总分级：high / medium / low"""
        if percentile >= self.SUMMARY_HIGH_THRESHOLD:
            return "high"
        if percentile >= self.SUMMARY_LOW_THRESHOLD:
            return "medium"
        return "low"

    def composite_groupings(self) -> Dict[str, Tuple[str, ...]]:
        return dict(self.COMPOSITE_GROUPINGS)


_default_catalog: Optional[AptitudeCatalog] = None


def get_catalog() -> AptitudeCatalog:
    """获取进程级默认目录（只加载一次）"""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = AptitudeCatalog()
        logger.debug(f"Loaded aptitude catalog with {len(_default_catalog.codes())} aptitudes")
    return _default_catalog
