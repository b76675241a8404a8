# 定性解释服务
import logging
from typing import Any, Dict, List, Optional

from ..calculation.catalog import AptitudeCatalog, get_catalog
from ..database.repositories import InterpretationRepository

logger = logging.getLogger(__name__)

# 数据库中缺少解释时使用的内置解释（按汇总分级）
BUILTIN_INTERPRETATIONS = {
    "V": {
        "high": "Comprende y utiliza el lenguaje con gran precisión; facilidad para conceptos verbales abstractos.",
        "medium": "Comprensión verbal adecuada para la mayoría de las tareas académicas.",
        "low": "Dificultades para comprender relaciones entre conceptos verbales; conviene reforzar vocabulario."
    },
    "E": {
        "high": "Excelente capacidad para visualizar y manipular mentalmente objetos en el espacio.",
        "medium": "Capacidad espacial acorde a lo esperado para su grupo de referencia.",
        "low": "Dificultad para representar mentalmente figuras y sus transformaciones."
    },
    "A": {
        "high": "Atención rápida y precisa ante estímulos; detecta detalles con facilidad.",
        "medium": "Nivel de atención adecuado en tareas de rapidez perceptiva.",
        "low": "Tiende a omitir detalles; se recomienda entrenar la atención selectiva."
    },
    "CON": {
        "high": "Mantiene el foco de forma sostenida con muy pocos errores.",
        "medium": "Concentración suficiente en tareas de duración moderada.",
        "low": "Comete errores frecuentes por pérdida de concentración."
    },
    "R": {
        "high": "Resuelve problemas lógicos nuevos con rapidez; alta capacidad de abstracción.",
        "medium": "Razonamiento lógico adecuado para tareas habituales.",
        "low": "Dificultad para identificar reglas y patrones en problemas nuevos."
    },
    "N": {
        "high": "Gran facilidad para el cálculo y la resolución de problemas numéricos.",
        "medium": "Manejo numérico adecuado en operaciones habituales.",
        "low": "Dificultades con operaciones y relaciones numéricas; conviene reforzar el cálculo."
    },
    "M": {
        "high": "Comprende con facilidad principios mecánicos y físicos aplicados.",
        "medium": "Comprensión mecánica acorde a su grupo de referencia.",
        "low": "Dificultad para comprender el funcionamiento de mecanismos sencillos."
    },
    "O": {
        "high": "Domina las reglas ortográficas y detecta errores con precisión.",
        "medium": "Conocimiento ortográfico adecuado con errores ocasionales.",
        "low": "Errores ortográficos frecuentes; se recomienda práctica de escritura."
    },
}


class InterpretationService:
    """定性解释查询（数据库优先，内置表兜底）"""

    def __init__(
        self,
        interpretation_repo: Optional[InterpretationRepository] = None,
        catalog: Optional[AptitudeCatalog] = None,
        use_builtin_fallback: bool = True
    ):
        self.repo = interpretation_repo
        self.catalog = catalog or get_catalog()
        self.use_builtin_fallback = use_builtin_fallback

    async def get_interpretation(self, aptitude_code: str, percentile: Optional[float] = None) -> Optional[str]:
        """获取解释文本，不存在时返回None"""
        if not aptitude_code:
            return None
        code = aptitude_code.strip().upper()
        level = self.catalog.summary_level(percentile) if percentile is not None else "medium"

        if self.repo is not None:
            rows = await self.repo.get_for_aptitude(code)
            text = self._pick(rows, level)
            if text:
                return text

        builtin = BUILTIN_INTERPRETATIONS.get(code) if self.use_builtin_fallback else None
        if builtin is None:
            logger.warning(f"No interpretation available for aptitude {code}")
            return None
        return builtin.get(level)

    @staticmethod
    def _pick(rows: List[Dict[str, Any]], level: str) -> Optional[str]:
        for row in rows:
            if row.get("nivel") == level and row.get("rendimiento"):
                return row["rendimiento"]
        # 没有对应等级时取任意可用文本
        for row in rows:
            if row.get("rendimiento"):
                return row["rendimiento"]
        return None

    async def get_many(self, results: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """批量解释：results为 {aptitude_code, percentile} 列表"""
        interpretations = []
        for item in results:
            text = await self.get_interpretation(item.get("aptitude_code"), item.get("percentile"))
            interpretations.append({**item, "interpretation": text})
        return interpretations

    def strengths_and_weaknesses(self, results: List[Dict[str, Any]]) -> Dict[str, List[str]]:
        """优势（>=75）与待提升（<=25）能力倾向"""
        strengths = [r["aptitude_code"] for r in results if (r.get("percentile") or 0) >= 75]
        weaknesses = [r["aptitude_code"] for r in results if (r.get("percentile") or 0) <= 25]
        return {"strengths": strengths, "weaknesses": weaknesses}
