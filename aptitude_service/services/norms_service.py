# 常模换算服务：原始分(PD) -> 百分位(PC)
import logging
from typing import Any, Dict, List, Optional

from ..database.repositories import NormsRepository, ResultRepository

logger = logging.getLogger(__name__)


class NormsService:
    """按常模表补算缺失百分位"""

    def __init__(self, norms_repo: NormsRepository, result_repo: ResultRepository):
        self.norms_repo = norms_repo
        self.result_repo = result_repo

    async def convert(self, aptitude_code: str, raw_score: float) -> Optional[float]:
        """查找包含该原始分的常模区间；没有匹配时返回None"""
        if aptitude_code is None or raw_score is None:
            return None
        percentile = await self.norms_repo.find_percentile(aptitude_code, raw_score)
        if percentile is None:
            logger.warning(f"No norm found for {aptitude_code} with raw score {raw_score}")
        return percentile

    async def recalculate_missing_percentiles(self, subject_id: Any) -> Dict[str, Any]:
        """为缺少百分位的结果补算并写回"""
        rows = await self.result_repo.get_results(subject_id)
        updated: List[Any] = []
        unresolved: List[Any] = []

        for row in rows:
            if row.get("percentil") is not None:
                continue
            percentile = await self.convert(row.get("aptitud_codigo"), row.get("puntaje_directo"))
            if percentile is None:
                unresolved.append(row.get("id"))
                continue
            await self.result_repo.update_result(row["id"], {"percentil": percentile})
            updated.append(row["id"])

        if updated:
            logger.info(f"Recalculated {len(updated)} percentiles for subject {subject_id}")
        return {"updated": updated, "unresolved": unresolved}
