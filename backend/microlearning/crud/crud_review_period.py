from typing import List, Optional
from sqlalchemy.orm import Session
from microlearning.crud.base import CRUDBase, SortDirection
from microlearning.models.review_period import ReviewPeriod
from microlearning.schemas.review_period import ReviewPeriodCreate, ReviewPeriodUpdate

class CRUDReviewPeriod(CRUDBase[ReviewPeriod, ReviewPeriodCreate, ReviewPeriodUpdate]):
    def get_by_owner(self, db: Session, *, owner_id: str) -> List[ReviewPeriod]:
        """
        查询指定用户的复盘周期，按年份和周期编号升序
        """
        return self.get_multi(
            db,
            filter_conditions={"owner_id": owner_id},
            sort_by=[("year", SortDirection.ASC), ("period_number", SortDirection.ASC)]
        )

    def get_by_period(self, db: Session, *, owner_id: str, year: int, period_number: int) -> Optional[ReviewPeriod]:
        rows = self.get_multi(
            db,
            filter_conditions={"owner_id": owner_id, "year": year, "period_number": period_number},
            limit=1
        )
        return rows[0] if rows else None

# 实例化并暴露给服务层使用
review_period = CRUDReviewPeriod(ReviewPeriod)
