from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, Union, Tuple
from pydantic import BaseModel
from sqlalchemy.orm import Session
from sqlalchemy import asc, desc

# 导入SQLAlchemy模型基类
from microlearning.db.base_class import Base

# 定义泛型类型变量
ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)
UpdateSchemaType = TypeVar("UpdateSchemaType", bound=BaseModel)

# 定义排序方向枚举
from enum import Enum

class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class CRUDBase(Generic[ModelType, CreateSchemaType, UpdateSchemaType]):
    def __init__(self, model: Type[ModelType]):
        """
        具有默认创建、读取、更新操作的CRUD对象，删除由各模型按自身语义实现。

        写操作默认立即提交；传入 commit=False 时只 flush，由调用方在同一事务中统一提交。

        **参数**

        * `model`: SQLAlchemy模型类
        """
        self.model = model

    def get(self, db: Session, obj_id: Any) -> Optional[ModelType]:
        """
        通过ID获取单个记录。

        Args:
            db: 数据库会话
            obj_id: 记录ID

        Returns:
            Optional[ModelType]: 找到的记录，如果不存在则返回None
        """
        if obj_id is None:
            return None
        return db.get(self.model, obj_id)

    def _apply_filters(self, query, filter_conditions: Optional[Dict[str, Any]]):
        if filter_conditions:
            for field, value in filter_conditions.items():
                if hasattr(self.model, field):
                    # 简单相等筛选
                    query = query.filter(getattr(self.model, field) == value)
                else:
                    raise ValueError(f"Unknown filter field: {field}")
        return query

    def get_multi(
        self,
        db: Session,
        *,
        skip: int = 0,
        limit: Optional[int] = None,
        filter_conditions: Optional[Dict[str, Any]] = None,
        sort_by: Optional[Union[str, List[Tuple[str, SortDirection]]]] = None
    ) -> List[ModelType]:
        """
        获取多个记录（支持分页、筛选和排序）。

        Args:
            db: 数据库会话
            skip: 跳过的记录数，默认为0
            limit: 返回的记录数限制，默认不限制
            filter_conditions: 筛选条件字典，例如 {"owner_id": "user123"}
            sort_by: 排序字段，可以是单个字段名字符串或字段-方向元组列表

        Returns:
            List[ModelType]: 记录列表
        """
        query = self._apply_filters(db.query(self.model), filter_conditions)

        # 应用排序
        if sort_by:
            if isinstance(sort_by, str):
                # 单字段排序，默认升序
                query = query.order_by(asc(getattr(self.model, sort_by)))
            elif isinstance(sort_by, list):
                # 多字段排序
                for field, direction in sort_by:
                    if hasattr(self.model, field):
                        column = getattr(self.model, field)
                        if direction == SortDirection.DESC:
                            query = query.order_by(desc(column))
                        else:
                            query = query.order_by(asc(column))

        # 应用分页
        query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def get_count(
        self,
        db: Session,
        *,
        filter_conditions: Optional[Dict[str, Any]] = None
    ) -> int:
        """
        获取符合条件的记录总数。
        """
        return self._apply_filters(db.query(self.model), filter_conditions).count()

    def create(
        self,
        db: Session,
        *,
        obj_in: Union[CreateSchemaType, Dict[str, Any]],
        commit: bool = True
    ) -> ModelType:
        """
        创建一个新的记录。

        Args:
            db: 数据库会话
            obj_in: 创建记录的数据对象或字典
            commit: 是否立即提交

        Returns:
            ModelType: 创建的记录
        """
        obj_in_data = obj_in if isinstance(obj_in, dict) else obj_in.model_dump()
        db_obj = self.model(**obj_in_data)  # SQLAlchemy model
        db.add(db_obj)
        self._persist(db, db_obj, commit)
        return db_obj

    def update(
        self,
        db: Session,
        *,
        db_obj: ModelType,
        obj_in: Union[UpdateSchemaType, Dict[str, Any]],
        commit: bool = True
    ) -> ModelType:
        """
        更新一个已存在的记录。

        Args:
            db: 数据库会话
            db_obj: 要更新的数据库对象
            obj_in: 更新数据对象，可以是UpdateSchemaType或字典
            commit: 是否立即提交

        Returns:
            ModelType: 更新后的记录
        """
        if db_obj is None:
            raise TypeError("db_obj must not be None")
        if isinstance(obj_in, dict):
            update_data = obj_in
        else:
            # exclude_unset=True 表示只获取被显式设置了值的字段
            update_data = obj_in.model_dump(exclude_unset=True)

        for field, value in update_data.items():
            if hasattr(db_obj, field):
                setattr(db_obj, field, value)

        db.add(db_obj)
        self._persist(db, db_obj, commit)
        return db_obj

    @staticmethod
    def _persist(db: Session, db_obj: ModelType, commit: bool) -> None:
        if commit:
            db.commit()
            db.refresh(db_obj)
        else:
            db.flush()
