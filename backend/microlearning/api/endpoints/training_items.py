from typing import List

from fastapi import APIRouter, Depends, Query, status

from microlearning.config.dependency_injection import get_training_service
from microlearning.schemas.response import StandardResponse
from microlearning.schemas.training_item import (
    ImportRequest,
    ImportResult,
    MoveRequest,
    ProgressUpdateRequest,
    RoadmapInfo,
    StatusUpdateRequest,
    TrainingItemCreate,
    TrainingItemRecord,
    TrainingItemUpdate,
    TrainingTreeNode,
    UserStats,
)
from microlearning.services.training_import import ROADMAP_CATALOG, fetch_roadmap_markdown, parse_import
from microlearning.services.training_service import TrainingService

router = APIRouter()


@router.get("/users/{owner_id}/tree", response_model=StandardResponse[List[TrainingTreeNode]])
def get_training_tree(owner_id: str, service: TrainingService = Depends(get_training_service)):
    """
    获取用户的完整训练森林（嵌套结构，附带子树总时长和整体进度）
    """
    return StandardResponse(data=service.get_training_tree(owner_id))


@router.get("/users/{owner_id}/stats", response_model=StandardResponse[UserStats])
def get_user_stats(owner_id: str, service: TrainingService = Depends(get_training_service)):
    return StandardResponse(data=service.get_user_stats(owner_id))


@router.get("/users/{owner_id}/search", response_model=StandardResponse[List[TrainingItemRecord]])
def search_training_items(
        owner_id: str,
        q: str = Query(..., min_length=1),
        service: TrainingService = Depends(get_training_service)
):
    return StandardResponse(data=service.search(owner_id, q))


@router.get("/roadmaps", response_model=StandardResponse[List[RoadmapInfo]])
def list_roadmaps():
    """
    可以从 roadmap.sh 导入的常用路线
    """
    return StandardResponse(data=ROADMAP_CATALOG)


@router.post("/users/{owner_id}/import", response_model=StandardResponse[ImportResult], status_code=status.HTTP_201_CREATED)
def import_training_items(
        owner_id: str,
        import_in: ImportRequest,
        service: TrainingService = Depends(get_training_service)
):
    """
    从 CSV / Speckit CSV / Speckit JSON / roadmap.sh Markdown 批量导入训练条目

    roadmap 格式未提供 content 时，按 roadmap_id 从 developer-roadmap 仓库拉取。

    Args:
        owner_id: 用户ID
        import_in: 格式和内容
        service: 训练条目服务

    Returns:
        StandardResponse[ImportResult]: 导入结果，逐行错误放在 errors 中
    """
    content = import_in.content
    if import_in.format == "roadmap" and content is None:
        content = fetch_roadmap_markdown(import_in.roadmap_id)
    batch = parse_import(import_in.format, content, owner_id, roadmap_id=import_in.roadmap_id, title=import_in.title)
    result = service.import_items(owner_id, batch)
    return StandardResponse(data=result)


@router.post("/items", response_model=StandardResponse[TrainingItemRecord], status_code=status.HTTP_201_CREATED)
def create_training_item(item_in: TrainingItemCreate, service: TrainingService = Depends(get_training_service)):
    """
    创建训练条目，默认追加到父节点子列表末尾
    """
    return StandardResponse(data=service.create_item(item_in))


@router.get("/items/{item_id}", response_model=StandardResponse[TrainingTreeNode])
def get_training_item(item_id: str, service: TrainingService = Depends(get_training_service)):
    return StandardResponse(data=service.get_item_tree(item_id))


@router.patch("/items/{item_id}", response_model=StandardResponse[TrainingItemRecord])
def update_training_item(
        item_id: str,
        item_in: TrainingItemUpdate,
        service: TrainingService = Depends(get_training_service)
):
    return StandardResponse(data=service.update_item(item_id, item_in))


@router.patch("/items/{item_id}/progress", response_model=StandardResponse[TrainingItemRecord])
def update_training_progress(
        item_id: str,
        progress_in: ProgressUpdateRequest,
        service: TrainingService = Depends(get_training_service)
):
    """
    更新进度。进度被截断到[0,100]，达到100时自动标记为完成。
    """
    return StandardResponse(data=service.update_progress(item_id, progress_in.progress_percentage))


@router.patch("/items/{item_id}/status", response_model=StandardResponse[TrainingItemRecord])
def update_training_status(
        item_id: str,
        status_in: StatusUpdateRequest,
        service: TrainingService = Depends(get_training_service)
):
    return StandardResponse(data=service.set_status(item_id, status_in.status))


@router.post("/items/{item_id}/move", response_model=StandardResponse[List[TrainingItemRecord]])
def move_training_item(
        item_id: str,
        move_in: MoveRequest,
        service: TrainingService = Depends(get_training_service)
):
    """
    移动训练条目，返回所有被更新的记录
    """
    return StandardResponse(data=service.move_item(item_id, move_in.new_parent_id, move_in.new_order_index))


@router.delete("/items/{item_id}", response_model=StandardResponse[List[TrainingItemRecord]])
def delete_training_item(item_id: str, service: TrainingService = Depends(get_training_service)):
    """
    删除条目及其整棵子树，返回被重新编号的同级记录
    """
    return StandardResponse(data=service.delete_item(item_id))
