"""
训练条目导入

把外部学习大纲转换为平铺的 TrainingItemCreate 列表。ID 由导入器预先分配，
父节点总是排在子节点之前，level 和 order_index 已按树结构填好，
服务层只需按顺序写入即可。

支持四种格式：
- csv:          通用CSV，每行一个根条目
- speckit_csv:  topic -> concept -> unit 三层结构的CSV
- speckit_json: Speckit 学习大纲 JSON
- roadmap:      roadmap.sh 的 Markdown 路线（可以直接从 developer-roadmap 仓库拉取）
"""
import base64
import csv
import io
import logging
import re
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from microlearning.core.config import settings
from microlearning.core.exceptions import ExternalSourceError, ValidationError
from microlearning.schemas.training_item import (
    DifficultyLevel,
    RoadmapInfo,
    SkillCategory,
    SkillType,
    TrainingItemCreate,
    TrainingSource,
)
from microlearning.services.training_store import new_item_id

logger = logging.getLogger(__name__)

E = TypeVar("E")

TOPIC_OVERVIEW_MINUTES = 60
CONCEPT_OVERVIEW_MINUTES = 30
DEFAULT_UNIT_MINUTES = 15
DEFAULT_CSV_MINUTES = 60
MINUTES_PER_WEEK = 7 * 30
ROADMAP_ITEM_MINUTES = 2 * 60
ROADMAP_GROUP_MINUTES = 60
ROADMAP_METADATA_PREFIXES = ("---", "briefTitle:", "briefDescription:")
LINK_PATTERN = re.compile(r"\[(.*?)\]\((.*?)\)")


class ImportBatch(BaseModel):
    """解析结果：待写入的条目和逐行错误"""
    items: List[TrainingItemCreate] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def root_item_id(self) -> Optional[str]:
        for item in self.items:
            if item.parent_id is None:
                return item.id
        return None


class SpeckitResource(BaseModel):
    type: str
    title: str
    url: Optional[str] = None
    duration: Optional[str] = None


class SpeckitExercise(BaseModel):
    title: str
    description: Optional[str] = None
    estimatedMinutes: Optional[int] = None


class SpeckitUnit(BaseModel):
    title: str
    description: Optional[str] = None
    estimatedMinutes: int = Field(..., ge=0)
    learningResources: List[SpeckitResource] = Field(default_factory=list)
    practiceExercises: List[SpeckitExercise] = Field(default_factory=list)


class SpeckitConcept(BaseModel):
    name: str
    description: Optional[str] = None
    units: List[SpeckitUnit] = Field(default_factory=list)


class SpeckitTopic(BaseModel):
    title: str
    description: Optional[str] = None
    estimatedWeeks: Optional[int] = Field(None, ge=0)
    skillType: str = "hard_skill"
    category: str = "technical"
    difficulty: str = "beginner"


class SpeckitDocument(BaseModel):
    """Speckit 学习大纲"""
    topic: SpeckitTopic
    concepts: List[SpeckitConcept] = Field(default_factory=list)


def _enum_or_default(enum_cls: Type[E], value: Optional[str], default: E) -> E:
    """不区分大小写地匹配枚举值，无法识别时返回默认值"""
    try:
        return enum_cls((value or "").strip().lower())
    except ValueError:
        return default


def _int_or_default(value: Optional[str], default: int) -> int:
    try:
        return int((value or "").strip())
    except ValueError:
        return default


def _minutes_or_default(value: Optional[str], default: int) -> int:
    """空值使用默认时长；非整数或负数抛出 ValueError"""
    value = (value or "").strip()
    if not value:
        return default
    minutes = int(value)
    if minutes < 0:
        raise ValueError(f"minutes must not be negative, got {minutes}")
    return minutes


def _read_rows(text: str) -> List[Dict[str, str]]:
    reader = csv.reader(io.StringIO(text.strip()))
    try:
        headers = [h.strip().lower() for h in next(reader)]
    except StopIteration:
        raise ValidationError("CSV content is empty") from None

    rows = []
    for values in reader:
        if len(values) < 2:
            continue
        values = [v.strip() for v in values]
        rows.append({header: values[i] if i < len(values) else "" for i, header in enumerate(headers)})
    return rows


def parse_generic_csv(text: str, owner_id: str) -> ImportBatch:
    """
    通用CSV：表头包含 title, description, category, skill_type, level, minutes。
    每行生成一个根条目；minutes 不是整数的行记录错误后跳过。
    """
    batch = ImportBatch()
    for line_no, row in enumerate(_read_rows(text), start=1):
        title = row.get("title") or next(iter(row.values()), "")
        minutes_raw = row.get("minutes") or str(DEFAULT_CSV_MINUTES)
        try:
            minutes = int(minutes_raw)
            item = TrainingItemCreate(
                id=new_item_id(),
                owner_id=owner_id,
                title=title,
                description=row.get("description") or None,
                category=_enum_or_default(SkillCategory, row.get("category"), SkillCategory.TECHNICAL),
                skill_type=_enum_or_default(SkillType, row.get("skill_type"), SkillType.HARD_SKILL),
                difficulty_level=_enum_or_default(DifficultyLevel, row.get("level"), DifficultyLevel.BEGINNER),
                estimated_duration_minutes=minutes,
                source=TrainingSource.IMPORTED_CSV,
                tags=["csv", "imported"],
                level=0,
                order_index=len(batch.items),
            )
        except (ValueError, PydanticValidationError) as e:
            batch.errors.append(f"Line {line_no}: {e}")
            continue
        batch.items.append(item)

    logger.info(f"Parsed {len(batch.items)} CSV item(s), {len(batch.errors)} error(s)")
    return batch


def parse_speckit_csv(text: str, owner_id: str) -> ImportBatch:
    """
    Speckit CSV：每行是一个学习单元，按 topic_title、concept 分组（保持首次出现顺序），
    组内单元按 order_index 排序，生成 topic(0) -> concept(1) -> unit(2) 三层树。
    """
    batch = ImportBatch()
    topics: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}
    for line_no, row in enumerate(_read_rows(text), start=1):
        if not row.get("topic_title") or not row.get("concept") or not row.get("unit_title"):
            batch.errors.append(f"Line {line_no}: topic_title, concept and unit_title are required")
            continue
        try:
            row["estimated_minutes"] = _minutes_or_default(row.get("estimated_minutes"), DEFAULT_UNIT_MINUTES)
        except ValueError as e:
            batch.errors.append(f"Line {line_no}: estimated_minutes: {e}")
            continue
        row["order_index"] = _int_or_default(row.get("order_index"), line_no)
        row["line_no"] = line_no
        topics.setdefault(row["topic_title"], {}).setdefault(row["concept"], []).append(row)

    for topic_index, (topic_title, concepts) in enumerate(topics.items()):
        sample = next(iter(concepts.values()))[0]
        category = _enum_or_default(SkillCategory, sample.get("category"), SkillCategory.TECHNICAL)
        difficulty = _enum_or_default(DifficultyLevel, sample.get("difficulty"), DifficultyLevel.BEGINNER)
        topic = TrainingItemCreate(
            id=new_item_id(),
            owner_id=owner_id,
            title=topic_title,
            description=f"Learning topic: {topic_title}",
            category=category,
            difficulty_level=difficulty,
            estimated_duration_minutes=TOPIC_OVERVIEW_MINUTES,
            source=TrainingSource.SPECKIT,
            level=0,
            order_index=topic_index,
        )
        batch.items.append(topic)

        for concept_index, (concept_name, units) in enumerate(concepts.items()):
            concept = TrainingItemCreate(
                id=new_item_id(),
                owner_id=owner_id,
                parent_id=topic.id,
                title=concept_name,
                description=f"Learning concept: {concept_name}",
                category=category,
                difficulty_level=difficulty,
                estimated_duration_minutes=CONCEPT_OVERVIEW_MINUTES,
                source=TrainingSource.SPECKIT,
                level=1,
                order_index=concept_index,
            )
            batch.items.append(concept)

            unit_index = 0
            for row in sorted(units, key=lambda r: r["order_index"]):
                try:
                    unit = TrainingItemCreate(
                        id=new_item_id(),
                        owner_id=owner_id,
                        parent_id=concept.id,
                        title=row["unit_title"],
                        description=row.get("description") or f"Learning unit: {row['unit_title']}",
                        category=_enum_or_default(SkillCategory, row.get("category"), category),
                        difficulty_level=_enum_or_default(DifficultyLevel, row.get("difficulty"), difficulty),
                        estimated_duration_minutes=row["estimated_minutes"],
                        source=TrainingSource.SPECKIT,
                        source_url=row.get("learning_resources") or None,
                        tags=[row["prerequisites"]] if row.get("prerequisites") else [],
                        level=2,
                        order_index=unit_index,
                    )
                except PydanticValidationError as e:
                    batch.errors.append(f"Line {row['line_no']}: {e}")
                    continue
                batch.items.append(unit)
                unit_index += 1

    logger.info(f"Parsed {len(topics)} Speckit topic(s) into {len(batch.items)} item(s)")
    return batch


def parse_speckit_json(data: Any, owner_id: str) -> ImportBatch:
    """
    Speckit JSON：topic 为根节点（estimatedWeeks * 7 * 30 分钟，缺省按1周），
    每个 concept 30 分钟，unit 使用自身时长，标签取学习资源类型。
    """
    try:
        document = SpeckitDocument.model_validate_json(data) if isinstance(data, (str, bytes)) \
            else SpeckitDocument.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Malformed Speckit document",
            errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
        ) from e

    topic = document.topic
    category = _enum_or_default(SkillCategory, topic.category, SkillCategory.TECHNICAL)
    skill_type = SkillType.HARD_SKILL if topic.skillType == SkillType.HARD_SKILL.value else SkillType.SOFT_SKILL
    difficulty = _enum_or_default(DifficultyLevel, topic.difficulty, DifficultyLevel.BEGINNER)
    shared = dict(
        owner_id=owner_id,
        category=category,
        skill_type=skill_type,
        difficulty_level=difficulty,
        source=TrainingSource.IMPORTED_JSON,
    )

    batch = ImportBatch()
    root = TrainingItemCreate(
        id=new_item_id(),
        title=topic.title,
        description=topic.description,
        estimated_duration_minutes=(topic.estimatedWeeks or 1) * MINUTES_PER_WEEK,
        level=0,
        order_index=0,
        **shared,
    )
    batch.items.append(root)

    for concept_index, concept in enumerate(document.concepts):
        concept_item = TrainingItemCreate(
            id=new_item_id(),
            parent_id=root.id,
            title=concept.name,
            description=concept.description,
            estimated_duration_minutes=CONCEPT_OVERVIEW_MINUTES,
            level=1,
            order_index=concept_index,
            **shared,
        )
        batch.items.append(concept_item)
        for unit_index, unit in enumerate(concept.units):
            batch.items.append(TrainingItemCreate(
                id=new_item_id(),
                parent_id=concept_item.id,
                title=unit.title,
                description=unit.description,
                estimated_duration_minutes=unit.estimatedMinutes,
                tags=[resource.type for resource in unit.learningResources],
                level=2,
                order_index=unit_index,
                **shared,
            ))

    logger.info(f"Parsed Speckit document '{topic.title}' into {len(batch.items)} item(s)")
    return batch


class RoadmapNode(BaseModel):
    """roadmap.sh Markdown 中的一个节点（## 主题、### 技能组、- 技能）"""
    title: str
    kind: Literal["topic", "skill"]
    difficulty: DifficultyLevel
    minutes: int
    links: List[str] = Field(default_factory=list)
    children: List["RoadmapNode"] = Field(default_factory=list)

    def total_minutes(self) -> int:
        return self.minutes + sum(child.total_minutes() for child in self.children)


ROADMAP_CATALOG = [
    RoadmapInfo(id="frontend", title="Frontend Developer",
                description="Step by step guide to becoming a modern frontend developer",
                url="https://roadmap.sh/frontend"),
    RoadmapInfo(id="backend", title="Backend Developer",
                description="Step by step guide to becoming a modern backend developer",
                url="https://roadmap.sh/backend"),
    RoadmapInfo(id="react", title="React Developer",
                description="Everything you need to learn React",
                url="https://roadmap.sh/react"),
    RoadmapInfo(id="nodejs", title="Node.js Developer",
                description="Step by step guide to becoming a Node.js developer",
                url="https://roadmap.sh/nodejs"),
    RoadmapInfo(id="typescript", title="TypeScript",
                description="Learn TypeScript with this interactive roadmap",
                url="https://roadmap.sh/typescript"),
    RoadmapInfo(id="angular", title="Angular Developer",
                description="Step by step guide to becoming an Angular developer",
                url="https://roadmap.sh/angular"),
    RoadmapInfo(id="devops", title="DevOps Engineer",
                description="Step by step guide to becoming a DevOps engineer",
                url="https://roadmap.sh/devops"),
    RoadmapInfo(id="full-stack", title="Full Stack Developer",
                description="Step by step guide to becoming a full stack developer",
                url="https://roadmap.sh/full-stack"),
]


def parse_roadmap_content(text: str) -> List[RoadmapNode]:
    """
    解析 roadmap.sh 的 Markdown：

    - `## 标题` 开始一个主题
    - `### 标题` 在当前主题下开始一个技能组（没有主题时忽略）
    - `- 条目` 挂到当前技能组、当前主题或顶层；`- [标题](链接)` 同时记录链接
    - 其他包含 `[文字](链接)` 的行把链接记到当前技能组或主题上

    空行、front matter 分隔线和 briefTitle/briefDescription 元数据被跳过。
    """
    nodes: List[RoadmapNode] = []
    section: Optional[RoadmapNode] = None
    subsection: Optional[RoadmapNode] = None

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(ROADMAP_METADATA_PREFIXES):
            continue

        if stripped.startswith("## "):
            title = stripped[3:].strip()
            section = RoadmapNode(title=title, kind="topic", difficulty=DifficultyLevel.INTERMEDIATE,
                                  minutes=ROADMAP_GROUP_MINUTES)
            nodes.append(section)
            subsection = None
        elif stripped.startswith("### "):
            if section is not None:
                subsection = RoadmapNode(title=stripped[4:].strip(), kind="skill",
                                         difficulty=DifficultyLevel.BEGINNER, minutes=ROADMAP_GROUP_MINUTES)
                section.children.append(subsection)
        elif stripped.startswith("- "):
            title, links = stripped[2:].strip(), []
            link = LINK_PATTERN.fullmatch(title)
            if link:
                title, links = link.group(1).strip(), [link.group(2).strip()]
            if not title:
                continue
            item = RoadmapNode(title=title, kind="skill", difficulty=DifficultyLevel.BEGINNER,
                               minutes=ROADMAP_ITEM_MINUTES, links=links)
            parent = subsection or section
            if parent is not None:
                parent.children.append(item)
            else:
                nodes.append(item)
        else:
            link = LINK_PATTERN.search(stripped)
            target = subsection or section
            if link and target is not None:
                target.links.append(link.group(2).strip())

    return [node for node in nodes if node.title]


def parse_roadmap_markdown(text: str, owner_id: str, roadmap_id: str, title: Optional[str] = None) -> ImportBatch:
    """
    roadmap.sh Markdown：生成一个合成根节点，其下是主题 -> 技能组 -> 技能。

    技能默认2小时，主题和技能组1小时；根节点时长为各顶层节点子树时长之和，
    标签为 ['roadmap', 'imported', roadmap_id]。节点的第一个链接作为 source_url。
    """
    nodes = parse_roadmap_content(text)
    batch = ImportBatch()
    if not nodes:
        batch.errors.append(f"No roadmap sections found for {roadmap_id}")
        return batch

    root = TrainingItemCreate(
        id=new_item_id(),
        owner_id=owner_id,
        title=title or f"{roadmap_id[:1].upper()}{roadmap_id[1:]} Roadmap",
        description=f"Imported roadmap from roadmap.sh/{roadmap_id}",
        category=SkillCategory.LEARNING,
        skill_type=SkillType.HARD_SKILL,
        difficulty_level=DifficultyLevel.INTERMEDIATE,
        estimated_duration_minutes=sum(node.total_minutes() for node in nodes),
        source=TrainingSource.ROADMAP_SH,
        source_url=f"https://roadmap.sh/{roadmap_id}",
        tags=["roadmap", "imported", roadmap_id],
        level=0,
        order_index=0,
    )
    batch.items.append(root)

    # 先序遍历，保证父节点排在子节点之前
    pending = [(node, root.id, 1, index) for index, node in reversed(list(enumerate(nodes)))]
    while pending:
        node, parent_id, level, index = pending.pop()
        item = TrainingItemCreate(
            id=new_item_id(),
            owner_id=owner_id,
            parent_id=parent_id,
            title=node.title,
            description=f"Learn {node.title}",
            category=SkillCategory.LEARNING if node.kind == "topic" else SkillCategory.TECHNICAL,
            skill_type=SkillType.HARD_SKILL if node.kind == "skill" else SkillType.SOFT_SKILL,
            difficulty_level=node.difficulty,
            estimated_duration_minutes=node.minutes,
            source=TrainingSource.ROADMAP_SH,
            source_url=node.links[0] if node.links else None,
            tags=["roadmap", "imported"],
            level=level,
            order_index=index,
        )
        batch.items.append(item)
        pending.extend(
            (child, item.id, level + 1, child_index)
            for child_index, child in reversed(list(enumerate(node.children)))
        )

    logger.info(f"Parsed roadmap {roadmap_id} into {len(batch.items)} item(s)")
    return batch


def fetch_roadmap_markdown(roadmap_id: str) -> str:
    """
    从 developer-roadmap 仓库读取路线的 Markdown。
    GitHub contents API 返回 base64 编码的 content 字段。
    """
    url = settings.ROADMAP_CONTENT_URL.format(roadmap_id=roadmap_id)
    try:
        response = requests.get(
            url,
            headers={"Accept": "application/vnd.github+json"},
            timeout=settings.ROADMAP_FETCH_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.error(f"Failed to fetch roadmap {roadmap_id}: {e}")
        raise ExternalSourceError(f"Failed to fetch roadmap {roadmap_id}: {e}") from e

    if response.status_code != 200:
        logger.error(f"Roadmap fetch failed: {response.status_code} - {response.text[:200]}")
        raise ExternalSourceError(f"Failed to fetch roadmap {roadmap_id}: HTTP {response.status_code}")

    try:
        payload = response.json()
        return base64.b64decode("".join(payload["content"].split())).decode("utf-8")
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ExternalSourceError(f"Roadmap {roadmap_id} returned unreadable content") from e


PARSERS = {
    "csv": parse_generic_csv,
    "speckit_csv": parse_speckit_csv,
    "speckit_json": parse_speckit_json,
    "roadmap": parse_roadmap_markdown,
}


def parse_import(
    format: str,
    content: Any,
    owner_id: str,
    roadmap_id: Optional[str] = None,
    title: Optional[str] = None,
) -> ImportBatch:
    try:
        parser = PARSERS[format]
    except KeyError:
        raise ValidationError(f"Unsupported import format: {format}") from None
    if format != "speckit_json" and not isinstance(content, str):
        raise ValidationError(f"{format} import expects text content")
    if format == "roadmap":
        if not roadmap_id:
            raise ValidationError("roadmap import requires roadmap_id")
        return parser(content, owner_id, roadmap_id, title=title)
    return parser(content, owner_id)
