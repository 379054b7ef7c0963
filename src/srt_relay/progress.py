"""Progress tracking and resume support."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional
from dataclasses import dataclass, asdict, field
from datetime import datetime

from .config import PROGRESS_SUFFIX

logger = logging.getLogger(__name__)


@dataclass
class JobProgress:
    """翻译进度记录。outputs 为已完成的前缀行。"""

    input_file: str
    document_id: str
    total_lines: int
    outputs: List[str] = field(default_factory=list)
    started_at: str = ""
    updated_at: str = ""

    @classmethod
    def create(cls, input_file: str, document_id: str, total_lines: int) -> "JobProgress":
        """创建新的进度记录。"""
        now = datetime.now().isoformat()
        return cls(
            input_file=input_file,
            document_id=document_id,
            total_lines=total_lines,
            started_at=now,
            updated_at=now,
        )

    def update(self, outputs: List[str]) -> None:
        """记录当前已完成的译文。"""
        self.outputs = list(outputs)
        self.updated_at = datetime.now().isoformat()

    @property
    def resume_index(self) -> int:
        return len(self.outputs)

    @property
    def is_complete(self) -> bool:
        """检查是否全部完成。"""
        return len(self.outputs) >= self.total_lines

    @property
    def completion_rate(self) -> float:
        """完成率 (0-1)。"""
        if self.total_lines == 0:
            return 1.0
        return len(self.outputs) / self.total_lines


def get_progress_file(input_path: Path) -> Path:
    """获取进度文件路径。"""
    return input_path.with_suffix(input_path.suffix + PROGRESS_SUFFIX)


def save_progress(progress: JobProgress, path: Path) -> bool:
    """
    保存进度到文件。

    Returns:
        True if successful
    """
    try:
        with path.open('w', encoding='utf-8') as f:
            json.dump(asdict(progress), f, ensure_ascii=False, indent=2)

        logger.debug(f"Progress saved to {path}")
        return True
    except (OSError, TypeError) as e:
        logger.error(f"Failed to save progress: {e}")
        return False


def load_progress(path: Path) -> Optional[JobProgress]:
    """
    从文件加载进度。

    Returns:
        JobProgress if found and valid, None otherwise
    """
    if not path.exists():
        return None

    try:
        with path.open('r', encoding='utf-8') as f:
            data = json.load(f)

        return JobProgress(**data)
    except (OSError, json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to load progress file: {e}")
        return None


def delete_progress(path: Path) -> None:
    """删除进度文件。"""
    try:
        if path.exists():
            path.unlink()
            logger.debug(f"Progress file deleted: {path}")
    except OSError as e:
        logger.warning(f"Failed to delete progress file: {e}")
