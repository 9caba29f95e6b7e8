"""错误类型定义。

所有业务错误都继承 GymDeskError，携带一条可直接展示给用户的 message：

- ValidationError: 字段缺失或格式错误，在访问数据库之前抛出，可修正后重试
- StorageError: 数据库读写失败（网络、约束、权限），不重试
- ReferentialError: 存在依赖记录导致删除被阻止，或引用了不存在的记录
- NotFoundError: 目标记录不存在
"""
from typing import Any, Dict, List, Optional


class GymDeskError(Exception):
    """业务错误基类"""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GymDeskError, ValueError):
    """请求校验失败。

    Attributes:
        errors: 字段级错误列表，每项包含 field 与 message。
    """

    def __init__(self, message: str,
                 errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors: List[Dict[str, Any]] = errors or []


class StorageError(GymDeskError):
    """数据库操作失败"""


class ReferentialError(GymDeskError):
    """引用完整性错误"""


class NotFoundError(GymDeskError):
    """记录不存在"""
