"""用户接口模块 - Web 管理后台

提供基于 FastAPI 的 JSON 接口，供前台页面管理会员、套餐、支付与提醒：

核心组件：
- WebConsole: Web 管理后台（登录认证 + 数据接口 + uvicorn 后台线程）

架构设计：
    浏览器 ──→ WebConsole ──→ DatabaseManager ──→ 仓库 ──→ 数据库
              (HTTP/JSON)     (校验 + 字典)        (ORM)

使用示例：
    ```python
    from interface import WebConsole

    console = WebConsole(db_manager=db, port=8080)
    await console.startup()
    ```
"""
from interface.web.api import WebConsole

__all__ = [
    "WebConsole",
]
