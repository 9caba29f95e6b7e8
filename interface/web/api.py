"""Web 管理后台 - JSON API

基于 FastAPI 为前台页面提供会员、套餐、支付、提醒的增删改查接口：
1. 登录认证（Bearer token）
2. 仪表盘统计
3. 会员 / 套餐 / 会员卡 / 支付 / 提醒的 JSON 接口

所有数据操作都委托给 DatabaseManager，业务错误统一映射为 HTTP 状态码：
ValidationError → 422，NotFoundError → 404，ReferentialError → 409，
StorageError → 503。

使用方式：
    ```python
    console = WebConsole(db_manager=db, port=8080)
    await console.startup()
    # 访问 http://localhost:8080/docs 查看接口
    ```
"""
import asyncio
import secrets
import threading
from datetime import datetime, date, timedelta
from typing import Any, Dict, Optional

from loguru import logger

from business.errors import (
    NotFoundError, ReferentialError, StorageError, ValidationError
)
from config.gym_config import gym_config


def _found(value: Any, what: str, record_id: int) -> Any:
    """门面返回 None / False 时转换为 NotFoundError。"""
    if value is None or value is False:
        raise NotFoundError(f"{what} {record_id} not found")
    return value


class WebConsole:
    """Web 管理后台

    路由：
    - POST /api/login                      → 登录认证
    - GET  /health                         → 健康检查
    - GET  /api/dashboard                  → 仪表盘统计
    - GET/POST /api/members                → 会员列表 / 新增会员
    - GET/PUT/DELETE /api/members/{id}     → 会员详情 / 修改 / 删除
    - GET  /api/members/{id}/membership    → 当前会员卡
    - POST /api/members/{id}/renew         → 续卡
    - POST /api/memberships                → 开卡
    - POST /api/memberships/{id}/close     → 结束会员卡
    - GET/POST /api/plans                  → 套餐列表 / 新增套餐
    - GET/PUT/DELETE /api/plans/{id}       → 套餐详情 / 修改 / 删除
    - PUT  /api/plans/{id}/active          → 上架 / 下架
    - GET/POST /api/payments               → 支付列表 / 记录支付
    - PUT  /api/payments/{id}/status       → 更新支付状态
    - GET  /api/payment-methods            → 支付方式
    - GET/POST /api/reminders              → 提醒列表 / 新增提醒
    - PUT  /api/reminders/{id}/status      → 切换提醒状态
    - POST /api/reminders/sync-expiry      → 生成到期提醒
    """

    def __init__(
        self,
        db_manager,
        host: str = "0.0.0.0",
        port: int = 8080,
        username: str = "admin",
        password: str = "admin123",
        token_hours: int = 24,
    ):
        self.db_manager = db_manager
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.token_hours = token_hours
        self.running = False
        self.app = self._create_app()
        self._server_thread: Optional[threading.Thread] = None
        self._server = None  # uvicorn.Server 实例
        self._server_loop = None
        # 简易 token 存储
        self._valid_tokens: Dict[str, datetime] = {}

    def _generate_token(self) -> str:
        """生成登录 token"""
        token = secrets.token_hex(32)
        self._valid_tokens[token] = datetime.now() + timedelta(hours=self.token_hours)
        return token

    def _verify_token(self, token: str) -> bool:
        """验证 token"""
        if token not in self._valid_tokens:
            return False
        if datetime.now() > self._valid_tokens[token]:
            del self._valid_tokens[token]
            return False
        return True

    def _create_app(self):
        """创建 FastAPI 应用"""
        from fastapi import FastAPI, Request, Depends, HTTPException
        from fastapi.responses import JSONResponse

        app = FastAPI(
            title="GymDesk",
            description="健身房会员管理后台 JSON API",
            version="1.0.0",
        )
        db = self.db_manager

        def get_current_user(request: Request):
            """从请求头中验证 token"""
            auth = request.headers.get("Authorization", "")
            if auth.startswith("Bearer "):
                token = auth[7:]
                if self._verify_token(token):
                    return True
            raise HTTPException(status_code=401, detail="Not authenticated")

        # ==================== 错误映射 ====================

        @app.exception_handler(ValidationError)
        async def on_validation_error(request: Request, exc: ValidationError):
            return JSONResponse(
                status_code=422,
                content={"error": exc.message, "errors": exc.errors},
            )

        @app.exception_handler(NotFoundError)
        async def on_not_found(request: Request, exc: NotFoundError):
            return JSONResponse(status_code=404, content={"error": exc.message})

        @app.exception_handler(ReferentialError)
        async def on_referential_error(request: Request, exc: ReferentialError):
            return JSONResponse(status_code=409, content={"error": exc.message})

        @app.exception_handler(StorageError)
        async def on_storage_error(request: Request, exc: StorageError):
            logger.error(f"Storage failure on {request.url.path}: {exc.message}")
            return JSONResponse(status_code=503, content={"error": exc.message})

        # ==================== 认证 API ====================

        @app.post("/api/login")
        async def login(data: dict):
            """登录认证"""
            username = data.get("username", "")
            password = data.get("password", "")
            if username == self.username and password == self.password:
                token = self._generate_token()
                logger.info(f"User '{username}' logged in")
                return {"success": True, "token": token}
            logger.warning(f"Failed login attempt for '{username}'")
            return JSONResponse(
                status_code=401,
                content={"success": False, "error": "Invalid username or password"},
            )

        # ==================== 健康检查 ====================

        @app.get("/health")
        async def health_check():
            """健康检查"""
            return {
                "status": "ok",
                "running": self.running,
                "db_connected": db.ping(),
            }

        # ==================== 仪表盘 ====================

        @app.get("/api/dashboard")
        async def dashboard(today: Optional[date] = None,
                            _=Depends(get_current_user)):
            """仪表盘统计"""
            return db.get_dashboard_stats(today)

        # ==================== 会员 ====================

        @app.get("/api/members")
        async def members_list(search: Optional[str] = None,
                               status: Optional[str] = None,
                               _=Depends(get_current_user)):
            """会员列表"""
            return {"data": db.list_members(search=search, status=status)}

        @app.post("/api/members", status_code=201)
        async def member_create(data: dict, _=Depends(get_current_user)):
            """新增会员（可同时开卡）"""
            return db.create_member(data)

        @app.get("/api/members/{member_id}")
        async def member_detail(member_id: int, _=Depends(get_current_user)):
            """会员详情"""
            return _found(db.get_member(member_id), "Member", member_id)

        @app.put("/api/members/{member_id}")
        async def member_update(member_id: int, data: dict,
                                _=Depends(get_current_user)):
            """修改会员资料"""
            return _found(db.update_member(member_id, data), "Member", member_id)

        @app.delete("/api/members/{member_id}")
        async def member_delete(member_id: int, _=Depends(get_current_user)):
            """删除会员"""
            _found(db.delete_member(member_id), "Member", member_id)
            return {"success": True}

        @app.get("/api/members/{member_id}/membership")
        async def member_current_membership(member_id: int,
                                            _=Depends(get_current_user)):
            """会员当前会员卡"""
            _found(db.get_member(member_id), "Member", member_id)
            return {"data": db.get_current_membership(member_id)}

        @app.post("/api/members/{member_id}/renew", status_code=201)
        async def member_renew(member_id: int, data: dict,
                               _=Depends(get_current_user)):
            """续卡"""
            return db.renew_membership(
                member_id, data.get("plan_id"), data.get("start_date")
            )

        # ==================== 会员卡 ====================

        @app.post("/api/memberships", status_code=201)
        async def membership_create(data: dict, _=Depends(get_current_user)):
            """开卡"""
            return db.create_membership(
                data.get("member_id"), data.get("plan_id"), data.get("start_date")
            )

        @app.post("/api/memberships/{membership_id}/close")
        async def membership_close(membership_id: int, data: dict,
                                   _=Depends(get_current_user)):
            """结束会员卡"""
            return _found(
                db.close_membership(membership_id, data.get("status", "expired")),
                "Membership", membership_id,
            )

        # ==================== 套餐 ====================

        @app.get("/api/plans")
        async def plans_list(active_only: bool = False,
                             _=Depends(get_current_user)):
            """套餐列表（含会员数）"""
            return {"data": db.list_plans(active_only=active_only)}

        @app.post("/api/plans", status_code=201)
        async def plan_create(data: dict, _=Depends(get_current_user)):
            """新增套餐"""
            return db.create_plan(data)

        @app.get("/api/plans/{plan_id}")
        async def plan_detail(plan_id: int, _=Depends(get_current_user)):
            """套餐详情"""
            return _found(db.get_plan(plan_id), "Plan", plan_id)

        @app.put("/api/plans/{plan_id}")
        async def plan_update(plan_id: int, data: dict,
                              _=Depends(get_current_user)):
            """修改套餐"""
            return _found(db.update_plan(plan_id, data), "Plan", plan_id)

        @app.put("/api/plans/{plan_id}/active")
        async def plan_set_active(plan_id: int, data: dict,
                                  _=Depends(get_current_user)):
            """上架 / 下架套餐"""
            return _found(
                db.set_plan_active(plan_id, data.get("is_active")),
                "Plan", plan_id,
            )

        @app.delete("/api/plans/{plan_id}")
        async def plan_delete(plan_id: int, _=Depends(get_current_user)):
            """删除套餐"""
            _found(db.delete_plan(plan_id), "Plan", plan_id)
            return {"success": True}

        # ==================== 支付 ====================

        @app.get("/api/payments")
        async def payments_list(status: Optional[str] = None,
                                search: Optional[str] = None,
                                member_id: Optional[int] = None,
                                _=Depends(get_current_user)):
            """支付记录"""
            return {"data": db.list_payments(
                status=status, search=search, member_id=member_id
            )}

        @app.get("/api/payment-methods")
        async def payment_methods(_=Depends(get_current_user)):
            """支付方式（表单下拉选项）"""
            return {"data": gym_config.get_payment_methods()}

        @app.post("/api/payments", status_code=201)
        async def payment_create(data: dict, _=Depends(get_current_user)):
            """记录支付"""
            return db.create_payment(data)

        @app.put("/api/payments/{payment_id}/status")
        async def payment_status(payment_id: int, data: dict,
                                 _=Depends(get_current_user)):
            """更新支付状态"""
            return _found(
                db.update_payment_status(payment_id, data.get("status")),
                "Payment", payment_id,
            )

        # ==================== 提醒 ====================

        @app.get("/api/reminders")
        async def reminders_list(reminder_type: Optional[str] = None,
                                 status: Optional[str] = None,
                                 _=Depends(get_current_user)):
            """提醒列表"""
            return {"data": db.list_reminders(
                reminder_type=reminder_type, status=status
            )}

        @app.post("/api/reminders", status_code=201)
        async def reminder_create(data: dict, _=Depends(get_current_user)):
            """新增提醒"""
            return db.create_reminder(data)

        @app.put("/api/reminders/{reminder_id}/status")
        async def reminder_status(reminder_id: int, data: dict,
                                  _=Depends(get_current_user)):
            """切换提醒状态"""
            return _found(
                db.update_reminder_status(reminder_id, data.get("status")),
                "Reminder", reminder_id,
            )

        @app.post("/api/reminders/sync-expiry")
        async def reminders_sync(data: Optional[dict] = None,
                                 _=Depends(get_current_user)):
            """为即将到期的会员卡生成提醒"""
            created = db.sync_expiry_reminders(
                window_days=(data or {}).get("window_days")
            )
            return {"created": len(created), "data": created}

        return app

    async def startup(self):
        """启动 Web 服务器"""
        import uvicorn

        self.running = True

        def run_server():
            """在独立线程中运行 uvicorn 服务器"""
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._server_loop = loop

            config = uvicorn.Config(
                self.app,
                host=self.host,
                port=self.port,
                log_level="warning",
                loop="asyncio",
            )
            self._server = uvicorn.Server(config)
            # 信号由 app.py 统一处理
            self._server.install_signal_handlers = lambda: None

            try:
                loop.run_until_complete(self._server.serve())
            except Exception as e:
                logger.error(f"Web server crashed: {e}")
            finally:
                loop.run_until_complete(loop.shutdown_asyncgens())
                loop.close()

        self._server_thread = threading.Thread(target=run_server, daemon=True)
        self._server_thread.start()

        # 等待服务器启动
        waited = 0.0
        while self._server is None and waited < 5:
            await asyncio.sleep(0.1)
            waited += 0.1

        logger.info(f"Web console started: http://{self.host}:{self.port}")

    async def shutdown(self):
        """停止 Web 服务器"""
        self.running = False

        if self._server is not None:
            logger.info("Stopping web server...")
            self._server.should_exit = True

            if self._server_thread and self._server_thread.is_alive():
                self._server_thread.join(timeout=3.0)

            if self._server_thread and self._server_thread.is_alive():
                logger.warning("Web server did not stop within 3s, forcing exit")
                self._server.force_exit = True
                self._server_thread.join(timeout=2.0)

            self._server = None
            self._server_loop = None
            self._server_thread = None

        logger.info("Web console stopped")
