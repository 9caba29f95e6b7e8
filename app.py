#!/usr/bin/env python3
"""GymDesk - 健身房会员管理后台入口

启动 Web 管理后台，提供会员、套餐、支付、提醒的 JSON 接口。

使用方式：
    python app.py

    # 指定端口
    python app.py --port 8080

    # 指定数据库
    python app.py --db sqlite:///data/gym.db

    # 首次启动时写入默认套餐
    python app.py --seed

环境变量（在 .env 文件中配置，运行 python scripts/setup_env.py 生成）：
    DATABASE_URL      数据库连接地址
    WEB_HOST          监听地址（默认 0.0.0.0）
    WEB_PORT          Web 端口（默认 8080）
    WEB_USERNAME      登录用户名（默认 admin）
    WEB_PASSWORD      登录密码（默认 admin123）
    LOG_LEVEL         日志级别（默认 INFO）
"""
import argparse
import asyncio
import signal
import sys

from loguru import logger

from config.settings import settings


def setup_logging(level: str) -> None:
    """配置 loguru 输出到 stderr"""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


async def _cleanup(web, db):
    """统一资源清理函数。

    确保 Web 服务器和数据库连接被正确关闭，释放端口和文件句柄。
    """
    logger.info("Cleaning up...")

    # 1. 停止 Web 服务器（释放端口）
    if web is not None:
        try:
            await web.shutdown()
        except Exception as e:
            logger.warning(f"Error while stopping web server: {e}")

    # 2. 关闭数据库连接（释放连接池）
    if db is not None:
        db.close()

    logger.info("Service stopped")


async def main():
    parser = argparse.ArgumentParser(description="GymDesk 健身房会员管理后台")
    parser.add_argument("--host", default=settings.web_host,
                        help=f"监听地址 (默认: {settings.web_host})")
    parser.add_argument("--port", type=int, default=settings.web_port,
                        help=f"监听端口 (默认: {settings.web_port})")
    parser.add_argument("--db", default=None,
                        help="数据库连接 URL (默认读取 DATABASE_URL)")
    parser.add_argument("--seed", action="store_true",
                        help="套餐表为空时写入默认套餐")
    args = parser.parse_args()

    setup_logging(settings.log_level)

    # 用于 finally 清理的引用
    web = None
    db = None

    try:
        # 初始化数据库
        from database.manager import DatabaseManager
        db = DatabaseManager(args.db)
        db.create_tables()
        logger.info(f"Database connected: {db.database_url}")

        if args.seed:
            from scripts.init_db import seed_default_plans
            seed_default_plans(db)

        # 创建 Web 后台
        from interface.web.api import WebConsole

        web = WebConsole(
            db_manager=db,
            host=args.host,
            port=args.port,
            username=settings.web_username,
            password=settings.web_password,
            token_hours=settings.web_token_hours,
        )

        await web.startup()

        print()
        print("=" * 60)
        print("  GymDesk 已启动!")
        print(f"  接口地址: http://localhost:{args.port}")
        print(f"  接口文档: http://localhost:{args.port}/docs")
        print(f"  用户名: {settings.web_username}")
        print(f"  数据库: {db.database_url}")
        print("=" * 60)
        print("  按 Ctrl+C 停止服务")
        print()

        # 设置信号处理
        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()

        def signal_handler(signum):
            """处理退出信号"""
            logger.info(f"Received signal {signum}, shutting down...")
            shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler, sig)

        # 保持运行，直到收到退出信号
        await shutdown_event.wait()

    except asyncio.CancelledError:
        logger.info("Task cancelled, cleaning up...")
    finally:
        await _cleanup(web, db)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        print("\n已停止。")
