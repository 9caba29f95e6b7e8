"""初始化数据库"""
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database.manager import DatabaseManager
from config.gym_config import gym_config
from loguru import logger


def seed_default_plans(db: DatabaseManager) -> int:
    """套餐表为空时写入默认套餐，返回写入数量。"""
    if db.list_plans():
        logger.info("Plans already exist, skipping seed")
        return 0

    for plan in gym_config.get_default_plans():
        db.create_plan(plan)
        logger.info(f"Created plan: {plan['name']}")
    return len(gym_config.get_default_plans())


def init_database():
    """初始化数据库和种子数据"""
    logger.info("Initializing database...")

    db = DatabaseManager()

    logger.info("Creating tables...")
    db.create_tables()

    logger.info("Inserting seed data...")
    seed_default_plans(db)

    db.close()
    logger.info("Database initialization completed!")


if __name__ == "__main__":
    init_database()
