#!/usr/bin/env python3
"""交互式生成 .env 配置文件

使用方式：
    python scripts/setup_env.py

会引导用户填写必要的配置项，生成 .env 文件。
"""
import os

# 项目根目录
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")


# 配置项定义：(env_key, 描述, 默认值, 是否必填)
CONFIG_ITEMS = [
    # === 数据库 ===
    ("DATABASE_URL", "数据库连接地址（PostgreSQL 需安装 postgres 依赖）", "sqlite:///data/gym.db", False),

    # === Web 后台 ===
    ("WEB_HOST", "Web 监听地址", "0.0.0.0", False),
    ("WEB_PORT", "Web 监听端口", "8080", False),
    ("WEB_USERNAME", "Web 登录用户名", "admin", False),
    ("WEB_PASSWORD", "Web 登录密码（请修改）", "", True),
    ("WEB_TOKEN_HOURS", "登录 token 有效小时数", "24", False),

    # === 会员状态规则 ===
    ("EXPIRING_WINDOW_DAYS", "剩余天数不超过此值时显示为 Expiring", "7", False),
    ("RENEWAL_WINDOW_DAYS", "仪表盘即将到期统计窗口（天）", "30", False),

    # === 日志 ===
    ("LOG_LEVEL", "日志级别", "INFO", False),
]

SECTION_NAMES = {
    "DATABASE": "# === 数据库配置 ===",
    "WEB": "# === Web 后台配置 ===",
    "EXPIRING": "# === 会员状态规则 ===",
    "RENEWAL": "# === 会员状态规则 ===",
    "LOG": "# === 日志配置 ===",
}


def main():
    print()
    print("=" * 60)
    print("  GymDesk 配置向导")
    print("  生成 .env 配置文件")
    print("=" * 60)
    print()

    # 检查是否已存在 .env
    if os.path.exists(ENV_FILE):
        print(f"⚠️  检测到已有 .env 文件: {ENV_FILE}")
        choice = input("是否覆盖？(y/N): ").strip().lower()
        if choice != "y":
            print("已取消。")
            return
        print()

    env_lines = [
        "# GymDesk 配置文件",
        "# 由 scripts/setup_env.py 自动生成",
    ]

    for key, desc, default, required in CONFIG_ITEMS:
        header = SECTION_NAMES.get(key.split("_")[0], "# === 其他配置 ===")
        # 避免重复写同一个 section header
        if header not in env_lines:
            env_lines.append("")
            env_lines.append(header)

        req_tag = " [必填]" if required else ""
        default_hint = f" (默认: {default})" if default else ""
        print(f"📝 {desc}{req_tag}")

        while True:
            value = input(f"  {key}={default_hint}: ").strip()
            if not value:
                value = default
            if required and not value:
                print(f"  ❌ {key} 是必填项，请输入值。")
                continue
            break

        env_lines.append(f"{key}={value}")
        print()

    with open(ENV_FILE, "w", encoding="utf-8") as f:
        f.write("\n".join(env_lines) + "\n")

    print("=" * 60)
    print(f"  ✅ 配置文件已生成: {ENV_FILE}")
    print()
    print("  初始化数据库（写入默认套餐）：")
    print("    python scripts/init_db.py")
    print()
    print("  启动应用：")
    print("    python app.py")
    print("=" * 60)


if __name__ == "__main__":
    main()
