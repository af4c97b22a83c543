"""
SQLite 数据库连接管理和初始化。
使用同步 sqlite3，提供 get_db() 获取连接。
"""

import os
import sqlite3
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

DB_PATH = os.getenv("DB_PATH", "data/paygate.db")

# 并发写入时等待锁释放的毫秒数
BUSY_TIMEOUT_MS = 5000


def get_db() -> sqlite3.Connection:
    """获取 SQLite 数据库连接，启用 WAL 模式和忙等待。"""
    conn = sqlite3.connect(DB_PATH, timeout=BUSY_TIMEOUT_MS / 1000)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    return conn


# ── 建表 SQL ──────────────────────────────────────────────

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS orders (
    id                   TEXT          PRIMARY KEY,
    order_no             VARCHAR(64)   NOT NULL UNIQUE,
    provider_trade_no    VARCHAR(128),
    client_id            VARCHAR(255)  NOT NULL,
    amount               DECIMAL(10,2) NOT NULL DEFAULT '0.50',
    pay_method           VARCHAR(20)   DEFAULT 'alipay',
    provider_status_text VARCHAR(50),
    param                TEXT,
    status               VARCHAR(20)   NOT NULL DEFAULT 'pending'
                         CHECK (status IN ('pending', 'paid', 'analyzed')),
    created_at           DATETIME      NOT NULL DEFAULT (datetime('now', 'localtime')),
    updated_at           DATETIME      NOT NULL DEFAULT (datetime('now', 'localtime'))
);
"""

# ── 索引 SQL ──────────────────────────────────────────────

_CREATE_INDEXES = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_order_no
    ON orders(order_no);
CREATE INDEX IF NOT EXISTS idx_orders_client_id
    ON orders(client_id);
CREATE INDEX IF NOT EXISTS idx_orders_status
    ON orders(status);
CREATE INDEX IF NOT EXISTS idx_orders_created_at
    ON orders(created_at);
"""

# ── 触发器 SQL：任何更新自动刷新 updated_at ─────────────────

_CREATE_TRIGGERS = """
CREATE TRIGGER IF NOT EXISTS trg_orders_updated_at
AFTER UPDATE ON orders
FOR EACH ROW
WHEN NEW.updated_at = OLD.updated_at
BEGIN
    UPDATE orders
       SET updated_at = datetime('now', 'localtime')
     WHERE id = NEW.id;
END;
"""


# ── 初始化 ────────────────────────────────────────────────

def init_db() -> None:
    """创建数据库目录、表、索引和触发器（幂等）。"""
    # 确保 data/ 目录存在
    db_dir = Path(DB_PATH).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = get_db()
    try:
        conn.executescript(_CREATE_TABLES)
        conn.executescript(_CREATE_INDEXES)
        conn.executescript(_CREATE_TRIGGERS)
        conn.commit()
    finally:
        conn.close()
