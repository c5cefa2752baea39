# util/db.py
import psycopg
from psycopg.rows import dict_row

from util.config import DATABASE_URL


def db(dsn: str | None = None):
    url = dsn or DATABASE_URL
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    return psycopg.connect(url, row_factory=dict_row)


def ensure_ledger_schema(dsn: str | None = None):
    with db(dsn) as conn, conn.cursor() as cur:
        # users 由帳號服務建立，這裡只確保餘額與紀錄需要的欄位
        cur.execute("""
        CREATE TABLE IF NOT EXISTS users (
          id BIGSERIAL PRIMARY KEY,
          username TEXT UNIQUE NOT NULL,
          role TEXT NOT NULL DEFAULT 'user',
          balance BIGINT NOT NULL DEFAULT 10000,
          created_at TIMESTAMPTZ DEFAULT now()
        );
        """)
        cur.execute("""
        CREATE TABLE IF NOT EXISTS game_history (
          id BIGSERIAL PRIMARY KEY,
          user_id BIGINT NOT NULL,
          game TEXT NOT NULL,            -- baccarat | blackjack
          choice TEXT,                   -- bet choice or blackjack action summary
          amount BIGINT NOT NULL,
          payout BIGINT NOT NULL DEFAULT 0,
          result TEXT NOT NULL,          -- win | lose | push | blackjack | bust | surrender | void
          outcome TEXT,                  -- round / hand outcome
          detail JSONB,
          created_at TIMESTAMPTZ DEFAULT now()
        );
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_history_user ON game_history (user_id, created_at);")
        conn.commit()
