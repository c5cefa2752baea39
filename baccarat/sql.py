# baccarat/sql.py
import json
from datetime import datetime

import pytz

from baccarat.logic import BaccaratRound
from util.config import TABLE_TZ
from util.db import db

TZ = pytz.timezone(TABLE_TZ)


def table_now():
    return datetime.now(TZ)


def today_key():
    # 以桌台時區的當天（日期）當 day_key
    return table_now().date()


def ensure_schema(dsn: str | None = None):
    with db(dsn) as conn, conn.cursor() as cur:
        cur.execute("""
        CREATE TABLE IF NOT EXISTS baccarat_rounds (
          id BIGSERIAL PRIMARY KEY,
          day_key DATE NOT NULL,
          round_no INT NOT NULL,
          player_cards JSONB NOT NULL,
          banker_cards JSONB NOT NULL,
          player_score INT NOT NULL,
          banker_score INT NOT NULL,
          result TEXT NOT NULL,     -- player | banker | tie
          player_pair BOOLEAN NOT NULL DEFAULT FALSE,
          banker_pair BOOLEAN NOT NULL DEFAULT FALSE,
          fixed BOOLEAN NOT NULL DEFAULT FALSE,
          betting_stats JSONB,
          total_bet_amount BIGINT NOT NULL DEFAULT 0,
          bettor_count INT NOT NULL DEFAULT 0,
          resolved_at TIMESTAMPTZ DEFAULT now()
        );
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_bac_round_day ON baccarat_rounds (day_key, round_no);")
        conn.commit()


class RoundArchive:
    """Resolved rounds on PostgreSQL; blocking, callers run it in a thread."""

    def __init__(self, dsn: str | None = None):
        self._dsn = dsn

    def save(self, round_no: int, rnd: BaccaratRound, stats: dict, total_amount: int, bettor_count: int) -> None:
        with db(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("""
              INSERT INTO baccarat_rounds
                (day_key, round_no, player_cards, banker_cards, player_score, banker_score,
                 result, player_pair, banker_pair, fixed, betting_stats, total_bet_amount, bettor_count)
              VALUES (%s, %s, %s::jsonb, %s::jsonb, %s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s);
            """, (
                today_key(), round_no,
                json.dumps([c.to_dict() for c in rnd.player_cards], ensure_ascii=False),
                json.dumps([c.to_dict() for c in rnd.banker_cards], ensure_ascii=False),
                rnd.player_score, rnd.banker_score, rnd.result,
                rnd.player_pair, rnd.banker_pair, rnd.fixed,
                json.dumps(stats), int(total_amount), int(bettor_count),
            ))
            conn.commit()

    def recent(self, limit: int = 20) -> list[dict]:
        with db(self._dsn) as conn, conn.cursor() as cur:
            cur.execute("""
              SELECT day_key, round_no, player_score, banker_score, result,
                     player_pair, banker_pair, total_bet_amount, bettor_count, resolved_at
              FROM baccarat_rounds
              ORDER BY id DESC
              LIMIT %s;
            """, (limit,))
            rows = cur.fetchall() or []
        out = []
        for r in rows:
            out.append({
                "day_key": r["day_key"].isoformat(),
                "round_no": int(r["round_no"]),
                "player_score": int(r["player_score"]),
                "banker_score": int(r["banker_score"]),
                "result": r["result"],
                "player_pair": bool(r["player_pair"]),
                "banker_pair": bool(r["banker_pair"]),
                "total_bet_amount": int(r["total_bet_amount"]),
                "bettor_count": int(r["bettor_count"]),
                "resolved_at": r["resolved_at"].isoformat() if r["resolved_at"] else None,
            })
        out.reverse()  # 從舊到新顯示
        return out
