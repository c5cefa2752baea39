import asyncio
import random

from baccarat.logic import BaccaratTable
from baccarat.service import Driver, RoundScheduler, Timings

from conftest import MemoryLedger


def scheduler(ledger, emitter, **timing) -> RoundScheduler:
    timings = Timings.zero()
    for k, v in timing.items():
        setattr(timings, k, v)
    return RoundScheduler(ledger, emitter, table=BaccaratTable(rng=random.Random(11)), timings=timings)


async def until(predicate, limit=100000):
    for _ in range(limit):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never reached")


class TestRound:
    def test_bet_settle_cycle(self, ledger, emitter):
        async def scenario():
            sched = scheduler(ledger, emitter)
            window = await sched.open_betting()
            r1 = await sched.place_bet(1, "amy", "player", 2000)
            r2 = await sched.place_bet(1, "amy", "player", 1000)
            r3 = await sched.place_bet(2, "bo", "banker", 5000)
            assert r1["success"] and r2["success"] and r3["success"]
            assert ledger.balances[1] == 7000
            assert sched.my_bets(1)["player"] == 3000
            assert (await sched.arm_fixed_result("player", 1, by="admin"))["success"]
            rnd = await sched.run_round(window)
            return sched, rnd

        sched, rnd = asyncio.run(scenario())
        assert rnd.result == "player" and rnd.fixed
        assert ledger.balances[1] == 7000 + 6000
        assert ledger.balances[2] == 5000
        assert sched.last_round is rnd
        assert sched.recent()[-1]["result"] == "player"
        assert sched.fixed is None
        order = emitter.order()
        assert order.index("betting_closed") < order.index("card_dealt") < order.index("round_resolved") \
            < order.index("round_settled")
        assert len(emitter.named("card_dealt")) == 4

    def test_bets_rejected_outside_window(self, ledger, emitter):
        async def scenario():
            sched = scheduler(ledger, emitter)
            before = await sched.place_bet(1, "amy", "player", 1000)
            window = await sched.open_betting()
            await sched.run_round(window)
            after = await sched.place_bet(1, "amy", "player", 1000)
            return before, after

        before, after = asyncio.run(scenario())
        assert before["error"] == "invalid_state_transition"
        assert after["error"] == "invalid_state_transition"
        assert ledger.balances[1] == 10000

    def test_limits_and_funds(self, emitter):
        ledger = MemoryLedger({1: 1500})

        async def scenario():
            sched = scheduler(ledger, emitter)
            await sched.open_betting()
            low = await sched.place_bet(1, "amy", "tie", 500)
            high = await sched.place_bet(1, "amy", "tie", 600000)
            broke = await sched.place_bet(1, "amy", "tie", 2000)
            return sched, low, high, broke

        sched, low, high, broke = asyncio.run(scenario())
        assert low["error"] == high["error"] == "invalid_amount"
        assert broke["error"] == "insufficient_funds"
        assert ledger.balances[1] == 1500
        assert sched.window.bets == []

    def test_cancel_refunds_last_bet(self, ledger, emitter):
        async def scenario():
            sched = scheduler(ledger, emitter)
            await sched.open_betting()
            await sched.place_bet(1, "amy", "player", 1000)
            await sched.place_bet(1, "amy", "banker", 3000)
            res = await sched.cancel_bet(1)
            return sched, res

        sched, res = asyncio.run(scenario())
        assert res["success"] and res["choice"] == "banker"
        assert ledger.balances[1] == 9000
        assert sched.betting_status()["stats"]["banker"]["count"] == 0
        assert emitter.named("my_bets_updated")[-1]["bets"]["player"] == 1000

    def test_bet_that_loses_the_race_with_close_is_refunded(self, emitter):
        holder = {}

        class ClosingLedger(MemoryLedger):
            def adjust(self, user_id, delta):
                balance = super().adjust(user_id, delta)
                if delta < 0:
                    holder["window"].close()
                return balance

        ledger = ClosingLedger({1: 10000})

        async def scenario():
            sched = scheduler(ledger, emitter)
            holder["window"] = await sched.open_betting()
            return sched, await sched.place_bet(1, "amy", "player", 1000)

        sched, res = asyncio.run(scenario())
        assert res["error"] == "invalid_state_transition"
        assert ledger.balances[1] == 10000
        assert holder["window"].bets == []

    def test_fixed_result_only_while_open(self, ledger, emitter):
        async def scenario():
            sched = scheduler(ledger, emitter)
            closed = await sched.arm_fixed_result("tie", 2)
            await sched.open_betting()
            bad = await sched.arm_fixed_result("dragon", 1)
            ok = await sched.arm_fixed_result("tie", 2, by="root")
            return closed, bad, ok

        closed, bad, ok = asyncio.run(scenario())
        assert closed["error"] == "invalid_state_transition"
        assert bad["error"] == "invalid_amount"
        assert ok["success"] and ok["pattern"] == 2
        assert emitter.named("result_fixed")[0]["outcome"] == "tie"
        assert [e[0] for e in emitter.events if e[2] == "result_fixed"] == ["admins"]


class TestDrivers:
    def test_background_run_stops_itself(self, ledger, emitter):
        async def scenario():
            sched = scheduler(ledger, emitter)
            res = await sched.start(Driver.BACKGROUND, 3)
            await until(lambda: not sched.running)
            return sched, res

        sched, res = asyncio.run(scenario())
        assert res["success"]
        assert sched.rounds_completed == 3
        assert sched.driver is None
        assert [p["rounds_completed"] for p in emitter.named("background_progress")] == [1, 2, 3]
        assert emitter.named("scheduler_status")[-1]["live"] is False

    def test_background_bounds(self, ledger, emitter):
        async def scenario():
            sched = scheduler(ledger, emitter)
            return await sched.start(Driver.BACKGROUND, 0), await sched.start(Driver.BACKGROUND, 1001)

        zero, huge = asyncio.run(scenario())
        assert zero["error"] == huge["error"] == "invalid_amount"

    def test_stop_voids_open_window(self, ledger, emitter):
        async def scenario():
            sched = scheduler(ledger, emitter, bet_seconds=30)
            await sched.start(Driver.ADMIN)
            await until(lambda: sched.window is not None and sched.window.is_open)
            await sched.place_bet(1, "amy", "banker", 4000)
            assert ledger.balances[1] == 6000
            res = await sched.stop()
            return sched, res

        sched, res = asyncio.run(scenario())
        assert res["success"]
        assert ledger.balances[1] == 10000
        assert sched.running is False
        assert emitter.named("betting_cancelled")[0]["reason"] == "table stopped"
        assert sched.rounds_completed == 0

    def test_only_one_driver(self, ledger, emitter):
        async def scenario():
            sched = scheduler(ledger, emitter, bet_seconds=30)
            await sched.start(Driver.ADMIN)
            again = await sched.start(Driver.ADMIN)
            await sched.start(Driver.PRESENCE)
            driver = sched.driver
            await sched.stop()
            return again, driver

        again, driver = asyncio.run(scenario())
        assert again["error"] == "invalid_state_transition"
        assert driver is Driver.PRESENCE

    def test_presence_ignores_admins_and_survives_leave(self, ledger, emitter):
        async def scenario():
            sched = scheduler(ledger, emitter, bet_seconds=30)
            await sched.join(99, "root", "superadmin")
            admin_started = sched.running
            status = await sched.join(1, "amy")
            sched.leave(1)
            still = sched.running
            await sched.stop()
            return admin_started, status, still, sched

        admin_started, status, still, sched = asyncio.run(scenario())
        assert admin_started is False
        assert "my_bets" in status
        assert still is True
        assert sched.present == {}
