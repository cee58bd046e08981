"""Tests for ghost detection, hedge gaps and strategy backfill."""
from datetime import date

from stockledger.jobs import ghost_scan
from stockledger.models import (
    DailySummary, GhostBatch, OutboundRecord, ProcessRecord, StrategyProcessing, SummaryStatus,
)
from stockledger.services import GhostService


def dispatch(summary, batch, qty, strategy="UNDEFINED", ticket="TK1"):
    return OutboundRecord(
        summary_id=summary.id,
        dispatch_date=date(2024, 3, 2),
        ticket_number=ticket,
        dispatch_number="GDI1",
        dc_number="DC1",
        grade="GRADEA",
        strategy=strategy,
        batch_number=batch,
        quantity=qty,
    )


def process(summary, number, batch, qty, strategy="UNDEFINED"):
    record = ProcessRecord(process_number=number, summary_id=summary.id, input_qty=qty, output_qty=qty)
    record.strategy_lines.append(StrategyProcessing(batch_number=batch, grade="GRADEA", strategy=strategy, input_qty=qty))
    record.strategy_lines.append(StrategyProcessing(batch_number="OUT" + batch, grade="GRADEB", strategy="S1", output_qty=qty))
    return record


class TestFindGhostBatches:
    """Tests for the idempotent ghost scan."""

    def test_detects_unknown_consumed_batches(self, db, summary, snapshot):
        db.add_all([
            dispatch(summary, "B100", 40, strategy="S1"),
            dispatch(summary, "B999", 25, ticket="TK2"),
            process(summary, "1001", "B999", 10),
        ])
        db.commit()

        ghosts = GhostService.find_ghost_batches(db, snapshot)

        batches = [g.batch_number for g in ghosts]
        assert "B999" in batches
        assert "B100" not in batches
        b999 = next(g for g in ghosts if g.batch_number == "B999")
        assert b999.sources == ("DISPATCH", "PROCESSING_INPUT")
        assert b999.inferred_quantity == 35
        assert b999.is_new

    def test_second_run_updates_in_place(self, db, summary, snapshot):
        db.add(dispatch(summary, "B999", 25))
        db.commit()

        GhostService.find_ghost_batches(db, snapshot)
        again = GhostService.find_ghost_batches(db, snapshot)

        assert [g.is_new for g in again] == [False]
        assert db.query(GhostBatch).count() == 1

    def test_without_snapshot_recorded_strategies_are_known(self, db, summary):
        db.add_all([
            dispatch(summary, "B100", 40, strategy="S1"),
            process(summary, "1001", "B200", 10, strategy="S1"),
            dispatch(summary, "B999", 25, ticket="TK2"),
        ])
        db.commit()

        ghosts = GhostService.find_ghost_batches(db)

        assert [g.batch_number for g in ghosts] == ["B999"]
        assert db.query(GhostBatch).count() == 1

    def test_backfilled_ghost_stays_confirmed_on_next_scan(self, db, summary):
        db.add(dispatch(summary, "B999", 25))
        db.commit()
        GhostService.find_ghost_batches(db)

        GhostService.update_undefined_strategies(db, {"B999": "S2"})
        ghosts = GhostService.find_ghost_batches(db)

        assert ghosts == []
        row = db.query(GhostBatch).one()
        assert row.resolved_strategy == "S2"
        assert row.resolved_at is not None

    def test_confirmed_ghost_reopens_when_unresolved_again(self, db, summary):
        db.add(dispatch(summary, "B999", 25))
        db.commit()
        GhostService.find_ghost_batches(db)
        GhostService.update_undefined_strategies(db, {"B999": "S2"})

        db.add(dispatch(summary, "B999", 5, ticket="TK9"))
        db.commit()
        ghosts = GhostService.find_ghost_batches(db)

        assert [(g.batch_number, g.inferred_quantity, g.is_new) for g in ghosts] == [("B999", 5, False)]
        row = db.query(GhostBatch).one()
        assert row.resolved_at is None
        assert row.resolved_strategy is None

    def test_resolvable_ghost_is_confirmed_not_deleted(self, db, summary, snapshot):
        db.add(dispatch(summary, "B999", 25))
        db.commit()
        GhostService.find_ghost_batches(db, snapshot)

        GhostService.upsert_trade_batches(db, [{"batch_number": "B999", "strategy": "S2"}])
        ghosts = GhostService.find_ghost_batches(db, snapshot)

        assert ghosts == []
        row = db.query(GhostBatch).one()
        assert row.resolved_strategy == "S2"
        assert row.resolved_at is not None
        assert GhostService.list_ghosts(db) == []
        assert len(GhostService.list_ghosts(db, include_resolved=True)) == 1

    def test_delete_ghost(self, db, summary, snapshot):
        db.add(dispatch(summary, "B999", 25))
        db.commit()
        GhostService.find_ghost_batches(db, snapshot)
        ghost = db.query(GhostBatch).one()

        assert GhostService.delete_ghost(db, ghost.id)
        assert not GhostService.delete_ghost(db, ghost.id)


class TestMissingHedge:
    """Tests for trades without a hedge level."""

    def test_unhedged_trades_until_hedged(self, db):
        GhostService.upsert_trade_batches(db, [
            {"batch_number": "B1", "strategy": "S1", "quantity": 100},
            {"batch_number": "B2", "strategy": "S1", "hedge_level": 1.5},
        ])

        missing = GhostService.find_missing_hedge_batches(db)
        assert [row.batch_number for row in missing] == ["B1"]

        GhostService.upsert_trade_batches(db, [{"batch_number": "B1", "strategy": "S1", "hedge_level": 2.0}])
        assert GhostService.find_missing_hedge_batches(db) == []
        assert GhostService.list_missing_hedge(db) == []
        assert len(GhostService.list_missing_hedge(db, include_resolved=True)) == 1

    def test_upsert_counts(self, db):
        first = GhostService.upsert_trade_batches(db, [{"batch_number": "b1", "strategy": "s1"}, {"batch_number": None}])
        second = GhostService.upsert_trade_batches(db, [{"batch_number": "B1", "strategy": "S2"}])

        assert first == {"created": 1, "updated": 0}
        assert second == {"created": 0, "updated": 1}


class TestBackfill:
    """Tests for replacing UNDEFINED strategies."""

    def test_backfill_flags_summaries_for_recompute(self, db, summary):
        db.add_all([
            dispatch(summary, "B999", 25),
            process(summary, "1001", "B999", 10),
            dispatch(summary, "B998", 5, ticket="TK3"),
        ])
        db.commit()

        outcome = GhostService.update_undefined_strategies(db, {"b999": "s2"})

        assert outcome["updated"]["outbounds"] == 1
        assert outcome["updated"]["strategy_processing"] == 1
        assert outcome["summaries_needing_recompute"] == [summary.id]
        strategies = {row.batch_number: row.strategy for row in db.query(OutboundRecord)}
        assert strategies == {"B999": "S2", "B998": "UNDEFINED"}
        assert db.get(DailySummary, summary.id).status == SummaryStatus.NEEDS_RECOMPUTE.value

    def test_empty_allocation_changes_nothing(self, db, summary):
        outcome = GhostService.update_undefined_strategies(db, {})

        assert outcome == {"updated": {}, "summaries_needing_recompute": []}


class TestBatchHistory:
    """Tests for the per-batch movement view."""

    def test_history_lists_movements(self, db, summary):
        db.add_all([dispatch(summary, "B999", 25), process(summary, "1001", "B999", 10)])
        db.commit()

        history = GhostService.batch_history(db, "b999")

        assert history["batch_number"] == "B999"
        assert len(history["outbounds"]) == 1
        assert history["outbounds"][0]["summary_date"] == "2024-03-02"
        assert history["processes"][0]["process_number"] == "1001"
        assert history["trade"] is None

    def test_unknown_batch(self, db):
        assert GhostService.batch_history(db, "NOPE") is None


class TestScheduledScan:
    """Tests for the periodic scan job."""

    def test_run_scan_uses_its_own_session(self, db, summary, session_factory, monkeypatch):
        db.add(dispatch(summary, "B999", 25))
        db.commit()
        monkeypatch.setattr(ghost_scan, "SessionLocal", session_factory)

        stats = ghost_scan.run_scan()

        assert stats == {"ghost_batches": 1, "new_ghost_batches": 1, "missing_hedge": 0}

    def test_scheduler_registers_one_job(self):
        scheduler = ghost_scan.GhostScanScheduler(interval_hours=6)

        assert scheduler.interval_hours == 6
        assert not scheduler.is_running
