"""Pays out terminal matches, exactly once per match.

The snapshot's ``settlement_status`` is claimed with a conditional UPDATE in
the same database transaction as the payouts, so replaying a terminal match
can never pay twice. Failures are retried with exponential backoff; once the
retries are spent the match is marked ``failed`` and kept for
``retry_failed``.
"""
from dataclasses import replace
from decimal import Decimal, ROUND_DOWN
import time

from flask import current_app

from wagerplay import db
from . import ledger, store
from .board import MARKS


def compute_payouts(match, fee_rate):
    """Return ``(user_id, amount, entry_type)`` disbursements for a terminal match.

    A win pays the pot minus the platform fee, rounded down to whole units.
    A draw refunds each player exactly what they staked.
    """
    if match.status == 'completed':
        winner = match.players[match.winner]
        amount = int((Decimal(match.pot) * (Decimal(1) - Decimal(fee_rate))).to_integral_value(rounding=ROUND_DOWN))
        return [(winner.id, amount, 'win')] if amount > 0 else []
    if match.status == 'draw':
        return [
            (match.players[mark].id, match.stakes.get(mark, 0), 'refund')
            for mark in MARKS
            if match.stakes.get(mark, 0) > 0
        ]
    raise ValueError(f"Match {match.id} is not terminal: {match.status}")


class SettlementService:

    def __init__(self, registry, config, sleep=time.sleep):
        self.registry = registry
        self.config = config
        self._sleep = sleep

    def fee_rate(self, match):
        if match.is_bot_match:
            return self.config['PLATFORM_FEE_VS_BOT']
        return self.config['PLATFORM_FEE_VS_PLAYER']

    def settle(self, match):
        """Settle ``match`` and return it with its new settlement status."""
        if match.settlement_status == 'settled':
            return match

        max_retries = int(self.config.get('SETTLEMENT_MAX_RETRIES', 3))
        delay = float(self.config.get('SETTLEMENT_RETRY_BACKOFF_SEC', 0.5))
        for attempt in range(max_retries + 1):
            try:
                self._settle_once(match)
            except Exception as exc:
                db.session.rollback()
                current_app.logger.warning(
                    f"[settle-retry] match={match.id} attempt={attempt + 1}/{max_retries + 1} error={exc!r}"
                )
                if attempt < max_retries:
                    self._sleep(delay)
                    delay *= 2
                continue
            settled = replace(match, settlement_status='settled')
            self.registry.remove(match.id)
            return settled

        return self._mark_failed(match)

    def _settle_once(self, match):
        if not store.claim_settlement(match.id):
            db.session.rollback()
            current_app.logger.info(f"[settle] match={match.id} already settled")
            return False

        payouts = compute_payouts(match, self.fee_rate(match))
        for user_id, amount, entry_type in payouts:
            ledger.adjust_balance(user_id, amount, entry_type=entry_type, match_id=match.id, commit=False)
        for mark, player in match.players.items():
            ledger.record_result(player.id, won=(mark == match.winner), commit=False)
        db.session.commit()
        current_app.logger.info(
            f"[settle] match={match.id} status={match.status} winner={match.winner} "
            f"pot={match.pot} payouts={payouts}"
        )
        return True

    def _mark_failed(self, match):
        try:
            store.mark_settlement_failed(match.id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.exception(f"[settle-failed] match={match.id} could not record failure")
        current_app.logger.error(
            f"[settle-failed] match={match.id} pot={match.pot} needs manual reconciliation"
        )
        failed = replace(match, settlement_status='failed')
        self.registry.replace(failed)
        return failed

    def retry_failed(self, load_state):
        """Settle every match whose settlement previously failed.

        ``load_state`` maps a match id to its ``MatchState``.
        """
        results = []
        for match_id in store.failed_settlement_ids():
            match = self.registry.get(match_id) or load_state(match_id)
            results.append(self.settle(replace(match, settlement_status='failed')))
        return results
