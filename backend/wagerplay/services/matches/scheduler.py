from datetime import timedelta

from wagerplay import socketio
from wagerplay.errors import GameError
from wagerplay.models import utcnow
from . import get_gateway, get_state_machine
from .state import PLAYING, WAITING


def sweep_once(app, now=None):
    """One pass of the timeout policies. Returns counts per policy.

    - waiting matches older than WAITING_MATCH_TTL_SEC are dropped (nothing
      was charged, so nothing is refunded)
    - invites older than INVITE_TTL_SEC are discarded with their match
    - a playing match is forfeited by a player who lost every connection
      during the match and stayed away longer than DISCONNECT_GRACE_SEC
    - absences of users with no registered match are forgotten
    """
    now = now or utcnow()
    cfg = app.config
    counts = {'abandoned': 0, 'invites_expired': 0, 'forfeited': 0}

    with app.app_context():
        machine = get_state_machine()
        gateway = get_gateway()
        registry = machine.registry

        invite_cutoff = now - timedelta(seconds=int(cfg.get('INVITE_TTL_SEC', 60)))
        for invite in gateway.invites.expired(invite_cutoff):
            gateway.invites.discard(invite.match_id)
            try:
                machine.abandon(invite.match_id)
            except GameError as exc:
                # Accepted in the meantime, or already gone
                app.logger.info(f"[sweep] invite match={invite.match_id} kept: {exc.code}")
                continue
            counts['invites_expired'] += 1

        waiting_cutoff = now - timedelta(seconds=int(cfg.get('WAITING_MATCH_TTL_SEC', 3600)))
        for match in registry.list(status=WAITING, predicate=lambda m: m.created_at < waiting_cutoff):
            gateway.invites.discard(match.id)
            try:
                machine.abandon(match.id)
            except GameError as exc:
                app.logger.info(f"[sweep] waiting match={match.id} kept: {exc.code}")
                continue
            counts['abandoned'] += 1

        grace = timedelta(seconds=int(cfg.get('DISCONNECT_GRACE_SEC', 30)))
        for match in registry.list(status=PLAYING):
            for user_id in match.player_ids():
                since = gateway.sessions.disconnected_since(user_id)
                if since is None or since < match.created_at or now - since <= grace:
                    continue
                try:
                    settled = machine.forfeit(match.id, user_id)
                except GameError as exc:
                    app.logger.info(f"[sweep] forfeit match={match.id} skipped: {exc.code}")
                    break
                counts['forfeited'] += 1
                gateway.publish_match(settled)
                break

        live_players = {uid for m in registry.list() for uid in m.player_ids()}
        gateway.sessions.prune_absent(keep=live_players)

        if counts['abandoned'] or counts['invites_expired'] or counts['forfeited']:
            gateway.publish_lobby()
            app.logger.info(f"[sweep] {counts}")
    return counts


def start_sweeper(app):
    """Run ``sweep_once`` forever in a Socket.IO background task.

    No-ops in TESTING mode; tests call ``sweep_once`` with an explicit clock.
    """
    if app.config.get('TESTING'):
        return None
    interval = int(app.config.get('SWEEP_INTERVAL_SEC', 5))

    def _worker():
        while True:
            socketio.sleep(interval)
            try:
                sweep_once(app)
            except Exception:
                app.logger.exception('[sweep] pass failed')

    app.logger.info(f"[sweep] started interval={interval}s")
    return socketio.start_background_task(_worker)


def defer_with_delay(app, delay_sec):
    """Build a ``defer`` callable that runs work later inside an app context."""

    def _defer(fn, *args):
        def _runner():
            if delay_sec:
                socketio.sleep(delay_sec)
            with app.app_context():
                try:
                    fn(*args)
                except Exception:
                    app.logger.exception(f"[deferred] {getattr(fn, '__name__', fn)}{args} failed")

        socketio.start_background_task(_runner)

    return _defer
