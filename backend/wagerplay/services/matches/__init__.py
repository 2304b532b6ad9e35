"""Match domain services: board rules, ledger, state machine, registry,
settlement and the session gateway.

Everything here is pure(ish) domain logic imported by HTTP routes and socket
handlers, keeping transport concerns out of the core game mechanics. One
set of services is built per Flask app and kept in ``app.extensions``.
"""
import random

from flask import current_app

EXTENSION_KEY = 'wagerplay.matches'


def init_match_services(app, transport, defer=None, rng=None):
    from .bot import MixedStrategy
    from .gateway import SessionGateway
    from .registry import MatchRegistry
    from .settlement import SettlementService
    from .state import MatchStateMachine

    registry = MatchRegistry()
    settlement = SettlementService(registry, app.config)
    machine = MatchStateMachine(registry, settlement, app.config)
    strategy = MixedStrategy(
        float(app.config.get('BOT_STRATEGIC_MOVE_PROBABILITY', 0.5)),
        rng or random.Random(),
    )
    gateway = SessionGateway(machine, registry, transport, strategy, defer=defer)
    app.extensions[EXTENSION_KEY] = {
        'registry': registry,
        'settlement': settlement,
        'state_machine': machine,
        'gateway': gateway,
    }
    return gateway


def _services(app=None):
    return (app or current_app).extensions[EXTENSION_KEY]


def get_registry(app=None):
    return _services(app)['registry']


def get_settlement(app=None):
    return _services(app)['settlement']


def get_state_machine(app=None):
    return _services(app)['state_machine']


def get_gateway(app=None):
    return _services(app)['gateway']
