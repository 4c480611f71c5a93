"""Lobby session services: storage, timers, scoring and the lifecycle orchestrator.

Socket handlers and HTTP routes import from here, keeping transport
concerns separated from the game mechanics.
"""

import time


class Services:
    def __init__(self, **components):
        self.__dict__.update(components)


def build_services(flask_app, spawn=None, sleep=None, clock=None):
    """Wire the service graph for ``flask_app``.

    ``spawn``/``sleep``/``clock`` default to the Socket.IO background task
    primitives and wall-clock time; tests pass deterministic stand-ins.
    """
    from livetrivia import socketio
    from livetrivia.auth import IdentityVerifier
    from livetrivia.socketio_events import SocketIOGateway
    from .lobbies import LobbyStateManager
    from .orchestrator import SessionOrchestrator
    from .questions import RoundResolver
    from .scoring import AnswerScoringEngine
    from .store import SessionStore
    from .timers import TimerRegistry

    cfg = flask_app.config
    logger = flask_app.logger
    time_limit = int(cfg.get('QUESTION_TIME_LIMIT_SEC', 30))
    base_points = int(cfg.get('QUESTION_BASE_POINTS', 100))

    store = SessionStore(logger=logger)
    verifier = IdentityVerifier(
        cfg['SECRET_KEY'],
        salt=cfg.get('TOKEN_SALT', 'livetrivia-identity'),
        max_age=int(cfg.get('TOKEN_MAX_AGE_SEC', 86400)),
    )
    timers = TimerRegistry(
        spawn=spawn or socketio.start_background_task,
        sleep=sleep or socketio.sleep,
        clock=clock or time.time,
        logger=logger,
    )
    lobbies = LobbyStateManager(
        store,
        max_players=int(cfg.get('LOBBY_MAX_PLAYERS', 1000)),
        countdown=int(cfg.get('LOBBY_COUNTDOWN_SEC', 120)),
        logger=logger,
    )
    resolver = RoundResolver(store, default_time_limit=time_limit, default_points=base_points, logger=logger)
    scoring = AnswerScoringEngine(
        lobbies,
        timers,
        default_time_limit=time_limit,
        default_points=base_points,
        min_ratio=float(cfg.get('MIN_POINTS_RATIO', 0.1)),
        logger=logger,
    )
    gateway = SocketIOGateway(socketio, namespace=cfg.get('SOCKETIO_NAMESPACE', '/ws'))
    orchestrator = SessionOrchestrator(
        flask_app, store, lobbies, resolver, scoring, timers, gateway,
        default_time_limit=time_limit, logger=logger,
    )
    # Timer callbacks take the same per-lobby lock as host commands
    timers.lock_for = orchestrator.lobby_lock
    return Services(
        store=store,
        verifier=verifier,
        timers=timers,
        lobbies=lobbies,
        resolver=resolver,
        scoring=scoring,
        gateway=gateway,
        orchestrator=orchestrator,
    )
