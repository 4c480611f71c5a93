import copy
import logging
import re
import threading
from typing import Dict

from livetrivia.errors import StoreFailure, ValidationFailure
from livetrivia.models import STATE_LOBBY, WAITING

LOBBY_ID_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$')

LOBBY_DISPLAY_NAMES = {
    'main-lobby': 'Main Trivia Lobby',
    'premium-lobby': 'Premium Players',
    'quick-lobby': 'Quick Play',
    'partner-lobby': 'Partner Arena',
    'east-coast': 'East Coast Server',
    'west-coast': 'West Coast Server',
}


def lobby_display_name(lobby_id: str) -> str:
    return LOBBY_DISPLAY_NAMES.get(lobby_id, f"{lobby_id} Lobby")


def validate_lobby_id(lobby_id) -> str:
    if not isinstance(lobby_id, str) or not LOBBY_ID_RE.match(lobby_id):
        raise ValidationFailure('Invalid lobby id')
    return lobby_id


def find_player(lobby: dict, user_id: str):
    for player in lobby['players']:
        if player['user_id'] == user_id:
            return player
    return None


class LobbyStateManager:
    """Reads and merge-updates Lobby records, keeping a process-local cache.

    Callers get deep copies, so mutating a returned document never touches
    the cache. ``players`` and ``round_progress`` are replaced wholesale by
    ``update``: pass the full intended list.
    """

    def __init__(self, store, max_players=1000, countdown=120, logger=None):
        self.store = store
        self.max_players = max_players
        self.countdown = countdown
        self.logger = logger or logging.getLogger(__name__)
        self._cache: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def _default_fields(self, lobby_id):
        return {
            'id': lobby_id,
            'name': lobby_display_name(lobby_id),
            'max_players': self.max_players,
            'countdown': self.countdown,
            'status': WAITING,
            'game_state': STATE_LOBBY,
            'current_question': None,
            'current_question_index': 0,
            'current_round_id': None,
            'round_progress': [],
            'players': [],
        }

    def _remember(self, lobby: dict) -> dict:
        with self._lock:
            self._cache[lobby['id']] = lobby
        return copy.deepcopy(lobby)

    def get(self, lobby_id: str) -> dict:
        validate_lobby_id(lobby_id)
        cached = self._cache.get(lobby_id)
        if cached is not None:
            return copy.deepcopy(cached)
        return self.refresh(lobby_id)

    def refresh(self, lobby_id: str) -> dict:
        """Load straight from durable storage, creating the default record if absent."""
        validate_lobby_id(lobby_id)
        lobby = self.store.find_lobby(lobby_id)
        if lobby is None:
            lobby = self.store.create_lobby(self._default_fields(lobby_id))
            self.logger.info(f"[lobby-create] lobby={lobby_id}")
        return self._remember(lobby)

    def update(self, lobby_id: str, **fields) -> dict:
        validate_lobby_id(lobby_id)
        lobby = self.store.update_lobby(lobby_id, copy.deepcopy(fields))
        if lobby is None:
            # Row vanished underneath the cache; recreate then apply
            self.refresh(lobby_id)
            lobby = self.store.update_lobby(lobby_id, copy.deepcopy(fields))
            if lobby is None:
                raise StoreFailure()
        return self._remember(lobby)

    def reset(self, lobby_id: str, **extra) -> dict:
        """Return the lobby to its pre-game defaults. Host and id survive."""
        fields = {
            'status': WAITING,
            'game_state': STATE_LOBBY,
            'current_question': None,
            'current_question_index': 0,
            'current_round_id': None,
            'total_questions_in_round': 0,
            'start_time': None,
            'game_started_at': None,
            'round_progress': [],
        }
        fields.update(extra)
        self.logger.info(f"[lobby-reset] lobby={lobby_id}")
        return self.update(lobby_id, **fields)

    def evict(self, lobby_id: str) -> None:
        with self._lock:
            self._cache.pop(lobby_id, None)
