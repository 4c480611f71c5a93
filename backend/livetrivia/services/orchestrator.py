"""Session lifecycle for live lobbies.

Drives lobby -> countdown -> question -> results -> next question / round
change / game end, reconciles connects and reconnects against the shared
lobby record, and publishes the ``lobby-update`` event contract through the
gateway.

Every operation on a lobby runs under that lobby's re-entrant lock, timer
callbacks included, so read-modify-write of the players list never
interleaves within one process.
"""

import functools
import math
import threading
from contextlib import contextmanager

from livetrivia.errors import HostRequired, StateConflict, TriviaError, ValidationFailure
from livetrivia.models import (
    COUNTDOWN, IN_PROGRESS, STATE_QUESTION, STATE_RESULTS, WAITING, to_millis,
)
from livetrivia.services.lobbies import find_player
from livetrivia.services.questions import strip_answer_key
from livetrivia.services.scoring import rank_players, rank_players_for_round


def _as_index(value, name):
    if isinstance(value, bool):
        raise ValidationFailure(f"{name} must be a non-negative integer")
    try:
        index = int(value)
    except (TypeError, ValueError):
        raise ValidationFailure(f"{name} must be a non-negative integer")
    if index < 0:
        raise ValidationFailure(f"{name} must be a non-negative integer")
    return index


def _progress_entry(progress, round_id):
    for entry in progress:
        if entry['round_id'] == round_id:
            return entry
    return None


def _set_progress(progress, round_id, next_index, completed):
    """Replace (or append) the resume entry for ``round_id``."""
    entry = {'round_id': round_id, 'next_question_index': next_index, 'is_completed': bool(completed)}
    updated = [dict(e) for e in progress]
    for idx, e in enumerate(updated):
        if e['round_id'] == round_id:
            updated[idx] = entry
            return updated
    updated.append(entry)
    return updated


def _progress_for_client(progress):
    return [
        {'roundId': e['round_id'], 'nextQuestionIndex': e['next_question_index'], 'isCompleted': e['is_completed']}
        for e in progress
    ]


def _reset_answer_state(player):
    player = dict(player)
    player['has_answered_current_question'] = False
    player['last_answer_time'] = None
    player['last_answer_correct'] = None
    player['last_answer'] = None
    return player


class SessionOrchestrator:
    def __init__(self, app, store, lobbies, resolver, scoring, timers, gateway,
                 default_time_limit=30, logger=None):
        self.app = app
        self.store = store
        self.lobbies = lobbies
        self.resolver = resolver
        self.scoring = scoring
        self.timers = timers
        self.gateway = gateway
        self.default_time_limit = default_time_limit
        self.logger = logger or app.logger
        self._locks = {}
        self._locks_guard = threading.Lock()

    # ---- plumbing ----

    @contextmanager
    def lobby_lock(self, lobby_id):
        with self._locks_guard:
            lock = self._locks.setdefault(lobby_id, threading.RLock())
        with lock:
            yield

    def _in_context(self, lobby_id, fn, *args):
        """Run a timer callback with an app context, under the lobby lock."""
        with self.app.app_context():
            with self.lobby_lock(lobby_id):
                fn(lobby_id, *args)

    def _timer_callback(self, lobby_id, fn, *bound):
        return functools.partial(self._in_context, lobby_id, fn, *bound)

    def _broadcast(self, lobby_id, update_type, data, skip_sid=None):
        self.gateway.emit('lobby-update', {'type': update_type, 'data': data}, room=lobby_id, skip_sid=skip_sid)

    def _notify_host(self, lobby_id, message):
        host = self.lobbies.get(lobby_id).get('host') or {}
        if host.get('socket_id'):
            self.gateway.send(host['socket_id'], 'error', {'message': message})

    def require_host(self, lobby_id, sid):
        host = self.lobbies.get(lobby_id).get('host')
        if not host or not sid or host.get('socket_id') != sid:
            raise HostRequired()
        return host

    def _select_round(self, lobby, round_id):
        """Activate ``round_id`` and record it as the lobby's current round."""
        self.resolver.activate(round_id)
        progress = lobby['round_progress']
        if _progress_entry(progress, round_id) is None:
            progress = _set_progress(progress, round_id, 0, False)
        return self.lobbies.update(
            lobby['id'],
            current_round_id=round_id,
            total_questions_in_round=self.resolver.count_in_round(round_id),
            round_progress=progress,
        )

    def _ensure_round(self, lobby, round_id=None):
        if round_id and round_id != lobby['current_round_id']:
            return self._select_round(lobby, round_id)
        if lobby['current_round_id'] is None:
            first = self.resolver.round_at(0)
            if first is not None:
                return self._select_round(lobby, first['id'])
        return lobby

    # ---- countdown ----

    def start_countdown(self, lobby_id, seconds, question_index, round_id=None):
        seconds = _as_index(seconds, 'countdownSeconds')
        question_index = _as_index(question_index, 'questionIndex')
        with self.lobby_lock(lobby_id):
            lobby = self._ensure_round(self.lobbies.get(lobby_id), round_id)
            self.timers.clear(lobby_id)
            lobby = self.lobbies.update(
                lobby_id, status=COUNTDOWN, countdown=seconds, current_question_index=question_index,
            )
            self.logger.info(
                f"[countdown-start] lobby={lobby_id} seconds={seconds} question={question_index} "
                f"round={lobby['current_round_id']}"
            )
            self._broadcast(lobby_id, 'countdown-started', {
                'countdown': seconds,
                'questionIndex': question_index,
                'questionNumber': question_index + 1,
                'roundId': lobby['current_round_id'],
                'message': f"Question {question_index + 1} starting in {seconds} seconds",
            })
            self._arm_countdown(lobby_id, seconds, question_index)
            return lobby

    def _arm_countdown(self, lobby_id, seconds, question_index):
        self.timers.start_countdown(
            lobby_id,
            seconds,
            on_tick=self._timer_callback(lobby_id, self._countdown_tick, question_index),
            on_complete=self._timer_callback(lobby_id, self._countdown_complete, question_index),
        )

    def _countdown_tick(self, lobby_id, question_index, remaining):
        self.lobbies.update(lobby_id, countdown=remaining)
        self.gateway.emit('countdown-update', {'countdown': remaining, 'questionIndex': question_index}, room=lobby_id)

    def _countdown_complete(self, lobby_id, question_index):
        try:
            self.start_question(lobby_id, question_index)
        except TriviaError as exc:
            self.logger.warning(f"[countdown-abort] lobby={lobby_id} question={question_index}: {exc.message}")
            self._notify_host(lobby_id, exc.message)

    # ---- questions ----

    def start_question(self, lobby_id, question_index, round_id=None):
        question_index = _as_index(question_index, 'questionIndex')
        with self.lobby_lock(lobby_id):
            lobby = self._ensure_round(self.lobbies.get(lobby_id), round_id)
            current_round = lobby['current_round_id']
            # Resolve before touching timers or players so a bad index changes nothing
            question = self.resolver.full_question(current_round, question_index + 1)
            total = (self.resolver.count_in_round(current_round) if current_round
                     else self.resolver.total_questions())

            self.timers.clear(lobby_id)
            start_time = self.timers.clock()
            fields = {
                'status': IN_PROGRESS,
                'game_state': STATE_QUESTION,
                'current_question': question,
                'current_question_index': question_index,
                'total_questions_in_round': total,
                'start_time': start_time,
                'countdown': 0,
                'players': [_reset_answer_state(p) for p in lobby['players']],
            }
            if not lobby.get('game_started_at'):
                fields['game_started_at'] = start_time
            lobby = self.lobbies.update(lobby_id, **fields)

            time_limit = question['timeLimit']
            self.timers.start_question_deadline(
                lobby_id, time_limit, self._timer_callback(lobby_id, self._question_expired),
                start_time=start_time,
            )
            self.logger.info(
                f"[question-start] lobby={lobby_id} round={current_round} question={question_index} "
                f"id={question['id']} limit={time_limit}s"
            )
            self._broadcast(lobby_id, 'question-started', {
                'question': strip_answer_key(question),
                'timeLimit': time_limit,
                'questionIndex': question_index,
                'questionNumber': question_index + 1,
                'totalQuestionsInRound': total,
                'roundId': current_round,
                'startTime': to_millis(start_time),
                'basePoints': question['points'],
            })
            return lobby

    def _question_expired(self, lobby_id):
        try:
            self.end_question(lobby_id)
        except StateConflict as exc:
            self.logger.info(f"[question-expire-skip] lobby={lobby_id}: {exc.message}")

    def _question_analytics(self, lobby):
        question = lobby.get('current_question') or {}
        counts = {choice: 0 for choice in question.get('choices') or []}
        answered = correct = 0
        for p in lobby['players']:
            if p.get('has_answered_current_question'):
                answered += 1
            if p.get('last_answer_correct'):
                correct += 1
            if p.get('last_answer') in counts:
                counts[p['last_answer']] += 1
        return {
            'questionId': question.get('id'),
            'answeredCount': answered,
            'correctCount': correct,
            'totalPlayers': len(lobby['players']),
            'choiceCounts': [{'choice': c, 'count': counts[c]} for c in question.get('choices') or []],
        }

    def end_question(self, lobby_id):
        with self.lobby_lock(lobby_id):
            lobby = self.lobbies.get(lobby_id)
            if lobby['game_state'] != STATE_QUESTION:
                raise StateConflict('No question is in progress')
            self.timers.clear(lobby_id)

            round_id = lobby['current_round_id']
            next_index = lobby['current_question_index'] + 1
            total = lobby['total_questions_in_round']
            is_last = next_index >= total
            progress = lobby['round_progress']
            if round_id is not None:
                progress = _set_progress(progress, round_id, next_index, is_last)

            analytics = self._question_analytics(lobby)
            lobby = self.lobbies.update(
                lobby_id, status=WAITING, game_state=STATE_RESULTS, round_progress=progress,
            )
            question = lobby.get('current_question') or {}
            self.logger.info(
                f"[question-end] lobby={lobby_id} round={round_id} next={next_index}/{total} "
                f"answered={analytics['answeredCount']}/{analytics['totalPlayers']}"
            )
            self._broadcast(lobby_id, 'question-ended', {
                'correctAnswer': question.get('correctAnswer'),
                'leaderboard': rank_players(lobby['players'], round_id),
                'isRoundOver': is_last,
                'nextQuestionIndex': next_index,
                'roundId': round_id,
                'analytics': analytics,
            })
            return lobby

    # ---- rounds ----

    def change_round(self, lobby_id, round_id, round_index=None, round_name=None):
        with self.lobby_lock(lobby_id):
            lobby = self.lobbies.get(lobby_id)
            target = self.resolver.get_round(round_id)
            if lobby['status'] in (COUNTDOWN, IN_PROGRESS) or lobby['game_state'] == STATE_QUESTION:
                raise StateConflict('Cannot change round while a question is running')
            derived_index = self.resolver.round_index(round_id)
            if round_index is not None and round_index != derived_index:
                self.logger.warning(
                    f"[round-index-mismatch] lobby={lobby_id} round={round_id} "
                    f"given={round_index} actual={derived_index}"
                )

            previous = lobby['current_round_id']
            if previous == round_id:
                if not target['isActive']:
                    self.resolver.activate(round_id)
                self._broadcast_round_changed(lobby, target, derived_index, previous)
                return lobby

            progress = lobby['round_progress']
            question = lobby.get('current_question') or {}
            # Only when the snapshot is the question last started at this position of the round;
            # after a resume the index points at a question that has not been played yet
            if (previous is not None and question.get('roundId') == previous
                    and question.get('questionNumber') == lobby['current_question_index'] + 1):
                candidate = lobby['current_question_index'] + 1
                saved = _progress_entry(progress, previous)
                if saved is None or candidate > saved['next_question_index']:
                    progress = _set_progress(
                        progress, previous, candidate, candidate >= lobby['total_questions_in_round'],
                    )

            entry = _progress_entry(progress, round_id)
            if entry is not None and entry['is_completed']:
                raise StateConflict(f"Round {target['name']} is already completed")
            resume_index = entry['next_question_index'] if entry else 0
            if entry is None:
                progress = _set_progress(progress, round_id, resume_index, False)

            if previous is not None:
                self.resolver.deactivate(previous)
            self.resolver.activate(round_id)
            lobby = self.lobbies.update(
                lobby_id,
                current_round_id=round_id,
                current_question_index=resume_index,
                total_questions_in_round=self.resolver.count_in_round(round_id),
                round_progress=progress,
            )
            self.logger.info(
                f"[round-change] lobby={lobby_id} from={previous} to={round_id} resume={resume_index}"
            )
            self._broadcast_round_changed(lobby, target, derived_index, previous)
            return lobby

    def _broadcast_round_changed(self, lobby, target, round_index, previous):
        self._broadcast(lobby['id'], 'round-changed', {
            'roundId': target['id'],
            'roundIndex': round_index,
            'roundName': target['name'],
            'previousRoundId': previous,
            'questionIndex': lobby['current_question_index'],
            'questionNumber': lobby['current_question_index'] + 1,
            'totalQuestionsInRound': lobby['total_questions_in_round'],
            'roundProgress': _progress_for_client(lobby['round_progress']),
        })

    # ---- game end ----

    def end_game(self, lobby_id):
        with self.lobby_lock(lobby_id):
            self.timers.clear(lobby_id)
            lobby = self.lobbies.get(lobby_id)
            leaderboard = rank_players(lobby['players'])
            emails = {p['user_id']: p.get('email') for p in lobby['players']}
            host = lobby.get('host') or {}
            session = self.store.create_game_session({
                'lobby_id': lobby_id,
                'game_name': lobby['name'],
                'host_id': host.get('user_id'),
                'host_name': host.get('name'),
                'started_at': lobby.get('game_started_at'),
                'ended_at': self.timers.clock(),
                'total_rounds_played': len(lobby['round_progress']),
                'players': [
                    {
                        'userId': entry['userId'],
                        'name': entry['name'],
                        'email': emails.get(entry['userId']),
                        'score': entry['score'],
                        'rank': entry['rank'],
                        'roundScores': entry['roundScores'],
                    }
                    for entry in leaderboard
                ],
            })
            self.logger.info(
                f"[game-end] lobby={lobby_id} session={session['id']} players={len(leaderboard)}"
            )
            self._broadcast(lobby_id, 'game-ended', {
                'message': 'Game ended by host',
                'leaderboard': leaderboard,
                'sessionId': session['id'],
            })
            for sid in self.gateway.room_members(lobby_id):
                self.gateway.disconnect(sid)
            self.lobbies.reset(lobby_id, players=[], countdown=self.lobbies.countdown)
            return session

    # ---- connections ----

    def remaining_time(self, lobby):
        """Seconds left on the running question, from the durable record only."""
        if lobby['status'] != IN_PROGRESS or not lobby.get('start_time'):
            return 0
        question = lobby.get('current_question') or {}
        time_limit = question.get('timeLimit') or self.default_time_limit
        elapsed = math.floor(self.timers.clock() - lobby['start_time'])
        return max(0, time_limit - elapsed)

    def _recover_timers(self, lobby, remaining):
        """Re-arm timers lost with a previous process."""
        lobby_id = lobby['id']
        if lobby['game_state'] == STATE_QUESTION and lobby['status'] == IN_PROGRESS:
            if self.timers.has_question_timer(lobby_id):
                return
            if remaining > 0:
                question = lobby.get('current_question') or {}
                self.logger.info(f"[timer-recover] lobby={lobby_id} kind=question remaining={remaining}s")
                self.timers.start_question_deadline(
                    lobby_id,
                    question.get('timeLimit') or self.default_time_limit,
                    self._timer_callback(lobby_id, self._question_expired),
                    start_time=lobby['start_time'],
                )
            else:
                self.logger.info(f"[timer-recover] lobby={lobby_id} kind=question expired")
                self.end_question(lobby_id)
        elif lobby['status'] == COUNTDOWN and not self.timers.has_countdown(lobby_id):
            self.logger.info(f"[timer-recover] lobby={lobby_id} kind=countdown remaining={lobby['countdown']}s")
            self._arm_countdown(lobby_id, lobby['countdown'], lobby['current_question_index'])

    def host_connect(self, lobby_id, identity, sid):
        with self.lobby_lock(lobby_id):
            lobby = self.lobbies.refresh(lobby_id)
            existing = lobby.get('host')
            is_new_host = not existing
            was_in_progress = lobby['status'] != WAITING
            remaining = self.remaining_time(lobby)

            stale_sid = None
            if existing and existing.get('user_id') == identity.user_id and existing.get('socket_id') not in (None, sid):
                stale_sid = existing['socket_id']
            lobby = self.lobbies.update(
                lobby_id,
                host={
                    'user_id': identity.user_id,
                    'name': identity.name,
                    'email': identity.email,
                    'socket_id': sid,
                    'last_active': self.timers.clock(),
                },
                total_rounds=len(self.resolver.list_rounds_ordered()),
            )
            if stale_sid:
                self.gateway.send(stale_sid, 'error', {'message': 'Host session opened in another tab'})
                self.gateway.disconnect(stale_sid)
            self.gateway.enter_room(sid, lobby_id)

            self.logger.info(
                f"[host-{'assign' if is_new_host else 'reconnect'}] lobby={lobby_id} host={identity.user_id} "
                f"status={lobby['status']} state={lobby['game_state']} remaining={remaining}s"
            )
            self.gateway.send(sid, 'lobby-joined', {
                'lobby': self.format_lobby(lobby, for_host=True),
                'isNewHost': is_new_host,
                'wasGameInProgress': was_in_progress,
                'remainingTime': remaining,
                'totalQuestions': self.resolver.total_questions(),
                'rounds': self.resolver.list_rounds_ordered(),
            })
            self._recover_timers(lobby, remaining)
            return self.lobbies.get(lobby_id)

    def host_disconnect(self, lobby_id, sid):
        with self.lobby_lock(lobby_id):
            lobby = self.lobbies.get(lobby_id)
            host = lobby.get('host')
            if not host or host.get('socket_id') != sid:
                return lobby
            host = dict(host, socket_id=None, last_active=self.timers.clock())
            self.logger.info(f"[host-disconnect] lobby={lobby_id} host={host['user_id']} remains assigned")
            return self.lobbies.update(lobby_id, host=host)

    def player_connect(self, lobby_id, identity, sid):
        with self.lobby_lock(lobby_id):
            lobby = self.lobbies.get(lobby_id)
            existing = find_player(lobby, identity.user_id)
            if existing is not None and existing.get('socket_id') not in (None, sid):
                # One live connection per user: the newest tab wins
                stale_sid = existing['socket_id']
                self.gateway.send(stale_sid, 'error', {'message': 'Opened in another tab'})
                self.gateway.disconnect(stale_sid)
                lobby = self.lobbies.get(lobby_id)
                existing = find_player(lobby, identity.user_id)

            if existing is not None:
                players = [
                    dict(p, socket_id=sid) if p['user_id'] == identity.user_id else p
                    for p in lobby['players']
                ]
            else:
                if len(lobby['players']) >= lobby['max_players']:
                    raise StateConflict('Lobby is full')
                players = lobby['players'] + [{
                    'user_id': identity.user_id,
                    'name': identity.name,
                    'email': identity.email,
                    'score': 0,
                    'round_scores': [],
                    'joined_at': self.timers.clock(),
                    'socket_id': sid,
                    'has_answered_current_question': False,
                    'last_answer_time': None,
                    'last_answer_correct': None,
                    'last_answer': None,
                }]
            lobby = self.lobbies.update(lobby_id, players=players)
            self.gateway.enter_room(sid, lobby_id)

            player = find_player(lobby, identity.user_id)
            self.logger.info(
                f"[player-{'reconnect' if existing else 'join'}] lobby={lobby_id} user={identity.user_id} "
                f"score={player['score']}"
            )
            self._broadcast(lobby_id, 'player-joined', {
                'player': {'userId': player['user_id'], 'name': player['name'], 'score': player['score']},
                'playerCount': len(lobby['players']),
            }, skip_sid=sid)
            self.gateway.send(sid, 'lobby-joined', {
                'lobby': self.format_lobby(lobby),
                'player': self._player_for_client(player),
                'isReconnect': existing is not None,
                'remainingTime': self.remaining_time(lobby),
                'totalQuestions': self.resolver.total_questions(),
            })
            return lobby

    def player_disconnect(self, lobby_id, user_id, sid, explicit=False):
        """Clear the player's socket binding; the record and score stay."""
        with self.lobby_lock(lobby_id):
            lobby = self.lobbies.get(lobby_id)
            player = find_player(lobby, user_id)
            if explicit:
                self.gateway.leave_room(sid, lobby_id)
            if player is None or player.get('socket_id') != sid:
                return lobby
            players = [dict(p, socket_id=None) if p['user_id'] == user_id else p for p in lobby['players']]
            lobby = self.lobbies.update(lobby_id, players=players)
            self.logger.info(f"[player-{'leave' if explicit else 'disconnect'}] lobby={lobby_id} user={user_id}")
            self._broadcast(lobby_id, 'player-left', {
                'userId': user_id,
                'playerCount': len(players),
            }, skip_sid=sid)
            return lobby

    # ---- gameplay ----

    def submit_answer(self, lobby_id, user_id, sid, answer, question_id=None):
        with self.lobby_lock(lobby_id):
            result = self.scoring.submit(lobby_id, user_id, answer, question_id=question_id)
            self.gateway.send(sid, 'answer-submitted', result.ack())
            self._broadcast(lobby_id, 'score-updated', {
                'userId': result.user_id,
                'userName': result.name,
                'score': result.score,
                'pointsEarned': result.points_earned,
                'isCorrect': result.is_correct,
                'answerTime': f"{result.time_taken:.1f}",
                'newAnswer': True,
            })
            self._broadcast(lobby_id, 'answered-count-updated', {
                'answeredCount': result.answered_count,
                'totalPlayers': result.total_players,
                'waitingCount': result.total_players - result.answered_count,
            })
            return result

    def stream_control(self, lobby_id, action, value, from_name=None):
        if not action or not isinstance(action, str):
            raise ValidationFailure('action is required')
        with self.lobby_lock(lobby_id):
            if action == 'url':
                self.lobbies.update(lobby_id, stream_url=value or None)
            self._broadcast(lobby_id, 'stream-control', {
                'action': action,
                'value': value,
                'fromHost': from_name,
                'timestamp': to_millis(self.timers.clock()),
            })

    # ---- read model ----

    def _player_for_client(self, player):
        return {
            'userId': player['user_id'],
            'name': player['name'],
            'score': player.get('score') or 0,
            'roundScores': [
                {'roundId': e['round_id'], 'score': e['score']} for e in player.get('round_scores') or []
            ],
            'hasAnsweredCurrentQuestion': bool(player.get('has_answered_current_question')),
            'lastAnswerCorrect': player.get('last_answer_correct'),
            'isOnline': bool(player.get('socket_id')),
        }

    def format_lobby(self, lobby, for_host=False):
        question = lobby.get('current_question')
        host = lobby.get('host')
        return {
            'id': lobby['id'],
            'name': lobby['name'],
            'countdown': lobby['countdown'],
            'status': lobby['status'],
            'gameState': lobby['game_state'],
            'maxPlayers': lobby['max_players'],
            'playerCount': len(lobby['players']),
            'players': [self._player_for_client(p) for p in lobby['players']],
            'currentQuestion': question if for_host else strip_answer_key(question),
            'currentQuestionIndex': lobby['current_question_index'],
            'currentRound': self.resolver.round_index(lobby['current_round_id']),
            'currentRoundId': lobby['current_round_id'],
            'totalQuestionsInRound': lobby['total_questions_in_round'],
            'totalRounds': lobby['total_rounds'],
            'startTime': to_millis(lobby.get('start_time')),
            'streamUrl': lobby.get('stream_url'),
            'roundProgress': _progress_for_client(lobby['round_progress']),
            'host': {
                'userId': host['user_id'],
                'name': host['name'],
                'isOnline': bool(host.get('socket_id')),
            } if host else None,
        }

    def snapshot(self, lobby_id, for_host=False):
        return self.format_lobby(self.lobbies.get(lobby_id), for_host=for_host)

    def leaderboard(self, lobby_id, round_id=None):
        lobby = self.lobbies.get(lobby_id)
        if round_id:
            self.resolver.get_round(round_id)
            return rank_players_for_round(lobby['players'], round_id)
        return rank_players(lobby['players'], lobby['current_round_id'])
