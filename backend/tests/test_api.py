ANSWERS = {
    'mcq-001': 'Mars',
    'emoji-003': 'pizza',
    'reaction-001': 'reaction_time',
    'typing-001': 'The quick brown fox jumps over the lazy dog',
}


def _create_room(host_client, **body):
    res = host_client.post('/api/rooms/', json=body)
    assert res.status_code == 201, res.get_json()
    return res.get_json()['room_code']


def test_register_login_and_me(client):
    res = client.post('/api/auth/register', json={'username': 'alice', 'password': 'pw'})
    assert res.status_code == 201
    user = res.get_json()['user']
    assert user['display_name'] == 'alice'
    assert user['login_count'] == 1

    res = client.post('/api/auth/register', json={'username': 'alice', 'password': 'other'})
    assert res.status_code == 400

    assert client.post('/api/auth/logout').status_code == 200
    assert client.get('/api/auth/me').status_code == 401

    res = client.post('/api/auth/login', json={'username': 'alice', 'password': 'nope'})
    assert res.status_code == 401
    res = client.post('/api/auth/login', json={'username': 'alice', 'password': 'pw'})
    assert res.status_code == 200
    assert res.get_json()['user']['login_count'] == 2
    assert client.get('/api/auth/me').get_json()['user']['uid'] == user['uid']


def test_anonymous_sign_in(client):
    res = client.post('/api/auth/anonymous', json={'display_name': 'Quick Guest'})
    assert res.status_code == 201
    user = res.get_json()['user']
    assert user['is_anonymous'] is True
    assert user['display_name'] == 'Quick Guest'

    # Signing in again on the same session reuses the profile
    res = client.post('/api/auth/anonymous', json={})
    assert res.status_code == 200
    assert res.get_json()['user']['uid'] == user['uid']
    assert res.get_json()['user']['login_count'] == 2


def test_rooms_require_login(client):
    res = client.get('/api/rooms/')
    assert res.status_code == 401
    assert res.get_json()['error'] == 'Authentication required'


def test_create_and_get_room(signup):
    host, host_id = signup('hana')
    code = _create_room(host, max_players=4)
    assert len(code) == 6 and code.isupper()

    state = host.get(f'/api/rooms/{code.lower()}').get_json()
    assert state['room_code'] == code
    assert state['status'] == 'waiting'
    assert state['host_id'] == host_id
    assert state['current_players'] == 1
    assert state['players'][0]['is_host'] is True

    listing = host.get('/api/rooms/').get_json()['rooms']
    assert [r['room_code'] for r in listing] == [code]


def test_unknown_room_returns_404(signup):
    host, _ = signup('hana')
    res = host.post('/api/rooms/NOPE42/join')
    assert res.status_code == 404
    assert res.get_json()['code'] == 'RoomNotFound'


def test_join_full_room_returns_409(signup):
    host, _ = signup('hana')
    guest, _ = signup('gus')
    late, _ = signup('lara')
    code = _create_room(host, max_players=2)
    assert guest.post(f'/api/rooms/{code}/join').status_code == 200

    res = late.post(f'/api/rooms/{code}/join')
    assert res.status_code == 409
    assert res.get_json()['code'] == 'RoomFull'
    assert host.get(f'/api/rooms/{code}').get_json()['current_players'] == 2


def test_leave_then_rejoin(signup):
    host, _ = signup('hana')
    guest, guest_id = signup('gus')
    code = _create_room(host)

    assert guest.post(f'/api/rooms/{code}/join').status_code == 200
    res = guest.post(f'/api/rooms/{code}/leave')
    assert res.status_code == 200
    assert guest_id not in res.get_json()['room']['player_ids']
    assert res.get_json()['room']['current_players'] == 1

    res = guest.post(f'/api/rooms/{code}/join')
    assert res.status_code == 200
    assert res.get_json()['room']['current_players'] == 2


def test_host_rules(signup):
    host, host_id = signup('hana')
    guest, guest_id = signup('gus')
    code = _create_room(host)
    guest.post(f'/api/rooms/{code}/join')

    assert guest.post(f'/api/rooms/{code}/start').status_code == 403
    assert host.post(f'/api/rooms/{code}/leave').get_json()['code'] == 'HostCannotLeave'
    assert host.post(f'/api/rooms/{code}/kick', json={'player_id': host_id}).status_code == 400
    assert host.post(f'/api/rooms/{code}/kick', json={}).status_code == 400

    res = host.post(f'/api/rooms/{code}/kick', json={'player_id': guest_id})
    assert res.status_code == 200
    assert res.get_json()['room']['player_ids'] == [host_id]


def test_settings_and_ready(signup):
    host, _ = signup('hana')
    guest, guest_id = signup('gus')
    code = _create_room(host)
    guest.post(f'/api/rooms/{code}/join')

    res = host.patch(f'/api/rooms/{code}/settings', json={'settings': {'is_private': True, 'bogus': 1}})
    assert res.status_code == 200
    settings = res.get_json()['room']['settings']
    assert settings['is_private'] is True
    assert 'bogus' not in settings
    assert host.get('/api/rooms/').get_json()['rooms'] == []

    assert guest.patch(f'/api/rooms/{code}/settings', json={'settings': {}}).status_code == 403

    res = guest.post(f'/api/rooms/{code}/ready', json={'is_ready': True})
    players = {p['player_id']: p for p in res.get_json()['room']['players']}
    assert players[guest_id]['is_ready'] is True


def test_cancel_and_delete(signup):
    host, _ = signup('hana')
    code = _create_room(host)
    res = host.post(f'/api/rooms/{code}/cancel')
    assert res.get_json()['room']['status'] == 'cancelled'
    assert host.post(f'/api/rooms/{code}/start').status_code == 409

    res = host.delete(f'/api/rooms/{code}')
    assert res.status_code == 200
    assert host.get(f'/api/rooms/{code}').status_code == 404


def test_submission_requires_active_room(signup):
    host, _ = signup('hana')
    code = _create_room(host)
    res = host.post(f'/api/rooms/{code}/submissions', json={'puzzle_id': 'mcq-001', 'answer': 'Mars'})
    assert res.status_code == 409
    assert res.get_json()['code'] == 'RoomNotActive'

    res = host.post(f'/api/rooms/{code}/submissions', json={})
    assert res.status_code == 400


def test_full_game_ranks_players(signup):
    host, host_id = signup('hana', 'Hana')
    guest, guest_id = signup('gus', 'Gus')
    code = _create_room(host)
    guest.post(f'/api/rooms/{code}/join')

    started = host.post(f'/api/rooms/{code}/start').get_json()['room']
    assert started['status'] == 'active'
    assert [s['difficulty'] for s in started['sessions']] == ['easy', 'medium', 'hard']
    assert started['total_challenges'] == 12

    puzzles = guest.get(f'/api/rooms/{code}/puzzles').get_json()['puzzles']
    assert [p['challenge_id'] for p in puzzles] == list(ANSWERS)
    assert all('correct_answer' not in p for p in puzzles)
    limits = {p['challenge_id']: p['time_limit'] for p in puzzles}

    # Host answers everything instantly; the guest misses the first question
    # and uses the full time limit on the rest.
    for puzzle_id, answer in ANSWERS.items():
        res = host.post(f'/api/rooms/{code}/submissions', json={
            'puzzle_id': puzzle_id, 'answer': answer, 'time_spent': 0,
        })
        assert res.status_code == 202
        guest_answer = 'Venus' if puzzle_id == 'mcq-001' else answer
        res = guest.post(f'/api/rooms/{code}/submissions', json={
            'puzzle_id': puzzle_id, 'answer': guest_answer, 'time_spent': limits[puzzle_id],
        })
        assert res.status_code == 202

    board = host.get(f'/api/rooms/{code}/leaderboard').get_json()['leaderboard']
    assert [(row['player_id'], row['points'], row['rank']) for row in board] == [
        (host_id, 400, 1),
        (guest_id, 204, 2),
    ]
    assert board[1]['display_name'] == 'Gus'

    mine = guest.get(f'/api/rooms/{code}/submissions?mine=1').get_json()['submissions']
    assert len(mine) == 4
    assert all(s['verified'] for s in mine)
    assert [s['points_awarded'] for s in mine] == [0, 68, 68, 68]

    ended = host.post(f'/api/rooms/{code}/end').get_json()['room']
    assert ended['status'] == 'completed'
    assert ended['results']['winner_id'] == host_id
    assert [s['score'] for s in ended['results']['top_scores']] == [400, 204]

    profile = host.get(f'/api/players/{host_id}').get_json()
    assert profile['total_score'] == 400
    assert profile['games_won'] == 1
    assert profile['active_rooms'] == []

    top = host.get('/api/leaderboard').get_json()['leaderboard']
    assert [row['uid'] for row in top[:2]] == [host_id, guest_id]


def test_unknown_player_profile_returns_404(client):
    assert client.get('/api/players/does-not-exist').status_code == 404


def test_end_rejects_malformed_results(signup):
    host, _ = signup('hana')
    code = _create_room(host)
    host.post(f'/api/rooms/{code}/start')

    for results in (['x'], 'done', {'top_scores': []}, {'winner_id': 5, 'top_scores': []}):
        res = host.post(f'/api/rooms/{code}/end', json={'results': results})
        assert res.status_code == 400
        assert res.get_json()['code'] == 'InvalidRequest'
    assert host.get(f'/api/rooms/{code}').get_json()['status'] == 'active'

    res = host.post(f'/api/rooms/{code}/end')
    assert res.status_code == 200
    assert res.get_json()['room']['status'] == 'completed'


def test_wrong_typed_fields_return_400(signup):
    host, _ = signup('hana')
    res = host.post('/api/rooms/', json={'settings': ['x']})
    assert res.status_code == 400
    assert host.post('/api/rooms/', json={'game_type': 3}).status_code == 400

    code = _create_room(host)
    assert host.patch(f'/api/rooms/{code}/settings', json={'settings': 'hard'}).status_code == 400
    host.post(f'/api/rooms/{code}/start')

    bad_bodies = [
        {'puzzle_id': 7},
        {'puzzle_id': 'mcq-001', 'is_correct': 'yes'},
        {'puzzle_id': 'mcq-001', 'points_earned': '5'},
        {'puzzle_id': 'mcq-001', 'points_earned': True},
        {'puzzle_id': 'mcq-001', 'session_index': -1},
        {'puzzle_id': 'mcq-001', 'time_spent': 'fast'},
    ]
    for body in bad_bodies:
        res = host.post(f'/api/rooms/{code}/submissions', json=body)
        assert res.status_code == 400, body
    assert host.get(f'/api/rooms/{code}/submissions').get_json()['submissions'] == []


def test_non_finite_time_spent_is_rejected(signup):
    host, _ = signup('hana')
    code = _create_room(host)
    host.post(f'/api/rooms/{code}/start')

    for raw in ('NaN', 'Infinity'):
        res = host.post(
            f'/api/rooms/{code}/submissions',
            data='{"puzzle_id": "mcq-001", "answer": "Mars", "time_spent": %s}' % raw,
            content_type='application/json',
        )
        assert res.status_code == 400
    board = host.get(f'/api/rooms/{code}/leaderboard').get_json()['leaderboard']
    assert [row['points'] for row in board] == [0]


def test_auth_fields_must_be_strings(client):
    assert client.post('/api/auth/register', json={'username': ['a'], 'password': 'pw'}).status_code == 400
    assert client.post('/api/auth/register', json={'username': 'a', 'password': 'pw', 'display_name': 1}).status_code == 400
    assert client.post('/api/auth/register', json=['alice', 'pw']).status_code == 400
    assert client.post('/api/auth/login', json={'username': {'$ne': ''}, 'password': 'pw'}).status_code == 401
    assert client.post('/api/auth/anonymous', json={'photo_url': 42}).status_code == 400


def test_game_history_and_achievements(signup):
    host, host_id = signup('hana')
    guest, guest_id = signup('gus')
    code = _create_room(host)
    guest.post(f'/api/rooms/{code}/join')
    host.post(f'/api/rooms/{code}/start')
    guest.post(f'/api/rooms/{code}/submissions', json={'puzzle_id': 'mcq-001', 'answer': 'Mars', 'time_spent': 0})
    host.post(f'/api/rooms/{code}/end')

    games = host.get(f'/api/rooms/{code}/games').get_json()['games']
    assert [(g['player_id'], g['score'], g['rank'], g['is_winner']) for g in games] == [
        (guest_id, 100, 1, True),
        (host_id, 0, 2, False),
    ]

    mine = guest.get(f'/api/players/{guest_id}/games').get_json()
    assert mine['player_id'] == guest_id
    assert len(mine['games']) == 1
    game = mine['games'][0]
    assert game['room_code'] == code
    assert game['accuracy'] == 100
    assert game['puzzles_completed'] == 1
    assert game['total_puzzles'] == 12
    assert game['answers'][0]['puzzle_id'] == 'mcq-001'
    assert game['answers'][0]['points'] == 100

    catalog = host.get('/api/achievements').get_json()['achievements']
    assert len(catalog) == 8
    assert [a['id'] for a in catalog] == sorted(a['id'] for a in catalog)

    owned = guest.get(f'/api/players/{guest_id}/achievements').get_json()['achievements']
    assert [a['id'] for a in owned] == ['consistent', 'early_bird', 'first_score']
    host_owned = host.get(f'/api/players/{host_id}/achievements').get_json()['achievements']
    assert [a['id'] for a in host_owned] == ['early_bird']

    assert host.get('/api/players/nobody/games').status_code == 404
    assert host.get('/api/players/nobody/achievements').status_code == 404
