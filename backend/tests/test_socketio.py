from conftest import auth_headers


def _events(sio, name=None):
    return [pkt for pkt in sio.get_received('/ws') if name is None or pkt['name'] == name]


def _names(packets):
    return [pkt['name'] for pkt in packets]


def _create(client, account, mode='MULTIPLAYER', rounds=1):
    res = client.post('/api/games', json={'type': mode, 'maxRounds': rounds}, headers=auth_headers(account))
    return res.get_json()['game']['id']


def test_connection_without_token_is_refused(sio_factory):
    sio = sio_factory()
    assert not sio.is_connected('/ws')


def test_connection_with_bad_token_is_refused(sio_factory, users):
    sio = sio_factory('forged.token.value')
    assert not sio.is_connected('/ws')


def test_connection_with_token_is_accepted(sio_factory, users):
    sio = sio_factory(users['alice']['token'])
    assert sio.is_connected('/ws')
    connected = _events(sio, 'connected')
    assert connected[0]['args'][0]['user']['username'] == 'alice'


def test_unknown_room_is_reported_to_sender(sio_factory, users):
    sio = sio_factory(users['alice']['token'])
    _events(sio)
    sio.emit('join-game', {'gameId': 'missing'}, namespace='/ws')
    errors = _events(sio, 'error')
    assert errors[0]['args'][0]['code'] == 'room_not_found'
    assert errors[0]['args'][0]['kind'] == 'not_found'


def test_full_multiplayer_game_over_socket(client, sio_factory, users):
    alice, bob = users['alice'], users['bob']
    game_id = _create(client, alice)
    a = sio_factory(alice['token'])
    b = sio_factory(bob['token'])
    _events(a)
    _events(b)

    a.emit('join-game', {'gameId': game_id}, namespace='/ws')
    assert _names(_events(a)) == ['game-joined']

    b.emit('join-game', game_id, namespace='/ws')
    joined = _events(b, 'game-joined')[0]['args'][0]['game']
    assert [p['username'] for p in joined['players']] == ['alice', 'bob']
    assert _names(_events(a)) == ['player-joined']

    a.emit('start-game', {'gameId': game_id}, namespace='/ws')
    assert _names(_events(a)) == ['game-started', 'round-started']
    assert _names(_events(b)) == ['game-started', 'round-started']

    a.emit('submit-answer', {
        'gameId': game_id,
        'roundNumber': 1,
        'guessedArtist': 'queen',
        'guessedTrack': 'Bohemian Rhapsody',
        'guessedYear': 1976,
        'timeToAnswer': 10,
    }, namespace='/ws')
    ack = _events(a)
    assert _names(ack) == ['answer-submitted']
    assert ack[0]['args'][0]['answer']['totalScore'] == 283
    assert _events(b) == []

    b.emit('submit-answer', {'gameId': game_id, 'roundNumber': 1, 'guessedYear': 1975, 'timeToAnswer': 30},
           namespace='/ws')
    assert _names(_events(b)) == ['answer-submitted', 'round-completed', 'game-finished']
    packets = _events(a)
    assert _names(packets) == ['round-completed', 'game-finished']
    results = packets[1]['args'][0]['results']
    assert [(r['user']['username'], r['totalScore'], r['position']) for r in results] == [
        ('alice', 283, 1),
        ('bob', 100, 2),
    ]


def test_rejections_reach_only_the_sender(client, sio_factory, users):
    alice, bob = users['alice'], users['bob']
    game_id = _create(client, alice)
    a = sio_factory(alice['token'])
    b = sio_factory(bob['token'])
    a.emit('join-game', {'gameId': game_id}, namespace='/ws')
    b.emit('join-game', {'gameId': game_id}, namespace='/ws')
    _events(a)
    _events(b)

    b.emit('start-game', {'gameId': game_id}, namespace='/ws')
    errors = _events(b, 'error')
    assert errors[0]['args'][0]['code'] == 'not_creator'
    assert _events(a) == []

    b.emit('submit-answer', 'not-an-object', namespace='/ws')
    assert _events(b, 'error')[0]['args'][0]['kind'] == 'invalid_request'


def test_disconnect_leaves_player_in_game_until_timeout(client, sio_factory, users, scheduler):
    alice, bob = users['alice'], users['bob']
    game_id = _create(client, alice)
    a = sio_factory(alice['token'])
    b = sio_factory(bob['token'])
    a.emit('join-game', {'gameId': game_id}, namespace='/ws')
    b.emit('join-game', {'gameId': game_id}, namespace='/ws')
    a.emit('start-game', {'gameId': game_id}, namespace='/ws')
    a.emit('submit-answer', {'gameId': game_id, 'roundNumber': 1, 'guessedArtist': 'Queen', 'timeToAnswer': 30},
           namespace='/ws')
    b.disconnect(namespace='/ws')
    _events(a)

    scheduler.run_clocks()
    packets = _events(a)
    names = _names(packets)
    assert names.count('countdown') == 30
    assert names[-3:] == ['round-timeout', 'round-completed', 'game-finished']
    completed = packets[-2]['args'][0]
    bob_entry = [x for x in completed['allAnswers'] if x['userId'] == bob['id']][0]
    assert bob_entry['answered'] is False
    assert bob_entry['totalScore'] == 0


def test_leave_game_drops_the_subscription(client, sio_factory, users):
    alice, bob = users['alice'], users['bob']
    game_id = _create(client, alice)
    a = sio_factory(alice['token'])
    b = sio_factory(bob['token'])
    a.emit('join-game', {'gameId': game_id}, namespace='/ws')
    b.emit('join-game', {'gameId': game_id}, namespace='/ws')
    _events(a)
    _events(b)

    b.emit('leave-game', {'gameId': game_id}, namespace='/ws')
    assert _names(_events(a)) == ['player-left']
    assert _events(b) == []
