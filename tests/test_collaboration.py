"""Tests for the Socket.IO collaboration protocol."""

import pytest

from sketchdb.web_app.collaboration import CollaborationTasks


def received(client, name):
    """Payloads of every ``name`` event the client got since the last call."""
    return [r['args'][0] for r in client.get_received() if r['name'] == name]


def join(client, diagram_id):
    client.emit('join-diagram', {'diagramId': diagram_id})
    payloads = received(client, 'joined-diagram')
    return payloads[0] if payloads else None


@pytest.fixture
def room(connect):
    """alice (owner, edit), bob (edit) and carol (view) in diagram d1."""
    alice, bob, carol = connect(1), connect(2), connect(3)
    for client in (alice, bob, carol):
        join(client, 'd1')
    for client in (alice, bob, carol):
        client.get_received()
    return alice, bob, carol


class TestHandshake:
    """Bearer token authentication on connect."""

    def test_valid_token_connects(self, connect, registry):
        client = connect(1)
        assert client.is_connected()
        assert len(registry.connections) == 1

    def test_token_in_query_string(self, app, tokens):
        client = app.socketio.test_client(app, query_string=f"token={tokens.issue(1)}")
        assert client.is_connected()
        client.disconnect()

    @pytest.mark.parametrize('token', [None, 'not-a-token'])
    def test_missing_or_invalid_token_is_refused(self, connect, registry, token):
        client = connect(token=token)
        assert not client.is_connected()
        assert registry.connections == {}

    def test_expired_token_is_refused(self, connect, tokens, clock):
        token = tokens.issue(1)
        clock.advance(3601)
        assert not connect(token=token).is_connected()

    def test_unverified_and_unknown_users_are_refused(self, connect):
        assert not connect(4).is_connected()
        assert not connect(99).is_connected()

    def test_server_full(self, connect, registry):
        registry.max_total_connections = 1
        assert connect(1).is_connected()
        assert not connect(2).is_connected()


class TestJoin:
    """Room join protocol."""

    def test_owner_joins_with_edit(self, connect):
        alice = connect(1)
        payload = join(alice, 'd1')
        assert payload['diagramId'] == 'd1'
        assert payload['permission'] == 'edit'
        assert payload['ownerUsername'] == 'alice'
        assert payload['diagramName'] == 'Shop schema'
        assert [(u['userId'], u['username'], u['permission']) for u in payload['users']] == [
            (1, 'alice', 'edit')
        ]

    def test_collaborator_and_public_permissions(self, connect):
        assert join(connect(3), 'd1')['permission'] == 'view'
        assert join(connect(2), 'd2')['permission'] == 'view'

    def test_join_by_share_slug(self, connect):
        payload = join(connect(3), 'pub-slug')
        assert payload['diagramId'] == 'd2'

    @pytest.mark.parametrize('data, error_type', [
        ({'diagramId': 'd3'}, 'access-denied'),
        ({'diagramId': 'nope'}, 'not-found'),
        ({}, 'invalid-request'),
    ])
    def test_join_errors(self, connect, registry, data, error_type):
        carol = connect(3)
        carol.emit('join-diagram', data)
        errors = received(carol, 'error')
        assert [e['type'] for e in errors] == [error_type]
        assert registry.rooms == {}

    def test_members_are_notified(self, connect):
        alice, bob = connect(1), connect(2)
        join(alice, 'd1')
        payload = join(bob, 'd1')
        assert [u['username'] for u in payload['users']] == ['alice', 'bob']

        (notice,) = received(alice, 'user-joined')
        assert notice['userId'] == 2
        assert notice['username'] == 'bob'
        assert notice['permission'] == 'edit'
        assert received(bob, 'user-joined') == []

    def test_leave_and_disconnect_notify_others(self, room, registry):
        alice, bob, carol = room
        bob.emit('leave-diagram', {'diagramId': 'd1'})
        assert [p['username'] for p in received(alice, 'user-left')] == ['bob']

        carol.disconnect()
        assert [p['username'] for p in received(alice, 'user-left')] == ['carol']
        assert [m.username for m in registry.members('d1')] == ['alice']

    def test_room_torn_down_when_last_member_leaves(self, connect, registry):
        alice = connect(1)
        join(alice, 'd1')
        alice.emit('leave-diagram', {'diagramId': 'd1'})
        assert registry.rooms == {}

    def test_switching_rooms_leaves_the_previous_one(self, connect):
        alice, bob = connect(1), connect(2)
        join(alice, 'd1')
        join(bob, 'd1')
        bob.get_received()
        assert join(alice, 'd2')['diagramId'] == 'd2'
        assert [p['userId'] for p in received(bob, 'user-left')] == [1]

    def test_capacity(self, connect, registry):
        registry.max_users_per_diagram = 2
        alice, bob, carol = connect(1), connect(2), connect(3)
        join(alice, 'd1')
        join(bob, 'd1')
        carol.emit('join-diagram', {'diagramId': 'd1'})
        (error,) = received(carol, 'error')
        assert error['type'] == 'room-full'
        assert '2 users' in error['message']

        # a second tab takes its own seat
        second_tab = connect(1)
        second_tab.emit('join-diagram', {'diagramId': 'd1'})
        assert [e['type'] for e in received(second_tab, 'error')] == ['room-full']
        assert len(registry.members('d1')) == 2

    def test_rejoining_same_room_is_not_announced_again(self, connect):
        alice, bob = connect(1), connect(2)
        join(alice, 'd1')
        join(bob, 'd1')
        alice.get_received()
        assert join(bob, 'd1')['diagramId'] == 'd1'
        assert received(alice, 'user-joined') == []


class TestRelay:
    """Broadcast of edit and presence events."""

    def test_viewer_cannot_add_nodes(self, room):
        alice, bob, carol = room
        carol.emit('node-add', {'diagramId': 'd1', 'node': {'id': 'table-9'}})
        assert received(alice, 'node-add') == []
        assert received(bob, 'node-add') == []
        (error,) = received(carol, 'error')
        assert error['type'] == 'access-denied'

    def test_editor_node_add_reaches_everyone_else(self, room):
        alice, bob, carol = room
        alice.emit('node-add', {'diagramId': 'd1', 'node': {'id': 'table-9'}})
        for other in (bob, carol):
            (payload,) = received(other, 'node-add')
            assert payload['node'] == {'id': 'table-9'}
            assert payload['userId'] == 1
            assert payload['username'] == 'alice'
        assert alice.get_received() == []

    def test_node_move_and_edge_events(self, room):
        alice, bob, _ = room
        bob.emit('node-move', {'diagramId': 'd1', 'nodeId': 'table-1', 'position': {'x': 1, 'y': 2}})
        bob.emit('edge-delete', {'diagramId': 'd1', 'edgeId': 'e1'})
        got = alice.get_received()
        assert [r['name'] for r in got] == ['node-move', 'edge-delete']
        assert got[0]['args'][0]['position'] == {'x': 1, 'y': 2}
        assert got[1]['args'][0]['edgeId'] == 'e1'

    def test_sync_update_requires_edit(self, room):
        alice, bob, carol = room
        alice.emit('sync-update', {'diagramId': 'd1', 'update': [1, 2, 3]})
        assert received(bob, 'sync-update') == [{'update': [1, 2, 3], 'origin': 'alice'}]

        carol.emit('sync-update', {'diagramId': 'd1', 'update': [4]})
        assert received(alice, 'sync-update') == []
        assert [e['type'] for e in received(carol, 'error')] == ['access-denied']

    def test_viewer_presence_is_relayed(self, room):
        alice, _, carol = room
        carol.emit('selection-change', {'diagramId': 'd1', 'selectedNodes': ['table-1']})
        carol.emit('awareness-update', {'diagramId': 'd1', 'awareness': {'color': 'red'}})
        got = alice.get_received()
        assert got[0]['args'][0] == {
            'userId': 3, 'username': 'carol', 'selectedNodes': ['table-1'], 'selectedEdges': [],
        }
        assert got[1]['args'][0]['awareness'] == {'color': 'red'}

    def test_non_member_events_are_ignored(self, room, connect):
        alice, _, _ = room
        outsider = connect(2)
        outsider.emit('selection-change', {'diagramId': 'd1', 'selectedNodes': []})
        outsider.emit('cursor-move', {'diagramId': 'd1', 'x': 1, 'y': 1})
        assert alice.get_received() == []

    def test_excess_edit_events_are_dropped(self, room, registry):
        alice, bob, _ = room
        registry.event_rate_limit = 3
        for n in range(5):
            alice.emit('node-update', {'diagramId': 'd1', 'nodeId': 'table-1', 'changes': {'n': n}})
        assert [p['changes']['n'] for p in received(bob, 'node-update')] == [0, 1, 2]
        assert [e['type'] for e in received(alice, 'error')] == ['rate-limited']

    def test_cursor_moves_in_window_produce_one_update(self, room, app):
        alice, bob, _ = room
        alice.emit('cursor-move', {'diagramId': 'd1', 'x': 10, 'y': 10})
        alice.emit('cursor-move', {'diagramId': 'd1', 'x': 20, 'y': 30})
        app.collab_tasks.flush_cursors()
        (update,) = received(bob, 'cursor-update')
        assert (update['username'], update['x'], update['y']) == ('alice', 20, 30)
        assert received(alice, 'cursor-update') == []

    def test_late_joiner_state_handshake(self, connect):
        alice, bob = connect(1), connect(2)
        join(alice, 'd1')
        payload = join(bob, 'd1')
        bob_sid = payload['users'][1]['id']
        alice.get_received()

        bob.emit('request-state', {'diagramId': 'd1'})
        (request,) = received(alice, 'provide-state')
        assert request == {'requesterId': bob_sid, 'requesterUsername': 'bob'}

        alice.emit('state-response', {'targetId': bob_sid, 'nodes': [{'id': 'table-1'}], 'edges': []})
        (state,) = received(bob, 'state-provided')
        assert state['nodes'] == [{'id': 'table-1'}]


class TestSweep:

    def test_ghost_connection_is_reaped(self, room, registry, app):
        alice, _, _ = room
        registry.register_connection('ghost', {'id': 5, 'username': 'ghost'})
        registry.join('ghost', 'd1', 'view')

        removed = app.collab_tasks.sweep()
        assert [m.sid for _, m in removed] == ['ghost']
        assert [p['username'] for p in received(alice, 'user-left')] == ['ghost']
        assert 'ghost' not in registry.connections


class StopLoop(Exception):
    pass


class FakeSocketIO:
    """Lets a background loop run a fixed number of iterations."""

    def __init__(self, iterations):
        self.iterations = iterations
        self.emitted = []

    def sleep(self, seconds):
        if self.iterations == 0:
            raise StopLoop()
        self.iterations -= 1

    def emit(self, event, payload, **kwargs):
        self.emitted.append((event, payload))


class TestBackgroundTasks:

    def test_cursor_loop_survives_a_failed_flush(self, registry):
        registry.register_connection('s1', {'id': 1, 'username': 'alice'})
        registry.join('s1', 'd1', 'edit')
        registry.offer_cursor('s1', 'd1', 3, 4)

        socketio = FakeSocketIO(iterations=2)
        tasks = CollaborationTasks(socketio, registry, sweep_interval=30)
        calls = []
        flush = tasks.flush_cursors

        def flaky_flush():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError('emit failed')
            return flush()

        tasks.flush_cursors = flaky_flush
        with pytest.raises(StopLoop):
            tasks._cursor_loop()
        assert len(calls) == 2
        assert socketio.emitted == [('cursor-update', {'id': 's1', 'username': 'alice', 'x': 3, 'y': 4})]
