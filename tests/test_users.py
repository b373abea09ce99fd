"""Tests for user administration routes."""
import json

from backend.app import db
from backend.models import Match, MatchParticipant, User
from backend.services.scoring_engine import complete_match


def test_admin_creates_user(client, admin_headers):
    res = client.post('/api/users', json={
        'username': 'newbie', 'password': 'password123', 'display_name': 'New Bie',
    }, headers=admin_headers)
    assert res.status_code == 201
    user = json.loads(res.data)['user']
    assert user['role'] == 'player'
    assert user['display_name'] == 'New Bie'
    assert user['joker_used'] is False

    res = client.post('/api/auth/login', json={'username': 'newbie', 'password': 'password123'})
    assert res.status_code == 200


def test_create_user_validation(client, admin_headers):
    res = client.post('/api/users', json={'username': 'x'}, headers=admin_headers)
    assert res.status_code == 400
    res = client.post('/api/users', json={
        'username': 'x', 'password': 'pw', 'role': 'referee',
    }, headers=admin_headers)
    assert res.status_code == 400

    client.post('/api/users', json={'username': 'dup', 'password': 'pw'}, headers=admin_headers)
    res = client.post('/api/users', json={'username': 'dup', 'password': 'pw'}, headers=admin_headers)
    assert res.status_code == 409


def test_update_role(client, admin_headers, make_user):
    user = make_user('alice')
    res = client.patch(f'/api/users/{user.id}/role', json={'role': 'mini_admin'}, headers=admin_headers)
    assert json.loads(res.data)['user']['role'] == 'mini_admin'
    res = client.patch(f'/api/users/{user.id}/role', json={'role': 'boss'}, headers=admin_headers)
    assert res.status_code == 400
    res = client.patch('/api/users/4242/role', json={'role': 'player'}, headers=admin_headers)
    assert res.status_code == 404


def test_display_name_self_or_admin(client, admin_headers, make_user, headers_for):
    alice = make_user('alice')
    bob = make_user('bob')
    res = client.patch(f'/api/users/{alice.id}/display-name',
        json={'display_name': 'Ally'}, headers=headers_for(alice))
    assert json.loads(res.data)['user']['display_name'] == 'Ally'

    res = client.patch(f'/api/users/{alice.id}/display-name',
        json={'display_name': 'Hacked'}, headers=headers_for(bob))
    assert res.status_code == 403

    res = client.patch(f'/api/users/{alice.id}/display-name',
        json={'display_name': 'x' * 101}, headers=admin_headers)
    assert res.status_code == 400
    res = client.patch(f'/api/users/{alice.id}/display-name',
        json={'display_name': '  '}, headers=admin_headers)
    assert res.status_code == 400


def test_reset_joker_route(client, admin_headers, make_user):
    alice = make_user('alice', joker_used=True)
    res = client.post(f'/api/users/{alice.id}/reset-joker', headers=admin_headers)
    assert res.status_code == 200
    assert json.loads(res.data)['user']['joker_used'] is False


def test_delete_user_keeps_completed_history(client, admin, admin_headers, players, make_match):
    done = make_match(players)
    complete_match(done.id, [players[0].id])
    open_match = make_match(players, mini_admin_id=players[0].id)

    res = client.delete(f'/api/users/{players[0].id}', headers=admin_headers)
    assert res.status_code == 200

    db.session.expire_all()
    assert db.session.get(User, players[0].id) is None
    completed_rows = MatchParticipant.query.filter_by(match_id=done.id).all()
    assert len(completed_rows) == 4
    assert sum(1 for row in completed_rows if row.user_id is None) == 1

    remaining = db.session.get(Match, open_match.id)
    assert remaining.mini_admin_id is None
    assert remaining.pot == 120
    assert {p.user_id for p in remaining.participants} == {p.id for p in players[1:]}


def test_admin_cannot_delete_self(client, admin, admin_headers):
    res = client.delete(f'/api/users/{admin.id}', headers=admin_headers)
    assert res.status_code == 400


def test_list_and_get_users(client, admin, admin_headers, make_user):
    make_user('alice')
    res = client.get('/api/users', headers=admin_headers)
    assert {u['username'] for u in json.loads(res.data)['users']} == {'admin', 'alice'}
    res = client.get(f'/api/users/{admin.id}', headers=admin_headers)
    assert json.loads(res.data)['user']['role'] == 'admin'
