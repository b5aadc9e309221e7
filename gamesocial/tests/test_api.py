import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from gamesocial.auth import create_access_token
from gamesocial.cache import CacheConfig
from gamesocial.main import create_app


@pytest.fixture
def app(session_factory):
    return create_app(session_factory=session_factory, cache_config=CacheConfig())


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as ac:
        yield ac


def auth(user_id: int) -> dict:
    return {'Authorization': f"Bearer {create_access_token({'id': user_id})}"}


async def register(client, username: str, **fields) -> dict:
    res = await client.post('/api/users', json={'username': username, **fields})
    assert res.status_code == 200, res.text
    return res.json()


@pytest.mark.asyncio
async def test_healthz(client):
    res = await client.get('/healthz')
    assert res.status_code == 200
    assert res.json()['status'] == 'ok'


@pytest.mark.asyncio
async def test_register_and_me(client):
    alice = await register(client, 'alice', display_name='Alice', gaming_preferences={'genres': ['rpg']})
    assert alice['privacy_level'] == 'public'

    me = await client.get('/api/users/me', headers=auth(alice['id']))
    assert me.status_code == 200, me.text
    assert me.json()['gaming_preferences'] == {'genres': ['rpg']}


@pytest.mark.asyncio
async def test_register_validation_and_duplicates(client):
    await register(client, 'alice')
    dup = await client.post('/api/users', json={'username': 'alice'})
    assert dup.status_code == 409
    assert dup.json()['code'] == 'conflict'

    bad = await client.post('/api/users', json={'username': 'a!'})
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_requires_token(client):
    res = await client.get('/api/users/me')
    assert res.status_code == 401
    res = await client.get('/api/users/me', headers={'Authorization': 'Bearer nope'})
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_friend_request_flow(client):
    alice = await register(client, 'alice')
    bob = await register(client, 'bob')

    sent = await client.post('/api/friends/requests', json={'recipient_id': bob['id'], 'message': 'gg'},
                             headers=auth(alice['id']))
    assert sent.status_code == 200, sent.text
    request = sent.json()
    assert request['status'] == 'pending'

    again = await client.post('/api/friends/requests', json={'recipient_id': alice['id']}, headers=auth(bob['id']))
    assert again.status_code == 409
    assert again.json()['code'] == 'request_already_pending'

    incoming = await client.get('/api/friends/requests/incoming', headers=auth(bob['id']))
    assert [r['user']['username'] for r in incoming.json()] == ['alice']
    outgoing = await client.get('/api/friends/requests/outgoing', headers=auth(alice['id']))
    assert [r['user']['username'] for r in outgoing.json()] == ['bob']

    wrong = await client.post(f"/api/friends/requests/{request['id']}/accept", headers=auth(alice['id']))
    assert wrong.status_code == 403
    assert wrong.json()['code'] == 'forbidden'

    accepted = await client.post(f"/api/friends/requests/{request['id']}/accept", headers=auth(bob['id']))
    assert accepted.status_code == 200, accepted.text
    accepted_at = accepted.json()['accepted_at']

    friends = await client.get(f"/api/users/{alice['id']}/friends", headers=auth(bob['id']))
    assert friends.status_code == 200, friends.text
    assert [(f['username'], f['friendship_date']) for f in friends.json()] == [('bob', accepted_at)]

    relationship = await client.get(f"/api/users/{bob['id']}/relationship", headers=auth(alice['id']))
    assert relationship.json()['are_friends'] is True
    assert relationship.json()['relation'] == 'friends'

    incoming = await client.get('/api/friends/requests/incoming', headers=auth(bob['id']))
    assert incoming.json() == []

    removed = await client.delete(f"/api/friends/{alice['id']}", headers=auth(bob['id']))
    assert removed.status_code == 200
    friends = await client.get(f"/api/users/{alice['id']}/friends", headers=auth(bob['id']))
    assert friends.json() == []


@pytest.mark.asyncio
async def test_decline_and_cancel(client):
    alice = await register(client, 'alice')
    bob = await register(client, 'bob')

    request = (await client.post('/api/friends/requests', json={'recipient_id': bob['id']},
                                 headers=auth(alice['id']))).json()
    declined = await client.post(f"/api/friends/requests/{request['id']}/decline", headers=auth(bob['id']))
    assert declined.json()['ok'] is True

    request = (await client.post('/api/friends/requests', json={'recipient_id': bob['id']},
                                 headers=auth(alice['id']))).json()
    cancelled = await client.delete(f"/api/friends/requests/{request['id']}", headers=auth(alice['id']))
    assert cancelled.status_code == 200
    missing = await client.delete(f"/api/friends/requests/{request['id']}", headers=auth(alice['id']))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_profile_visibility(client):
    alice = await register(client, 'alice')
    bob = await register(client, 'bob', display_name='Bob', bio='tank main', privacy_level='friends',
                         privacy_settings={'gaming_preferences': 'private'},
                         gaming_preferences={'platform': 'pc'})
    carol = await register(client, 'carol')

    request = (await client.post('/api/friends/requests', json={'recipient_id': bob['id']},
                                 headers=auth(alice['id']))).json()
    await client.post(f"/api/friends/requests/{request['id']}/accept", headers=auth(bob['id']))

    as_friend = (await client.get(f"/api/users/{bob['id']}", headers=auth(alice['id']))).json()
    assert as_friend['display_name'] == 'Bob'
    assert as_friend['gaming_preferences'] is None
    assert as_friend['relationship']['are_friends'] is True

    as_stranger = (await client.get(f"/api/users/{bob['id']}", headers=auth(carol['id']))).json()
    assert as_stranger['username'] == 'bob'
    assert as_stranger['display_name'] is None
    assert as_stranger['bio'] is None
    assert as_stranger['visibility']['profile'] is False

    as_self = (await client.get(f"/api/users/{bob['id']}", headers=auth(bob['id']))).json()
    assert as_self['gaming_preferences'] == {'platform': 'pc'}

    hidden_list = await client.get(f"/api/users/{bob['id']}/friends", headers=auth(carol['id']))
    assert hidden_list.status_code == 403


@pytest.mark.asyncio
async def test_missing_user_is_404(client):
    alice = await register(client, 'alice')
    res = await client.get('/api/users/999', headers=auth(alice['id']))
    assert res.status_code == 404
    assert res.json()['code'] == 'not_found'


@pytest.mark.asyncio
async def test_block_hides_profile_and_prevents_follow(client, app):
    alice = await register(client, 'alice')
    bob = await register(client, 'bob')

    followed = await client.post(f"/api/follows/{alice['id']}", headers=auth(bob['id']))
    assert followed.status_code == 200, followed.text

    blocked = await client.post('/api/blocks', json={'user_id': bob['id'], 'reason': 'spam', 'duration': '7d'},
                                headers=auth(alice['id']))
    assert blocked.status_code == 200, blocked.text
    assert blocked.json()['expires_at'] is not None

    assert (await client.get(f"/api/users/{alice['id']}", headers=auth(bob['id']))).status_code == 404

    refollow = await client.post(f"/api/follows/{alice['id']}", headers=auth(bob['id']))
    assert refollow.status_code == 403
    assert refollow.json()['code'] == 'blocked'

    followers = await client.get(f"/api/users/{alice['id']}/followers", headers=auth(alice['id']))
    assert followers.json() == []

    listed = await client.get('/api/blocks', headers=auth(alice['id']))
    assert [(b['username'], b['reason']) for b in listed.json()] == [('bob', 'spam')]

    unblocked = await client.delete(f"/api/blocks/{bob['id']}", headers=auth(alice['id']))
    assert unblocked.status_code == 200
    assert (await client.post(f"/api/follows/{alice['id']}", headers=auth(bob['id']))).status_code == 200


@pytest.mark.asyncio
async def test_bad_block_duration_rejected(client):
    alice = await register(client, 'alice')
    bob = await register(client, 'bob')
    res = await client.post('/api/blocks', json={'user_id': bob['id'], 'duration': 'forever'},
                            headers=auth(alice['id']))
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_cached_lists_see_new_followers(client, app):
    alice = await register(client, 'alice')
    bob = await register(client, 'bob')
    carol = await register(client, 'carol')

    first = await client.get(f"/api/users/{bob['id']}/followers", headers=auth(alice['id']))
    assert first.json() == []
    assert app.state.cache.peek('followers', bob['id']) == []

    await client.post(f"/api/follows/{bob['id']}", headers=auth(carol['id']))

    second = await client.get(f"/api/users/{bob['id']}/followers", headers=auth(alice['id']))
    assert [u['username'] for u in second.json()] == ['carol']

    stats = await client.get(f"/api/users/{bob['id']}/stats", headers=auth(alice['id']))
    assert stats.json()['followers_count'] == 1


@pytest.mark.asyncio
async def test_follow_rules_over_http(client):
    alice = await register(client, 'alice')
    bob = await register(client, 'bob')

    self_follow = await client.post(f"/api/follows/{alice['id']}", headers=auth(alice['id']))
    assert self_follow.status_code == 400
    assert self_follow.json()['code'] == 'invalid_target'

    bulk = await client.post('/api/follows/bulk', json={'user_ids': [bob['id'], 999]}, headers=auth(alice['id']))
    assert bulk.status_code == 200, bulk.text
    assert bulk.json()['succeeded'] == [bob['id']]
    assert bulk.json()['failed'][0]['code'] == 'not_found'

    following = await client.get(f"/api/users/{alice['id']}/following", headers=auth(bob['id']))
    assert [u['username'] for u in following.json()] == ['bob']

    unfollow = await client.delete(f"/api/follows/{bob['id']}", headers=auth(alice['id']))
    assert unfollow.status_code == 200
    again = await client.delete(f"/api/follows/{bob['id']}", headers=auth(alice['id']))
    assert again.status_code == 404


@pytest.mark.asyncio
async def test_profile_update_writes_through(client, app):
    alice = await register(client, 'alice', display_name='Alice')
    bob = await register(client, 'bob')

    before = await client.get(f"/api/users/{alice['id']}", headers=auth(bob['id']))
    assert before.json()['display_name'] == 'Alice'

    updated = await client.patch('/api/users/me', json={'display_name': 'Alice G', 'privacy_level': 'private'},
                                 headers=auth(alice['id']))
    assert updated.status_code == 200, updated.text
    assert app.state.cache.peek('profile', alice['id'])['display_name'] == 'Alice G'

    after = await client.get(f"/api/users/{alice['id']}", headers=auth(bob['id']))
    assert after.json()['display_name'] is None
    me = await client.get('/api/users/me', headers=auth(alice['id']))
    assert me.json()['display_name'] == 'Alice G'


@pytest.mark.asyncio
async def test_cache_endpoints(client):
    alice = await register(client, 'alice')
    await client.get('/api/users/me', headers=auth(alice['id']))

    metrics = await client.get('/api/cache/metrics', headers=auth(alice['id']))
    assert metrics.status_code == 200
    assert metrics.json()['hits'] >= 1

    warmed = await client.post('/api/cache/warm', json={}, headers=auth(alice['id']))
    assert warmed.status_code == 200
    report = warmed.json()['warmed'][str(alice['id'])]
    assert report['profile'] is True
    assert report['friends'] is True

    events = await client.get('/api/cache/events', params={'limit': 5}, headers=auth(alice['id']))
    assert len(events.json()) == 5


@pytest.mark.asyncio
async def test_lists_respect_each_listed_users_privacy(client):
    carol = await register(client, 'carol', display_name='Carol')
    bob = await register(client, 'bob', display_name='Bob', privacy_level='private')
    dave = await register(client, 'dave', display_name='Dave')
    erin = await register(client, 'erin', display_name='Erin')
    alice = await register(client, 'alice')

    for follower in (bob, dave, erin):
        res = await client.post(f"/api/follows/{carol['id']}", headers=auth(follower['id']))
        assert res.status_code == 200, res.text
    await client.post('/api/blocks', json={'user_id': alice['id']}, headers=auth(erin['id']))

    as_alice = await client.get(f"/api/users/{carol['id']}/followers", headers=auth(alice['id']))
    assert {u['username']: u['display_name'] for u in as_alice.json()} == {
        'bob': None, 'dave': 'Dave', 'erin': None
    }

    as_bob = await client.get(f"/api/users/{carol['id']}/followers", headers=auth(bob['id']))
    assert {u['username']: u['display_name'] for u in as_bob.json()}['bob'] == 'Bob'


@pytest.mark.asyncio
async def test_block_expiry_in_the_past_is_rejected(client):
    alice = await register(client, 'alice')
    bob = await register(client, 'bob')
    await client.post(f"/api/follows/{alice['id']}", headers=auth(bob['id']))

    res = await client.post('/api/blocks', json={'user_id': bob['id'], 'expires_at': '2000-01-01T00:00:00Z'},
                            headers=auth(alice['id']))
    assert res.status_code == 400
    assert res.json()['code'] == 'invalid_request'

    followers = await client.get(f"/api/users/{alice['id']}/followers", headers=auth(alice['id']))
    assert [u['username'] for u in followers.json()] == ['bob']
    assert (await client.get('/api/blocks', headers=auth(alice['id']))).json() == []


@pytest.mark.asyncio
async def test_store_outage_returns_503(client, app):
    alice = await register(client, 'alice')
    bob = await register(client, 'bob')

    def unreachable():
        raise OSError('connection refused')

    app.state.store.session_factory = unreachable
    res = await client.post(f"/api/follows/{bob['id']}", headers=auth(alice['id']))
    assert res.status_code == 503
    assert res.json()['code'] == 'store_unavailable'
