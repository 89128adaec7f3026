import json

import pytest

from resttester.config import Config, DatabaseConfig
from resttester.core.errors import DispatchError, RetryExhaustedError
from resttester.database.connection import BucketNameSequence
from resttester.database.operations import NotFoundError, make_rev
from resttester.dispatch import assert_status
from resttester.tester import RestTester


def _put_user(tester, name, password="letmein", channels=("*",)):
    body = json.dumps({"password": password, "admin_channels": list(channels)})
    response = tester.send_admin_request("PUT", f"/db/_user/{name}", body)
    assert_status(response, 201)


def _put_doc(tester, doc_id, body):
    response = tester.send_admin_request("PUT", f"/db/{doc_id}", json.dumps(body))
    assert_status(response, 201)
    return response.json()["rev"]


def test_admin_party_allows_guest_access(rest_tester):
    assert_status(rest_tester.send_request("PUT", "/db/doc1", '{"channels": ["a"], "n": 1}'), 201)

    response = rest_tester.send_request("GET", "/db/doc1")

    assert_status(response, 200)
    assert response.json()["n"] == 1
    assert response.json()["_id"] == "doc1"


def test_public_requires_login_without_admin_party(config, clock):
    with RestTester(config, admin_party=False, sleep=clock.sleep, clock=clock) as tester:
        public = tester.send_request("GET", "/db/")
        admin = tester.send_admin_request("GET", "/db/")

        assert_status(public, 401)
        assert public.headers["www-authenticate"].startswith("Basic")
        assert_status(admin, 200)
        assert admin.json()["db_name"] == "db"


def test_toggle_admin_party(rest_tester):
    rest_tester.set_admin_party(False)
    assert_status(rest_tester.send_request("GET", "/db/"), 401)

    rest_tester.set_admin_party(True)
    assert_status(rest_tester.send_request("GET", "/db/"), 200)


def test_user_login(rest_tester):
    rest_tester.set_admin_party(False)
    _put_user(rest_tester, "alice")

    assert_status(rest_tester.send_user_request("GET", "/db/", "", "alice"), 200)
    assert_status(rest_tester.send_user_request("GET", "/db/", "", "alice", password="wrong"), 401)
    assert_status(rest_tester.send_user_request("GET", "/db/", "", "nobody"), 401)


def test_wait_for_changes_filters_by_channel(rest_tester):
    _put_user(rest_tester, "alice", channels=["a"])
    _put_doc(rest_tester, "doc1", {"channels": ["a"]})
    _put_doc(rest_tester, "doc2", {"channels": ["b"]})
    _put_doc(rest_tester, "doc3", {"channels": "a"})

    changes = rest_tester.wait_for_changes(2, "/db/_changes", "alice")

    assert [entry.id for entry in changes.results] == ["doc1", "doc3"]
    assert changes.last_seq == 3


def test_wait_for_changes_with_wrong_password_is_fatal(rest_tester, clock):
    _put_user(rest_tester, "bob", password="secret")

    with pytest.raises(DispatchError) as excinfo:
        rest_tester.wait_for_changes(1, "/db/_changes", "bob")

    assert excinfo.value.status_code == 401
    assert clock.sleeps == []


def test_changes_converge_after_visibility_lag(clock):
    config = Config(change_visibility_lag_seconds=0.05, retry_initial_delay_seconds=0.01, log_level="WARNING")
    with RestTester(config, sleep=clock.sleep, clock=clock) as tester:
        _put_user(tester, "alice")
        _put_doc(tester, "doc1", {"channels": ["a"]})

        assert tester.send_admin_request("GET", "/db/_changes").json()["results"] == []
        assert_status(tester.send_admin_request("GET", "/db/doc1"), 200)

        changes = tester.wait_for_changes(1, "/db/_changes", "alice")

        assert [entry.id for entry in changes.results] == ["doc1"]
        assert clock.sleeps == pytest.approx([0.01, 0.02, 0.04])


def test_wait_for_sequence_and_pending_changes(clock):
    config = Config(change_visibility_lag_seconds=0.05, log_level="WARNING")
    with RestTester(config, sleep=clock.sleep, clock=clock) as tester:
        _put_doc(tester, "doc1", {"n": 1})
        _put_doc(tester, "doc2", {"n": 2})

        assert tester.get_database().pending_change_count() == 2
        assert tester.wait_for_sequence(2) == 2

        _put_doc(tester, "doc3", {"n": 3})
        tester.wait_for_pending_changes()

        assert tester.get_database().pending_change_count() == 0
        assert tester.send_admin_request("GET", "/db/").json()["update_seq"] == 3


def test_wait_for_sequence_exhausts(rest_tester, clock):
    with pytest.raises(RetryExhaustedError) as excinfo:
        rest_tester.wait_for_sequence(5)

    assert "Wait for sequence 5" in str(excinfo.value)
    assert len(clock.sleeps) == rest_tester.sleeper.max_attempts - 1


def test_wait_for_view_results(rest_tester):
    design = {"views": {"bar": {"key": "type", "value": "name"}}}
    assert_status(rest_tester.send_admin_request("PUT", "/db/_design/foo", json.dumps(design)), 201)
    _put_doc(rest_tester, "doc1", {"type": "b", "name": "one"})
    _put_doc(rest_tester, "doc2", {"type": "a", "name": "two"})
    _put_doc(rest_tester, "doc3", {"type": "c"})
    _put_doc(rest_tester, "doc4", {"name": "no type"})

    result = rest_tester.wait_for_n_view_results(3, "/db/_design/foo/_view/bar")

    assert [row.key for row in result.rows] == ["a", "b", "c"]
    assert [row.value for row in result.rows] == ["two", "one", None]


def test_wait_for_view_results_exhausts_with_200(rest_tester, monkeypatch):
    design = {"views": {"bar": {"key": "type"}}}
    assert_status(rest_tester.send_admin_request("PUT", "/db/_design/foo", json.dumps(design)), 201)
    _put_doc(rest_tester, "doc1", {"type": "a"})
    _put_doc(rest_tester, "doc2", {"type": "b"})

    statuses = []
    dispatch = rest_tester.dispatcher.dispatch

    def recording_dispatch(request):
        response = dispatch(request)
        statuses.append(response.status_code)
        return response

    monkeypatch.setattr(rest_tester.dispatcher, "dispatch", recording_dispatch)

    with pytest.raises(RetryExhaustedError) as excinfo:
        rest_tester.wait_for_n_view_results(5, "/db/_design/foo/_view/bar")

    assert "Wait for 5 view results for query to /db/_design/foo/_view/bar" in str(excinfo.value)
    assert len(statuses) == rest_tester.sleeper.max_attempts
    assert statuses[-1] == 200


def test_missing_view_is_fatal(rest_tester, clock):
    with pytest.raises(DispatchError) as excinfo:
        rest_tester.wait_for_n_view_results(1, "/db/_design/nope/_view/bar")

    assert excinfo.value.status_code == 404
    assert clock.sleeps == []


def test_document_ids_with_slashes(rest_tester):
    assert_status(rest_tester.send_admin_request("PUT", "/db/user%2Fprofile", '{"n": 1}'), 201)

    response = rest_tester.send_admin_request("GET", "/db/user%2Fprofile")

    assert_status(response, 200)
    assert response.json()["_id"] == "user/profile"


def test_document_revisions(rest_tester):
    rev = _put_doc(rest_tester, "doc1", {"n": 1})

    assert rev.startswith("1-")
    assert_status(rest_tester.send_admin_request("PUT", "/db/doc1", '{"n": 2}'), 409)

    update = rest_tester.send_admin_request("PUT", "/db/doc1", json.dumps({"n": 2, "_rev": rev}))
    assert_status(update, 201)
    new_rev = update.json()["rev"]
    assert new_rev.startswith("2-")

    assert_status(rest_tester.send_admin_request("DELETE", f"/db/doc1?rev={rev}"), 409)
    assert_status(rest_tester.send_admin_request("DELETE", f"/db/doc1?rev={new_rev}"), 200)
    assert_status(rest_tester.send_admin_request("GET", "/db/doc1"), 404)

    results = rest_tester.send_admin_request("GET", "/db/_changes").json()["results"]
    assert len(results) == 1
    assert results[0]["deleted"] is True


def test_reserved_document_ids(rest_tester):
    assert_status(rest_tester.send_admin_request("PUT", "/db/_local", "{}"), 400)
    assert_status(rest_tester.send_admin_request("GET", "/db/_local"), 404)
    assert_status(rest_tester.send_admin_request("GET", "/nodb/"), 404)


def test_channel_access_is_enforced(rest_tester):
    rest_tester.set_admin_party(False)
    _put_user(rest_tester, "alice", channels=["a"])
    _put_doc(rest_tester, "doc1", {"channels": ["b"]})

    assert_status(rest_tester.send_user_request("GET", "/db/doc1", "", "alice"), 403)

    rest_tester.set_user_channels("alice", ["a", "b"])

    assert rest_tester.get_user_channels("alice") == ["a", "b"]
    assert_status(rest_tester.send_user_request("GET", "/db/doc1", "", "alice"), 200)
    user = rest_tester.send_admin_request("GET", "/db/_user/alice").json()
    assert user["admin_channels"] == ["a", "b"]


def test_unknown_user_channels(rest_tester):
    with pytest.raises(NotFoundError):
        rest_tester.get_user_channels("ghost")
    with pytest.raises(NotFoundError):
        rest_tester.set_user_channels("ghost", ["a"])


def test_guest_user_is_addressable(rest_tester):
    guest = rest_tester.send_admin_request("GET", "/db/_user/GUEST").json()

    assert guest == {"name": "GUEST", "admin_channels": ["*"], "disabled": False}


def test_empty_passwords(config, clock):
    with RestTester(config, sleep=clock.sleep, clock=clock) as tester:
        response = tester.send_admin_request("PUT", "/db/_user/alice", '{"admin_channels": ["a"]}')
        assert_status(response, 400)

    database_config = DatabaseConfig(allow_empty_password=True)
    with RestTester(config, database_config=database_config, admin_party=False, clock=clock) as tester:
        _put_user(tester, "alice", password="")
        assert_status(tester.send_user_request("GET", "/db/", "", "alice", password=""), 200)


def test_reset_bucket(rest_tester):
    _put_doc(rest_tester, "doc1", {"n": 1})

    rest_tester.reset_bucket()

    assert_status(rest_tester.send_admin_request("GET", "/db/doc1"), 404)
    assert rest_tester.send_admin_request("GET", "/db/_changes").json()["results"] == []
    assert_status(rest_tester.send_request("GET", "/db/"), 200)


def test_flush_endpoint(rest_tester):
    _put_doc(rest_tester, "doc1", {"n": 1})

    assert_status(rest_tester.send_admin_request("POST", "/db/_flush"), 200)

    assert_status(rest_tester.send_admin_request("GET", "/db/doc1"), 404)


def test_bucket_names_are_scoped_to_the_sequence(config, clock):
    names = BucketNameSequence("scenario")
    with RestTester(config, bucket_names=names, clock=clock) as first, RestTester(
        config, bucket_names=names, clock=clock
    ) as second:
        _put_doc(first, "doc1", {"n": 1})

        assert first.bucket().name == "scenario_1"
        assert second.bucket().name == "scenario_2"
        assert_status(second.send_admin_request("GET", "/db/doc1"), 404)

    with RestTester(config, clock=clock) as fresh:
        assert fresh.bucket().name == "resttester_bucket_1"


def test_cors_preflight(rest_tester):
    response = rest_tester.send_request(
        "OPTIONS",
        "/db/",
        headers={"Origin": "http://example.com", "Access-Control-Request-Method": "GET"},
    )

    assert_status(response, 200)
    assert response.headers["access-control-allow-origin"] == "http://example.com"
    assert response.headers["access-control-max-age"] == "1728000"


def test_server_info(rest_tester):
    assert rest_tester.send_admin_request("GET", "/").json()["ADMIN"] is True
    assert "welcome" in rest_tester.send_request("GET", "/").json()


def test_revision_ids_are_stable_digests():
    rev = make_rev(1, {"b": 2, "a": 1})

    assert rev == make_rev(1, {"a": 1, "b": 2})
    generation, digest = rev.split("-")
    assert generation == "1"
    assert len(digest) == 32
