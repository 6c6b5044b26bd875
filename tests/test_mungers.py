import datetime

import pytest

import mungebot
from mungebot import (
    CloseStale,
    CommentDeleter,
    Munger,
    MungeNextTime,
    MungeObject,
    build_registry,
    default_mungers,
    munge_object,
    process_comments,
    process_events,
    process_item,
    select_mungers,
)


class Failing(Munger):
    name = "failing"

    def munge(self, obj):
        raise MungeNextTime("no data")


class Recording(Munger):
    name = "recording"

    def __init__(self):
        self.seen = []

    def munge(self, obj):
        self.seen.append(obj.item.number)


def test_default_registry():
    registry = build_registry(default_mungers())
    assert list(registry) == ["close-stale", "comment-deleter"]
    assert registry["comment-deleter"].providers == [registry["close-stale"]]
    assert all(m.required_features() == [] for m in registry.values())


def test_registry_rejects_duplicates():
    with pytest.raises(ValueError, match="registered twice"):
        build_registry([CloseStale(), CloseStale()])


def test_select_mungers():
    registry = build_registry(default_mungers())
    assert select_mungers(registry, ["close-stale"]) == [registry["close-stale"]]
    with pytest.raises(ValueError, match="Unknown mungers: close-old"):
        select_mungers(registry, ["close-old"])


def test_comment_deleter_removes_closing_comments(
    fake_object, make_item, make_comment, closing_body, warning_body
):
    obj = fake_object(
        make_item(),
        comments=[
            make_comment(30, author=mungebot.BOT_NAME, body=closing_body, id="closing"),
            make_comment(20, author=mungebot.BOT_NAME, body=warning_body, id="warning"),
            make_comment(10, author="alice", body=closing_body, id="quoted"),
        ],
    )
    CommentDeleter(providers=[CloseStale()]).munge(obj)
    assert obj.actions == [("delete_comment", "closing")]


def test_munge_object_continues_after_skip(fake_object, make_item):
    recording = Recording()
    munge_object(fake_object(make_item()), [Failing(), recording])
    assert recording.seen == [1]


def test_munge_object_skips_closed(fake_object, make_item):
    item = make_item()
    item.closed = True
    recording = Recording()
    munge_object(fake_object(item), [recording])
    assert recording.seen == []


def test_closing_comment_survives_the_loop(fake_object, make_item, make_comment):
    # comment-deleter runs after close-stale and must not see the fresh closing comment
    obj = fake_object(make_item(created_days_ago=400), comments=[make_comment(300)])
    munge_object(obj, default_mungers())
    assert [a[0] for a in obj.actions] == ["write_comment", "close_pr"]


def test_process_comments():
    comments = process_comments(
        [
            {
                "id": "IC_1",
                "author": {"login": "alice"},
                "body": "ping",
                "createdAt": "2024-01-01T10:00:00Z",
                "updatedAt": "2024-01-02T10:00:00Z",
            },
            {
                "id": "IC_2",
                "author": None,
                "body": "ghost",
                "createdAt": "2024-01-01T10:00:00Z",
                "updatedAt": "2024-01-01T10:00:00Z",
            },
            None,
        ]
    )
    assert [c.id for c in comments] == ["IC_1", "IC_2"]
    assert comments[0].is_valid()
    assert comments[0].updated_at == datetime.datetime(
        2024, 1, 2, 10, tzinfo=datetime.timezone.utc
    )
    assert not comments[1].is_valid()


def test_process_events():
    events = process_events(
        [
            {"__typename": "ReopenedEvent", "createdAt": "2024-03-01T00:00:00Z"},
            {"__typename": "ClosedEvent", "createdAt": "2024-02-01T00:00:00Z"},
            {"__typename": "LabeledEvent", "createdAt": "2024-01-01T00:00:00Z"},
            None,
        ]
    )
    assert [e.kind for e in events] == ["reopened", "closed"]


def test_process_item_and_mention():
    item = process_item(
        {
            "__typename": "PullRequest",
            "id": "PR_1",
            "number": 42,
            "title": "Bump etcd",
            "url": "https://github.com/kubernetes/kubernetes/pull/42",
            "createdAt": "2024-01-01T00:00:00Z",
            "closed": False,
            "author": {"login": "carol"},
            "assignees": {"nodes": [{"login": "bob"}, {"login": "carol"}]},
            "labels": {"nodes": [{"name": "kind/flake"}]},
        }
    )
    assert item.is_pr
    assert item.kind == "PR"
    obj = MungeObject(item, dry_run=True)
    assert str(obj) == "PR #42"
    assert obj.has_label("kind/flake")
    assert obj.mention() == "@bob @carol"

    item.author = None
    item.assignees = []
    assert obj.mention() == ""


def test_dry_run_does_not_send(monkeypatch, make_item, make_comment):
    def send_query(data):
        raise AssertionError("no request expected")

    monkeypatch.setattr(mungebot, "send_query", send_query)
    comment = make_comment(1, id="IC_1")
    obj = MungeObject(make_item(), dry_run=True, _comments=[comment])
    obj.delete_comment(comment)
    assert obj.list_comments() == []
    obj.close_pr()
    assert obj.item.closed


def test_query_failure_is_munge_next_time(monkeypatch, make_item):
    def send_query(data):
        raise ValueError([{"message": "Something went wrong"}])

    monkeypatch.setattr(mungebot, "send_query", send_query)
    with pytest.raises(MungeNextTime, match="unable to list comments"):
        MungeObject(make_item()).list_comments()
