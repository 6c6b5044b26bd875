import datetime
import itertools

import pytest

import mungebot
from mungebot import Comment, Event, Item, MungeNextTime


NOW = datetime.datetime(2024, 6, 1, 12, 0, tzinfo=datetime.timezone.utc)


class FakeObject:
    """Stands in for MungeObject, records mutations instead of calling GitHub."""

    def __init__(
        self,
        item,
        comments=(),
        review_comments=(),
        events=(),
        fail=(),
        now=NOW,
    ):
        self.item = item
        self.comments = list(comments)
        self.review_comments = list(review_comments)
        self.events = list(events)
        self.fail = set(fail)
        self.now = now
        self.actions = []
        self._ids = itertools.count(1)

    def __str__(self):
        return f"{self.item.kind} #{self.item.number}"

    def _check(self, what):
        if what in self.fail:
            raise MungeNextTime(f"{self}: unable to {what}")

    def is_pr(self):
        return self.item.is_pr

    def has_label(self, name):
        return name in self.item.labels

    def mention(self):
        return mungebot.mention_users(self.item)

    def list_comments(self):
        self._check("comments")
        return list(self.comments)

    def list_review_comments(self):
        self._check("review_comments")
        return list(self.review_comments)

    def get_events(self):
        self._check("events")
        return list(self.events)

    def write_comment(self, body):
        self.actions.append(("write_comment", body))
        self.comments.append(
            Comment(
                id=f"new-{next(self._ids)}",
                author=mungebot.BOT_NAME,
                body=body,
                created_at=self.now,
                updated_at=self.now,
            )
        )

    def delete_comment(self, comment):
        self.actions.append(("delete_comment", comment.id))
        self.comments = [c for c in self.comments if c.id != comment.id]

    def close_pr(self):
        self.actions.append(("close_pr",))
        self.item.closed = True

    def close_issue(self, reason):
        self.actions.append(("close_issue", reason))
        self.item.closed = True


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_item():
    def _make_item(is_pr=True, labels=(), created_days_ago=100, assignees=()):
        return Item(
            id="node-1",
            number=1,
            title="Fix the flaky test",
            url="https://github.com/kubernetes/kubernetes/pull/1",
            author="alice",
            assignees=list(assignees),
            labels=set(labels),
            created_at=NOW - datetime.timedelta(days=created_days_ago),
            is_pr=is_pr,
        )

    return _make_item


@pytest.fixture
def make_comment():
    def _make_comment(days_ago, author="alice", body="lgtm", id=None):
        if not isinstance(days_ago, datetime.timedelta):
            days_ago = datetime.timedelta(days=days_ago)
        when = NOW - days_ago
        return Comment(
            id=id or f"c-{author}-{days_ago}",
            author=author,
            body=body,
            created_at=when,
            updated_at=when,
        )

    return _make_comment


@pytest.fixture
def make_event():
    def _make_event(days_ago, kind="reopened"):
        return Event(kind=kind, created_at=NOW - datetime.timedelta(days=days_ago))

    return _make_event


@pytest.fixture
def warning_body():
    return mungebot.WARNING_COMMENT.render(
        kind="PR",
        inactive="45 days",
        close_in="45 days",
        close_date="Jul 16, 2024",
        mention="",
    )


@pytest.fixture
def closing_body():
    return mungebot.CLOSING_COMMENT.render(kind="PR", inactive="90 days", mention="")


@pytest.fixture
def fake_object():
    return FakeObject
