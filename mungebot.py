#!/usr/bin/env python
# Copyright 2022 Martin Krizek <martin.krizek@gmail.com>
# GNU General Public License v3.0+ (see LICENSE or https://www.gnu.org/licenses/gpl-3.0.txt)

from __future__ import annotations

import argparse
import configparser
import dataclasses
import datetime
import itertools
import json
import logging
import logging.handlers
import os.path
import re
import string
import subprocess
import sys
import time
import typing as t
import urllib.error
import urllib.request

import sentry_sdk

try:
    __version__ = subprocess.check_output(
        ("git", "rev-parse", "HEAD"), text=True, stderr=subprocess.DEVNULL
    ).strip()
except (subprocess.CalledProcessError, OSError):
    __version__ = "unknown"

minimal_required_python_version = (3, 11)
if sys.version_info < minimal_required_python_version:
    raise SystemExit(
        f"mungebot requires Python {'.'.join((str(e) for e in minimal_required_python_version))} or newer. "
        f"Python version detected: {sys.version.split(' ', maxsplit=1)[0]}"
    )


BOT_NAME = "k8s-merge-robot"
CI_BOT_NAME = "k8s-bot"

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"

DAY = datetime.timedelta(days=1)
# close the PR/Issue if there was no human interaction for STALE_PERIOD
STALE_PERIOD = 90 * DAY
START_WARNING = 60 * DAY
REMIND_WARNING = 30 * DAY
SLEEP_SECONDS = 300

KEEP_OPEN_LABEL = "keep-open"
KIND_FLAKE_LABEL = "kind/flake"

CONFIG_FILENAME = os.path.expanduser("~/.mungebot.cfg")
LOG_FILENAME = os.path.expanduser("~/mungebot.log")

RATE_LIMIT_FIELDS = """
  rateLimit {
    limit
    cost
    remaining
    resetAt
  }
"""

QUERY_NUMBERS_TMPL = """
query ($owner: String!, $name: String!, $after: String) {
  %s
  repository(owner: $owner, name: $name) {
    %s(states: OPEN, first: 100, after: $after) {
      pageInfo {
          hasNextPage
          endCursor
      }
      nodes {
        number
      }
    }
  }
}
"""

QUERY_ISSUE_NUMBERS = QUERY_NUMBERS_TMPL % (RATE_LIMIT_FIELDS, "issues")
QUERY_PR_NUMBERS = QUERY_NUMBERS_TMPL % (RATE_LIMIT_FIELDS, "pullRequests")

QUERY_OBJECT_TMPL = """
query ($owner: String!, $name: String!, $number: Int!) {
  %s
  repository(owner: $owner, name: $name) {
    issueOrPullRequest(number: $number) {
      __typename
      ... on Issue {
        %s
      }
      ... on PullRequest {
        %s
      }
    }
  }
}
"""

ITEM_FIELDS = """
id
number
title
url
createdAt
closed
author {
  login
}
assignees(first: 20) {
  nodes {
    login
  }
}
labels(first: 40) {
  nodes {
    name
  }
}
"""

COMMENT_FIELDS = """
id
author {
  login
}
body
createdAt
updatedAt
"""

COMMENTS_FIELDS = """
comments(last: 100) {
  nodes {
    %s
  }
}
""" % COMMENT_FIELDS

EVENTS_FIELDS = """
timelineItems(last: 100, itemTypes: [REOPENED_EVENT, CLOSED_EVENT]) {
  nodes {
    __typename
    ... on ReopenedEvent {
      createdAt
    }
    ... on ClosedEvent {
      createdAt
    }
  }
}
"""

REVIEW_COMMENTS_FIELDS = """
reviewThreads(last: 100) {
  nodes {
    comments(last: 100) {
      nodes {
        %s
      }
    }
  }
}
""" % COMMENT_FIELDS

QUERY_ITEM = QUERY_OBJECT_TMPL % (RATE_LIMIT_FIELDS, ITEM_FIELDS, ITEM_FIELDS)
QUERY_COMMENTS = QUERY_OBJECT_TMPL % ("", COMMENTS_FIELDS, COMMENTS_FIELDS)
QUERY_EVENTS = QUERY_OBJECT_TMPL % ("", EVENTS_FIELDS, EVENTS_FIELDS)
QUERY_REVIEW_COMMENTS = QUERY_OBJECT_TMPL % ("", "id", REVIEW_COMMENTS_FIELDS)

EVENT_TYPENAMES = {
    "ReopenedEvent": "reopened",
    "ClosedEvent": "closed",
}

CLOSING_COMMENT_TEXT = """This $kind hasn't been active in $inactive. Closing this $kind. Please reopen if you would like to work towards merging this change, if/when the $kind is ready for the next round of review.

${mention}
You can add 'keep-open' label to prevent this from happening again, or add a comment to keep it open another 90 days"""

WARNING_COMMENT_TEXT = """This $kind hasn't been active in $inactive. It will be closed in $close_in ($close_date).

${mention}
You can add 'keep-open' label to prevent this from happening, or add a comment to keep it open another 90 days"""

PLACEHOLDER_RE = re.compile(r"\$(?:(?P<named>\w+)|\{(?P<braced>\w+)\})")

PLACEHOLDER_PATTERNS = {
    "kind": r"\w+",
    "inactive": r"-?\d+ days?",
    "close_in": r"-?\d+ days?",
    "close_date": r"[^)]*",
    "mention": r".*?",
}

_http_request_counter = 0


class MungeNextTime(Exception):
    """Skip munging an issue/PR due to the bot not receiving complete data to continue. Try next time."""


@dataclasses.dataclass(frozen=True, slots=True)
class Response:
    status_code: int | None
    reason: str
    raw_data: bytes

    def json(self) -> t.Any:
        return json.loads(self.raw_data or b"{}")


@dataclasses.dataclass(slots=True)
class Item:
    id: str
    number: int
    title: str
    url: str
    author: str | None
    assignees: list[str]
    labels: set[str]
    created_at: datetime.datetime
    is_pr: bool
    closed: bool = False

    @property
    def kind(self) -> str:
        return "PR" if self.is_pr else "Issue"


@dataclasses.dataclass(frozen=True, slots=True)
class Comment:
    id: str | None
    author: str | None
    body: str | None
    created_at: datetime.datetime | None
    updated_at: datetime.datetime | None

    def is_valid(self) -> bool:
        return (
            self.author is not None
            and self.body is not None
            and self.created_at is not None
            and self.updated_at is not None
        )


@dataclasses.dataclass(frozen=True, slots=True)
class Event:
    kind: str
    created_at: datetime.datetime


@dataclasses.dataclass(frozen=True, slots=True)
class CommentTemplate:
    """A comment text the bot posts and later has to recognize again.

    ``anchors`` are fragments of ``text``, in order; the matcher requires all
    of them, in that order, with anything in between. Placeholders inside the
    anchors are matched by ``PLACEHOLDER_PATTERNS``.
    """

    text: str
    anchors: tuple[str, ...]
    pattern: re.Pattern[str] = dataclasses.field(init=False, repr=False)

    def __post_init__(self) -> None:
        pos = 0
        for anchor in self.anchors:
            if (found := self.text.find(anchor, pos)) == -1:
                raise ValueError(f"Anchor {anchor!r} is not part of the template.")
            pos = found + len(anchor)
        object.__setattr__(
            self,
            "pattern",
            re.compile(
                ".*".join(_template_to_regex(a) for a in self.anchors),
                flags=re.DOTALL,
            ),
        )

    def render(self, **sub_map: str) -> str:
        return string.Template(self.text).substitute(sub_map)

    def matches(self, body: str) -> bool:
        return self.pattern.search(body) is not None


def _template_to_regex(fragment: str) -> str:
    rv = []
    pos = 0
    for m in PLACEHOLDER_RE.finditer(fragment):
        rv.append(re.escape(fragment[pos : m.start()]))
        rv.append(PLACEHOLDER_PATTERNS[m.group("named") or m.group("braced")])
        pos = m.end()
    rv.append(re.escape(fragment[pos:]))
    return "".join(rv)


CLOSING_COMMENT = CommentTemplate(
    text=CLOSING_COMMENT_TEXT,
    anchors=(
        "This $kind hasn't been active in $inactive.",
        "label to prevent this from happening again",
    ),
)

WARNING_COMMENT = CommentTemplate(
    text=WARNING_COMMENT_TEXT,
    anchors=(
        "This $kind hasn't been active in $inactive.",
        "be closed in $close_in",
    ),
)


def http_request(
    url: str,
    data: str = "",
    headers: t.MutableMapping[str, str] | None = None,
    method: t.Literal["GET", "POST"] = "GET",
    retries: int = 3,
) -> Response:
    if headers is None:
        headers = {}

    wait_seconds = 10
    for i in range(retries):
        try:
            global _http_request_counter
            _http_request_counter += 1
            logging.info(
                "http request no. %d: %s %s", _http_request_counter, method, url
            )
            with urllib.request.urlopen(
                urllib.request.Request(
                    url,
                    data=data.encode("utf-8"),
                    headers=headers,
                    method=method,
                ),
            ) as response:
                logging.info("response: %d, %s", response.status, response.reason)
                return Response(
                    status_code=response.status,
                    reason=response.reason,
                    raw_data=response.read(),
                )
        except urllib.error.HTTPError as e:
            logging.info(e)
            if e.status is None or e.status < 500:
                return Response(status_code=e.status, reason=e.reason, raw_data=b"")
            if i == retries - 1:
                raise
        except (TimeoutError, urllib.error.URLError) as e:
            logging.info(e)
            if i == retries - 1:
                raise
        logging.info("Waiting for %d seconds and retrying the request...", wait_seconds)
        time.sleep(wait_seconds)

    raise AssertionError("unreachable")


def send_query(data: dict[str, t.Any]) -> Response:
    resp = http_request(
        GITHUB_GRAPHQL_URL,
        method="POST",
        headers={
            "Accept": "application/json",
            "Authorization": f"Bearer {gh_token}",
        },
        data=json.dumps(data),
    )

    if resp.status_code != 200:
        raise ValueError(f"GitHub responded with {resp.status_code} {resp.reason}")

    if errors := resp.json().get("errors"):
        raise ValueError(errors)

    return resp


def repo_variables(**kwargs: t.Any) -> dict[str, t.Any]:
    return {"owner": repo_owner, "name": repo_name, **kwargs}


def ratelimit_to_str(rate_limit: dict[str, t.Any]) -> str:
    return f"cost: {rate_limit['cost']}, {rate_limit['remaining']}/{rate_limit['limit']} until {rate_limit['resetAt']}"


def parse_datetime(value: str | None) -> datetime.datetime | None:
    if value is None:
        return None
    return datetime.datetime.fromisoformat(value)


def process_comments(nodes: list[dict[str, t.Any] | None]) -> list[Comment]:
    rv = []
    for node in nodes:
        if node is None:
            continue
        rv.append(
            Comment(
                id=node.get("id"),
                author=(node.get("author") or {}).get("login"),
                body=node.get("body"),
                created_at=parse_datetime(node.get("createdAt")),
                updated_at=parse_datetime(node.get("updatedAt")),
            )
        )
    return rv


def process_events(nodes: list[dict[str, t.Any] | None]) -> list[Event]:
    rv = []
    for node in nodes:
        if node is None or node.get("createdAt") is None:
            continue
        if (kind := EVENT_TYPENAMES.get(node["__typename"])) is None:
            continue
        rv.append(
            Event(kind=kind, created_at=datetime.datetime.fromisoformat(node["createdAt"]))
        )
    return rv


def process_item(o: dict[str, t.Any]) -> Item:
    return Item(
        id=o["id"],
        number=o["number"],
        title=o["title"],
        url=o["url"],
        author=o["author"]["login"] if o["author"] else None,
        assignees=[n["login"] for n in o["assignees"]["nodes"]],
        labels={n["name"] for n in o["labels"]["nodes"]},
        created_at=datetime.datetime.fromisoformat(o["createdAt"]),
        is_pr=o["__typename"] == "PullRequest",
        closed=o["closed"],
    )


def mention_users(item: Item) -> str:
    users = {u for u in itertools.chain((item.author,), item.assignees) if u}
    return " ".join(f"@{u}" for u in sorted(users))


ADD_COMMENT_MUTATION = """
mutation($input: AddCommentInput!) {
  addComment(input:$input) {
    clientMutationId
  }
}
"""

DELETE_COMMENT_MUTATION = """
mutation($input: DeleteIssueCommentInput!) {
  deleteIssueComment(input:$input) {
    clientMutationId
  }
}
"""

CLOSE_ISSUE_MUTATION = """
mutation($input: CloseIssueInput!) {
  closeIssue(input:$input) {
    clientMutationId
  }
}
"""

CLOSE_PR_MUTATION = """
mutation($input: ClosePullRequestInput!) {
  closePullRequest(input:$input) {
    clientMutationId
  }
}
"""


@dataclasses.dataclass(slots=True)
class MungeObject:
    """An issue or a pull request as seen by the mungers.

    Comments, review comments and events are fetched on first use and kept
    for the lifetime of the object. Failing to fetch any of them or to apply
    a mutation raises MungeNextTime.
    """

    item: Item
    dry_run: bool = False
    _comments: list[Comment] | None = dataclasses.field(default=None, repr=False)
    _review_comments: list[Comment] | None = dataclasses.field(
        default=None, repr=False
    )
    _events: list[Event] | None = dataclasses.field(default=None, repr=False)

    def __str__(self) -> str:
        return f"{self.item.kind} #{self.item.number}"

    def is_pr(self) -> bool:
        return self.item.is_pr

    def has_label(self, name: str) -> bool:
        return name in self.item.labels

    def mention(self) -> str:
        return mention_users(self.item)

    def _query(self, what: str, query: str) -> dict[str, t.Any]:
        try:
            resp = send_query(
                {"query": query, "variables": repo_variables(number=self.item.number)}
            )
        except (ValueError, TimeoutError, urllib.error.URLError) as e:
            raise MungeNextTime(f"{self}: unable to {what}: {e}") from e
        if (o := resp.json()["data"]["repository"]["issueOrPullRequest"]) is None:
            raise MungeNextTime(f"{self}: unable to {what}: not found")
        return o

    def _mutate(self, what: str, query: str, input_: dict[str, t.Any]) -> None:
        if self.dry_run:
            logging.info("%s: skipping '%s' due to --dry-run", self, what)
            return
        logging.info("%s: %s", self, what)
        try:
            send_query({"query": query, "variables": {"input": input_}})
        except (ValueError, TimeoutError, urllib.error.URLError) as e:
            raise MungeNextTime(f"{self}: unable to {what}: {e}") from e

    def list_comments(self) -> list[Comment]:
        if self._comments is None:
            o = self._query("list comments", QUERY_COMMENTS)
            self._comments = process_comments(o["comments"]["nodes"])
        return self._comments

    def list_review_comments(self) -> list[Comment]:
        if self._review_comments is None:
            o = self._query("list review comments", QUERY_REVIEW_COMMENTS)
            self._review_comments = process_comments(
                list(
                    itertools.chain.from_iterable(
                        thread["comments"]["nodes"]
                        for thread in o.get("reviewThreads", {}).get("nodes", [])
                        if thread is not None
                    )
                )
            )
        return self._review_comments

    def get_events(self) -> list[Event]:
        if self._events is None:
            o = self._query("get events", QUERY_EVENTS)
            self._events = process_events(o["timelineItems"]["nodes"])
        return self._events

    def write_comment(self, body: str) -> None:
        self._mutate(
            "add comment",
            ADD_COMMENT_MUTATION,
            {"subjectId": self.item.id, "body": body},
        )
        self._comments = None

    def delete_comment(self, comment: Comment) -> None:
        self._mutate(
            f"delete comment {comment.id}",
            DELETE_COMMENT_MUTATION,
            {"id": comment.id},
        )
        if self._comments is not None:
            self._comments = [c for c in self._comments if c.id != comment.id]

    def close_pr(self) -> None:
        self._mutate("close", CLOSE_PR_MUTATION, {"pullRequestId": self.item.id})
        self.item.closed = True

    def close_issue(self, reason: str) -> None:
        self._mutate(
            "close",
            CLOSE_ISSUE_MUTATION,
            {"issueId": self.item.id, "stateReason": reason},
        )
        self.item.closed = True


def is_bot_comment(comment: Comment) -> bool:
    return comment.author == BOT_NAME


def is_human_comment(comment: Comment) -> bool:
    return comment.is_valid() and comment.author not in (BOT_NAME, CI_BOT_NAME)


def last_human_update(
    comments: list[Comment], since: datetime.datetime
) -> datetime.datetime:
    return max(
        itertools.chain(
            (since,), (c.updated_at for c in comments if is_human_comment(c))
        )
    )


def last_reopened(events: list[Event], since: datetime.datetime) -> datetime.datetime:
    return max(
        itertools.chain(
            (since,), (e.created_at for e in events if e.kind == "reopened")
        )
    )


def last_activity(obj: MungeObject) -> datetime.datetime:
    """Last time a human touched the issue/PR.

    Comments by the bot itself and by the CI bot are ignored, otherwise the
    warning comment would keep the issue/PR open forever. Re-opening counts
    as activity.
    """
    created_at = obj.item.created_at
    rv = max(
        last_human_update(obj.list_comments(), created_at),
        last_reopened(obj.get_events(), created_at),
    )
    if obj.is_pr():
        rv = max(rv, last_human_update(obj.list_review_comments(), created_at))
    return rv


def find_latest_warning_comment(obj: MungeObject) -> Comment | None:
    """Return the latest warning comment posted by the bot, deleting any older ones."""
    warnings = sorted(
        (
            c
            for c in obj.list_comments()
            if c.is_valid() and is_bot_comment(c) and WARNING_COMMENT.matches(c.body)
        ),
        key=lambda c: (c.updated_at, c.id or ""),
    )
    if not warnings:
        return None
    *outdated, latest = warnings
    for comment in outdated:
        logging.info("%s: removing outdated warning comment %s", obj, comment.id)
        obj.delete_comment(comment)
    return latest


def is_stale_comment(obj: MungeObject, comment: Comment) -> bool:
    return (
        comment.is_valid()
        and is_bot_comment(comment)
        and CLOSING_COMMENT.matches(comment.body)
    )


def format_days(delta: datetime.timedelta) -> str:
    days = int(delta / DAY)
    return f"{days} {'day' if days in (1, -1) else 'days'}"


def format_date(when: datetime.datetime) -> str:
    return f"{when:%b} {when.day}, {when.year}"


def cc_line(obj: MungeObject) -> str:
    if mention := obj.mention():
        return f"cc {mention}\n"
    return ""


def close_obj(obj: MungeObject, inactive_for: datetime.timedelta) -> None:
    if (comment := find_latest_warning_comment(obj)) is not None:
        obj.delete_comment(comment)

    kind = obj.item.kind
    logging.info("%s: inactive for %s, closing", obj, format_days(inactive_for))
    obj.write_comment(
        CLOSING_COMMENT.render(
            kind=kind, inactive=format_days(inactive_for), mention=cc_line(obj)
        )
    )
    if obj.is_pr():
        obj.close_pr()
    else:
        obj.close_issue("NOT_PLANNED")


def post_warning_comment(
    obj: MungeObject,
    inactive_for: datetime.timedelta,
    close_in: datetime.timedelta,
    now: datetime.datetime,
) -> None:
    obj.write_comment(
        WARNING_COMMENT.render(
            kind=obj.item.kind,
            inactive=format_days(inactive_for),
            close_in=format_days(close_in),
            close_date=format_date(now + close_in),
            mention=cc_line(obj),
        )
    )


def check_and_warn(
    obj: MungeObject,
    inactive_for: datetime.timedelta,
    close_in: datetime.timedelta,
    now: datetime.datetime,
) -> None:
    if close_in < DAY:
        logging.info("%s: closing in less than a day, too late to warn", obj)
        return

    comment = find_latest_warning_comment(obj)
    if comment is None:
        logging.info("%s: posting warning, closing in %s", obj, format_days(close_in))
        post_warning_comment(obj, inactive_for, close_in, now)
    elif now - comment.updated_at > REMIND_WARNING:
        logging.info("%s: refreshing warning %s", obj, comment.id)
        obj.delete_comment(comment)
        post_warning_comment(obj, inactive_for, close_in, now)


def close_stale(obj: MungeObject, now: datetime.datetime | None = None) -> None:
    if not obj.is_pr() and not obj.has_label(KIND_FLAKE_LABEL):
        return
    if obj.has_label(KEEP_OPEN_LABEL):
        return

    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)

    last_modified = last_activity(obj)
    close_in = last_modified + STALE_PERIOD - now
    inactive_for = now - last_modified

    if close_in <= datetime.timedelta(0):
        close_obj(obj, inactive_for)
    elif close_in <= START_WARNING:
        check_and_warn(obj, inactive_for, close_in, now)
    elif (comment := find_latest_warning_comment(obj)) is not None:
        # active again
        logging.info("%s: removing warning %s", obj, comment.id)
        obj.delete_comment(comment)


class Munger:
    name: t.ClassVar[str]

    def required_features(self) -> list[str]:
        return []

    def add_flags(self, parser: argparse.ArgumentParser) -> None:
        pass

    def initialize(self, config: configparser.ConfigParser) -> None:
        pass

    def each_loop(self) -> None:
        pass

    def munge(self, obj: MungeObject) -> None:
        raise NotImplementedError

    def stale_comments(
        self, obj: MungeObject, comments: list[Comment]
    ) -> list[Comment]:
        return []


class CloseStale(Munger):
    """Close any PR, or issue labeled kind/flake, without human interaction in STALE_PERIOD.

    Both review and issue comments are checked, ignoring the ones made by the
    bots. Re-opening the PR/issue counts as an interaction.
    """

    name = "close-stale"

    def munge(self, obj: MungeObject) -> None:
        close_stale(obj)

    def stale_comments(
        self, obj: MungeObject, comments: list[Comment]
    ) -> list[Comment]:
        return [c for c in comments if is_stale_comment(obj, c)]


@dataclasses.dataclass
class CommentDeleter(Munger):
    providers: list[Munger] = dataclasses.field(default_factory=list)

    name = "comment-deleter"

    def munge(self, obj: MungeObject) -> None:
        comments = obj.list_comments()
        stale = {}
        for provider in self.providers:
            for comment in provider.stale_comments(obj, comments):
                stale[comment.id] = comment
        for comment in stale.values():
            logging.info("%s: removing stale comment %s", obj, comment.id)
            obj.delete_comment(comment)


def default_mungers() -> list[Munger]:
    close_stale_munger = CloseStale()
    return [close_stale_munger, CommentDeleter(providers=[close_stale_munger])]


def build_registry(mungers: t.Iterable[Munger]) -> dict[str, Munger]:
    registry: dict[str, Munger] = {}
    for munger in mungers:
        if munger.name in registry:
            raise ValueError(f"Munger {munger.name!r} registered twice.")
        registry[munger.name] = munger
    return registry


def select_mungers(registry: dict[str, Munger], names: list[str]) -> list[Munger]:
    if unknown := [n for n in names if n not in registry]:
        raise ValueError(
            f"Unknown mungers: {', '.join(unknown)}. Available: {', '.join(registry)}"
        )
    return [registry[n] for n in names]


def munge_object(obj: MungeObject, mungers: list[Munger]) -> None:
    if obj.item.closed:
        logging.info("Skipping %s (%s): closed", obj, obj.item.title)
        return
    logging.info("Munging %s %s", obj, obj.item.title)
    logging.info(obj.item.url)
    for munger in mungers:
        try:
            munger.munge(obj)
        except MungeNextTime as e:
            logging.warning("%s: %s", munger.name, e)
        if obj.item.closed:
            # the closing comment must survive the rest of the loop
            break
    logging.info("Done munging %s", obj)


def get_open_numbers(obj_name: str, query: str) -> t.Generator[int, None, None]:
    variables: dict[str, t.Any] = repo_variables()
    while True:
        logging.info("Getting open %s", obj_name)
        data = send_query({"query": query, "variables": variables}).json()["data"]
        logging.info(ratelimit_to_str(data["rateLimit"]))

        objs = data["repository"][obj_name]
        for node in objs["nodes"]:
            yield node["number"]

        if objs["pageInfo"]["hasNextPage"]:
            variables["after"] = objs["pageInfo"]["endCursor"]
        else:
            break


def fetch_item(number: int) -> Item:
    logging.info("Getting issue or pull request #%d", number)
    resp = send_query({"query": QUERY_ITEM, "variables": repo_variables(number=number)})
    data = resp.json()["data"]
    logging.info(ratelimit_to_str(data["rateLimit"]))
    if (o := data["repository"]["issueOrPullRequest"]) is None:
        raise ValueError(f"{number} not found")
    return process_item(o)


def fetch_objects(dry_run: bool = False) -> t.Generator[MungeObject, None, None]:
    for number in itertools.chain(
        get_open_numbers("issues", QUERY_ISSUE_NUMBERS),
        get_open_numbers("pullRequests", QUERY_PR_NUMBERS),
    ):
        try:
            item = fetch_item(number)
        except (ValueError, TimeoutError, urllib.error.URLError) as e:
            logging.warning("Skipping #%d until next loop: %s", number, e)
            continue
        yield MungeObject(item, dry_run=dry_run)


def daemon(mungers: list[Munger], dry_run: bool = False) -> None:
    while True:
        logging.info("Starting munge loop")
        global _http_request_counter
        _http_request_counter = 0
        start = time.time()

        for munger in mungers:
            munger.each_loop()

        n = 0
        for n, obj in enumerate(fetch_objects(dry_run), 1):
            munge_object(obj, mungers)

        logging.info(
            f"Took {time.time() - start:.2f} seconds and {_http_request_counter} HTTP requests "
            f"to munge {n} issues/PRs.",
        )
        logging.info("Sleeping for %d minutes", SLEEP_SECONDS // 60)
        time.sleep(SLEEP_SECONDS)


gh_token = repo_owner = repo_name = None


def main() -> None:
    global gh_token, repo_owner, repo_name, BOT_NAME, CI_BOT_NAME

    registry = build_registry(default_mungers())

    parser = argparse.ArgumentParser(
        prog="mungebot",
        description=(
            "warns about and closes GitHub pull requests and issues "
            "without human activity"
        ),
    )
    parser.add_argument(
        "--number", type=int, help="GitHub issue or pull request number"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="do not take any actions, just print what would have been done",
    )
    parser.add_argument(
        "--pr-mungers",
        default=",".join(registry),
        help=f"comma separated list of mungers to run, available: {', '.join(registry)}",
    )
    for munger in registry.values():
        munger.add_flags(parser)
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s %(levelname)s:%(name)s:%(threadName)s: %(message)s",
        level=logging.INFO,
        handlers=[
            logging.handlers.RotatingFileHandler(
                LOG_FILENAME, maxBytes=5 * 1024 * 1024, backupCount=3
            ),
            logging.StreamHandler(),
        ],
    )

    config = configparser.ConfigParser()
    config.read(CONFIG_FILENAME)

    try:
        sentry_dsn = config.get("default", "sentry_dsn")
    except (configparser.NoSectionError, configparser.NoOptionError) as e:
        logging.warning(
            "Option 'sentry_dsn' in the configuration file is required to integrate sentry, "
            "original error: %s",
            e,
        )
    else:
        sentry_sdk.init(
            dsn=sentry_dsn,
            attach_stacktrace=True,
            release=__version__,
        )

    try:
        gh_token = config.get("default", "gh_token")
        repo_owner = config.get("default", "owner")
        repo_name = config.get("default", "repo")
    except (configparser.NoSectionError, configparser.NoOptionError) as e:
        logging.error(
            "Options 'gh_token', 'owner' and 'repo' in the default section of the configuration file are required, "
            "original error: %s",
            e,
        )
        sys.exit(1)
    BOT_NAME = config.get("default", "bot_name", fallback=BOT_NAME)
    CI_BOT_NAME = config.get("default", "ci_bot_name", fallback=CI_BOT_NAME)

    try:
        mungers = select_mungers(
            registry, [n.strip() for n in args.pr_mungers.split(",") if n.strip()]
        )
    except ValueError as e:
        logging.error(e)
        sys.exit(1)

    for munger in mungers:
        munger.initialize(config)

    if args.number:
        munge_object(
            MungeObject(fetch_item(args.number), dry_run=args.dry_run), mungers
        )
    else:
        try:
            daemon(mungers, dry_run=args.dry_run)
        except KeyboardInterrupt:
            print("Bye")
            sys.exit(0)
        except Exception as e:
            logging.exception(e)
            sys.exit(1)


if __name__ == "__main__":
    main()
