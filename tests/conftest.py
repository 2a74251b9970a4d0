"""Shared pytest fixtures for trello-sync tests."""

from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

from trello_sync.config import Config
from trello_sync.core.errors import NotFoundError, TrelloSyncError
from trello_sync.document import OutlineDocument

# Gap Trello leaves between positions
POS_STEP = 16384.0


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require the real Trello API",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring the real Trello API"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        api_key="test-key",
        token="test-token",
        base_url="https://api.trello.example/1",
    )


@pytest.fixture
def mock_trello_client(mock_config):
    """Create a mock TrelloClient instance for testing."""
    from trello_sync.core.client import TrelloClient

    client = MagicMock(spec=TrelloClient)
    client.config = mock_config
    return client


# ---------------------------------------------------------------------------
# In-memory Trello
# ---------------------------------------------------------------------------


class FakeTrello:
    """In-memory Trello implementing the client calls the engine makes.

    Stores boards, lists, cards, checklists and check items as Trello
    JSON dicts. ``fail()`` injects errors for matching requests.
    """

    def __init__(self) -> None:
        self.boards: dict[str, dict[str, Any]] = {}
        self.lists: dict[str, dict[str, Any]] = {}
        self.cards: dict[str, dict[str, Any]] = {}
        self.checklists: dict[str, dict[str, Any]] = {}
        self.items: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.now = "2026-01-01T00:00:00.000Z"
        self._rules: list[tuple[str, str | None, str | None, Exception]] = []
        self._ids = itertools.count(1)

    # -- test helpers -------------------------------------------------

    def fail(
        self,
        method: str,
        path_prefix: str | None = None,
        *,
        name: str | None = None,
        error: Exception,
    ) -> None:
        """Raise ``error`` for requests matching method, path and body name."""
        self._rules.append((method, path_prefix, name, error))

    def new_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids):04d}"

    def mutations(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] != "GET"]

    def add_board(self, name: str, **fields: Any) -> dict[str, Any]:
        board = {
            "id": self.new_id("b"),
            "name": name,
            "desc": "",
            "closed": False,
            "dateLastActivity": self.now,
            **fields,
        }
        self.boards[board["id"]] = board
        return board

    def add_list(
        self, board_id: str, name: str, pos: Any = None
    ) -> dict[str, Any]:
        lst = {
            "id": self.new_id("l"),
            "name": name,
            "idBoard": board_id,
            "closed": False,
            "pos": self._place(self.lists, "idBoard", board_id, pos),
        }
        self.lists[lst["id"]] = lst
        return lst

    def add_card(
        self, list_id: str, name: str, pos: Any = None, **fields: Any
    ) -> dict[str, Any]:
        card = {
            "id": self.new_id("c"),
            "name": name,
            "desc": "",
            "due": None,
            "idMembers": [],
            "idLabels": [],
            "idList": list_id,
            "idBoard": self.lists[list_id]["idBoard"],
            "closed": False,
            "pos": self._place(self.cards, "idList", list_id, pos),
            "dateLastActivity": self.now,
            **fields,
        }
        self.cards[card["id"]] = card
        return card

    # -- client interface ---------------------------------------------

    async def validate_connection(self) -> str:
        self.calls.append(("GET", "members/me"))
        return "tester"

    async def get_board(self, board_id: str, on_retry=None) -> dict[str, Any]:
        return await self.request("GET", f"boards/{board_id}")

    async def get_card(
        self, card_id: str, board_id: str | None = None, on_retry=None
    ) -> dict[str, Any]:
        return await self.request("GET", f"cards/{card_id}", board_id=board_id)

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        *,
        board_id: str | None = None,
        on_retry=None,
    ) -> Any:
        self.calls.append((method, path))
        body = body or {}
        for rule_method, prefix, name, error in self._rules:
            if (
                rule_method == method
                and (prefix is None or path.startswith(prefix))
                and (name is None or body.get("name") == name)
            ):
                raise error
        return self._route(method, path.split("/"), body)

    # -- routing ------------------------------------------------------

    def _get(self, store: dict[str, dict], key: str, path: str) -> dict:
        if key not in store:
            raise NotFoundError(f"Not found: {path}", status=404, path=path)
        return store[key]

    def _route(self, method: str, parts: list[str], body: dict) -> Any:
        path = "/".join(parts)
        match (method, parts):
            case ("GET", ["boards", board_id]):
                return self._board_json(self._get(self.boards, board_id, path))
            case ("POST", ["boards"]):
                return dict(self.add_board(body["name"], desc=body.get("desc", "")))
            case ("PUT", ["boards", board_id]):
                board = self._get(self.boards, board_id, path)
                board.update(name=body["name"], desc=body.get("desc", ""))
                return dict(board)
            case ("DELETE", ["boards", board_id]):
                self._get(self.boards, board_id, path)
                del self.boards[board_id]
                return {}

            case ("POST", ["lists"]):
                self._get(self.boards, body["idBoard"], path)
                return dict(
                    self.add_list(body["idBoard"], body["name"], body.get("pos"))
                )
            case ("PUT", ["lists", list_id]):
                lst = self._get(self.lists, list_id, path)
                if "name" in body:
                    lst["name"] = body["name"]
                self._move(self.lists, "idBoard", lst, body)
                return dict(lst)
            case ("PUT", ["lists", list_id, "closed"]):
                lst = self._get(self.lists, list_id, path)
                lst["closed"] = bool(body.get("value"))
                return dict(lst)

            case ("GET", ["cards", card_id]):
                card = self._get(self.cards, card_id, path)
                return {**card, "checklists": self._checklists_of(card_id)}
            case ("POST", ["cards"]):
                self._get(self.lists, body["idList"], path)
                return dict(
                    self.add_card(
                        body["idList"],
                        body["name"],
                        body.get("pos"),
                        **self._card(body),
                    )
                )
            case ("PUT", ["cards", card_id]):
                card = self._get(self.cards, card_id, path)
                if "name" in body:
                    card.update(name=body["name"], **self._card(body))
                if "idList" in body:
                    self._get(self.lists, body["idList"], path)
                    card["idList"] = body["idList"]
                self._move(self.cards, "idList", card, body)
                card["dateLastActivity"] = self.now
                return dict(card)
            case ("DELETE", ["cards", card_id]):
                self._get(self.cards, card_id, path)
                del self.cards[card_id]
                return {}

            case ("POST", ["checklists"]):
                self._get(self.cards, body["idCard"], path)
                checklist = {
                    "id": self.new_id("k"),
                    "name": body["name"],
                    "idCard": body["idCard"],
                    "pos": self._place(
                        self.checklists, "idCard", body["idCard"], body.get("pos")
                    ),
                }
                self.checklists[checklist["id"]] = checklist
                return dict(checklist)
            case ("PUT", ["checklists", checklist_id]):
                checklist = self._get(self.checklists, checklist_id, path)
                if "name" in body:
                    checklist["name"] = body["name"]
                self._move(self.checklists, "idCard", checklist, body)
                return dict(checklist)
            case ("DELETE", ["checklists", checklist_id]):
                self._get(self.checklists, checklist_id, path)
                del self.checklists[checklist_id]
                return {}

            case ("POST", ["checklists", checklist_id, "checkItems"]):
                self._get(self.checklists, checklist_id, path)
                item = {
                    "id": self.new_id("i"),
                    "name": body["name"],
                    "state": "complete" if body.get("checked") else "incomplete",
                    "idChecklist": checklist_id,
                    "pos": self._place(
                        self.items, "idChecklist", checklist_id, body.get("pos")
                    ),
                }
                self.items[item["id"]] = item
                return dict(item)
            case ("PUT", ["cards", _card_id, "checkItem", item_id]):
                item = self._get(self.items, item_id, path)
                for key in ("name", "state"):
                    if key in body:
                        item[key] = body[key]
                self._move(self.items, "idChecklist", item, body)
                return dict(item)
            case ("DELETE", ["checklists", _checklist_id, "checkItems", item_id]):
                self._get(self.items, item_id, path)
                del self.items[item_id]
                return {}

        raise TrelloSyncError(f"Unrouted request {method} {path}")

    @staticmethod
    def _place(
        store: dict[str, dict], parent_key: str, parent_id: str, pos: Any
    ) -> float:
        """Resolve a Trello ``pos`` (number, ``top`` or ``bottom``)."""
        if isinstance(pos, (int, float)):
            return float(pos)
        siblings = [
            e["pos"] for e in store.values() if e.get(parent_key) == parent_id
        ]
        if pos == "top":
            return min(siblings, default=POS_STEP * 2) / 2
        return max(siblings, default=0.0) + POS_STEP

    def _move(
        self, store: dict[str, dict], parent_key: str, entry: dict, body: dict
    ) -> None:
        if "pos" in body:
            entry["pos"] = self._place(
                store, parent_key, entry[parent_key], body["pos"]
            )

    @staticmethod
    def _card(body: dict) -> dict[str, Any]:
        def ids(value: str | None) -> list[str]:
            return [v for v in (value or "").split(",") if v]

        return {
            "desc": body.get("desc", ""),
            "due": body.get("due"),
            "idMembers": ids(body.get("idMembers")),
            "idLabels": ids(body.get("idLabels")),
        }

    def _checklists_of(self, card_id: str) -> list[dict[str, Any]]:
        result = []
        for checklist in self.checklists.values():
            if checklist["idCard"] != card_id:
                continue
            items = [
                dict(i)
                for i in self.items.values()
                if i["idChecklist"] == checklist["id"]
            ]
            result.append({**checklist, "checkItems": items})
        return result

    def _board_json(self, board: dict[str, Any]) -> dict[str, Any]:
        lists = [
            dict(lst)
            for lst in self.lists.values()
            if lst["idBoard"] == board["id"] and not lst["closed"]
        ]
        list_ids = {lst["id"] for lst in lists}
        cards = [
            dict(card)
            for card in self.cards.values()
            if card["idList"] in list_ids and not card["closed"]
        ]
        checklists = []
        for card in cards:
            checklists.extend(self._checklists_of(card["id"]))
        return {
            **board,
            "lists": lists,
            "cards": cards,
            "checklists": checklists,
        }


@pytest.fixture
def fake_trello():
    return FakeTrello()


SAMPLE_OUTLINE = """\
#+TITLE: Release planning
* Release 1.0
** Todo
*** Write release notes
:PROPERTIES:
:due: 2026-11-01T12:00:00.000Z
:END:
Collect the changes since 0.9.
**** Steps
***** [ ] Draft
***** [X] Review
*** Tag the release
** Done
*** Pick a name
"""


@pytest.fixture
def sample_outline():
    return SAMPLE_OUTLINE


@pytest.fixture
def make_document():
    """Factory: parse outline text into an OutlineDocument."""

    def _make(
        text: str = SAMPLE_OUTLINE,
        path=None,
        modified_at: datetime | None = None,
    ) -> OutlineDocument:
        return OutlineDocument(
            text,
            path=path,
            modified_at=modified_at
            or datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

    return _make


@pytest.fixture
def sample_document(make_document):
    return make_document()
