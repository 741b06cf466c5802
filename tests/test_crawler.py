"""Crawl-level behaviour against a scripted application."""

import time

import pytest

from fakes import BASE, FakeAdapter, FakeApp, FakeBrowser, FakeInputs, FakePage, FakeSession, button, link, text_input
from ui_explorer.adapters import AdapterRegistry
from ui_explorer.browser import NetworkEntry
from ui_explorer.config import ExplorationSettings, ExplorerConfig
from ui_explorer.crawler import Crawler
from ui_explorer.errors import AdapterConnectionError, SessionCrashedError
from ui_explorer.fingerprint import Fingerprinter
from ui_explorer.knowledge import VIEWPORTS, Action, ActionType, VerificationType
from ui_explorer.replay import replay_path
from ui_explorer.schemas import (
    ActionExpectation,
    ActionMatcher,
    ActionSchema,
    ApiExpectation,
    DatabaseExpectation,
    SetupStep,
    UiExpectation,
)
from ui_explorer.validators import ConsoleValidator


def make_config(**overrides):
    exploration = ExplorationSettings(
        viewports=["desktop"],
        wait_for_network_idle=False,
        action_delay_ms=0,
        max_depth=overrides.pop("max_depth", 10),
        max_states=overrides.pop("max_states", 500),
    )
    return ExplorerConfig(base_url=BASE + "/", exploration=exploration, **overrides)


def make_crawler(app, config=None, registry=None, validators=()):
    return Crawler(
        config or make_config(),
        FakeBrowser(app),
        registry=registry if registry is not None else AdapterRegistry(),
        validators=list(validators),
        input_generator=FakeInputs(),
    )


def chain(n):
    pages = {}
    for i in range(n):
        elements = [link(f"#next{i}", f"Next {i}", f"/p{i + 1}")] if i < n - 1 else []
        goes_to = {f"#next{i}": f"/p{i + 1}"} if i < n - 1 else {}
        pages[f"/p{i}"] = FakePage(f"Page {i}", elements, goes_to=goes_to)
    pages["/"] = pages.pop("/p0")
    return FakeApp(pages)


def star(n):
    links = [link(f"#l{i}", f"Leaf {i}", f"/leaf{i}") for i in range(n)]
    pages = {"/": FakePage("Home", links, goes_to={f"#l{i}": f"/leaf{i}" for i in range(n)})}
    for i in range(n):
        pages[f"/leaf{i}"] = FakePage(f"Leaf {i}")
    return FakeApp(pages)


class ExplodingValidator:
    name = "exploding"

    async def validate(self, session, viewport):
        raise RuntimeError("probe blew up")


class TestBreadthFirstSearch:
    @pytest.mark.asyncio
    async def test_cycle_is_visited_once_per_state(self):
        """Home -> A -> B -> Home yields three states and three transitions."""
        app = FakeApp(
            {
                "/": FakePage("Home", [link("#a", "A", "/a")], goes_to={"#a": "/a"}),
                "/a": FakePage("A", [link("#b", "B", "/b")], goes_to={"#b": "/b"}),
                "/b": FakePage("B", [link("#home", "Home", "/")], goes_to={"#home": "/"}),
            }
        )
        result = await make_crawler(app).explore()
        assert result.summary.states_explored == 3
        assert result.summary.actions_performed == 3
        urls = sorted(node.state.url for node in result.graph.nodes())
        assert urls == [BASE + "/", BASE + "/a", BASE + "/b"]
        back = [t for t in result.graph.transitions() if t.action.selector == "#home"]
        assert back[0].to_state in result.graph.start_states

    @pytest.mark.asyncio
    async def test_depth_limit(self):
        """Tasks deeper than max_depth are dropped; the edge into them stays."""
        result = await make_crawler(chain(6), make_config(max_depth=2)).explore()
        assert result.summary.states_explored == 3
        edge = [t for t in result.graph.transitions() if t.action.selector == "#next2"]
        assert len(edge) == 1
        assert not result.graph.has_state(edge[0].to_state)

    @pytest.mark.asyncio
    async def test_state_limit(self):
        result = await make_crawler(star(15), make_config(max_states=10)).explore()
        assert result.summary.states_explored == 10
        assert len(result.graph) == 10

    @pytest.mark.asyncio
    async def test_running_task_drains_at_state_limit(self):
        """With the cap reached the current task still records its transitions."""
        crawler = make_crawler(star(3), make_config(max_states=1))
        result = await crawler.explore()
        assert result.summary.states_explored == 1
        assert result.summary.actions_performed == 3
        assert not crawler.frontier

    @pytest.mark.asyncio
    async def test_nothing_is_enqueued_after_the_cap(self):
        app = FakeApp(
            {
                "/": FakePage(
                    "Home",
                    [link("#a", "A", "/a"), link("#b", "B", "/b")],
                    goes_to={"#a": "/a", "#b": "/b"},
                ),
                "/a": FakePage("A", [link("#x", "X", "/x"), link("#y", "Y", "/y")], goes_to={"#x": "/x", "#y": "/y"}),
                "/b": FakePage("B"),
                "/x": FakePage("X"),
                "/y": FakePage("Y"),
            }
        )
        crawler = make_crawler(app, make_config(max_states=2))
        result = await crawler.explore()
        assert result.summary.states_explored == 2
        # two from home, two drained from A
        assert result.summary.actions_performed == 4
        assert [t.path[-1].selector for t in crawler.frontier] == ["#b"]

    @pytest.mark.asyncio
    async def test_off_origin_targets_are_recorded_not_followed(self):
        app = FakeApp(
            {
                "/": FakePage("Home", [link("#docs", "Docs", "http://docs.other.test/")], goes_to={"#docs": "http://docs.other.test/"}),
                "http://docs.other.test/": FakePage("Docs", [link("#deep", "Deep", "/deep")]),
            }
        )
        result = await make_crawler(app).explore()
        assert result.summary.states_explored == 1
        assert result.summary.actions_performed == 1


class TestReplay:
    @pytest.mark.asyncio
    async def test_replayed_path_reaches_the_same_state(self):
        app = chain(4)
        fingerprinter = Fingerprinter()
        path = [Action(ActionType.CLICK, "#next0"), Action(ActionType.CLICK, "#next1")]

        recorded = FakeSession(app, VIEWPORTS["desktop"])
        await recorded.navigate("/")
        for action in path:
            await recorded.perform(action)
        expected = fingerprinter.capture(await recorded.observe(), "desktop")

        fresh = FakeSession(app, VIEWPORTS["desktop"])
        await fresh.navigate("/")
        assert await replay_path(fresh, path) == 2
        assert fingerprinter.capture(await fresh.observe(), "desktop").id == expected.id

    @pytest.mark.asyncio
    async def test_replay_stops_at_first_failing_step(self):
        app = chain(4)
        session = FakeSession(app, VIEWPORTS["desktop"])
        await session.navigate("/")
        path = [Action(ActionType.CLICK, "#next0"), Action(ActionType.CLICK, "#missing"), Action(ActionType.CLICK, "#next2")]
        assert await replay_path(session, path) == 1
        assert session.url == BASE + "/p1"

    @pytest.mark.asyncio
    async def test_crawler_tasks_replay_from_their_origin(self):
        """Every new task navigates to the start URL and replays its whole path."""
        crawler = make_crawler(chain(3))
        await crawler.explore()
        last = crawler.browser.sessions[-1]
        assert [a.selector for a in last.performed][:2] == ["#next0", "#next1"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_failing_action_becomes_failed_transition(self):
        app = FakeApp({"/": FakePage("Home", [button("#broken", "Broken"), button("#ok", "Ok")], failing={"#broken"})})
        result = await make_crawler(app).explore()
        [failed] = [t for t in result.graph.transitions() if not t.success]
        assert failed.action.selector == "#broken"
        assert failed.to_state == failed.from_state
        assert "timed out" in failed.error
        assert result.summary.actions_failed == 1
        assert result.summary.actions_performed == 2

    @pytest.mark.asyncio
    async def test_session_crash_is_fatal_and_cleans_up(self):
        app = FakeApp({"/": FakePage("Home", [button("#boom", "Boom")])})
        app.crash_on = "#boom"
        adapter = FakeAdapter({"songs": 0})
        crawler = make_crawler(
            app,
            make_config(adapters={"fake": {}}),
            registry=AdapterRegistry({"fake": lambda: adapter}),
        )
        with pytest.raises(SessionCrashedError):
            await crawler.explore()
        assert adapter.disconnected
        assert crawler.graph.frozen
        assert all(s.closed for s in crawler.browser.sessions)

    @pytest.mark.asyncio
    async def test_adapter_connect_failure_aborts_run(self):
        app = star(1)
        crawler = make_crawler(
            app,
            make_config(adapters={"fake": {}}),
            registry=AdapterRegistry({"fake": lambda: FakeAdapter(fail_connect=True)}),
        )
        with pytest.raises(AdapterConnectionError):
            await crawler.explore()
        assert app.navigations == 0

    @pytest.mark.asyncio
    async def test_optional_adapter_is_skipped(self):
        registry = AdapterRegistry({"fake": lambda: FakeAdapter(fail_connect=True)})
        crawler = make_crawler(star(1), make_config(adapters={"fake": {"optional": True}}), registry=registry)
        result = await crawler.explore()
        assert result.summary.states_explored == 2

    @pytest.mark.asyncio
    async def test_reset_failure_ends_the_task(self):
        app = FakeApp({"/": FakePage("Home", [button("#one", "One"), button("#two", "Two"), button("#three", "Three")])})
        app.fail_navigation = lambda url, n: n >= 2
        result = await make_crawler(app).explore()
        assert result.summary.states_explored == 1
        assert result.summary.actions_performed == 1

    @pytest.mark.asyncio
    async def test_validator_failure_is_contained(self):
        app = FakeApp({"/": FakePage("Home", console_errors=["Uncaught TypeError: x is undefined"])})
        result = await make_crawler(app, validators=[ExplodingValidator(), ConsoleValidator()]).explore()
        [issue] = result.issues
        assert issue.rule == "console-error"
        assert issue.state_id == result.graph.start_states[0]
        assert issue.viewport == "desktop"


class TestEvents:
    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_task(self):
        crawler = make_crawler(star(2))
        crawler.on(lambda event: crawler.cancel() if event.type == "state:visited" else None)
        result = await crawler.explore()
        assert result.summary.cancelled
        assert result.summary.states_explored == 1
        # the running task completes
        assert result.summary.actions_performed == 2

    @pytest.mark.asyncio
    async def test_event_sequence(self):
        crawler = make_crawler(star(1))
        seen = []
        crawler.on(lambda event: seen.append(event.type))
        await crawler.explore()
        assert seen[0] == "start"
        assert seen[-1] == "complete"
        assert seen.count("state:visited") == 2
        assert "state:discovered" in seen

    @pytest.mark.asyncio
    async def test_broken_handler_does_not_stop_the_run(self):
        crawler = make_crawler(star(1))

        def handler(event):
            raise ValueError("bad handler")

        crawler.on(handler)
        result = await crawler.explore()
        assert result.summary.states_explored == 2


class TestSchemas:
    @pytest.mark.asyncio
    async def test_matched_action_is_verified(self):
        adapter = FakeAdapter({"songs": 3})

        def save(session):
            adapter.tables["songs"] += 1
            session.network_log.append(
                NetworkEntry(BASE + "/api/songs", "POST", "fetch", time.time(), status=201, duration_ms=40)
            )

        app = FakeApp(
            {
                "/": FakePage(
                    "Songs",
                    [text_input("#title", "title"), button("#save", "Save")],
                    effects={"#save": save},
                    texts={"#toast": "Song saved"},
                )
            }
        )
        schema = ActionSchema(
            match=ActionMatcher(text="save"),
            setup=[SetupStep(fill="#title", value="{{testData.songTitle}}")],
            expects=[
                ActionExpectation(
                    database=DatabaseExpectation(table="songs", change="insert", adapter="fake"),
                    api=ApiExpectation(endpoint="/api/songs", method="POST", status=201),
                    ui=UiExpectation(visible=["#toast"], text={"#toast": "saved"}),
                )
            ],
            description="Add song",
        )
        config = make_config(
            max_depth=0,
            adapters={"fake": {}},
            action_schemas=[schema],
            test_data={"songTitle": "Test Song 123"},
        )
        crawler = make_crawler(app, config, registry=AdapterRegistry({"fake": lambda: adapter}))
        result = await crawler.explore()

        [saved] = [t for t in result.graph.transitions() if t.schema == "Add song"]
        assert [v.type for v in saved.verifications] == [
            VerificationType.DATABASE,
            VerificationType.API,
            VerificationType.UI,
            VerificationType.UI,
        ]
        assert all(v.passed for v in saved.verifications), [v.message for v in saved.verifications]
        assert result.summary.coverage.schemas_matched == 1
        # the schema-matched action runs before the plain fill
        first = crawler.browser.sessions[0].performed
        assert first[0] == Action(ActionType.FILL, "#title", value="Test Song 123")
        assert first[1].selector == "#save"
        assert adapter.verify_calls[0][0] == "insert"

    @pytest.mark.asyncio
    async def test_follow_up_action_runs_and_is_replayed(self):
        app = FakeApp(
            {
                "/": FakePage("Songs", [button("#delete", "Delete song")], goes_to={"#delete": "/confirm"}),
                "/confirm": FakePage("Confirm", [button("#confirm", "Confirm")], goes_to={"#confirm": "/done"}),
                "/done": FakePage("Done", texts={"#banner": "Song deleted"}),
            }
        )
        schema = ActionSchema(
            match=ActionMatcher(text="delete"),
            follow_up=ActionSchema(
                match=ActionMatcher(text="^confirm$"),
                expects=[ActionExpectation(ui=UiExpectation(text={"#banner": "deleted"}))],
            ),
        )
        crawler = make_crawler(app, make_config(max_depth=1, action_schemas=[schema]))
        result = await crawler.explore()

        [transition] = result.graph.transitions()
        assert [v.passed for v in transition.verifications] == [True]
        assert result.graph.get_node(transition.to_state).state.url == BASE + "/done"
        replayed = crawler.browser.sessions[-1].performed
        assert [a.selector for a in replayed] == ["#delete", "#confirm"]

    @pytest.mark.asyncio
    async def test_missing_follow_up_fails_verification(self):
        app = FakeApp(
            {
                "/": FakePage("Songs", [button("#delete", "Delete song")], goes_to={"#delete": "/confirm"}),
                "/confirm": FakePage("Confirm", [button("#cancel", "Keep it")]),
            }
        )
        schema = ActionSchema(match=ActionMatcher(text="delete"), follow_up=ActionSchema(match=ActionMatcher(text="^confirm$")))
        result = await make_crawler(app, make_config(max_depth=0, action_schemas=[schema])).explore()
        [transition] = result.graph.transitions()
        [verification] = transition.verifications
        assert not verification.passed
        assert "Follow-up" in verification.message


class TestIdentity:
    @pytest.mark.asyncio
    async def test_adapters_change_state_identity(self):
        app = FakeApp({"/": FakePage("Home")})
        plain = await make_crawler(app).explore()
        registry = AdapterRegistry({"fake": lambda: FakeAdapter({"songs": 1})})
        backed = await make_crawler(app, make_config(adapters={"fake": {}}), registry=registry).explore()
        assert plain.graph.start_states != backed.graph.start_states
        [node] = backed.graph.nodes()
        assert node.state.db_snapshot.tables["songs"].row_count == 1

    @pytest.mark.asyncio
    async def test_setup_fills_are_replayed(self):
        app = FakeApp(
            {
                "/": FakePage(
                    "Songs",
                    [text_input("#title", "title"), button("#save", "Save")],
                    goes_to={"#save": "/saved"},
                    requires={"#save": {"#title": "Song"}},
                ),
                "/saved": FakePage("Saved"),
            }
        )
        schema = ActionSchema(
            match=ActionMatcher(selector="#save"),
            setup=[SetupStep(fill="#title", value="Song")],
            description="Save song",
        )
        crawler = make_crawler(app, make_config(max_depth=1, action_schemas=[schema]))
        result = await crawler.explore()

        [saved] = [t for t in result.graph.transitions() if t.schema == "Save song"]
        assert result.graph.has_state(saved.to_state)
        assert result.graph.get_node(saved.to_state).state.url == BASE + "/saved"
        assert result.summary.states_explored == 2
        replayed = crawler.browser.sessions[-1].performed
        assert replayed == [Action(ActionType.FILL, "#title", value="Song"), Action(ActionType.CLICK, "#save")]

    @pytest.mark.asyncio
    async def test_destructive_schema_runs_last(self):
        app = FakeApp({"/": FakePage("Admin", [button("#reset", "Reset data"), button("#a", "A"), button("#b", "B")])})
        schema = ActionSchema(match=ActionMatcher(selector="#reset"), destructive=True, description="Reset")
        crawler = make_crawler(app, make_config(max_depth=0, action_schemas=[schema]))
        result = await crawler.explore()

        assert [a.selector for a in crawler.browser.sessions[0].performed] == ["#a", "#b", "#reset"]
        [reset] = [t for t in result.graph.transitions() if t.schema == "Reset"]
        assert reset.action.destructive
