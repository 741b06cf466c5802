import re

import pytest

from ui_explorer.errors import ConfigError
from ui_explorer.knowledge import Action, ActionType
from ui_explorer.schemas import ActionMatcher, schema_from_dict, schemas_from_list

ADD_SONG = {
    "description": "Add song",
    "match": {"text": "add song", "context": "/songs"},
    "setup": [
        {"fill": "#title", "value": "{{testData.songTitle}}"},
        {"waitFor": "#artist", "optional": True},
        {"delay": 200},
    ],
    "expects": [
        {
            "database": {"table": "songs", "change": "insert", "where": {"title": "Test Song 123"}},
            "api": {"endpoint": "/rest/v1/songs", "method": "post", "status": [200, 201], "maxResponseTime": 2000},
            "ui": {"visible": [".toast"], "hidden": ["#dialog"], "text": {".toast": "added"}},
        },
        {"service": {"adapter": "groq", "action": "model_available", "expects": {"model": "llama3"}}},
    ],
    "followUp": {"match": {"text": "^ok$"}},
}


class TestLoading:
    def test_full_schema(self):
        schema = schema_from_dict(ADD_SONG)
        assert schema.name() == "Add song"
        assert schema.setup[0].fill == "#title"
        assert schema.setup[1].wait_for == "#artist" and schema.setup[1].optional
        assert schema.setup[2].delay_ms == 200
        first, second = schema.expects
        assert first.database.where == {"title": "Test Song 123"}
        assert first.database.adapter == "supabase"
        assert first.api.method == "POST"
        assert first.api.max_response_time_ms == 2000
        assert first.ui.text == {".toast": "added"}
        assert second.service.adapter == "groq"
        assert schema.follow_up.match.text == "^ok$"

    def test_list(self):
        assert len(schemas_from_list([ADD_SONG, {"match": {"selector": "#x"}}])) == 2

    @pytest.mark.parametrize(
        "data, message",
        [
            ({"match": {"custom": "lambda a, u: True"}}, "Custom matcher"),
            ({"match": {"xpath": "//a"}}, "Unknown matcher"),
            ({"match": {}, "expects": [{"database": {"table": "t", "change": "upsert"}}]}, "change must be one of"),
            ({"match": {}, "expects": [{"api": {"endpoint": "/x", "method": "TRACE"}}]}, "Unsupported HTTP method"),
            ({"match": {}, "expects": [{"database": {"change": "insert"}}]}, "database expectation is missing table"),
            ({"match": {}, "expects": [{"api": {"method": "POST"}}]}, "api expectation is missing endpoint"),
            ({"match": {}, "expects": [{"service": {"adapter": "stripe"}}]}, "service expectation is missing action"),
            ({"match": {}, "followUp": {"match": {}, "followUp": {"match": {}}}}, "one level deep"),
            (["not", "an", "object"], "must be an object"),
        ],
    )
    def test_rejects(self, data, message):
        with pytest.raises(ConfigError, match=message):
            schema_from_dict(data)

    def test_generated_name(self):
        schema = schema_from_dict({"match": {"selector": "#save", "text": "save"}})
        assert schema.name() == "schema(selector='#save', text='save', role=None)"


class TestMatcher:
    @pytest.mark.asyncio
    async def test_selector_is_substring(self):
        matcher = ActionMatcher(selector="delete")
        assert await matcher.matches(Action(ActionType.CLICK, "button.delete-song"), "/")
        assert not await matcher.matches(Action(ActionType.CLICK, "button.remove"), "/")

    @pytest.mark.asyncio
    async def test_text_is_case_insensitive(self):
        matcher = ActionMatcher(text="add song")
        assert await matcher.matches(Action(ActionType.CLICK, "#a", label="Add Song"), "/")

    @pytest.mark.asyncio
    async def test_compiled_pattern_keeps_its_flags(self):
        matcher = ActionMatcher(text=re.compile("^Save$"))
        assert await matcher.matches(Action(ActionType.CLICK, "#a", label="Save"), "/")
        assert not await matcher.matches(Action(ActionType.CLICK, "#a", label="Save draft"), "/")

    @pytest.mark.asyncio
    async def test_sync_custom_predicate(self):
        matcher = ActionMatcher(custom=lambda action, url: url.endswith("/admin"))
        assert await matcher.matches(Action(ActionType.CLICK, "#a"), "http://app.test/admin")
        assert not await matcher.matches(Action(ActionType.CLICK, "#a"), "http://app.test/")
