"""Tests for state identity."""

from ui_explorer.fingerprint import Fingerprinter
from ui_explorer.knowledge import PageObservation


def observation(url="http://app.test/songs", elements=None, modal=None, title="Songs"):
    if elements is None:
        elements = [
            {"tag": "a", "selector": "#home", "text": "Home", "href": "/"},
            {"tag": "button", "selector": "#add", "text": "Add Song", "classes": ["btn", "btn-primary"]},
            {"tag": "input", "selector": "#title", "type": "text", "name": "title", "placeholder": "Title"},
        ]
    return PageObservation.from_dict({"url": url, "title": title, "modal": modal, "elements": elements})


class TestIdentity:
    def test_identical_observations_share_an_id(self):
        fp = Fingerprinter()
        a = fp.capture(observation(), "desktop")
        b = fp.capture(observation(), "desktop")
        assert a.id == b.id
        assert a == b

    def test_signature_matches_capture(self):
        fp = Fingerprinter()
        snapshots = {"supabase": {"tables": {"songs": {"row_count": 3}}}}
        assert fp.signature(observation(), "mobile", snapshots) == fp.capture(observation(), "mobile", snapshots).id

    def test_viewport_is_part_of_identity(self):
        fp = Fingerprinter()
        assert fp.capture(observation(), "mobile").id != fp.capture(observation(), "desktop").id

    def test_visible_text_change_is_a_new_state(self):
        fp = Fingerprinter()
        changed = observation(
            elements=[
                {"tag": "a", "selector": "#home", "text": "Home", "href": "/"},
                {"tag": "button", "selector": "#add", "text": "Save Song"},
            ]
        )
        assert fp.capture(observation(), "desktop").id != fp.capture(changed, "desktop").id

    def test_modal_is_part_of_identity(self):
        fp = Fingerprinter()
        assert fp.capture(observation(), "desktop").id != fp.capture(observation(modal="Confirm"), "desktop").id

    def test_title_does_not_affect_identity(self):
        fp = Fingerprinter()
        assert fp.capture(observation(title="Songs (3)"), "desktop").id == fp.capture(observation(), "desktop").id


class TestChurnResistance:
    def test_animation_and_hashed_classes_are_ignored(self):
        fp = Fingerprinter()
        base = [{"tag": "button", "selector": "#add", "text": "Add", "classes": ["btn"]}]
        rerendered = [
            {"tag": "button", "selector": "#add", "text": "Add", "classes": ["btn", "fade-enter-active", "css-1x2y3z", "is-loading"]}
        ]
        assert fp.dom_digest(observation(elements=base)) == fp.dom_digest(observation(elements=rerendered))

    def test_generated_ids_are_ignored(self):
        fp = Fingerprinter()
        first = [{"tag": "input", "selector": "input:nth-of-type(1)", "type": "text", "id": ":r1:"}]
        second = [{"tag": "input", "selector": "input:nth-of-type(1)", "type": "text", "id": ":r7:"}]
        assert fp.dom_digest(observation(elements=first)) == fp.dom_digest(observation(elements=second))

    def test_stable_ids_count(self):
        fp = Fingerprinter()
        first = [{"tag": "input", "selector": "#email", "type": "text", "id": "email"}]
        second = [{"tag": "input", "selector": "#email", "type": "text", "id": "phone"}]
        assert fp.dom_digest(observation(elements=first)) != fp.dom_digest(observation(elements=second))

    def test_invisible_elements_are_ignored(self):
        fp = Fingerprinter()
        hidden = [
            {"tag": "a", "selector": "#home", "text": "Home", "href": "/"},
            {"tag": "button", "selector": "#add", "text": "Add Song", "classes": ["btn", "btn-primary"]},
            {"tag": "input", "selector": "#title", "type": "text", "name": "title", "placeholder": "Title"},
            {"tag": "div", "selector": "#toast", "text": "Saved!", "visible": False},
        ]
        assert fp.dom_digest(observation()) == fp.dom_digest(observation(elements=hidden))


class TestUrlKey:
    def test_query_order_is_normalised(self):
        fp = Fingerprinter()
        assert fp.url_key("http://app.test/list?b=2&a=1") == fp.url_key("http://app.test/list?a=1&b=2")

    def test_query_can_be_excluded(self):
        fp = Fingerprinter(include_query=False)
        assert fp.url_key("http://app.test/list?page=2") == "/list"

    def test_hash_routes_count_but_anchors_do_not(self):
        fp = Fingerprinter()
        assert fp.url_key("http://app.test/#/settings") == "/#/settings"
        assert fp.url_key("http://app.test/#!/settings") == "/#/settings"
        assert fp.url_key("http://app.test/docs#install") == "/docs"


class TestBackendDigest:
    def test_same_ui_is_a_different_node_with_adapters(self):
        fp = Fingerprinter()
        without = fp.capture(observation(), "desktop")
        with_adapters = fp.capture(observation(), "desktop", {"supabase": {"tables": {"songs": {"row_count": 0}}}})
        assert without.id != with_adapters.id
        assert without.db_snapshot is None
        assert with_adapters.db_snapshot.tables["songs"].row_count == 0

    def test_empty_snapshot_map_means_no_backend(self):
        fp = Fingerprinter()
        assert fp.backend_digest({}) == ""
        assert fp.capture(observation(), "desktop", {}).id == fp.capture(observation(), "desktop").id

    def test_row_count_change_is_a_new_state(self):
        fp = Fingerprinter()
        before = {"supabase": {"tables": {"songs": {"row_count": 1}}}}
        after = {"supabase": {"tables": {"songs": {"row_count": 2}}}}
        assert fp.capture(observation(), "desktop", before).id != fp.capture(observation(), "desktop", after).id

    def test_sampled_rows_do_not_change_identity(self):
        fp = Fingerprinter()
        a = {"supabase": {"tables": {"songs": {"row_count": 1, "recent_rows": [{"id": 1, "updated_at": "t1"}]}}}}
        b = {"supabase": {"tables": {"songs": {"row_count": 1, "recent_rows": [{"id": 1, "updated_at": "t2"}]}}}}
        assert fp.backend_digest(a) == fp.backend_digest(b)

    def test_auth_state_is_captured(self):
        fp = Fingerprinter()
        snapshots = {"supabase": {"auth": {"is_authenticated": True, "user_id": "u1", "role": "admin"}}}
        state = fp.capture(observation(), "desktop", snapshots)
        assert state.auth_state.is_authenticated
        assert state.auth_state.role == "admin"
        anonymous = fp.capture(observation(), "desktop", {"supabase": {"auth": {"is_authenticated": False}}})
        assert anonymous.id != state.id
