"""Tests for agent pane naming."""

import pytest

from baton.context.identity import (
    UNKNOWN_AGENT_TYPE,
    agent_type_long,
    agent_type_short,
    derive_agent_type,
    extract_agent_index,
    format_pane_name,
    parse_pane_title,
)
from baton.panes.base import USER_PANE_TYPE, Pane


class TestAgentTypes:
    @pytest.mark.parametrize(
        "long,short", [("claude", "cc"), ("codex", "cod"), ("gemini", "gmi")]
    )
    def test_round_trip(self, long, short):
        assert agent_type_short(long) == short
        assert agent_type_short(short) == short
        assert agent_type_long(short) == long

    def test_unknown_passes_through(self):
        assert agent_type_short("aider") == "aider"
        assert agent_type_long("aider") == "aider"


class TestFormatPaneName:
    def test_basic(self):
        assert format_pane_name("proj", "claude", 2) == "proj__cc_2"

    def test_variant(self):
        assert format_pane_name("proj", "cod", 1, "o3") == "proj__cod_1_o3"


class TestParsePaneTitle:
    def test_basic(self):
        identity = parse_pane_title("proj__cc_2")
        assert identity.session == "proj"
        assert identity.agent_type == "cc"
        assert identity.long_type == "claude"
        assert identity.index == 2
        assert identity.variant == ""
        assert identity.tags == ()

    def test_variant_and_tags(self):
        identity = parse_pane_title("my_proj__gmi_3_flash[api, ui]")
        assert identity.session == "my_proj"
        assert identity.agent_type == "gmi"
        assert identity.index == 3
        assert identity.variant == "flash"
        assert identity.tags == ("api", "ui")

    @pytest.mark.parametrize("title", ["zsh", "proj__cc", "proj_cc_1", "proj__xyz_1", ""])
    def test_not_an_agent(self, title):
        assert parse_pane_title(title) is None


class TestAgentIdHelpers:
    @pytest.mark.parametrize(
        "agent_id,expected",
        [
            ("myproject__cc_2", 2),
            ("myproject__cod_10_o3", 10),
            ("proj__cc", 1),
            ("single", 1),
        ],
    )
    def test_extract_agent_index(self, agent_id, expected):
        assert extract_agent_index(agent_id) == expected

    @pytest.mark.parametrize(
        "agent_id,expected",
        [
            ("proj__cc_1", "claude"),
            ("proj__cod_2", "codex"),
            ("proj__gmi_1", "gemini"),
            ("proj__aider_1", "aider"),
            ("no-separator", UNKNOWN_AGENT_TYPE),
            ("proj__", UNKNOWN_AGENT_TYPE),
        ],
    )
    def test_derive_agent_type(self, agent_id, expected):
        assert derive_agent_type(agent_id) == expected


class TestPane:
    def test_agent_pane(self):
        pane = Pane.from_title("%3", 1, "proj__cod_1_o3")
        assert pane.is_agent
        assert pane.type == "cod"
        assert pane.variant == "o3"

    def test_user_pane(self):
        pane = Pane.from_title("%0", 0, "vim")
        assert not pane.is_agent
        assert pane.type == USER_PANE_TYPE
