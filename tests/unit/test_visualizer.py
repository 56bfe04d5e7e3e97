"""Unit tests for the graph renderers."""

import json

import pytest

from taskgraph.graph.analytics import analyze_impact, find_critical_path
from taskgraph.graph.visualizer import (
    CRITICAL_MARK,
    RenderOptions,
    mermaid_id,
    render_ascii,
    render_dot,
    render_html,
    render_json,
    render_mermaid,
)
from taskgraph.tasks.models import Task


@pytest.fixture
def tasks() -> list[Task]:
    return [
        Task(id="1", title="Design schema", priority="high", status="done", effort=3),
        Task(id="2", title="Write models", status="done", dependencies=["1"]),
        Task(id="3", title="Build API", dependencies=["1", "2"], assignee="alice"),
        Task(id="4", title="Ship release", status="done", dependencies=["3"], tags=["release"]),
        Task(id="5", title="Write docs"),
    ]


def html_graph(html: str) -> dict:
    """Pull the embedded graph payload back out of an HTML page."""
    start = html.index("const graphData = ") + len("const graphData = ")
    end = html.index(";\n        const width")
    return json.loads(html[start:end])


class TestAscii:
    """Tests for the plain-text renderer."""

    def test_group_by_status(self, tasks: list[Task]) -> None:
        """Test two statuses give exactly two group headers with the right members."""
        text = render_ascii(tasks, RenderOptions(group_by="status"))
        headers = [line for line in text.splitlines() if line.startswith("## ")]

        assert headers == ["## done", "## pending"]
        done_section, pending_section = text.split("## pending")
        assert "Design schema (1)" in done_section
        assert "Ship release (4)" in done_section
        assert "Build API (3)" in pending_section
        assert "Write docs (5)" in pending_section

    def test_no_headers_without_grouping(self, tasks: list[Task]) -> None:
        """Test the ungrouped report."""
        text = render_ascii(tasks)

        assert text.startswith("# Dependency Graph")
        assert not any(line.startswith("## ") for line in text.splitlines())

    def test_critical_marks_and_titles(self, tasks: list[Task]) -> None:
        """Test critical tasks are marked and dependency ids resolve to titles."""
        options = RenderOptions(critical_path=find_critical_path(tasks))

        text = render_ascii(tasks, options)

        assert f"{CRITICAL_MARK} Design schema (1)" in text
        assert "      <- Write models (2)" in text

    def test_metadata_and_impact_lines(self, tasks: list[Task]) -> None:
        """Test optional detail lines."""
        options = RenderOptions(show_metadata=True, impact=analyze_impact(tasks))

        text = render_ascii(tasks, options)

        assert "Priority: high | Status: done | Effort: 3/5" in text
        assert "Impact Score:" in text
        assert "Priority:" not in render_ascii(tasks, RenderOptions(show_metadata=False))

    @pytest.mark.parametrize(
        ("group_by", "header"),
        [("assignee", "## alice"), ("tags", "## release"), ("priority", "## high")],
    )
    def test_other_groupings(self, tasks: list[Task], group_by: str, header: str) -> None:
        """Test grouping keys beyond status."""
        assert header in render_ascii(tasks, RenderOptions(group_by=group_by))


class TestEdgeAgreement:
    """All formats must draw the same edges."""

    def test_same_edge_count_everywhere(self, tasks: list[Task]) -> None:
        """Test every renderer enumerates the identical edge set."""
        options = RenderOptions()
        expected = {("1", "2"), ("1", "3"), ("2", "3"), ("3", "4")}

        json_edges = {(e["source"], e["target"]) for e in render_json(tasks, options)["graph"]["edges"]}
        html_edges = {(e["source"], e["target"]) for e in html_graph(render_html(tasks, options))["edges"]}
        dot_lines = [line for line in render_dot(tasks, options).splitlines() if " -> " in line]
        mermaid_lines = [line for line in render_mermaid(tasks, options).splitlines() if " --> " in line]
        ascii_lines = [line for line in render_ascii(tasks, options).splitlines() if line.startswith("      <- ")]

        assert json_edges == expected
        assert html_edges == expected
        assert len(dot_lines) == len(mermaid_lines) == len(ascii_lines) == len(expected)

    def test_dangling_edges_dropped(self) -> None:
        """Test edges to tasks outside the list are not drawn."""
        tasks = [Task(id="1", title="Only", dependencies=["ghost"])]

        assert render_json(tasks)["metadata"]["totalEdges"] == 0
        assert " -> " not in render_dot(tasks)


class TestJson:
    """Tests for the JSON document."""

    def test_nodes(self, tasks: list[Task]) -> None:
        """Test node fields."""
        options = RenderOptions(critical_path=["1"], impact=analyze_impact(tasks))

        document = render_json(tasks, options, generated_at="2026-01-01T00:00:00Z")
        node = document["graph"]["nodes"][0]

        assert node["id"] == "1"
        assert node["label"] == "Design schema"
        assert node["isCritical"] is True
        assert node["impact"]["totalImpact"] == 3
        assert document["metadata"]["totalNodes"] == 5
        assert document["metadata"]["generatedAt"] == "2026-01-01T00:00:00Z"
        assert document["graph"]["edges"][0]["type"] == "dependency"


class TestDot:
    """Tests for Graphviz output."""

    def test_colours(self, tasks: list[Task]) -> None:
        """Test critical, high impact and plain fill colours."""
        options = RenderOptions(critical_path=["1", "2"], impact=analyze_impact(tasks))
        options.impact["3"] = options.impact["3"].model_copy(update={"is_critical": True})

        dot = render_dot(tasks, options)

        assert '"1" [label="Design schema' in dot
        assert "fillcolor=orange" in dot.splitlines()[4]
        assert any('"3"' in line and "fillcolor=yellow" in line for line in dot.splitlines())
        assert any('"5"' in line and "fillcolor=lightblue" in line for line in dot.splitlines())
        assert '"1" -> "2" [color=red, penwidth=2];' in dot
        assert '"2" -> "3" [color=black];' in dot

    def test_escaping(self) -> None:
        """Test quotes in titles are escaped."""
        dot = render_dot([Task(id="1", title='Say "hi"')])

        assert 'Say \\"hi\\"' in dot


class TestMermaid:
    """Tests for Mermaid output."""

    def test_structure(self, tasks: list[Task]) -> None:
        """Test header, critical class and edges."""
        text = render_mermaid(tasks, RenderOptions(critical_path=["1"]))

        assert text.startswith("graph TD")
        assert 't_1["Design schema"]:::critical' in text
        assert "t_1 --> t_2" in text
        assert "classDef critical" in text

    def test_ids_are_sanitized(self) -> None:
        """Test dotted ids and quotes in labels."""
        assert mermaid_id("1.2") == "t_1_2e_2"
        text = render_mermaid([Task(id="1.2", title='A "quoted" title')])

        assert 't_1_2e_2["A #quot;quoted#quot; title"]' in text

    def test_similar_ids_stay_distinct(self) -> None:
        """Test ids differing only in punctuation keep separate nodes and edges."""
        tasks = [
            Task(id="1.1", title="Dotted"),
            Task(id="1_1", title="Underscored"),
            Task(id="2", title="Joins both", dependencies=["1.1", "1_1"]),
        ]
        lines = render_mermaid(tasks).splitlines()

        node_ids = {line.split("[")[0].strip() for line in lines if "[" in line}
        edges = {tuple(line.strip().split(" --> ")) for line in lines if " --> " in line}
        json_doc = render_json(tasks)
        dot_edges = [line for line in render_dot(tasks).splitlines() if " -> " in line]

        assert len(node_ids) == len(json_doc["graph"]["nodes"]) == 3
        assert edges == {
            (mermaid_id(e["source"]), mermaid_id(e["target"])) for e in json_doc["graph"]["edges"]
        }
        assert len(edges) == len(dot_edges) == 2


class TestHtml:
    """Tests for the HTML page."""

    def test_embeds_graph(self, tasks: list[Task]) -> None:
        """Test the page carries the node list."""
        page = render_html(tasks)

        assert page.startswith("<!DOCTYPE html>")
        assert [n["id"] for n in html_graph(page)["nodes"]] == ["1", "2", "3", "4", "5"]

    def test_script_injection_escaped(self) -> None:
        """Test a title cannot close the script element."""
        page = render_html([Task(id="1", title="</script><b>x</b>")])

        assert "</script><b>" not in page
        assert html_graph(page)["nodes"][0]["label"] == "</script><b>x</b>"
