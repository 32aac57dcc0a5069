"""
Sample Graph
============
"NBA Stats Pipeline": a small workflow graph that fetches player stats,
filters and sorts them, and renders an HTML view. Used by demo.py, as the
API's default data source, and by the test suite.

Shape (sheet "0" unless noted):

    entry-form -> root -> fetch-api -success-> filter-active -> display-html -> return
                                    -error---> error-handler
    sort-stats         (sheet "1", unconnected)
    disconnected-note  (sheet "1", unconnected)
"""
from .data_source import InMemoryGraphDataSource
from .state import GraphEdge, GraphInfo, GraphNode, HandleGroup, NodeTypeConfig

SAMPLE_GRAPH_KEY = "testgraph001"


def _in(accept: str = "any", position: str = "separate") -> HandleGroup:
    return {"position": position, "point": [{"id": "0", "type": "in", "accept": accept}]}


def _out(accept: str = "any", position: str = "separate") -> HandleGroup:
    return {"position": position, "point": [{"id": "0", "type": "out", "accept": accept}]}


SAMPLE_GRAPH: GraphInfo = {
    "key": SAMPLE_GRAPH_KEY,
    "name": "NBA Stats Pipeline",
    "description": "A workflow that fetches NBA player stats, processes them, and displays results",
    "sheets": {"0": "main", "1": "data-processing"},
}

SAMPLE_NODES: list[GraphNode] = [
    {
        "key": "root", "type": "starter", "sheet": "0", "pos_x": 100, "pos_y": 300,
        "size": {"width": 150, "height": 150},
        "process": "",
        "handles": {
            "0": {"position": "fix", "point": [{"id": "1", "type": "in", "accept": "entryType"}]},
            "R": _out(),
        },
    },
    {
        "key": "fetch-api", "type": "api-call", "sheet": "0", "pos_x": 400, "pos_y": 280,
        "size": {"width": 250, "height": 180},
        "process": (
            'const response = await fetch("https://api.sportsdata.io/v3/nba/scores/json/Players");\n'
            "const players = await response.json();\n"
            "node.data.result = players.slice(0, 50);\n"
            "next();"
        ),
        "handles": {
            "L": _in(),
            "R": {"position": "separate", "point": [
                {"id": "0", "type": "out", "accept": "any", "display": "success"},
                {"id": "1", "type": "out", "accept": "any", "display": "error"},
            ]},
        },
        "data": {
            "url": "https://api.sportsdata.io/v3/nba/scores/json/Players",
            "method": "GET",
            "headers": {"Ocp-Apim-Subscription-Key": "{{API_KEY}}"},
        },
    },
    {
        "key": "filter-active", "type": "filter", "sheet": "0", "pos_x": 750, "pos_y": 280,
        "size": {"width": 250, "height": 150},
        "process": (
            "const players = incoming[0].data.result;\n"
            'node.data.result = players.filter(p => p.Status === "Active");\n'
            'log("Filtered to " + node.data.result.length + " active players");\n'
            "next();"
        ),
        "handles": {"L": _in(), "R": _out()},
    },
    {
        "key": "sort-stats", "type": "transform", "sheet": "1", "pos_x": 200, "pos_y": 200,
        "size": {"width": 250, "height": 150},
        "process": (
            "const players = incoming[0].data.result;\n"
            "node.data.result = players.sort((a, b) => b.Points - a.Points);\n"
            "next();"
        ),
        "handles": {"L": _in(), "R": _out()},
    },
    {
        "key": "display-html", "type": "html", "sheet": "0", "pos_x": 1100, "pos_y": 200,
        "size": {"width": 640, "height": 360},
        "process": 'initHtml(node.data, "main", "[mainRender]");',
        "handles": {
            "0": {"position": "fix", "point": [
                {"id": "0", "type": "out", "accept": "event[]"},
                {"id": "1", "type": "in", "accept": "entryType"},
            ]},
        },
        "data": {"type": "list", "tag": "div", "name": "container", "identifier": "overlayRoot", "content": []},
    },
    {
        "key": "return", "type": "return", "sheet": "0", "pos_x": 1500, "pos_y": 300,
        "size": {"width": 150, "height": 150},
        "process": "",
        "handles": {"L": _in()},
    },
    {
        "key": "error-handler", "type": "log-node", "sheet": "0", "pos_x": 500, "pos_y": 550,
        "size": {"width": 200, "height": 120},
        "process": 'log("Error occurred: " + JSON.stringify(incoming[0].data));',
        "handles": {"L": _in()},
    },
    {
        "key": "entry-form", "type": "entryType", "sheet": "0", "pos_x": 50, "pos_y": 150,
        "size": {"width": 200, "height": 150},
        "process": "",
        "handles": {"0": _out("entryType", "fix")},
        "data": {"fixed_value": {"player_name": "LeBron James", "season": "2024"}},
    },
    {
        "key": "disconnected-note", "type": "log-node", "sheet": "1", "pos_x": 600, "pos_y": 400,
        "size": {"width": 180, "height": 100},
        "process": 'log("This node is not connected to anything");',
        "handles": {"L": _in()},
    },
]

SAMPLE_EDGES: list[GraphEdge] = [
    {"key": "e1", "sheet": "0", "source": "root", "source_handle": "0",
     "target": "fetch-api", "target_handle": "0"},
    {"key": "e2", "sheet": "0", "source": "fetch-api", "source_handle": "0",
     "target": "filter-active", "target_handle": "0", "label": "success"},
    {"key": "e3", "sheet": "0", "source": "fetch-api", "source_handle": "1",
     "target": "error-handler", "target_handle": "0", "label": "error"},
    {"key": "e4", "sheet": "0", "source": "filter-active", "source_handle": "0",
     "target": "display-html", "target_handle": "1"},
    {"key": "e5", "sheet": "0", "source": "display-html", "source_handle": "0",
     "target": "return", "target_handle": "0"},
    {"key": "e6", "sheet": "0", "source": "entry-form", "source_handle": "0",
     "target": "root", "target_handle": "1", "label": "entryType"},
]

SAMPLE_NODE_CONFIGS: list[NodeTypeConfig] = [
    {
        "key": "api-call", "display_name": "API Call",
        "description": "Makes an HTTP request to an external API",
        "category": "data", "icon": "Globe",
        "handles": {
            "L": _in(),
            "R": {"position": "separate", "point": [
                {"id": "0", "type": "out", "accept": "any"},
                {"id": "1", "type": "out", "accept": "any"},
            ]},
        },
    },
    {
        "key": "filter", "display_name": "Filter",
        "description": "Filters data based on a condition",
        "category": "transform", "icon": "Filter",
        "handles": {"L": _in(), "R": _out()},
    },
    {
        "key": "transform", "display_name": "Transform",
        "description": "Transforms/maps data from one format to another",
        "category": "transform", "icon": "Shuffle",
        "handles": {"L": _in(), "R": _out()},
    },
    {
        "key": "log-node", "display_name": "Logger",
        "description": "Logs data for debugging purposes",
        "category": "debug", "icon": "Terminal",
        "handles": {"L": _in()},
    },
]


def build_sample_data_source() -> InMemoryGraphDataSource:
    """Fresh, independently mutable copy of the sample graph."""
    return InMemoryGraphDataSource(
        graphs=[SAMPLE_GRAPH],
        nodes={SAMPLE_GRAPH_KEY: SAMPLE_NODES},
        edges={SAMPLE_GRAPH_KEY: SAMPLE_EDGES},
        configs=SAMPLE_NODE_CONFIGS,
    )
