"""Unit tests for the station graph."""

import threading

import pytest

from metrofare.config import settings
from metrofare.exceptions import InvalidRoute
from metrofare.models import Station
from metrofare.services import NO_ROUTE, StationGraph
from metrofare.services.station_graph import BFS


class TestDistance:
    """Test distance queries on the demo network."""

    def test_edge_distance_is_symmetric(self, demo_graph):
        """Every direct edge reads the same both ways and equals its weight."""
        for a, b, km in settings.DEFAULT_EDGES:
            assert demo_graph.distance(a, b) == km
            assert demo_graph.distance(b, a) == km

    def test_same_station_is_zero(self, demo_graph):
        """A known station is 0 km from itself."""
        for code, *_ in settings.DEFAULT_STATIONS:
            assert demo_graph.distance(code, code) == 0

    def test_unknown_station_has_no_route(self, demo_graph):
        """Unknown codes yield NO_ROUTE rather than an error."""
        assert demo_graph.distance("a", "zz") == NO_ROUTE
        assert demo_graph.distance("zz", "a") == NO_ROUTE
        assert demo_graph.distance("zz", "zz") == NO_ROUTE

    def test_disconnected_station_has_no_route(self, demo_graph):
        """A station without edges cannot be reached."""
        demo_graph.add_or_update_station(Station(code="f", name="Airport"))
        assert demo_graph.distance("a", "f") == NO_ROUTE
        assert demo_graph.distance("f", "f") == 0

    def test_weighted_shortest_path(self, demo_graph):
        """Multi-hop routes take the lightest path."""
        assert demo_graph.distance("a", "c") == 8   # a-b-c
        assert demo_graph.distance("a", "d") == 15  # a-b-c-d beats a-e-d (16)
        assert demo_graph.distance("b", "e") == 14  # b-c-d-e beats b-a-e (17)

    def test_bfs_keeps_first_reached_distance(self):
        """The legacy search fixes a distance the first time a station is reached."""
        stations = [Station(code=code, name=name) for code, name, *_ in settings.DEFAULT_STATIONS]
        graph = StationGraph(stations, settings.DEFAULT_EDGES, algorithm=BFS)

        for a, b, km in settings.DEFAULT_EDGES:
            assert graph.distance(a, b) == km
        assert graph.distance("a", "c") == 8
        assert graph.distance("a", "d") == 16  # reached through e on the second level

    def test_unknown_algorithm_rejected(self):
        """Only the two supported searches can be selected."""
        with pytest.raises(ValueError):
            StationGraph(algorithm="astar")


class TestEdits:
    """Test admin edits to the network."""

    def test_add_edge_is_symmetric(self, demo_graph):
        """A new edge is visible from both ends."""
        demo_graph.add_or_update_edge("a", "c", 6)
        assert demo_graph.distance("a", "c") == 6
        assert demo_graph.distance("c", "a") == 6
        assert demo_graph.neighbors("a")["c"] == 6
        assert demo_graph.neighbors("c")["a"] == 6

    def test_update_edge_weight(self, demo_graph):
        """Reweighting an edge changes the routes through it."""
        demo_graph.add_or_update_edge("c", "d", 1)
        assert demo_graph.distance("a", "d") == 9

    def test_edge_requires_known_stations(self, demo_graph):
        """Edges can only join stations already in the catalogue."""
        with pytest.raises(InvalidRoute):
            demo_graph.add_or_update_edge("a", "zz", 3)

    def test_edge_requires_positive_distance(self, demo_graph):
        """Zero and negative weights are rejected."""
        with pytest.raises(InvalidRoute):
            demo_graph.add_or_update_edge("a", "c", 0)
        with pytest.raises(InvalidRoute):
            demo_graph.add_or_update_edge("a", "c", -4)

    def test_edge_requires_two_stations(self, demo_graph):
        """Self-loops are rejected."""
        with pytest.raises(InvalidRoute):
            demo_graph.add_or_update_edge("a", "a", 2)

    def test_station_listing_includes_neighbors(self, demo_graph):
        """Listing returns catalogue data with neighbor distances."""
        stations = {s.code: s for s in demo_graph.stations()}
        assert sorted(stations) == ["a", "b", "c", "d", "e"]
        assert stations["a"].name == "Motera Stadium"
        assert stations["a"].neighbors == {"b": 5, "e": 12}

    def test_readers_never_see_half_applied_edit(self, demo_graph):
        """Concurrent queries observe either the old or the new weight."""
        seen = set()
        stop = threading.Event()

        def reader():
            while not stop.is_set():
                seen.add((demo_graph.distance("c", "d"), demo_graph.distance("d", "c")))

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for i in range(200):
            demo_graph.add_or_update_edge("c", "d", 7 if i % 2 else 2)
        stop.set()
        for t in threads:
            t.join()

        for forward, backward in seen:
            assert forward in (2, 7)
            assert backward in (2, 7)
