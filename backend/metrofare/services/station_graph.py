"""Station network and shortest-route distance queries."""

from collections import deque
import heapq
import threading
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from metrofare.exceptions import InvalidRoute
from metrofare.models import Station

logger = structlog.get_logger(__name__)

NO_ROUTE = -1

DIJKSTRA = "dijkstra"
BFS = "bfs"


def validate_edge(station_a: str, station_b: str, distance: int):
    if station_a == station_b:
        raise InvalidRoute("An edge must join two different stations")
    if distance <= 0:
        raise InvalidRoute(f"Edge distance must be positive, got {distance}")


class StationGraph:
    """
    Undirected weighted graph of station codes.

    Readers never lock: every edit builds a new adjacency snapshot and swaps
    it in under a single writer lock, so a distance query sees either the
    graph before an edit or after it, never a half-applied one.
    """

    def __init__(self, stations: Iterable[Station] = (),
                 edges: Iterable[Tuple[str, str, int]] = (),
                 algorithm: str = DIJKSTRA):
        if algorithm not in (DIJKSTRA, BFS):
            raise ValueError(f"Unknown route algorithm: {algorithm}")
        self.algorithm = algorithm
        self._write_lock = threading.Lock()

        catalogue: Dict[str, Station] = {}
        adjacency: Dict[str, Dict[str, int]] = {}
        for station in stations:
            catalogue[station.code] = station.model_copy(update={"neighbors": {}})
            adjacency.setdefault(station.code, {})
        for station_a, station_b, distance in edges:
            validate_edge(station_a, station_b, distance)
            adjacency.setdefault(station_a, {})[station_b] = distance
            adjacency.setdefault(station_b, {})[station_a] = distance
        self._publish(catalogue, adjacency)

    def _publish(self, catalogue: Dict[str, Station], adjacency: Dict[str, Dict[str, int]]):
        # One attribute holds both maps so readers grab a consistent pair
        self._snapshot = (
            MappingProxyType(catalogue),
            MappingProxyType({code: MappingProxyType(n) for code, n in adjacency.items()}),
        )

    def is_valid_station(self, code: str) -> bool:
        return code in self._snapshot[1]

    def neighbors(self, code: str) -> Mapping[str, int]:
        return self._snapshot[1].get(code, MappingProxyType({}))

    def stations(self) -> List[Station]:
        """List stations with their current neighbor distances."""
        catalogue, adjacency = self._snapshot
        result = []
        for code in sorted(adjacency):
            station = catalogue.get(code) or Station(code=code, name=code)
            result.append(station.model_copy(update={"neighbors": dict(adjacency[code])}))
        return result

    def get_station(self, code: str) -> Optional[Station]:
        catalogue, adjacency = self._snapshot
        if code not in adjacency:
            return None
        station = catalogue.get(code) or Station(code=code, name=code)
        return station.model_copy(update={"neighbors": dict(adjacency[code])})

    def distance(self, source: str, dest: str) -> int:
        """
        Route distance in km between two stations.

        Returns:
            0 for the same known station, NO_ROUTE for an unknown code or a
            disconnected pair, otherwise the route length.
        """
        adjacency = self._snapshot[1]
        if source not in adjacency or dest not in adjacency:
            return NO_ROUTE
        if source == dest:
            return 0
        if self.algorithm == BFS:
            return self._first_reached_distance(adjacency, source, dest)
        return self._shortest_distance(adjacency, source, dest)

    @staticmethod
    def _shortest_distance(adjacency, source: str, dest: str) -> int:
        best = {source: 0}
        heap = [(0, source)]
        while heap:
            dist, current = heapq.heappop(heap)
            if current == dest:
                return dist
            if dist > best[current]:
                continue
            for neighbor, weight in adjacency[current].items():
                candidate = dist + weight
                if candidate < best.get(neighbor, candidate + 1):
                    best[neighbor] = candidate
                    heapq.heappush(heap, (candidate, neighbor))
        return NO_ROUTE

    @staticmethod
    def _first_reached_distance(adjacency, source: str, dest: str) -> int:
        # Breadth-first: each station visited once, distance fixed when first reached.
        # Only weight-optimal where hop order matches weight order.
        visited = {source}
        dist = {source: 0}
        queue = deque([source])
        while queue:
            current = queue.popleft()
            for neighbor, weight in adjacency[current].items():
                if neighbor in visited:
                    continue
                dist[neighbor] = dist[current] + weight
                if neighbor == dest:
                    return dist[neighbor]
                visited.add(neighbor)
                queue.append(neighbor)
        return NO_ROUTE

    def add_or_update_station(self, station: Station):
        """Add a station to the catalogue or refresh its details."""
        with self._write_lock:
            catalogue, adjacency = self._snapshot
            new_catalogue = dict(catalogue)
            new_catalogue[station.code] = station.model_copy(update={"neighbors": {}})
            new_adjacency = {code: dict(n) for code, n in adjacency.items()}
            new_adjacency.setdefault(station.code, {})
            self._publish(new_catalogue, new_adjacency)
        logger.info("station_saved", code=station.code, name=station.name)

    def add_or_update_edge(self, station_a: str, station_b: str, distance: int):
        """Add or reweight the symmetric edge between two known stations."""
        validate_edge(station_a, station_b, distance)
        with self._write_lock:
            catalogue, adjacency = self._snapshot
            for code in (station_a, station_b):
                if code not in adjacency:
                    raise InvalidRoute(f"Unknown station: {code}")
            new_adjacency = {code: dict(n) for code, n in adjacency.items()}
            new_adjacency[station_a][station_b] = distance
            new_adjacency[station_b][station_a] = distance
            self._publish(dict(catalogue), new_adjacency)
        logger.info("edge_saved", station_a=station_a, station_b=station_b, distance_km=distance)
