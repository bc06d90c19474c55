# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Immutable model of a Kubo custom routing topology.

A topology is a named set of routers plus a binding from each routing
method to one router:

* :class:`HttpRouter` – a leaf talking to one HTTP routing v1 endpoint.
* :class:`ParallelRouter` – a composite querying an ordered list of
  children, each with its own timeout and ignore-errors policy.

:meth:`RoutingTopology.validate` enforces that every binding and every
child reference resolves to a declared router and that composites do not
form a cycle.  :meth:`RoutingTopology.to_config` renders the ``Routing``
section of the repository config; :meth:`RoutingTopology.from_config`
parses one back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Union

from config import parse_interval_to_seconds
from errors import ConfigError, TopologyError

logger = logging.getLogger(__name__)

ROUTING_METHODS = ("find-providers", "provide", "find-peers", "get-ipns", "put-ipns")

# Placeholder endpoint for methods the scenarios deliberately leave unserved
NOT_SUPPORTED_ENDPOINT = "http://kubohttprouternotsupported"


@dataclass(frozen=True)
class HttpRouter:
    name: str
    endpoint: str

    router_type: ClassVar[str] = "http"

    def references(self) -> tuple[str, ...]:
        return ()

    def to_config(self) -> dict[str, Any]:
        return {
            "Type": self.router_type,
            "Parameters": {"Endpoint": self.endpoint},
        }


@dataclass(frozen=True)
class ChildRouter:
    """One entry of a parallel router: which router, how long, how forgiving."""

    router_name: str
    timeout: str = "5s"
    ignore_errors: bool = False

    def to_config(self) -> dict[str, Any]:
        return {
            "IgnoreErrors": self.ignore_errors,
            "RouterName": self.router_name,
            "Timeout": self.timeout,
        }


@dataclass(frozen=True)
class ParallelRouter:
    name: str
    children: tuple[ChildRouter, ...]

    router_type: ClassVar[str] = "parallel"

    def references(self) -> tuple[str, ...]:
        return tuple(child.router_name for child in self.children)

    def to_config(self) -> dict[str, Any]:
        return {
            "Type": self.router_type,
            "Parameters": {"Routers": [child.to_config() for child in self.children]},
        }


Router = Union[HttpRouter, ParallelRouter]


@dataclass(frozen=True)
class RoutingTopology:
    """Routers plus method bindings.  Never mutated once built."""

    routers: tuple[Router, ...]
    methods: tuple[tuple[str, str], ...]

    routing_type: ClassVar[str] = "custom"

    @classmethod
    def build(
        cls,
        routers: Iterable[Router],
        methods: Mapping[str, str],
    ) -> RoutingTopology:
        """Construct and validate a topology."""
        topology = cls(
            routers=tuple(routers),
            methods=tuple(sorted(methods.items())),
        )
        topology.validate()
        return topology

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def router_map(self) -> dict[str, Router]:
        return {router.name: router for router in self.routers}

    @property
    def method_bindings(self) -> dict[str, str]:
        return dict(self.methods)

    def router(self, name: str) -> Router:
        try:
            return self.router_map[name]
        except KeyError:
            raise TopologyError(f"Unknown router '{name}'") from None

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Raise :class:`TopologyError` if the topology is not well formed."""
        names = [router.name for router in self.routers]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise TopologyError(f"Duplicate router names: {', '.join(duplicates)}")

        declared = set(names)
        method_names = [method for method, _ in self.methods]
        if len(set(method_names)) != len(method_names):
            raise TopologyError("A routing method is bound more than once")

        for method, router_name in self.methods:
            if method not in ROUTING_METHODS:
                raise TopologyError(f"Unknown routing method '{method}'")
            if router_name not in declared:
                raise TopologyError(
                    f"Method '{method}' references undeclared router '{router_name}'"
                )

        for router in self.routers:
            if isinstance(router, ParallelRouter):
                if not router.children:
                    raise TopologyError(f"Parallel router '{router.name}' has no children")
                for child in router.children:
                    if child.router_name not in declared:
                        raise TopologyError(
                            f"Router '{router.name}' references undeclared "
                            f"router '{child.router_name}'"
                        )
                    try:
                        parse_interval_to_seconds(child.timeout)
                    except ConfigError as exc:
                        raise TopologyError(
                            f"Router '{router.name}' child '{child.router_name}': {exc}"
                        ) from exc

        self._check_acyclic()

    def _check_acyclic(self) -> None:
        router_map = self.router_map
        done: set[str] = set()

        def visit(name: str, trail: tuple[str, ...]) -> None:
            if name in trail:
                cycle = " -> ".join((*trail[trail.index(name):], name))
                raise TopologyError(f"Router cycle detected: {cycle}")
            if name in done:
                return
            for ref in router_map[name].references():
                visit(ref, (*trail, name))
            done.add(name)

        for router in self.routers:
            visit(router.name, ())

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_config(self) -> dict[str, Any]:
        """Render the ``Routing`` section of a Kubo config."""
        return {
            "Methods": {
                method: {"RouterName": router_name} for method, router_name in self.methods
            },
            "Routers": {router.name: router.to_config() for router in self.routers},
            "Type": self.routing_type,
        }

    @classmethod
    def from_config(cls, routing: Mapping[str, Any]) -> RoutingTopology:
        """Parse a ``Routing`` section back into a validated topology."""
        if routing.get("Type") != cls.routing_type:
            raise TopologyError(
                f"Expected Routing.Type '{cls.routing_type}', got {routing.get('Type')!r}"
            )

        routers: list[Router] = []
        try:
            for name, raw in (routing.get("Routers") or {}).items():
                params = raw.get("Parameters") or {}
                if raw.get("Type") == HttpRouter.router_type:
                    routers.append(HttpRouter(name=name, endpoint=params["Endpoint"]))
                elif raw.get("Type") == ParallelRouter.router_type:
                    children = tuple(
                        ChildRouter(
                            router_name=child["RouterName"],
                            timeout=child.get("Timeout", ""),
                            ignore_errors=bool(child.get("IgnoreErrors", False)),
                        )
                        for child in params.get("Routers") or []
                    )
                    routers.append(ParallelRouter(name=name, children=children))
                else:
                    raise TopologyError(
                        f"Router '{name}' has unsupported type {raw.get('Type')!r}"
                    )
            methods = {
                method: entry["RouterName"]
                for method, entry in (routing.get("Methods") or {}).items()
            }
        except (KeyError, AttributeError, TypeError) as exc:
            raise TopologyError(f"Malformed Routing section: {exc!r}") from exc

        return cls.build(routers, methods)


# ---------------------------------------------------------------------------
# Scenario topologies
# ---------------------------------------------------------------------------


def parallel_http_topology(
    ports: Iterable[int],
    *,
    timeout: str = "5s",
    ignore_errors: bool = False,
    host: str = "127.0.0.1",
) -> RoutingTopology:
    """Provider discovery fanned out to one HTTP router per port.

    ``find-providers`` and ``provide`` go to a parallel router over
    ``HttpRouter1..N`` at ``http://host:port``; the peer and IPNS methods
    go to an endpoint that does not exist, so they never succeed either.
    """
    http_routers = [
        HttpRouter(name=f"HttpRouter{index}", endpoint=f"http://{host}:{port}")
        for index, port in enumerate(ports, start=1)
    ]
    not_supported = HttpRouter(name="HttpRouterNotSupported", endpoint=NOT_SUPPORTED_ENDPOINT)
    parallel = ParallelRouter(
        name="HttpRoutersParallel",
        children=tuple(
            ChildRouter(router_name=r.name, timeout=timeout, ignore_errors=ignore_errors)
            for r in http_routers
        ),
    )
    methods = {
        "find-peers": not_supported.name,
        "find-providers": parallel.name,
        "get-ipns": not_supported.name,
        "provide": parallel.name,
        "put-ipns": not_supported.name,
    }
    return RoutingTopology.build([*http_routers, not_supported, parallel], methods)
