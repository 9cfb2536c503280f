"""Tests for building nodes and endpoints from topology documents."""

import json
from pathlib import Path

import pytest

from mpbench.core.model import (
    ConfigParseError,
    Durability,
    PassBy,
    Reliability,
    UnknownTypeError,
)
from mpbench.core.scheduler import ExecutorPool
from mpbench.core.topology import (
    DEFAULT_PERIOD,
    TopologyBuilder,
    id_to_node_name,
    id_to_service_name,
    id_to_topic_name,
    parse_topology,
)
from mpbench.core.transport.inprocess import InProcessTransport


def node_entry(name: str, **lists) -> dict:
    return {"name": name, **lists}


def pub(name: str, type_name: str = "stamped4_int32", **extra) -> dict:
    return {"name": name, "type": type_name, **extra}


class TestBuild:
    def test_single_node_all_roles(self, builder: TopologyBuilder):
        nodes = builder.build(
            [
                {
                    "name": "montreal",
                    "executor_id": 2,
                    "publishers": [pub("amazon", "stamped12_float32", rate_hz=100)],
                    "subscribers": [{"name": "nile", "type": "stamped4_int32"}],
                    "clients": [{"name": "lyon", "type": "stamped10b", "period_us": 20000}],
                    "servers": [{"name": "paris", "type": "stamped10b"}],
                }
            ]
        )

        assert len(nodes) == 1
        node = nodes[0]
        assert node.name == "montreal"
        assert node.executor_id == 2
        assert list(node.publishers) == ["amazon"]
        assert list(node.subscribers) == ["nile"]
        assert list(node.clients) == ["lyon"]
        assert list(node.servers) == ["paris"]
        assert node.publishers["amazon"].period == pytest.approx(0.01)
        assert node.clients["lyon"].period == pytest.approx(0.02)
        assert len(node.timers) == 2

    def test_node_and_endpoint_counts(self, builder: TopologyBuilder):
        document = {
            "nodes": [
                node_entry(
                    f"node_{i}",
                    publishers=[pub(f"topic_{i}_{j}") for j in range(3)],
                    subscribers=[pub(f"topic_{(i + 1) % 4}_0")],
                )
                for i in range(4)
            ]
        }
        nodes = builder.build(document)

        assert len(nodes) == 4
        assert all(len(node.publishers) == 3 for node in nodes)
        assert all(len(node.subscribers) == 1 for node in nodes)
        assert sum(len(node.all_trackers()) for node in nodes) == 4
        assert sum(len(node.pub_trackers()) for node in nodes) == 12

    def test_defaults(self, builder: TopologyBuilder):
        (node,) = builder.build([node_entry("n", publishers=[pub("t")])])
        publisher = node.publishers["t"]

        assert publisher.period == DEFAULT_PERIOD
        assert publisher.pass_by is PassBy.SHARED
        assert publisher.size == 0
        assert publisher.qos.reliability is Reliability.RELIABLE
        assert publisher.qos.durability is Durability.VOLATILE
        assert publisher.qos.history_depth == 10

    def test_long_form_key_aliases(self, builder: TopologyBuilder):
        (node,) = builder.build(
            [
                {
                    "node_name": "lisbon",
                    "node_namespace": "/europe",
                    "publishers": [
                        {
                            "topic_name": "tagus",
                            "msg_type": "stamped_vector",
                            "period_ms": 50,
                            "msg_size": 2048,
                            "msg_pass_by": "unique_ptr",
                            "qos_reliability": "best_effort",
                            "qos_history_depth": 5,
                        }
                    ],
                    "clients": [
                        {"service_name": "porto", "srv_type": "stamped10b", "freq_hz": 4}
                    ],
                }
            ]
        )

        assert node.full_name == "/europe/lisbon"
        publisher = node.publishers["tagus"]
        assert publisher.period == pytest.approx(0.05)
        assert publisher.size == 2048
        assert publisher.pass_by is PassBy.UNIQUE
        assert publisher.qos.reliability is Reliability.BEST_EFFORT
        assert publisher.qos.history_depth == 5
        assert node.clients["porto"].period == pytest.approx(0.25)

    def test_nested_qos(self, builder: TopologyBuilder):
        (node,) = builder.build(
            [
                node_entry(
                    "n",
                    subscribers=[
                        pub(
                            "t",
                            qos={"durability": "transient_local", "history_depth": 3},
                        )
                    ],
                )
            ]
        )
        qos = node.subscribers["t"].qos
        assert qos.durability is Durability.TRANSIENT_LOCAL
        assert qos.history_depth == 3

    def test_endpoint_events_go_to_builder_sink(self, builder: TopologyBuilder, events):
        (node,) = builder.build([node_entry("n", servers=[pub("s", "stamped10b")])])
        assert node.events is events

    def test_build_from_path(self, builder: TopologyBuilder, tmp_path: Path):
        path = tmp_path / "topology.json"
        path.write_text(
            json.dumps({"nodes": [node_entry("n", publishers=[pub("t")])]})
        )
        nodes = builder.build_from_path(path)
        assert [node.name for node in nodes] == ["n"]

    def test_build_from_invalid_json(self, builder: TopologyBuilder, tmp_path: Path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigParseError):
            builder.build_from_path(path)


class TestParseErrors:
    @pytest.mark.parametrize(
        "document",
        [
            "nodes",
            42,
            {"servers": []},
            [["not", "an", "object"]],
            [{"publishers": [pub("t")]}],
            [{"name": "", "publishers": [pub("t")]}],
            [{"name": "n"}],
            [{"name": "n", "publishers": "amazon"}],
            [{"name": "n", "executor_id": -1, "publishers": [pub("t")]}],
        ],
    )
    def test_malformed_documents(self, document):
        with pytest.raises(ConfigParseError):
            parse_topology(document)

    def test_missing_endpoint_name(self):
        with pytest.raises(ConfigParseError) as exc_info:
            parse_topology([node_entry("n", publishers=[{"type": "stamped4_int32"}])])
        assert exc_info.value.node == "n"

    def test_missing_endpoint_type(self):
        with pytest.raises(ConfigParseError) as exc_info:
            parse_topology([node_entry("n", subscribers=[{"name": "t"}])])
        assert exc_info.value.node == "n"
        assert exc_info.value.endpoint == "t"
        assert "'n'" in str(exc_info.value)

    @pytest.mark.parametrize(
        "extra",
        [
            {"rate_hz": 0},
            {"rate_hz": -10},
            {"period_ms": 0},
            {"period_us": "fast"},
            {"rate_hz": 10, "period_ms": 100},
            {"size": -1},
            {"pass_by": "borrowed"},
            {"qos": {"reliability": "sometimes"}},
            {"qos": {"history_depth": 0}},
        ],
    )
    def test_invalid_endpoint_fields(self, extra):
        with pytest.raises(ConfigParseError) as exc_info:
            parse_topology([node_entry("n", publishers=[pub("t", **extra)])])
        assert exc_info.value.endpoint == "t"

    def test_duplicate_endpoint_names(self):
        with pytest.raises(ConfigParseError):
            parse_topology([node_entry("n", publishers=[pub("t"), pub("t")])])

    def test_same_name_in_different_roles_is_allowed(self):
        (spec,) = parse_topology(
            [node_entry("n", publishers=[pub("t")], subscribers=[pub("t")])]
        )
        assert len(spec.endpoints) == 2

    def test_duplicate_node_names(self):
        with pytest.raises(ConfigParseError) as exc_info:
            parse_topology(
                [node_entry("n", publishers=[pub("a")]), node_entry("n", servers=[])]
            )
        assert exc_info.value.node == "n"

    def test_unknown_type_reports_location(self, builder: TopologyBuilder, transport):
        document = [
            node_entry("good", publishers=[pub("t")]),
            node_entry("bad", subscribers=[pub("x", "does_not_exist")]),
        ]
        with pytest.raises(UnknownTypeError) as exc_info:
            builder.build(document)

        assert exc_info.value.type_name == "does_not_exist"
        assert exc_info.value.node == "bad"
        assert exc_info.value.endpoint == "x"
        # types are resolved before anything is constructed
        assert transport.live_handles == 0

    def test_message_type_used_as_service_type(self, builder: TopologyBuilder):
        with pytest.raises(UnknownTypeError):
            builder.build([node_entry("n", servers=[pub("s", "stamped4_int32")])])


class TestRollback:
    def test_failed_construction_destroys_built_nodes(
        self, builder: TopologyBuilder, transport: InProcessTransport
    ):
        document = [
            node_entry("first", publishers=[pub("t")], servers=[pub("svc", "stamped10b")]),
            node_entry("second", clients=[pub("svc", "stamped10b")]),
            node_entry(
                "third",
                subscribers=[pub("t")],
                servers=[pub("svc", "stamped10b")],
            ),
        ]
        with pytest.raises(ConfigParseError) as exc_info:
            builder.build(document)

        assert exc_info.value.node == "third"
        assert transport.live_handles == 0
        assert transport.topic_names() == []

    def test_topic_type_mismatch_across_nodes(
        self, builder: TopologyBuilder, transport: InProcessTransport
    ):
        document = [
            node_entry("a", publishers=[pub("shared", "stamped4_int32")]),
            node_entry("b", subscribers=[pub("shared", "stamped9_float32")]),
        ]
        with pytest.raises(ConfigParseError):
            builder.build(document)
        assert transport.live_handles == 0


class TestRangeHelpers:
    def test_names(self):
        assert id_to_node_name(3) == "node_3"
        assert id_to_topic_name(0) == "topic_0"
        assert id_to_service_name(12) == "service_12"

    def test_publisher_and_subscriber_ranges(self, builder: TopologyBuilder):
        publishers = builder.create_periodic_publisher_nodes(0, 2, 100.0, "stamped4_int32")
        subscribers = builder.create_subscriber_nodes(3, 4, 3, "stamped4_int32")

        assert [node.name for node in publishers] == ["node_0", "node_1", "node_2"]
        assert [node.get_published_topics() for node in publishers] == [
            ["topic_0"],
            ["topic_1"],
            ["topic_2"],
        ]
        assert publishers[0].publishers["topic_0"].period == pytest.approx(0.01)
        assert [node.name for node in subscribers] == ["node_3", "node_4"]
        for node in subscribers:
            assert sorted(node.subscribers) == ["topic_0", "topic_1", "topic_2"]

    def test_client_and_server_ranges(self, builder: TopologyBuilder):
        servers = builder.create_server_nodes(0, 1, "stamped10b")
        clients = builder.create_periodic_client_nodes(2, 2, 2, 10.0, "stamped10b")

        assert [list(node.servers) for node in servers] == [["service_0"], ["service_1"]]
        (client_node,) = clients
        assert client_node.name == "node_2"
        assert sorted(client_node.clients) == ["service_0", "service_1"]
        assert client_node.clients["service_0"].period == pytest.approx(0.1)

    def test_single_id_range_is_inclusive(self, builder: TopologyBuilder):
        nodes = builder.create_server_nodes(5, 5, "stamped10b")
        assert [node.name for node in nodes] == ["node_5"]

    def test_empty_range_rejected(self, builder: TopologyBuilder):
        with pytest.raises(ValueError):
            builder.create_server_nodes(3, 2, "stamped10b")

    def test_non_positive_frequency_rejected(self, builder: TopologyBuilder):
        with pytest.raises(ValueError):
            builder.create_periodic_publisher_nodes(0, 0, 0.0, "stamped4_int32")

    def test_unknown_type_in_string_helper(self, builder: TopologyBuilder):
        node = builder.create_node("n")
        with pytest.raises(UnknownTypeError):
            builder.add_subscriber_from_strings(node, "does_not_exist", "t")
        assert node.subscribers == {}

    def test_publisher_range_rolls_back_on_topic_conflict(
        self,
        builder: TopologyBuilder,
        transport: InProcessTransport,
        sync_executors: ExecutorPool,
    ):
        existing = builder.create_node("existing")
        builder.add_periodic_publisher_from_strings(existing, "stamped10b", "topic_1")
        handles = transport.live_handles
        timers = len(sync_executors.get(0))

        with pytest.raises(ConfigParseError) as exc_info:
            builder.create_periodic_publisher_nodes(0, 2, 100.0, "stamped100b")

        assert exc_info.value.node == "node_1"
        assert transport.live_handles == handles
        assert len(sync_executors.get(0)) == timers
        assert transport.topic_names() == ["topic_1"]

    def test_subscriber_range_destroys_partially_built_node(
        self, builder: TopologyBuilder, transport: InProcessTransport
    ):
        existing = builder.create_node("existing")
        builder.add_subscriber_from_strings(existing, "stamped10b", "topic_2")
        handles = transport.live_handles

        with pytest.raises(ConfigParseError):
            builder.create_subscriber_nodes(0, 1, 3, "stamped4_int32")

        assert transport.live_handles == handles

    def test_server_range_rolls_back_on_duplicate_server(
        self,
        builder: TopologyBuilder,
        transport: InProcessTransport,
        sync_executors: ExecutorPool,
    ):
        builder.create_server_nodes(1, 1, "stamped10b")
        handles = transport.live_handles

        with pytest.raises(ConfigParseError) as exc_info:
            builder.create_server_nodes(0, 2, "stamped10b")

        assert exc_info.value.node == "node_1"
        assert transport.live_handles == handles

    def test_client_range_unknown_type_leaves_nothing_behind(
        self,
        builder: TopologyBuilder,
        transport: InProcessTransport,
        sync_executors: ExecutorPool,
    ):
        with pytest.raises(UnknownTypeError):
            builder.create_periodic_client_nodes(0, 1, 2, 10.0, "no_such_service")

        assert transport.live_handles == 0
        assert len(sync_executors.get(0)) == 0
