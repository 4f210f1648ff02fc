"""Unit tests for resource handles and naming conventions."""

from __future__ import annotations

import re

import pytest

from pipeline_it.errors import NotReadyError
from pipeline_it.resources.handle import BackingState, Endpoint, ResourceHandle
from pipeline_it.resources.naming import (
    SUFFIX_LENGTH,
    generate_namespace,
    kafka_topic_name,
    pubsub_resource_id,
    pubsub_subscription_path,
    pubsub_topic_path,
    sql_identifier,
    validate_sub_resource_name,
)


class TestResourceHandle:
    def test_endpoint_not_ready_before_running(self):
        handle = ResourceHandle(test_id="t", namespace="t-1234")
        assert handle.state == BackingState.UNINITIALIZED
        with pytest.raises(NotReadyError, match="t-1234"):
            _ = handle.endpoint

    def test_endpoint_after_running(self):
        handle = ResourceHandle(test_id="t", namespace="ns")
        handle.mark_running(Endpoint("localhost", 5432))
        assert handle.endpoint == Endpoint("localhost", 5432)

    def test_leaving_running_clears_endpoint(self):
        handle = ResourceHandle(test_id="t", namespace="ns")
        handle.mark_running(Endpoint("localhost", 5432))
        handle.mark(BackingState.STOPPED)
        with pytest.raises(NotReadyError):
            _ = handle.endpoint

    def test_endpoint_str(self):
        assert str(Endpoint("10.0.0.2", 9092)) == "10.0.0.2:9092"


class TestGenerateNamespace:
    def test_format(self):
        ns = generate_namespace("orders-it")
        assert re.fullmatch(rf"orders-it-[0-9a-f]{{{SUFFIX_LENGTH}}}", ns)

    def test_unique(self):
        assert len({generate_namespace("t") for _ in range(50)}) == 50

    def test_truncates_test_id_not_suffix(self):
        ns = generate_namespace("a" * 100, max_length=30)
        assert len(ns) <= 30
        assert len(ns.rsplit("-", 1)[1]) == SUFFIX_LENGTH

    def test_empty_test_id_raises(self):
        with pytest.raises(ValueError):
            generate_namespace("")


class TestSqlIdentifier:
    def test_replaces_invalid_characters(self):
        assert sql_identifier("orders-it.v2-ab12cd34") == "orders_it_v2_ab12cd34"

    def test_leading_digit_gets_prefix(self):
        assert sql_identifier("1st-run") == "t_1st_run"

    def test_upper_and_truncate(self):
        assert sql_identifier("oracle-test-" + "x" * 40, max_length=30, upper=True) == (
            "ORACLE_TEST_" + "X" * 18
        )


class TestValidateSubResourceName:
    @pytest.mark.parametrize("name", ["orders", "_tmp", "T1", "col$1"])
    def test_valid(self, name: str):
        assert validate_sub_resource_name(name) == name

    @pytest.mark.parametrize("name", ["", "1orders", "drop table;", "a-b", "a.b"])
    def test_invalid(self, name: str):
        with pytest.raises(ValueError):
            validate_sub_resource_name(name)


class TestBrokerNames:
    def test_pubsub_paths(self):
        assert pubsub_topic_path("p", "t") == "projects/p/topics/t"
        assert pubsub_subscription_path("p", "s") == "projects/p/subscriptions/s"

    def test_pubsub_resource_id(self):
        assert pubsub_resource_id("orders-ab12cd34", "input") == "orders-ab12cd34-input"

    def test_pubsub_resource_id_must_start_with_letter(self):
        assert pubsub_resource_id("1run-ab12", "in") == "it-1run-ab12-in"
        assert pubsub_resource_id("google-ab12", "in") == "it-google-ab12-in"

    def test_pubsub_resource_id_replaces_dots(self):
        assert pubsub_resource_id("a.b-1", "t") == "a-b-1-t"

    def test_kafka_topic_name(self):
        assert kafka_topic_name("orders-ab12", "events") == "orders-ab12.events"
        assert kafka_topic_name("ns", "bad name/x") == "ns.bad-name-x"
