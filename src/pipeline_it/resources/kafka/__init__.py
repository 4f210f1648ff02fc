"""Kafka topic resources."""
