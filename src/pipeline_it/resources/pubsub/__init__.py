"""Google Cloud Pub/Sub resources."""
