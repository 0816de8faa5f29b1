"""Event delivery service: outbound webhook subscriptions and delivery."""
