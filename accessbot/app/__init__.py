"""Domain packages for subscriptions, delivery, and the daily lifecycle sweeps."""
