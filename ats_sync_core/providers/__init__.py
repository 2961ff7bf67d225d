"""Provider API clients, sync handlers and the provider registry."""
