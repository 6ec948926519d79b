"""Banking provider adapters and the provider registry."""
